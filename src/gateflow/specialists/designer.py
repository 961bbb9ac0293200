from __future__ import annotations

from gateflow.specialists.base import ProgressMessages, SpecialistAgent


class DesignerAgent(SpecialistAgent):
    role = "ux_ui_designer"
    document_category = "DESIGN"
    document_title = "Design System"
    artifact_kind = "design concept"
    expected_artifact_count = 3
    progress = ProgressMessages(
        start="Reviewing requirements and planning design system...",
        working="Creating wireframes, mockups, and design system...",
        finalizing="Finalizing design deliverables...",
    )
    prompt = """
You are the UX/UI Designer specialist.
Produce three viewable HTML design concepts (conservative, modern, bold) and save
each one with save_design_concept. Never describe a design instead of saving it.
Follow WCAG 2.1 AA and design within the documented architecture.
"""
