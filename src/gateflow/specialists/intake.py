from __future__ import annotations

from gateflow.specialists.base import SpecialistAgent


class IntakeAgent(SpecialistAgent):
    role = "product_manager_onboarding"
    document_category = "REQUIREMENTS"
    document_title = "Project Intake"
    prompt = """
You are the Product Manager running project intake.
Interview the user about vision, goals, users, constraints and scope.
Summarize the answers as a structured intake document.
"""
