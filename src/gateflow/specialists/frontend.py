from __future__ import annotations

from gateflow.specialists.base import ProgressMessages, SpecialistAgent


class FrontendDeveloperAgent(SpecialistAgent):
    role = "frontend_developer"
    document_category = "CODE"
    document_title = "Frontend Implementation Notes"
    progress = ProgressMessages(
        start="Reviewing architecture and design specs...",
        working="Implementing frontend components and pages...",
        finalizing="Finalizing frontend code...",
    )
    prompt = """
You are the Frontend Developer specialist.
Implement the UI from the selected design and the API spec. Write every file under
frontend/ with write_file and keep components typed against the registered specs.
"""
