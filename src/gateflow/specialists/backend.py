from __future__ import annotations

from gateflow.specialists.base import ProgressMessages, SpecialistAgent


class BackendDeveloperAgent(SpecialistAgent):
    role = "backend_developer"
    document_category = "CODE"
    document_title = "Backend Implementation Notes"
    progress = ProgressMessages(
        start="Reviewing architecture and API specs...",
        working="Implementing API endpoints and business logic...",
        finalizing="Finalizing backend code...",
    )
    prompt = """
You are the Backend Developer specialist.
Implement the API exactly as specified in specs/openapi.yaml and prisma/schema.prisma.
Write every file under backend/ with write_file. Do not change the specs silently:
record a decision and a task for the architect instead.
"""
