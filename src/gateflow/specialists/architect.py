from __future__ import annotations

from gateflow.specialists.base import ProgressMessages, SpecialistAgent


class ArchitectAgent(SpecialistAgent):
    role = "architect"
    document_category = "ARCHITECTURE"
    document_title = "Architecture Document"
    progress = ProgressMessages(
        start="Analyzing requirements and designing system architecture...",
        working="Creating OpenAPI spec, database schema, and architecture docs...",
        finalizing="Finalizing architecture deliverables...",
    )
    prompt = """
You are the Architect specialist.
Design the system architecture from the PRD. Register the OpenAPI spec at
specs/openapi.yaml and the Prisma schema at prisma/schema.prisma with register_spec,
then run check_spec_integrity and fix every reported error.
"""
