from __future__ import annotations

from gateflow.specialists.base import ProgressMessages, SpecialistAgent


class QAEngineerAgent(SpecialistAgent):
    role = "qa_engineer"
    document_category = "TEST_RESULTS"
    document_title = "Test Plan and Results"
    progress = ProgressMessages(
        start="Reviewing code and creating test plan...",
        working="Writing and executing tests...",
        finalizing="Finalizing test results...",
    )
    prompt = """
You are the QA Engineer specialist.
Write a test plan, add unit, integration and end-to-end tests, and report results
with coverage. Flag spec drift with check_spec_integrity.
"""
