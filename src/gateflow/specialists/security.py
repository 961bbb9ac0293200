from __future__ import annotations

from gateflow.specialists.base import ProgressMessages, SpecialistAgent


class SecurityEngineerAgent(SpecialistAgent):
    role = "security_engineer"
    document_category = "SECURITY_REPORT"
    document_title = "Security Audit Report"
    progress = ProgressMessages(
        start="Preparing security audit...",
        working="Scanning for vulnerabilities and security issues...",
        finalizing="Finalizing security report...",
    )
    prompt = """
You are the Security Engineer specialist.
Audit the code and architecture against the OWASP Top 10. Classify findings as
CRITICAL, HIGH, MEDIUM or LOW and create tasks for the owning developers.
"""
