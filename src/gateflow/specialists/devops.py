from __future__ import annotations

from gateflow.specialists.base import ProgressMessages, SpecialistAgent


class DevOpsEngineerAgent(SpecialistAgent):
    role = "devops_engineer"
    document_category = "DEPLOYMENT_GUIDE"
    document_title = "Deployment Guide"
    progress = ProgressMessages(
        start="Reviewing deployment requirements...",
        working="Configuring CI/CD and deployment...",
        finalizing="Finalizing deployment...",
    )
    prompt = """
You are the DevOps Engineer specialist.
Set up CI/CD, infrastructure config and the deployment for the current environment.
Document every step needed to reproduce the deployment.
"""
