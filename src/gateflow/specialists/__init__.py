from __future__ import annotations

from typing import Any

from gateflow.specialists.architect import ArchitectAgent
from gateflow.specialists.backend import BackendDeveloperAgent
from gateflow.specialists.base import (
    ProgressMessages,
    SpecialistAgent,
    ToolPolicyError,
)
from gateflow.specialists.designer import DesignerAgent
from gateflow.specialists.devops import DevOpsEngineerAgent
from gateflow.specialists.frontend import FrontendDeveloperAgent
from gateflow.specialists.intake import IntakeAgent
from gateflow.specialists.product_manager import ProductManagerAgent
from gateflow.specialists.qa import QAEngineerAgent
from gateflow.specialists.security import SecurityEngineerAgent

SPECIALISTS: dict[str, type[SpecialistAgent]] = {
    agent.role: agent
    for agent in (
        IntakeAgent,
        ProductManagerAgent,
        ArchitectAgent,
        DesignerAgent,
        FrontendDeveloperAgent,
        BackendDeveloperAgent,
        QAEngineerAgent,
        SecurityEngineerAgent,
        DevOpsEngineerAgent,
    )
}


def get_specialist(role: str, **kwargs: Any) -> SpecialistAgent:
    try:
        agent_cls = SPECIALISTS[role]
    except KeyError as exc:
        raise ValueError(f"Unknown worker role: {role}") from exc
    return agent_cls(**kwargs)


__all__ = [
    "SPECIALISTS",
    "ArchitectAgent",
    "BackendDeveloperAgent",
    "DesignerAgent",
    "DevOpsEngineerAgent",
    "FrontendDeveloperAgent",
    "IntakeAgent",
    "ProductManagerAgent",
    "ProgressMessages",
    "QAEngineerAgent",
    "SecurityEngineerAgent",
    "SpecialistAgent",
    "ToolPolicyError",
    "get_specialist",
]
