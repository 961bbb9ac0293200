from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

DOCUMENT_CATEGORIES = (
    "REQUIREMENTS",
    "ARCHITECTURE",
    "API_SPEC",
    "DATABASE_SCHEMA",
    "DESIGN",
    "CODE",
    "TEST_PLAN",
    "TEST_RESULTS",
    "SECURITY_REPORT",
    "DEPLOYMENT_GUIDE",
)

WORKER_ROLES = (
    "product_manager_onboarding",
    "product_manager",
    "architect",
    "ux_ui_designer",
    "frontend_developer",
    "backend_developer",
    "qa_engineer",
    "security_engineer",
    "devops_engineer",
)


class ToolRegistryError(LookupError):
    """Raised when a tool name is not in the catalog."""


@dataclass(slots=True, frozen=True)
class ToolSchema:
    name: str
    description: str
    parameters: dict[str, Any]
    category: str
    allowed_roles: tuple[str, ...] = field(default_factory=tuple)

    def allows(self, role: str) -> bool:
        return not self.allowed_roles or role in self.allowed_roles

    def input_schema(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": dict(self.parameters.get("properties", {})),
            "required": list(self.parameters.get("required", [])),
        }


def _object(properties: dict[str, Any], required: list[str] | None = None) -> dict[str, Any]:
    return {"type": "object", "properties": properties, "required": required or []}


TOOL_CATALOG: tuple[ToolSchema, ...] = (
    ToolSchema(
        name="get_context_for_story",
        description=(
            "Get relevant context for a specific task or user story: documents, specs, "
            "previous decisions and handoffs related to the current work."
        ),
        category="context",
        parameters=_object(
            {
                "query": {
                    "type": "string",
                    "description": "What context is needed, e.g. 'database schema for orders'.",
                },
                "context_types": {
                    "type": "array",
                    "items": {"type": "string"},
                    "description": "Any of: documents, specs, decisions, handoffs.",
                },
            },
            ["query"],
        ),
    ),
    ToolSchema(
        name="register_spec",
        description=(
            "Register a specification file (OpenAPI, Prisma, Zod, TypeScript) in the "
            "project workspace instead of emitting it as markdown."
        ),
        category="spec",
        allowed_roles=("architect", "backend_developer"),
        parameters=_object(
            {
                "spec_type": {
                    "type": "string",
                    "enum": ["openapi", "prisma", "zod", "typescript"],
                },
                "file_path": {"type": "string", "description": "e.g. specs/openapi.yaml"},
                "content": {"type": "string"},
                "description": {"type": "string"},
            },
            ["spec_type", "file_path", "content"],
        ),
    ),
    ToolSchema(
        name="check_spec_integrity",
        description=(
            "Validate that the OpenAPI spec and the Prisma schema reference the same entities."
        ),
        category="spec",
        allowed_roles=("architect", "backend_developer", "qa_engineer"),
        parameters=_object(
            {
                "check_openapi": {"type": "boolean"},
                "check_prisma": {"type": "boolean"},
                "check_alignment": {"type": "boolean"},
            }
        ),
    ),
    ToolSchema(
        name="record_decision",
        description="Record a significant decision together with its rationale.",
        category="decision",
        parameters=_object(
            {
                "title": {"type": "string"},
                "decision": {"type": "string"},
                "rationale": {"type": "string"},
                "alternatives": {"type": "array", "items": {"type": "string"}},
                "impact": {"type": "string", "enum": ["low", "medium", "high"]},
            },
            ["title", "decision", "rationale"],
        ),
    ),
    ToolSchema(
        name="get_documents",
        description="Fetch existing project documents by type or title.",
        category="document",
        parameters=_object(
            {
                "document_type": {"type": "string", "enum": list(DOCUMENT_CATEGORIES)},
                "title": {"type": "string"},
                "limit": {"type": "number"},
            }
        ),
    ),
    ToolSchema(
        name="record_handoff",
        description="Record a handoff to the next agent with deliverables and notes.",
        category="handoff",
        parameters=_object(
            {
                "to_agent": {"type": "string"},
                "deliverables": {"type": "array", "items": {"type": "string"}},
                "notes": {"type": "string"},
                "blockers": {"type": "array", "items": {"type": "string"}},
            },
            ["to_agent", "deliverables"],
        ),
    ),
    ToolSchema(
        name="create_task_for_agent",
        description=(
            "Create a task or question for another agent. The task is picked up the next "
            "time that agent runs."
        ),
        category="task",
        parameters=_object(
            {
                "to_agent": {"type": "string", "enum": list(WORKER_ROLES)},
                "task_type": {
                    "type": "string",
                    "enum": ["question", "review", "implementation", "validation"],
                },
                "title": {"type": "string"},
                "description": {"type": "string"},
                "context": {"type": "string"},
                "priority": {"type": "string", "enum": ["low", "medium", "high", "blocking"]},
            },
            ["to_agent", "task_type", "title", "description"],
        ),
    ),
    ToolSchema(
        name="save_design_concept",
        description=(
            "Save one design concept with an HTML mockup. Call once per design "
            "(Conservative, Modern, Bold)."
        ),
        category="design",
        allowed_roles=("ux_ui_designer",),
        parameters=_object(
            {
                "name": {"type": "string"},
                "description": {"type": "string"},
                "style": {"type": "string", "enum": ["conservative", "modern", "bold"]},
                "colorScheme": {"type": "string"},
                "html": {"type": "string"},
            },
            ["name", "style", "html"],
        ),
    ),
    ToolSchema(
        name="read_file",
        description="Read a file from the project workspace.",
        category="file",
        parameters=_object({"file_path": {"type": "string"}}, ["file_path"]),
    ),
    ToolSchema(
        name="write_file",
        description="Write a file into the project workspace.",
        category="file",
        allowed_roles=(
            "frontend_developer",
            "backend_developer",
            "qa_engineer",
            "devops_engineer",
        ),
        parameters=_object(
            {"file_path": {"type": "string"}, "content": {"type": "string"}},
            ["file_path", "content"],
        ),
    ),
    ToolSchema(
        name="list_files",
        description="List the project workspace as a directory tree.",
        category="file",
        parameters=_object({"directory": {"type": "string"}}),
    ),
)

_TOOLS_BY_NAME: dict[str, ToolSchema] = {tool.name: tool for tool in TOOL_CATALOG}


def get_tool(name: str) -> ToolSchema:
    try:
        return _TOOLS_BY_NAME[name]
    except KeyError as exc:
        raise ToolRegistryError(f"Unknown tool: {name}") from exc


def is_known_tool(name: str) -> bool:
    return name in _TOOLS_BY_NAME


def tools_for_role(role: str) -> list[ToolSchema]:
    return [tool for tool in TOOL_CATALOG if tool.allows(role)]


def tool_names_for_role(role: str) -> list[str]:
    return [tool.name for tool in tools_for_role(role)]
