from __future__ import annotations

import asyncio
import logging
import re
from typing import Any

from gateflow.state.store import ProjectStore
from gateflow.state.workspace import Workspace, WorkspaceError
from gateflow.tools.dispatcher import ToolCallContext, ToolHandler

logger = logging.getLogger(__name__)

OPENAPI_PATH = "specs/openapi.yaml"
PRISMA_PATH = "prisma/schema.prisma"
SHARED_SCHEMA_NAMES = {"Error", "Pagination", "Health"}

_PRISMA_MODEL = re.compile(r"model\s+(\w+)\s*\{")


def prisma_model_names(schema: str) -> list[str]:
    return _PRISMA_MODEL.findall(schema)


def openapi_schema_names(spec: str) -> list[str]:
    """Names declared directly under the first ``schemas:`` mapping of a YAML spec."""
    lines = spec.splitlines()
    for index, line in enumerate(lines):
        stripped = line.strip()
        if stripped != "schemas:":
            continue
        parent_indent = len(line) - len(line.lstrip())
        child_indent: int | None = None
        names: list[str] = []
        for candidate in lines[index + 1 :]:
            if not candidate.strip():
                continue
            indent = len(candidate) - len(candidate.lstrip())
            if indent <= parent_indent:
                break
            if child_indent is None:
                child_indent = indent
            if indent == child_indent:
                match = re.match(r"\s*(\w+):", candidate)
                if match:
                    names.append(match.group(1))
        return names
    return []


def check_spec_alignment(openapi: str | None, prisma: str | None) -> dict[str, Any]:
    errors: list[str] = []
    warnings: list[str] = []
    if openapi is None:
        errors.append(f"OpenAPI spec not found at {OPENAPI_PATH}")
    if prisma is None:
        errors.append(f"Prisma schema not found at {PRISMA_PATH}")

    if openapi is not None and prisma is not None:
        for model in prisma_model_names(prisma):
            if model not in openapi:
                warnings.append(f'Prisma model "{model}" not found in OpenAPI spec')
        for name in openapi_schema_names(openapi):
            if name not in prisma and name not in SHARED_SCHEMA_NAMES:
                warnings.append(f'OpenAPI schema "{name}" not found in Prisma models')

    if errors:
        message = f"{len(errors)} integrity errors found"
    elif warnings:
        message = f"Specs valid but {len(warnings)} alignment warnings"
    else:
        message = "All specs are aligned"
    return {"success": not errors, "errors": errors, "warnings": warnings, "message": message}


def _require_project(context: ToolCallContext) -> str:
    if not context.project_id:
        raise ValueError("This tool requires a project context.")
    return context.project_id


def _require(arguments: dict[str, Any], *names: str) -> None:
    missing = [name for name in names if arguments.get(name) in (None, "")]
    if missing:
        raise ValueError(f"Missing required arguments: {', '.join(missing)}")


class ProjectToolHandlers:
    """Business-logic handlers for the tool catalog, bound to a project store.

    Identity (project, caller role, gate) always comes from the call context,
    never from model-supplied arguments.
    """

    def __init__(self, store: ProjectStore) -> None:
        self.store = store

    def workspace(self, project_id: str) -> Workspace:
        return Workspace(self.store.workspace_dir(project_id))

    def handler_map(self) -> dict[str, ToolHandler]:
        return {
            "get_context_for_story": self.get_context_for_story,
            "register_spec": self.register_spec,
            "check_spec_integrity": self.check_spec_integrity,
            "record_decision": self.record_decision,
            "get_documents": self.get_documents,
            "record_handoff": self.record_handoff,
            "create_task_for_agent": self.create_task_for_agent,
            "save_design_concept": self.save_design_concept,
            "read_file": self.read_file,
            "write_file": self.write_file,
            "list_files": self.list_files,
        }

    async def _read_optional(self, project_id: str, path: str) -> str | None:
        try:
            return await asyncio.to_thread(self.workspace(project_id).read_file, path)
        except WorkspaceError:
            return None

    async def get_context_for_story(
        self, arguments: dict[str, Any], context: ToolCallContext
    ) -> dict[str, Any]:
        project_id = _require_project(context)
        _require(arguments, "query")
        query = str(arguments["query"])
        needle = query.lower()
        context_types = arguments.get("context_types") or ["documents", "decisions"]
        results: dict[str, Any] = {}

        if "documents" in context_types:
            documents = await asyncio.to_thread(
                self.store.list_documents, project_id, limit=50
            )
            results["documents"] = [
                doc
                for doc in documents
                if needle in str(doc.get("title", "")).lower()
                or needle in str(doc.get("content", "")).lower()
            ][:5]
        if "decisions" in context_types:
            results["decisions"] = await asyncio.to_thread(
                self.store.recent_decisions, project_id, 10
            )
        if "specs" in context_types:
            results["specs"] = {
                "openapi": await self._read_optional(project_id, OPENAPI_PATH),
                "prisma": await self._read_optional(project_id, PRISMA_PATH),
            }
        if "handoffs" in context_types:
            results["handoffs"] = await asyncio.to_thread(
                self.store.recent_handoffs, project_id, 5
            )
        return {"success": True, "query": query, "context": results}

    async def register_spec(
        self, arguments: dict[str, Any], context: ToolCallContext
    ) -> dict[str, Any]:
        project_id = _require_project(context)
        _require(arguments, "spec_type", "file_path", "content")
        spec_type = str(arguments["spec_type"])
        file_path = str(arguments["file_path"])
        await asyncio.to_thread(
            self.workspace(project_id).write_file, file_path, str(arguments["content"])
        )
        await asyncio.to_thread(
            self.store.append_event,
            project_id,
            "SpecificationCreated",
            {
                "spec_type": spec_type,
                "file_path": file_path,
                "description": arguments.get("description"),
                "role": context.role,
            },
        )
        logger.info("Registered %s spec at %s for project %s", spec_type, file_path, project_id)
        return {
            "success": True,
            "spec_type": spec_type,
            "file_path": file_path,
            "message": f"Spec registered: {file_path}",
        }

    async def check_spec_integrity(
        self, arguments: dict[str, Any], context: ToolCallContext
    ) -> dict[str, Any]:
        project_id = _require_project(context)
        openapi = await self._read_optional(project_id, OPENAPI_PATH)
        prisma = await self._read_optional(project_id, PRISMA_PATH)
        return check_spec_alignment(openapi, prisma)

    async def record_decision(
        self, arguments: dict[str, Any], context: ToolCallContext
    ) -> dict[str, Any]:
        project_id = _require_project(context)
        _require(arguments, "title", "decision", "rationale")
        record = await asyncio.to_thread(
            lambda: self.store.add_decision(
                project_id,
                title=str(arguments["title"]),
                decision=str(arguments["decision"]),
                rationale=str(arguments["rationale"]),
                alternatives=[str(item) for item in arguments.get("alternatives") or []],
                impact=str(arguments.get("impact") or "medium"),
                made_by=context.role,
            )
        )
        await asyncio.to_thread(
            self.store.append_event,
            project_id,
            "DecisionMade",
            {"decision_id": record["id"], "title": record["title"]},
        )
        return {
            "success": True,
            "decision_id": record["id"],
            "message": f"Decision recorded: {record['title']}",
        }

    async def get_documents(
        self, arguments: dict[str, Any], context: ToolCallContext
    ) -> dict[str, Any]:
        project_id = _require_project(context)
        limit = int(arguments.get("limit") or 10)
        documents = await asyncio.to_thread(
            lambda: self.store.list_documents(
                project_id,
                category=arguments.get("document_type"),
                title=arguments.get("title"),
                limit=limit,
            )
        )
        return {"success": True, "count": len(documents), "documents": documents}

    async def record_handoff(
        self, arguments: dict[str, Any], context: ToolCallContext
    ) -> dict[str, Any]:
        project_id = _require_project(context)
        _require(arguments, "to_agent")
        deliverables = [str(item) for item in arguments.get("deliverables") or []]
        handoff = await asyncio.to_thread(
            lambda: self.store.add_handoff(
                project_id,
                from_agent=context.role,
                to_agent=str(arguments["to_agent"]),
                deliverables=deliverables,
                notes=str(arguments.get("notes") or ""),
                blockers=[str(item) for item in arguments.get("blockers") or []],
                gate=context.gate,
            )
        )
        await asyncio.to_thread(
            self.store.append_event,
            project_id,
            "HandoffRecorded",
            {
                "handoff_id": handoff["id"],
                "from_agent": handoff["from_agent"],
                "to_agent": handoff["to_agent"],
                "deliverables": deliverables,
            },
        )
        return {
            "success": True,
            "handoff_id": handoff["id"],
            "from": handoff["from_agent"],
            "to": handoff["to_agent"],
            "deliverables": deliverables,
            "message": f"Handoff recorded to {handoff['to_agent']}",
        }

    async def create_task_for_agent(
        self, arguments: dict[str, Any], context: ToolCallContext
    ) -> dict[str, Any]:
        project_id = _require_project(context)
        _require(arguments, "to_agent", "task_type", "title", "description")
        task = await asyncio.to_thread(
            lambda: self.store.add_task(
                project_id,
                owner=str(arguments["to_agent"]),
                task_type=str(arguments["task_type"]),
                title=str(arguments["title"]),
                description=str(arguments["description"]),
                context=arguments.get("context"),
                priority=str(arguments.get("priority") or "MEDIUM"),
                created_by=context.role,
            )
        )
        await asyncio.to_thread(
            self.store.append_event,
            project_id,
            "TaskCreated",
            {
                "task_id": task["id"],
                "task_type": task["task_type"],
                "to_agent": task["owner"],
                "from_agent": context.role,
            },
        )
        return {
            "success": True,
            "task_id": task["id"],
            "to_agent": task["owner"],
            "task_type": task["task_type"],
            "message": (
                f"Task created for {task['owner']}. "
                "It will be processed when that agent next runs."
            ),
        }

    async def save_design_concept(
        self, arguments: dict[str, Any], context: ToolCallContext
    ) -> dict[str, Any]:
        project_id = _require_project(context)
        _require(arguments, "name", "style", "html")
        design = await asyncio.to_thread(
            self.store.add_design,
            project_id,
            {
                "name": str(arguments["name"]),
                "style": str(arguments["style"]),
                "description": str(arguments.get("description") or ""),
                "color_scheme": str(arguments.get("colorScheme") or ""),
                "html": str(arguments["html"]),
                "gate": context.gate,
            },
        )
        return {
            "success": True,
            "design_id": design["id"],
            "message": f"Design concept saved: {design['name']}",
        }

    async def read_file(
        self, arguments: dict[str, Any], context: ToolCallContext
    ) -> dict[str, Any]:
        project_id = _require_project(context)
        _require(arguments, "file_path")
        content = await asyncio.to_thread(
            self.workspace(project_id).read_file, str(arguments["file_path"])
        )
        return {"success": True, "file_path": arguments["file_path"], "content": content}

    async def write_file(
        self, arguments: dict[str, Any], context: ToolCallContext
    ) -> dict[str, Any]:
        project_id = _require_project(context)
        _require(arguments, "file_path")
        file_path = str(arguments["file_path"])
        size = await asyncio.to_thread(
            self.workspace(project_id).write_file, file_path, str(arguments.get("content") or "")
        )
        return {"success": True, "file_path": file_path, "bytes_written": size}

    async def list_files(
        self, arguments: dict[str, Any], context: ToolCallContext
    ) -> dict[str, Any]:
        project_id = _require_project(context)
        directory = arguments.get("directory") or None
        tree = await asyncio.to_thread(self.workspace(project_id).format_tree, directory)
        return {"success": True, "tree": tree}
