import asyncio
from pathlib import Path
from typing import Any

from gateflow.state.store import ProjectStore
from gateflow.tools.dispatcher import ToolCallContext, ToolDispatcher
from gateflow.tools.handlers import (
    ProjectToolHandlers,
    check_spec_alignment,
    openapi_schema_names,
    prisma_model_names,
)

OPENAPI = """openapi: 3.0.0
info:
  title: Shop
components:
  schemas:
    User:
      type: object
      properties:
        id:
          type: string
    Order:
      type: object
    Error:
      type: object
paths: {}
"""

PRISMA = """model User {
  id String @id
}

model Invoice {
  id String @id
}
"""


def _setup(tmp_path: Path) -> tuple[ProjectStore, ToolDispatcher]:
    store = ProjectStore(tmp_path / ".gateflow")
    return store, ToolDispatcher(ProjectToolHandlers(store).handler_map())


def _call(
    dispatcher: ToolDispatcher, tool: str, arguments: dict[str, Any], role: str, gate: str = "G3"
) -> dict[str, Any]:
    context = ToolCallContext(project_id="demo", role=role, gate=gate)
    return asyncio.run(dispatcher.execute(tool, arguments, context))


def test_schema_name_extraction() -> None:
    assert prisma_model_names(PRISMA) == ["User", "Invoice"]
    assert openapi_schema_names(OPENAPI) == ["User", "Order", "Error"]
    assert openapi_schema_names("openapi: 3.0.0\n") == []


def test_alignment_reports_warnings_and_missing_files() -> None:
    aligned = check_spec_alignment(OPENAPI, PRISMA)
    assert aligned["success"] is True
    assert aligned["warnings"] == [
        'Prisma model "Invoice" not found in OpenAPI spec',
        'OpenAPI schema "Order" not found in Prisma models',
    ]
    assert aligned["message"] == "Specs valid but 2 alignment warnings"

    missing = check_spec_alignment(None, PRISMA)
    assert missing["success"] is False
    assert missing["message"] == "1 integrity errors found"


def test_register_spec_then_check_integrity(tmp_path: Path) -> None:
    store, dispatcher = _setup(tmp_path)

    registered = _call(
        dispatcher,
        "register_spec",
        {"spec_type": "openapi", "file_path": "specs/openapi.yaml", "content": OPENAPI},
        role="architect",
    )
    assert registered["success"] is True
    assert (store.workspace_dir("demo") / "specs" / "openapi.yaml").read_text() == OPENAPI
    event = store.list_events("demo", "SpecificationCreated")[0]
    assert event["data"]["role"] == "architect"

    incomplete = _call(dispatcher, "check_spec_integrity", {}, role="qa_engineer", gate="G6")
    assert incomplete["success"] is False
    assert incomplete["errors"] == ["Prisma schema not found at prisma/schema.prisma"]

    _call(
        dispatcher,
        "register_spec",
        {"spec_type": "prisma", "file_path": "prisma/schema.prisma", "content": PRISMA},
        role="architect",
    )
    complete = _call(dispatcher, "check_spec_integrity", {}, role="architect")
    assert complete["success"] is True
    assert len(complete["warnings"]) == 2


def test_handoff_identity_comes_from_context(tmp_path: Path) -> None:
    store, dispatcher = _setup(tmp_path)

    result = _call(
        dispatcher,
        "record_handoff",
        {
            "from_agent": "security_engineer",
            "to_agent": "ux_ui_designer",
            "deliverables": ["specs/openapi.yaml"],
            "notes": "Specs ready",
        },
        role="architect",
    )

    assert result["from"] == "architect"
    handoff = store.recent_handoffs("demo")[0]
    assert handoff["from_agent"] == "architect"
    assert handoff["gate"] == "G3"
    assert store.list_events("demo", "HandoffRecorded")[0]["data"]["to_agent"] == "ux_ui_designer"


def test_tasks_and_decisions_are_recorded(tmp_path: Path) -> None:
    store, dispatcher = _setup(tmp_path)

    task = _call(
        dispatcher,
        "create_task_for_agent",
        {
            "to_agent": "backend_developer",
            "task_type": "question",
            "title": "Pagination",
            "description": "Use cursor pagination for orders?",
            "priority": "high",
        },
        role="architect",
    )
    decision = _call(
        dispatcher,
        "record_decision",
        {"title": "Database", "decision": "PostgreSQL", "rationale": "Relational data"},
        role="architect",
    )

    assert task["success"] is True
    assert store.open_tasks_for("demo", "backend_developer")[0]["created_by"] == "architect"
    assert decision["message"] == "Decision recorded: Database"
    assert store.recent_decisions("demo")[0]["made_by"] == "architect"
    assert {event["type"] for event in store.list_events("demo")} == {
        "TaskCreated",
        "DecisionMade",
    }


def test_missing_arguments_fail_without_side_effects(tmp_path: Path) -> None:
    store, dispatcher = _setup(tmp_path)

    result = _call(dispatcher, "record_decision", {"title": "Database"}, role="architect")

    assert result["success"] is False
    assert "decision, rationale" in result["error"]
    assert store.recent_decisions("demo") == []


def test_design_concepts_and_files(tmp_path: Path) -> None:
    store, dispatcher = _setup(tmp_path)

    saved = _call(
        dispatcher,
        "save_design_concept",
        {"name": "Modern", "style": "modern", "html": "<html></html>", "colorScheme": "teal"},
        role="ux_ui_designer",
        gate="G4",
    )
    written = _call(
        dispatcher,
        "write_file",
        {"file_path": "frontend/src/App.tsx", "content": "app"},
        role="frontend_developer",
        gate="G5",
    )
    read = _call(dispatcher, "read_file", {"file_path": "frontend/src/App.tsx"}, role="qa_engineer")
    missing = _call(dispatcher, "read_file", {"file_path": "nope.md"}, role="qa_engineer")
    listed = _call(dispatcher, "list_files", {}, role="architect")

    assert saved["success"] is True
    assert store.list_designs("demo")[0]["color_scheme"] == "teal"
    assert written["bytes_written"] == 3
    assert read["content"] == "app"
    assert missing["success"] is False
    assert "File not found" in missing["error"]
    assert "App.tsx" in listed["tree"]


def test_context_and_document_lookup(tmp_path: Path) -> None:
    store, dispatcher = _setup(tmp_path)
    store.upsert_document(
        "demo", category="REQUIREMENTS", title="PRD (G2)", content="Users place orders."
    )
    store.upsert_document("demo", category="DESIGN", title="Design System (G4)", content="Teal.")
    store.add_decision("demo", title="Database", decision="PostgreSQL", rationale="Relational")

    context = _call(dispatcher, "get_context_for_story", {"query": "orders"}, role="architect")
    documents = _call(
        dispatcher, "get_documents", {"document_type": "DESIGN"}, role="frontend_developer"
    )

    assert [doc["title"] for doc in context["context"]["documents"]] == ["PRD (G2)"]
    assert context["context"]["decisions"][0]["title"] == "Database"
    assert "specs" not in context["context"]
    assert documents["count"] == 1
    assert documents["documents"][0]["title"] == "Design System (G4)"
