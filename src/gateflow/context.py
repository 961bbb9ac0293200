from __future__ import annotations

import json
from collections.abc import Mapping, Sequence
from typing import Any

from gateflow.gates import priorities_for_gate
from gateflow.state.store import ProjectStore

TRUNCATION_MARKER = "\n... (truncated)"


class ContextPrioritizer:
    """Selects and renders the prior artifacts a worker sees for a gate."""

    def __init__(
        self,
        store: ProjectStore | None = None,
        *,
        document_limit: int = 10,
        max_documents: int = 5,
        max_document_chars: int = 3000,
        handoff_limit: int = 5,
        decision_limit: int = 5,
    ) -> None:
        self.store = store
        self.document_limit = document_limit
        self.max_documents = max_documents
        self.max_document_chars = max_document_chars
        self.handoff_limit = handoff_limit
        self.decision_limit = decision_limit

    @staticmethod
    def prioritize(
        documents: Sequence[Mapping[str, Any]], gate: str
    ) -> list[Mapping[str, Any]]:
        """Stable-sort documents by the gate's category priority list.

        Categories the gate lists come first in list order; everything else keeps its
        original relative order after them. Unknown gates leave the order untouched.
        """
        priorities = priorities_for_gate(gate)
        rank = {category: index for index, category in enumerate(priorities)}
        unlisted = len(priorities)
        return sorted(documents, key=lambda doc: rank.get(str(doc.get("category")), unlisted))

    def truncate(self, content: str) -> str:
        if len(content) <= self.max_document_chars:
            return content
        return content[: self.max_document_chars] + TRUNCATION_MARKER

    def select_documents(
        self, documents: Sequence[Mapping[str, Any]], gate: str
    ) -> list[dict[str, Any]]:
        selected: list[dict[str, Any]] = []
        for document in self.prioritize(documents, gate)[: self.max_documents]:
            item = dict(document)
            item["content"] = self.truncate(str(document.get("content", "")))
            selected.append(item)
        return selected

    def render(
        self,
        gate: str,
        *,
        documents: Sequence[Mapping[str, Any]] = (),
        tasks: Sequence[Mapping[str, Any]] = (),
        handoffs: Sequence[Mapping[str, Any]] = (),
        decisions: Sequence[Mapping[str, Any]] = (),
    ) -> str:
        sections = ["## Project Context\n"]

        if tasks:
            lines = [
                "### Your Assigned Tasks",
                "Complete the following tasks from the project plan:",
            ]
            for task in tasks:
                priority = task.get("priority") or "MEDIUM"
                lines.append(f"- [{priority}] {task.get('description') or task.get('title')}")
            sections.append("\n".join(lines) + "\n")

        if handoffs:
            lines = ["### Recent Agent Handoffs"]
            for handoff in handoffs:
                notes = handoff.get("notes") or "No notes"
                lines.append(
                    f"- **{handoff.get('from_agent')} -> {handoff.get('to_agent')}**: {notes}"
                )
                deliverables = handoff.get("deliverables") or []
                if deliverables:
                    lines.append(f"  Deliverables: {', '.join(deliverables)}")
            sections.append("\n".join(lines) + "\n")

        selected = self.select_documents(documents, gate)
        if selected:
            lines = ["### Key Documents"]
            for document in selected:
                lines.append(f"#### {document.get('title')} ({document.get('category')})")
                lines.append(document["content"])
                lines.append("")
            sections.append("\n".join(lines))

        if decisions:
            summary = [
                {
                    "title": decision.get("title"),
                    "decision": decision.get("decision"),
                    "rationale": decision.get("rationale"),
                    "made_by": decision.get("made_by"),
                }
                for decision in decisions
            ]
            sections.append(
                "### Recent Decisions\n" + json.dumps(summary, ensure_ascii=False, indent=2) + "\n"
            )

        return "\n".join(sections)

    def build_handoff_context(self, project_id: str, gate: str, role: str | None = None) -> str:
        if self.store is None:
            raise ValueError("A project store is required to build handoff context.")
        documents = self.store.list_documents(project_id, limit=self.document_limit)
        tasks = self.store.open_tasks_for(project_id, role) if role else []
        handoffs = self.store.recent_handoffs(project_id, self.handoff_limit)
        decisions = self.store.recent_decisions(project_id, self.decision_limit)
        return self.render(
            gate,
            documents=documents,
            tasks=tasks,
            handoffs=handoffs,
            decisions=decisions,
        )
