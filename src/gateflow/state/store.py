from __future__ import annotations

import json
import os
import re
import time
import uuid
from collections.abc import Callable
from contextlib import contextmanager
from datetime import UTC, datetime
from pathlib import Path
from typing import Any


class StateError(RuntimeError):
    """Raised when project-state operations fail."""


_PROJECT_ID_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]*$")


class ProjectStore:
    """JSON-file persistence for per-project records.

    Every namespace lives in ``<root>/projects/<project>/<namespace>.json`` wrapped in
    a revisioned envelope. Writes go through an exclusive lock file and an optimistic
    revision check so concurrent writers never lose updates.
    """

    NAMESPACES = {
        "documents",
        "deliverables",
        "events",
        "handoffs",
        "tasks",
        "decisions",
        "designs",
        "executions",
        "workers",
    }
    SCHEMA_VERSION = 1

    def __init__(self, root: Path) -> None:
        self.root = root.resolve()
        self.projects_dir = self.root / "projects"
        self.projects_dir.mkdir(parents=True, exist_ok=True)

    @staticmethod
    def _utcnow_iso() -> str:
        return datetime.now(UTC).replace(microsecond=0).isoformat()

    @staticmethod
    def _new_id() -> str:
        return uuid.uuid4().hex[:12]

    @staticmethod
    def _validate_namespace(namespace: str) -> None:
        if namespace not in ProjectStore.NAMESPACES:
            raise StateError(f"Unsupported namespace: {namespace}")

    def project_dir(self, project_id: str) -> Path:
        if not _PROJECT_ID_PATTERN.match(project_id or ""):
            raise StateError(f"Invalid project id: {project_id!r}")
        return self.projects_dir / project_id

    def workspace_dir(self, project_id: str) -> Path:
        return self.project_dir(project_id) / "workspace"

    def _state_file(self, project_id: str, namespace: str) -> Path:
        return self.project_dir(project_id) / f"{namespace}.json"

    @contextmanager
    def _state_lock(self, project_id: str, timeout_seconds: float = 3.0):
        directory = self.project_dir(project_id)
        directory.mkdir(parents=True, exist_ok=True)
        lock_file = directory / ".lock"
        start = time.monotonic()
        while True:
            try:
                fd = os.open(lock_file, os.O_CREAT | os.O_EXCL | os.O_WRONLY)
                os.write(fd, str(os.getpid()).encode("utf-8"))
                os.close(fd)
                break
            except FileExistsError as exc:
                if time.monotonic() - start > timeout_seconds:
                    raise StateError("Timed out waiting for state lock.") from exc
                time.sleep(0.02)

        try:
            yield
        finally:
            try:
                lock_file.unlink()
            except FileNotFoundError:
                pass

    def _read_raw_json(self, project_id: str, namespace: str) -> Any:
        state_file = self._state_file(project_id, namespace)
        if not state_file.exists():
            return None
        try:
            return json.loads(state_file.read_text(encoding="utf-8"))
        except json.JSONDecodeError:
            return None

    def _normalize_envelope(self, raw_payload: Any, default: Any) -> dict[str, Any]:
        if isinstance(raw_payload, dict) and {"schema_version", "revision", "data"} <= set(
            raw_payload
        ):
            return {
                "schema_version": int(raw_payload.get("schema_version") or self.SCHEMA_VERSION),
                "revision": int(raw_payload.get("revision") or 1),
                "updated_at": raw_payload.get("updated_at") or self._utcnow_iso(),
                "data": raw_payload.get("data", default),
            }
        return {
            "schema_version": self.SCHEMA_VERSION,
            "revision": 1,
            "updated_at": self._utcnow_iso(),
            "data": default if raw_payload is None else raw_payload,
        }

    def get_envelope(self, project_id: str, namespace: str, default: Any = None) -> dict[str, Any]:
        self._validate_namespace(namespace)
        raw = self._read_raw_json(project_id, namespace)
        return self._normalize_envelope(raw, [] if default is None else default)

    def get_json(self, project_id: str, namespace: str, default: Any = None) -> Any:
        return self.get_envelope(project_id, namespace, default=default).get("data")

    def set_json(
        self,
        project_id: str,
        namespace: str,
        data: Any,
        expected_revision: int | None = None,
    ) -> None:
        self._validate_namespace(namespace)
        with self._state_lock(project_id):
            current = self.get_envelope(project_id, namespace)
            current_revision = int(current.get("revision", 1))
            if expected_revision is not None and expected_revision != current_revision:
                raise StateError(
                    f"Concurrent state update detected for {project_id}/{namespace}."
                )
            envelope = {
                "schema_version": self.SCHEMA_VERSION,
                "revision": current_revision + 1,
                "updated_at": self._utcnow_iso(),
                "data": data,
            }
            serialized = json.dumps(envelope, ensure_ascii=False, indent=2)
            self._state_file(project_id, namespace).write_text(serialized, encoding="utf-8")

    def update_json(
        self,
        project_id: str,
        namespace: str,
        updater: Callable[[Any], Any],
        default: Any = None,
    ) -> Any:
        default_value = [] if default is None else default
        last_error: Exception | None = None
        for _ in range(4):
            current = self.get_envelope(project_id, namespace, default=default_value)
            updated = updater(current.get("data", default_value))
            try:
                self.set_json(
                    project_id,
                    namespace,
                    updated,
                    expected_revision=int(current.get("revision", 1)),
                )
                return updated
            except StateError as exc:
                last_error = exc
                if "Concurrent state update detected" not in str(exc):
                    raise
                time.sleep(0.01)
        raise StateError(str(last_error) if last_error else "State update failed.")

    def _records(self, project_id: str, namespace: str) -> list[dict[str, Any]]:
        payload = self.get_json(project_id, namespace, default=[])
        if not isinstance(payload, list):
            return []
        return [item for item in payload if isinstance(item, dict)]

    def _append(self, project_id: str, namespace: str, record: dict[str, Any]) -> dict[str, Any]:
        def _updater(payload: Any) -> list[dict[str, Any]]:
            records = payload if isinstance(payload, list) else []
            records.append(record)
            return records

        self.update_json(project_id, namespace, _updater)
        return record

    # Events

    def append_event(
        self, project_id: str, event_type: str, data: dict[str, Any] | None = None
    ) -> dict[str, Any]:
        event = {
            "id": self._new_id(),
            "type": event_type,
            "data": dict(data or {}),
            "created_at": self._utcnow_iso(),
        }
        return self._append(project_id, "events", event)

    def list_events(
        self, project_id: str, event_type: str | None = None
    ) -> list[dict[str, Any]]:
        events = self._records(project_id, "events")
        if event_type:
            events = [event for event in events if event.get("type") == event_type]
        return events

    # Documents

    def upsert_document(
        self,
        project_id: str,
        *,
        category: str,
        title: str,
        content: str,
        author: str | None = None,
    ) -> dict[str, Any]:
        now = self._utcnow_iso()
        stored: dict[str, Any] = {}

        def _updater(payload: Any) -> list[dict[str, Any]]:
            records = payload if isinstance(payload, list) else []
            for record in records:
                if record.get("category") == category and record.get("title") == title:
                    record.update({"content": content, "author": author, "updated_at": now})
                    record["version"] = int(record.get("version", 1)) + 1
                    stored.update(record)
                    return records
            record = {
                "id": self._new_id(),
                "category": category,
                "title": title,
                "content": content,
                "author": author,
                "version": 1,
                "created_at": now,
                "updated_at": now,
            }
            records.append(record)
            stored.update(record)
            return records

        self.update_json(project_id, "documents", _updater)
        return stored

    def list_documents(
        self,
        project_id: str,
        *,
        category: str | None = None,
        title: str | None = None,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        """Documents newest first, optionally filtered by category and title substring."""
        documents = self._records(project_id, "documents")
        if category:
            documents = [doc for doc in documents if doc.get("category") == category]
        if title:
            needle = title.lower()
            documents = [doc for doc in documents if needle in str(doc.get("title", "")).lower()]
        documents.sort(key=lambda doc: str(doc.get("updated_at", "")), reverse=True)
        if limit is not None:
            documents = documents[: max(0, int(limit))]
        return documents

    # Deliverables

    def ensure_deliverable(
        self,
        project_id: str,
        *,
        gate: str,
        owner: str,
        name: str,
        path: str | None = None,
    ) -> dict[str, Any]:
        now = self._utcnow_iso()
        stored: dict[str, Any] = {}

        def _updater(payload: Any) -> list[dict[str, Any]]:
            records = payload if isinstance(payload, list) else []
            for record in records:
                if (
                    record.get("gate") == gate
                    and record.get("owner") == owner
                    and record.get("name") == name
                ):
                    record["status"] = "in_progress"
                    record["updated_at"] = now
                    stored.update(record)
                    return records
            record = {
                "id": self._new_id(),
                "gate": gate,
                "owner": owner,
                "name": name,
                "path": path,
                "status": "in_progress",
                "created_at": now,
                "updated_at": now,
            }
            records.append(record)
            stored.update(record)
            return records

        self.update_json(project_id, "deliverables", _updater)
        return stored

    def list_deliverables(
        self, project_id: str, *, gate: str | None = None, owner: str | None = None
    ) -> list[dict[str, Any]]:
        records = self._records(project_id, "deliverables")
        if gate:
            records = [item for item in records if item.get("gate") == gate]
        if owner:
            records = [item for item in records if item.get("owner") == owner]
        return records

    def complete_deliverables(self, project_id: str, *, gate: str, owner: str) -> int:
        now = self._utcnow_iso()
        completed = 0

        def _updater(payload: Any) -> list[dict[str, Any]]:
            nonlocal completed
            completed = 0
            records = payload if isinstance(payload, list) else []
            for record in records:
                if record.get("gate") == gate and record.get("owner") == owner:
                    if record.get("status") != "complete":
                        record["status"] = "complete"
                        record["updated_at"] = now
                        completed += 1
            return records

        self.update_json(project_id, "deliverables", _updater)
        return completed

    # Handoffs, tasks, decisions

    def add_handoff(
        self,
        project_id: str,
        *,
        from_agent: str,
        to_agent: str,
        deliverables: list[str],
        notes: str = "",
        blockers: list[str] | None = None,
        gate: str | None = None,
    ) -> dict[str, Any]:
        handoff = {
            "id": self._new_id(),
            "from_agent": from_agent,
            "to_agent": to_agent,
            "deliverables": list(deliverables),
            "notes": notes,
            "blockers": list(blockers or []),
            "gate": gate,
            "created_at": self._utcnow_iso(),
        }
        return self._append(project_id, "handoffs", handoff)

    def recent_handoffs(self, project_id: str, limit: int = 5) -> list[dict[str, Any]]:
        handoffs = self._records(project_id, "handoffs")
        return list(reversed(handoffs))[: max(0, limit)]

    def add_task(
        self,
        project_id: str,
        *,
        owner: str,
        task_type: str,
        title: str,
        description: str,
        created_by: str | None = None,
        context: str | None = None,
        priority: str = "MEDIUM",
    ) -> dict[str, Any]:
        task = {
            "id": self._new_id(),
            "owner": owner,
            "task_type": task_type,
            "title": title,
            "description": description,
            "context": context,
            "created_by": created_by,
            "priority": (priority or "MEDIUM").upper(),
            "status": "not_started",
            "created_at": self._utcnow_iso(),
        }
        return self._append(project_id, "tasks", task)

    def open_tasks_for(self, project_id: str, owner: str) -> list[dict[str, Any]]:
        return [
            task
            for task in self._records(project_id, "tasks")
            if task.get("owner") == owner and task.get("status") != "complete"
        ]

    def add_decision(
        self,
        project_id: str,
        *,
        title: str,
        decision: str,
        rationale: str,
        made_by: str | None = None,
        alternatives: list[str] | None = None,
        impact: str = "medium",
    ) -> dict[str, Any]:
        record = {
            "id": self._new_id(),
            "title": title,
            "decision": decision,
            "rationale": rationale,
            "alternatives": list(alternatives or []),
            "impact": impact,
            "made_by": made_by,
            "created_at": self._utcnow_iso(),
        }
        return self._append(project_id, "decisions", record)

    def recent_decisions(self, project_id: str, limit: int = 10) -> list[dict[str, Any]]:
        decisions = self._records(project_id, "decisions")
        return list(reversed(decisions))[: max(0, limit)]

    # Design concepts

    def add_design(self, project_id: str, design: dict[str, Any]) -> dict[str, Any]:
        record = {"id": self._new_id(), **design, "created_at": self._utcnow_iso()}
        return self._append(project_id, "designs", record)

    def list_designs(self, project_id: str) -> list[dict[str, Any]]:
        return self._records(project_id, "designs")

    def clear_designs(self, project_id: str) -> None:
        self.set_json(project_id, "designs", [])

    # Execution records

    def create_execution(
        self, project_id: str, *, role: str, gate: str, attempt: int, prompt: str
    ) -> dict[str, Any]:
        record = {
            "id": self._new_id(),
            "role": role,
            "gate": gate,
            "attempt": attempt,
            "status": "running",
            "prompt_excerpt": prompt[:2000],
            "started_at": self._utcnow_iso(),
        }
        return self._append(project_id, "executions", record)

    def update_execution(self, project_id: str, execution_id: str, **fields: Any) -> None:
        def _updater(payload: Any) -> list[dict[str, Any]]:
            records = payload if isinstance(payload, list) else []
            for record in records:
                if record.get("id") == execution_id:
                    record.update(fields)
                    break
            else:
                raise StateError(f"Unknown execution: {execution_id}")
            return records

        self.update_json(project_id, "executions", _updater)

    def list_executions(self, project_id: str) -> list[dict[str, Any]]:
        return self._records(project_id, "executions")

    def recent_failures(self, project_id: str, role: str, gate: str, *, since: datetime) -> int:
        """Count failed executions of ``role`` at ``gate`` started at or after ``since``.

        A completed execution resets the count.
        """
        count = 0
        for record in self.list_executions(project_id):
            if record.get("role") != role or record.get("gate") != gate:
                continue
            if record.get("status") == "completed":
                count = 0
            elif record.get("status") == "failed":
                try:
                    started = datetime.fromisoformat(record.get("started_at", ""))
                except (TypeError, ValueError):
                    continue
                if started.tzinfo is None:
                    started = started.replace(tzinfo=UTC)
                if started >= since:
                    count += 1
        return count

    # Worker run status

    @staticmethod
    def _worker_key(role: str, gate: str) -> str:
        return f"{gate}:{role}"

    def worker_status(self, project_id: str, role: str, gate: str) -> str | None:
        payload = self.get_json(project_id, "workers", default={})
        if not isinstance(payload, dict):
            return None
        entry = payload.get(self._worker_key(role, gate))
        return entry.get("status") if isinstance(entry, dict) else None

    def set_worker_status(
        self, project_id: str, role: str, gate: str, status: str, **details: Any
    ) -> None:
        key = self._worker_key(role, gate)

        def _updater(payload: Any) -> dict[str, Any]:
            workers = payload if isinstance(payload, dict) else {}
            workers[key] = {"status": status, "updated_at": self._utcnow_iso(), **details}
            return workers

        self.update_json(project_id, "workers", _updater, default={})
