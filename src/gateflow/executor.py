from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any, Literal

from gateflow.context import ContextPrioritizer
from gateflow.conversation import ExecutionOutcome
from gateflow.engine import CompletionLoop
from gateflow.gates import deliverables_for, get_gate, roles_for_gate, task_description
from gateflow.retry import AsyncioScheduler, RetryPolicy, Scheduler, is_transient_error
from gateflow.specialists import SpecialistAgent, get_specialist
from gateflow.state.store import ProjectStore
from gateflow.state.workspace import Workspace
from gateflow.tools.dispatcher import ToolCallContext

logger = logging.getLogger(__name__)

WorkerStatus = Literal["pending", "running", "completed", "failed"]
ProgressHook = Callable[[dict[str, Any]], None]

WORKER_TRANSITIONS: dict[str, set[str]] = {
    "pending": {"running"},
    "running": {"completed", "failed"},
    "failed": {"pending"},
    "completed": set(),
}

OUTPUT_RULES = """## Output Rules
- START your response with the actual deliverable content (code, documents, etc.)
- Do NOT include preamble like "I'll create...", "Let me...", "Based on..."
- Do NOT use <thinking> tags or internal reasoning in output
- Use markdown code fences with filenames for all code/documents
- ALL file paths MUST include the correct prefix (`frontend/` or `backend/`)"""

LAYOUT_RULES = """**IMPORTANT**: This is a fullstack project. You MUST:
- Put ALL frontend code in the `frontend/` directory (e.g., `frontend/src/components/...`)
- Put ALL backend code in the `backend/` directory (e.g., `backend/src/modules/...`)
- NEVER create files in a root `src/` folder; always use `frontend/src/` or `backend/src/`"""


class WorkerStateError(RuntimeError):
    """Raised on an illegal worker status transition."""


class ArtifactShortfallError(RuntimeError):
    """Raised when a worker finished without persisting its required artifacts."""


class WorkerFailedError(RuntimeError):
    """Raised when a worker run fails terminally."""

    def __init__(
        self,
        message: str,
        *,
        role: str,
        gate: str,
        attempts: int,
        transient: bool,
    ) -> None:
        super().__init__(message)
        self.role = role
        self.gate = gate
        self.attempts = attempts
        self.transient = transient


@dataclass(slots=True)
class WorkerRun:
    project_id: str
    role: str
    gate: str
    status: WorkerStatus = "pending"
    attempts: int = 0
    history: list[str] = field(default_factory=lambda: ["pending"])
    execution_ids: list[str] = field(default_factory=list)
    outcome: ExecutionOutcome | None = None
    error: str | None = None

    def transition(self, status: WorkerStatus) -> None:
        if status not in WORKER_TRANSITIONS[self.status]:
            raise WorkerStateError(
                f"Illegal worker transition for {self.role}@{self.gate}: "
                f"{self.status} -> {status}"
            )
        self.status = status
        self.history.append(status)


class GateTaskExecutor:
    """Runs gate workers: prompt assembly, streaming execution, deliverables and retries."""

    def __init__(
        self,
        store: ProjectStore,
        engine: CompletionLoop,
        *,
        prioritizer: ContextPrioritizer | None = None,
        retry_policy: RetryPolicy | None = None,
        artifact_backoff_seconds: float = 5.0,
        retry_window_seconds: float = 600.0,
        scheduler: Scheduler | None = None,
        specialist_factory: Callable[[str], SpecialistAgent] = get_specialist,
        event_hook: ProgressHook | None = None,
    ) -> None:
        self.store = store
        self.engine = engine
        self.prioritizer = prioritizer or ContextPrioritizer(store)
        self.retry_policy = retry_policy or RetryPolicy()
        self.artifact_backoff_seconds = artifact_backoff_seconds
        self.retry_window_seconds = retry_window_seconds
        self.scheduler = scheduler or AsyncioScheduler()
        self.specialist_factory = specialist_factory
        self.event_hook = event_hook

    def _emit(self, event: dict[str, Any]) -> None:
        if self.event_hook:
            self.event_hook(event)

    async def _set_status(self, run: WorkerRun, status: WorkerStatus, **details: Any) -> None:
        run.transition(status)
        await asyncio.to_thread(
            self.store.set_worker_status,
            run.project_id,
            run.role,
            run.gate,
            status,
            attempt=run.attempts,
            **details,
        )

    def build_prompt(self, project_id: str, role: str, gate: str, handoff_context: str) -> str:
        workspace = Workspace(self.store.workspace_dir(project_id))
        if workspace.root.exists():
            layout = workspace.format_tree()
        else:
            layout = "(No workspace created yet)"
        return "\n\n".join(
            [
                f"## Project: {project_id}",
                f"## Current Workspace Structure\n```\n{layout}\n```",
                LAYOUT_RULES,
                f"## Your Task\n{task_description(role, gate)}",
                handoff_context.strip(),
                OUTPUT_RULES,
            ]
        )

    async def run_worker(
        self,
        project_id: str,
        role: str,
        gate: str,
        handoff_context: str | None = None,
    ) -> WorkerRun:
        gate_id = get_gate(gate).id
        if role not in roles_for_gate(gate_id):
            raise ValueError(f"Role {role} is not eligible for gate {gate_id}.")
        self.engine.provider.ensure_available()
        specialist = self.specialist_factory(role)
        if handoff_context is None:
            handoff_context = await asyncio.to_thread(
                self.prioritizer.build_handoff_context, project_id, gate_id, role
            )

        run = WorkerRun(project_id=project_id, role=role, gate=gate_id)
        backoff = (
            self.artifact_backoff_seconds
            if specialist.requires_artifacts
            else self.retry_policy.backoff_seconds
        )
        since = datetime.now(UTC) - timedelta(seconds=self.retry_window_seconds)
        failures = await asyncio.to_thread(
            lambda: self.store.recent_failures(project_id, role, gate_id, since=since)
        )
        retry = self.retry_policy.new_state(backoff, attempts_used=failures)
        if retry.attempt > retry.max_attempts:
            message = (
                f"Retry budget exhausted for {role} at {gate_id}: "
                f"{failures} failed attempt(s) in the last {self.retry_window_seconds:g}s."
            )
            logger.error("%s", message)
            raise WorkerFailedError(
                message, role=role, gate=gate_id, attempts=failures, transient=False
            )

        while True:
            run.attempts = retry.attempt
            await self._set_status(run, "running")
            try:
                run.outcome = await self._attempt(run, specialist, handoff_context)
            except Exception as exc:
                run.error = str(exc) or exc.__class__.__name__
                transient = isinstance(exc, ArtifactShortfallError) or is_transient_error(exc)
                await self._set_status(run, "failed", error=run.error)
                if transient and retry.can_retry():
                    logger.warning(
                        "Auto-retrying %s for %s (retry %d/%d) after transient error: %s",
                        role,
                        gate_id,
                        retry.attempt,
                        retry.max_attempts - 1,
                        run.error,
                    )
                    self._emit(
                        {
                            "event": "worker_retry",
                            "project_id": project_id,
                            "role": role,
                            "gate": gate_id,
                            "attempt": retry.attempt,
                            "backoff_seconds": retry.backoff,
                            "error": run.error,
                        }
                    )
                    await self.scheduler.sleep(retry.backoff)
                    retry.advance()
                    await self._set_status(run, "pending")
                    continue
                logger.error(
                    "Worker %s failed terminally for %s after %d attempt(s): %s",
                    role,
                    gate_id,
                    run.attempts,
                    run.error,
                )
                raise WorkerFailedError(
                    run.error,
                    role=role,
                    gate=gate_id,
                    attempts=run.attempts,
                    transient=transient,
                ) from exc

            await self._set_status(run, "completed")
            logger.info("Worker %s completed for %s", role, gate_id)
            return run

    async def _ensure_deliverables(self, project_id: str, role: str, gate: str) -> None:
        for deliverable in deliverables_for(gate, role):
            await asyncio.to_thread(
                lambda item=deliverable: self.store.ensure_deliverable(
                    project_id,
                    gate=gate,
                    owner=role,
                    name=item.name,
                    path=item.path,
                )
            )

    async def _record_failure(
        self, run: WorkerRun, execution_id: str, message: str
    ) -> None:
        await asyncio.to_thread(
            self.store.update_execution,
            run.project_id,
            execution_id,
            status="failed",
            output=message,
        )
        await asyncio.to_thread(
            self.store.append_event,
            run.project_id,
            "AgentFailed",
            {
                "execution_id": execution_id,
                "role": run.role,
                "gate": run.gate,
                "attempt": run.attempts,
                "error": message,
            },
        )
        self._emit(
            {
                "event": "agent_failed",
                "project_id": run.project_id,
                "execution_id": execution_id,
                "role": run.role,
                "error": message,
            }
        )

    async def _attempt(
        self, run: WorkerRun, specialist: SpecialistAgent, handoff_context: str
    ) -> ExecutionOutcome:
        project_id, role, gate = run.project_id, run.role, run.gate
        await self._ensure_deliverables(project_id, role, gate)
        if specialist.requires_artifacts:
            await asyncio.to_thread(self.store.clear_designs, project_id)

        prompt = await asyncio.to_thread(
            self.build_prompt, project_id, role, gate, handoff_context
        )
        execution = await asyncio.to_thread(
            lambda: self.store.create_execution(
                project_id, role=role, gate=gate, attempt=run.attempts, prompt=prompt
            )
        )
        execution_id = execution["id"]
        run.execution_ids.append(execution_id)
        await asyncio.to_thread(
            self.store.append_event,
            project_id,
            "AgentStarted",
            {
                "execution_id": execution_id,
                "role": role,
                "gate": gate,
                "attempt": run.attempts,
                "task_description": task_description(role, gate),
            },
        )
        logger.info("Starting worker %s for %s (attempt %d)", role, gate, run.attempts)
        self._emit(
            {
                "event": "agent_started",
                "project_id": project_id,
                "execution_id": execution_id,
                "role": role,
                "message": specialist.progress_message("start"),
            }
        )

        working_emitted = False

        def chunk(text: str) -> None:
            nonlocal working_emitted
            if not working_emitted:
                working_emitted = True
                self._emit(
                    {
                        "event": "agent_working",
                        "project_id": project_id,
                        "execution_id": execution_id,
                        "role": role,
                        "message": specialist.progress_message("working"),
                    }
                )
            self._emit(
                {
                    "event": "agent_chunk",
                    "project_id": project_id,
                    "execution_id": execution_id,
                    "chunk": text,
                }
            )

        try:
            outcome: ExecutionOutcome | None = None
            async for event in self.engine.stream(
                specialist.system_prompt,
                prompt,
                role,
                tool_catalog=specialist.tool_catalog(),
                call_context=ToolCallContext(project_id=project_id, role=role, gate=gate),
            ):
                if event.kind == "text":
                    chunk(event.text)
                elif event.kind == "tool_started":
                    chunk(f"\n[Calling {event.tool_name}...]\n")
                elif event.kind == "tool_completed":
                    status = "completed" if event.success else "failed"
                    chunk(f"[{event.tool_name} {status}]\n")
                elif event.kind == "done":
                    outcome = event.outcome
                elif event.kind == "error" and event.error is not None:
                    raise event.error
            if outcome is None:
                raise RuntimeError("Completion stream ended without a result.")

            self._emit(
                {
                    "event": "agent_progress",
                    "project_id": project_id,
                    "execution_id": execution_id,
                    "role": role,
                    "message": specialist.progress_message("finalizing"),
                }
            )
            artifact_count: int | None = None
            if specialist.requires_artifacts:
                artifact_count = len(
                    await asyncio.to_thread(self.store.list_designs, project_id)
                )
                logger.info("%s saved %d %ss", role, artifact_count, specialist.artifact_kind)
                shortfall = specialist.artifact_shortfall(artifact_count)
                if shortfall:
                    raise ArtifactShortfallError(shortfall)
            await self._complete(run, specialist, execution_id, outcome, artifact_count)
        except Exception as exc:
            await self._record_failure(run, execution_id, str(exc) or exc.__class__.__name__)
            raise

        return outcome

    async def _complete(
        self,
        run: WorkerRun,
        specialist: SpecialistAgent,
        execution_id: str,
        outcome: ExecutionOutcome,
        artifact_count: int | None,
    ) -> None:
        project_id, role, gate = run.project_id, run.role, run.gate
        content = specialist.clean_output(outcome.content)
        if specialist.document_category and specialist.document_title and content:
            await asyncio.to_thread(
                lambda: self.store.upsert_document(
                    project_id,
                    category=specialist.document_category,
                    title=f"{specialist.document_title} ({gate})",
                    content=content,
                    author=role,
                )
            )

        completed = await asyncio.to_thread(
            lambda: self.store.complete_deliverables(project_id, gate=gate, owner=role)
        )
        if completed:
            await asyncio.to_thread(
                self.store.append_event,
                project_id,
                "DeliverablesCompleted",
                {"role": role, "gate": gate, "count": completed},
            )

        await asyncio.to_thread(
            self.store.update_execution,
            project_id,
            execution_id,
            status="completed",
            output=content,
            input_tokens=outcome.usage.input_tokens,
            output_tokens=outcome.usage.output_tokens,
            iterations=outcome.iteration_count,
            termination_reason=outcome.termination_reason,
        )
        completion: dict[str, Any] = {
            "execution_id": execution_id,
            "role": role,
            "gate": gate,
            "attempt": run.attempts,
            "token_usage": outcome.usage.to_dict(),
        }
        if artifact_count is not None:
            completion["artifact_count"] = artifact_count
        await asyncio.to_thread(self.store.append_event, project_id, "AgentCompleted", completion)
        self._emit(
            {
                "event": "agent_completed",
                "project_id": project_id,
                "execution_id": execution_id,
                "role": role,
                "content": content,
                "usage": outcome.usage.to_dict(),
                "termination_reason": outcome.termination_reason,
            }
        )

    async def run_gate(
        self, project_id: str, gate: str
    ) -> dict[str, WorkerRun | BaseException]:
        """Run every eligible worker for a gate concurrently; one failure spares the rest."""
        gate_id = get_gate(gate).id
        roles = roles_for_gate(gate_id)
        contexts = [
            await asyncio.to_thread(
                self.prioritizer.build_handoff_context, project_id, gate_id, role
            )
            for role in roles
        ]
        results = await asyncio.gather(
            *(
                self.run_worker(project_id, role, gate_id, context)
                for role, context in zip(roles, contexts)
            ),
            return_exceptions=True,
        )
        return dict(zip(roles, results))
