from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from typing import Any

from gateflow.tools.breaker import CircuitBreaker
from gateflow.tools.registry import ToolRegistryError, get_tool, is_known_tool

logger = logging.getLogger(__name__)

DEFAULT_TOOL_TIMEOUTS: dict[str, float] = {
    "write_file": 30.0,
    "read_file": 15.0,
    "list_files": 15.0,
    "register_spec": 30.0,
    "check_spec_integrity": 60.0,
}
DEFAULT_TIMEOUT_SECONDS = 30.0

ToolEventHook = Callable[[dict[str, Any]], None]


@dataclass(slots=True, frozen=True)
class ToolCallContext:
    project_id: str | None
    role: str
    gate: str | None = None


ToolHandler = Callable[[dict[str, Any], ToolCallContext], Awaitable[Any]]


def failure_result(message: str, *, timed_out: bool = False, **extra: Any) -> dict[str, Any]:
    payload: dict[str, Any] = {"error": message, "success": False, "timed_out": timed_out}
    payload.update(extra)
    return payload


class ToolDispatcher:
    """Routes tool invocations to registered handlers.

    ``execute`` never raises: unknown tools, disallowed callers, handler faults,
    timeouts and open circuits all come back as structured failure payloads.
    """

    def __init__(
        self,
        handlers: Mapping[str, ToolHandler] | None = None,
        *,
        breaker: CircuitBreaker | None = None,
        timeouts: Mapping[str, float] | None = None,
        default_timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        enforce_allowed_roles: bool = True,
        event_hook: ToolEventHook | None = None,
    ) -> None:
        self._handlers: dict[str, ToolHandler] = {}
        self.breaker = breaker or CircuitBreaker()
        self.timeouts = {**DEFAULT_TOOL_TIMEOUTS, **dict(timeouts or {})}
        self.default_timeout_seconds = default_timeout_seconds
        self.enforce_allowed_roles = enforce_allowed_roles
        self.event_hook = event_hook
        for name, handler in (handlers or {}).items():
            self.register(name, handler)

    def _emit(self, event: dict[str, Any]) -> None:
        if self.event_hook:
            self.event_hook(event)

    def register(self, name: str, handler: ToolHandler) -> None:
        if name in self._handlers:
            raise ValueError(f"Tool handler already registered: {name}")
        self._handlers[name] = handler

    @property
    def tool_names(self) -> list[str]:
        return sorted(self._handlers)

    def timeout_for(self, tool_name: str) -> float:
        return float(self.timeouts.get(tool_name, self.default_timeout_seconds))

    def _caller_rejection(self, tool_name: str, role: str) -> str | None:
        if not self.enforce_allowed_roles or not is_known_tool(tool_name):
            return None
        if get_tool(tool_name).allows(role):
            return None
        return f"Tool {tool_name} is not available to role {role}."

    async def _invoke(
        self, tool_name: str, arguments: dict[str, Any], context: ToolCallContext
    ) -> Any:
        handler = self._handlers.get(tool_name)
        if handler is None:
            raise ToolRegistryError(f"Unknown tool: {tool_name}")
        return await handler(arguments, context)

    async def execute(
        self,
        tool_name: str,
        arguments: dict[str, Any] | None,
        context: ToolCallContext,
    ) -> dict[str, Any]:
        args = dict(arguments) if isinstance(arguments, dict) else {}

        rejection = self._caller_rejection(tool_name, context.role)
        if rejection:
            logger.warning(rejection)
            return failure_result(rejection)

        if self.breaker.is_open(tool_name):
            logger.warning("Tool %s is circuit-broken due to repeated failures", tool_name)
            self._emit({"event": "tool_circuit_open", "tool": tool_name, "role": context.role})
            return failure_result(
                f"Tool {tool_name} is temporarily unavailable due to repeated failures. "
                "Try again later.",
                circuit_broken=True,
            )

        timeout = self.timeout_for(tool_name)
        logger.debug(
            "Executing tool %s for %s (project=%s, timeout=%.1fs)",
            tool_name,
            context.role,
            context.project_id,
            timeout,
        )
        try:
            result = await asyncio.wait_for(
                self._invoke(tool_name, args, context), timeout=timeout
            )
        except TimeoutError:
            message = f"Tool {tool_name} timed out after {timeout:g}s"
            logger.warning(message)
            entry = self.breaker.record_failure(tool_name)
            self._emit(
                {
                    "event": "tool_timeout",
                    "tool": tool_name,
                    "timeout_seconds": timeout,
                    "consecutive_failures": entry.consecutive_failures,
                }
            )
            return failure_result(message, timed_out=True)
        except Exception as exc:
            message = str(exc) or exc.__class__.__name__
            logger.error("Tool %s failed: %s", tool_name, message)
            entry = self.breaker.record_failure(tool_name)
            self._emit(
                {
                    "event": "tool_failed",
                    "tool": tool_name,
                    "error": message,
                    "consecutive_failures": entry.consecutive_failures,
                }
            )
            return failure_result(message)

        self.breaker.record_success(tool_name)
        if isinstance(result, dict):
            payload = dict(result)
            payload.setdefault("success", True)
            return payload
        return {"result": result, "success": True}
