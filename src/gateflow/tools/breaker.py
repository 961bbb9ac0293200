from __future__ import annotations

import threading
import time
from collections.abc import Callable
from dataclasses import dataclass


@dataclass(slots=True)
class CircuitBreakerEntry:
    tool_name: str
    consecutive_failures: int
    last_failure_at: float


class CircuitBreaker:
    """Per-tool failure counter shared by every execution in the process.

    A tool is open (short-circuited) once it has failed ``max_failures`` times in a
    row and its newest failure is younger than ``reset_seconds``. Entries older than
    the window are dropped on the next lookup, which re-admits the tool.
    """

    def __init__(
        self,
        *,
        max_failures: int = 3,
        reset_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.max_failures = max_failures
        self.reset_seconds = reset_seconds
        self._clock = clock
        self._entries: dict[str, CircuitBreakerEntry] = {}
        self._lock = threading.Lock()

    def _expire_locked(self, tool_name: str) -> CircuitBreakerEntry | None:
        entry = self._entries.get(tool_name)
        if entry is None:
            return None
        if self._clock() - entry.last_failure_at > self.reset_seconds:
            del self._entries[tool_name]
            return None
        return entry

    def is_open(self, tool_name: str) -> bool:
        with self._lock:
            entry = self._expire_locked(tool_name)
            return entry is not None and entry.consecutive_failures >= self.max_failures

    def record_failure(self, tool_name: str) -> CircuitBreakerEntry:
        with self._lock:
            entry = self._expire_locked(tool_name)
            now = self._clock()
            if entry is None:
                entry = CircuitBreakerEntry(tool_name, 1, now)
                self._entries[tool_name] = entry
            else:
                entry.consecutive_failures += 1
                entry.last_failure_at = now
            return CircuitBreakerEntry(
                entry.tool_name, entry.consecutive_failures, entry.last_failure_at
            )

    def record_success(self, tool_name: str) -> None:
        with self._lock:
            self._entries.pop(tool_name, None)

    def entry(self, tool_name: str) -> CircuitBreakerEntry | None:
        with self._lock:
            entry = self._expire_locked(tool_name)
            if entry is None:
                return None
            return CircuitBreakerEntry(
                entry.tool_name, entry.consecutive_failures, entry.last_failure_at
            )

    def snapshot(self) -> dict[str, int]:
        with self._lock:
            return {name: entry.consecutive_failures for name, entry in self._entries.items()}
