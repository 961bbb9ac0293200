from __future__ import annotations

import asyncio
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass

from gateflow.providers.base import ProviderError

TRANSIENT_PATTERNS = (
    "rate_limit",
    "rate limit",
    "timeout",
    "timed out",
    "overloaded",
    "model:",
)
SERVER_ERROR_CODE = re.compile(r"(?<!\d)5\d\d(?!\d)")


def is_transient_error(error: BaseException | str) -> bool:
    """Classify a failure as rate limiting, a timeout or a 5xx upstream error."""
    if isinstance(error, ProviderError):
        if not error.retriable:
            return False
        if error.status_code is not None and 500 <= error.status_code <= 599:
            return True
    message = str(error).lower()
    if any(pattern in message for pattern in TRANSIENT_PATTERNS):
        return True
    return SERVER_ERROR_CODE.search(message) is not None


@dataclass(slots=True)
class RetryState:
    attempt: int
    max_attempts: int
    backoff: float

    @property
    def retries_used(self) -> int:
        return self.attempt - 1

    def can_retry(self) -> bool:
        return self.attempt < self.max_attempts

    def advance(self) -> None:
        if not self.can_retry():
            raise RuntimeError("Retry budget exhausted.")
        self.attempt += 1


@dataclass(slots=True)
class RetryPolicy:
    max_retries: int = 2
    backoff_seconds: float = 3.0

    def new_state(
        self, backoff_seconds: float | None = None, *, attempts_used: int = 0
    ) -> RetryState:
        return RetryState(
            attempt=1 + max(0, attempts_used),
            max_attempts=self.max_retries + 1,
            backoff=self.backoff_seconds if backoff_seconds is None else backoff_seconds,
        )


class Scheduler(ABC):
    """Source of delays between attempts; tests substitute a recording fake."""

    @abstractmethod
    async def sleep(self, seconds: float) -> None:
        """Suspend the caller for ``seconds``."""


class AsyncioScheduler(Scheduler):
    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(seconds)
