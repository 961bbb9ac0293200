from __future__ import annotations

import os
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Sequence
from dataclasses import dataclass, field
from typing import Any, Literal

from gateflow.conversation import ContentBlock, Conversation, TokenUsage
from gateflow.tools.registry import ToolSchema


class ProviderError(RuntimeError):
    """Raised when the completion endpoint cannot serve a request."""

    def __init__(
        self,
        message: str,
        *,
        provider: str | None = None,
        status_code: int | None = None,
        retriable: bool = True,
    ) -> None:
        super().__init__(message)
        self.provider = provider
        self.status_code = status_code
        self.retriable = retriable


class ProviderConfigurationError(ProviderError):
    """Raised when credentials or provider settings are missing."""

    def __init__(self, message: str, *, provider: str | None = None) -> None:
        super().__init__(message, provider=provider, retriable=False)


class ProviderRequestError(ProviderError):
    """Raised when an upstream request fails."""


@dataclass(slots=True, frozen=True)
class CompletionRequest:
    system: str
    conversation: Conversation
    tools: Sequence[ToolSchema] = ()
    model: str = ""
    max_tokens: int = 8000


@dataclass(slots=True)
class CompletionResponse:
    blocks: list[ContentBlock]
    usage: TokenUsage = field(default_factory=TokenUsage)
    stop_reason: str | None = None


StreamEventKind = Literal[
    "usage",
    "text_delta",
    "tool_use_start",
    "tool_input_delta",
    "block_stop",
    "stop",
]


@dataclass(slots=True, frozen=True)
class StreamEvent:
    """Provider-neutral streaming delta.

    ``index`` identifies the content block a delta belongs to, so tool-argument
    fragments can be buffered per invocation until ``block_stop`` arrives.
    """

    kind: StreamEventKind
    index: int = 0
    text: str = ""
    tool_id: str = ""
    tool_name: str = ""
    input_tokens: int = 0
    output_tokens: int = 0
    stop_reason: str | None = None


class CompletionProvider(ABC):
    name = "provider"
    default_api_key_env = ""

    def __init__(
        self,
        *,
        model: str,
        api_key_env: str | None = None,
        request_timeout_seconds: float = 600.0,
        client: Any | None = None,
    ) -> None:
        self.model = model
        self.api_key_env = api_key_env or self.default_api_key_env
        self.request_timeout_seconds = request_timeout_seconds
        self._client = client

    def ensure_available(self) -> None:
        if self._client is not None:
            return
        if not os.environ.get(self.api_key_env):
            raise ProviderConfigurationError(
                f"{self.api_key_env} is not set; cannot reach the {self.name} endpoint.",
                provider=self.name,
            )

    def _api_key(self) -> str:
        self.ensure_available()
        return os.environ[self.api_key_env]

    @abstractmethod
    async def complete(self, request: CompletionRequest) -> CompletionResponse:
        """Run one blocking round trip."""

    @abstractmethod
    def stream(self, request: CompletionRequest) -> AsyncIterator[StreamEvent]:
        """Run one streaming round trip."""
