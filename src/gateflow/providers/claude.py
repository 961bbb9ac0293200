from __future__ import annotations

from collections.abc import AsyncIterator
from typing import Any

import anthropic

from gateflow.conversation import ContentBlock, TextBlock, TokenUsage, ToolUseBlock
from gateflow.providers.base import (
    CompletionProvider,
    CompletionRequest,
    CompletionResponse,
    ProviderRequestError,
    StreamEvent,
)


class ClaudeProvider(CompletionProvider):
    """Anthropic Messages API client."""

    name = "claude"
    default_api_key_env = "ANTHROPIC_API_KEY"

    def _get_client(self) -> Any:
        if self._client is None:
            self._client = anthropic.AsyncAnthropic(
                api_key=self._api_key(),
                timeout=self.request_timeout_seconds,
            )
        return self._client

    def _request_kwargs(self, request: CompletionRequest) -> dict[str, Any]:
        kwargs: dict[str, Any] = {
            "model": request.model or self.model,
            "max_tokens": request.max_tokens,
            "system": request.system,
            "messages": request.conversation.to_wire(),
        }
        if request.tools:
            kwargs["tools"] = [
                {
                    "name": tool.name,
                    "description": tool.description,
                    "input_schema": tool.input_schema(),
                }
                for tool in request.tools
            ]
        return kwargs

    def _wrap_error(self, exc: Exception) -> ProviderRequestError:
        status_code = getattr(exc, "status_code", None)
        message = str(exc) or exc.__class__.__name__
        if status_code is not None:
            message = f"{status_code} {message}"
        return ProviderRequestError(
            f"Claude request failed: {message}",
            provider=self.name,
            status_code=status_code,
        )

    async def complete(self, request: CompletionRequest) -> CompletionResponse:
        client = self._get_client()
        try:
            response = await client.messages.create(**self._request_kwargs(request))
        except anthropic.APIError as exc:
            raise self._wrap_error(exc) from exc

        blocks: list[ContentBlock] = []
        for block in response.content:
            if block.type == "text":
                blocks.append(TextBlock(block.text))
            elif block.type == "tool_use":
                blocks.append(ToolUseBlock(block.id, block.name, dict(block.input or {})))
        usage = TokenUsage(
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
        )
        return CompletionResponse(blocks=blocks, usage=usage, stop_reason=response.stop_reason)

    async def stream(self, request: CompletionRequest) -> AsyncIterator[StreamEvent]:
        client = self._get_client()
        try:
            events = await client.messages.create(**self._request_kwargs(request), stream=True)
            async for event in events:
                for normalized in self._normalize(event):
                    yield normalized
        except anthropic.APIError as exc:
            raise self._wrap_error(exc) from exc

    @staticmethod
    def _normalize(event: Any) -> list[StreamEvent]:
        if event.type == "message_start":
            usage = getattr(event.message, "usage", None)
            return [StreamEvent("usage", input_tokens=getattr(usage, "input_tokens", 0) or 0)]
        if event.type == "content_block_start":
            block = event.content_block
            if block.type == "tool_use":
                return [
                    StreamEvent(
                        "tool_use_start",
                        index=event.index,
                        tool_id=block.id,
                        tool_name=block.name,
                    )
                ]
            return []
        if event.type == "content_block_delta":
            delta = event.delta
            if delta.type == "text_delta":
                return [StreamEvent("text_delta", index=event.index, text=delta.text)]
            if delta.type == "input_json_delta":
                return [
                    StreamEvent("tool_input_delta", index=event.index, text=delta.partial_json)
                ]
            return []
        if event.type == "content_block_stop":
            return [StreamEvent("block_stop", index=event.index)]
        if event.type == "message_delta":
            usage = getattr(event, "usage", None)
            return [
                StreamEvent("usage", output_tokens=getattr(usage, "output_tokens", 0) or 0),
                StreamEvent("stop", stop_reason=event.delta.stop_reason),
            ]
        return []
