from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator
from typing import Any

import openai

from gateflow.conversation import (
    ContentBlock,
    Conversation,
    TextBlock,
    TokenUsage,
    ToolUseBlock,
)
from gateflow.providers.base import (
    CompletionProvider,
    CompletionRequest,
    CompletionResponse,
    ProviderRequestError,
    StreamEvent,
)

logger = logging.getLogger(__name__)

FINISH_REASONS = {
    "stop": "end_turn",
    "tool_calls": "tool_use",
    "function_call": "tool_use",
    "length": "max_tokens",
}


def conversation_to_messages(system: str, conversation: Conversation) -> list[dict[str, Any]]:
    """Translate turns into chat-completions messages (one ``tool`` message per result)."""
    messages: list[dict[str, Any]] = [{"role": "system", "content": system}]
    for turn in conversation.turns:
        if turn.role == "assistant":
            message: dict[str, Any] = {"role": "assistant", "content": turn.text or None}
            if turn.tool_uses:
                message["tool_calls"] = [
                    {
                        "id": use.id,
                        "type": "function",
                        "function": {"name": use.name, "arguments": json.dumps(use.input)},
                    }
                    for use in turn.tool_uses
                ]
            messages.append(message)
            continue
        if turn.tool_results:
            for result in turn.tool_results:
                messages.append(
                    {"role": "tool", "tool_call_id": result.tool_use_id, "content": result.content}
                )
            continue
        messages.append({"role": "user", "content": turn.text})
    return messages


class OpenAIProvider(CompletionProvider):
    """OpenAI-compatible chat completions client."""

    name = "openai"
    default_api_key_env = "OPENAI_API_KEY"

    def __init__(self, *, base_url: str | None = None, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.base_url = base_url

    def _get_client(self) -> Any:
        if self._client is None:
            self._client = openai.AsyncOpenAI(
                api_key=self._api_key(),
                base_url=self.base_url,
                timeout=self.request_timeout_seconds,
            )
        return self._client

    def _request_kwargs(self, request: CompletionRequest) -> dict[str, Any]:
        kwargs: dict[str, Any] = {
            "model": request.model or self.model,
            "max_completion_tokens": request.max_tokens,
            "messages": conversation_to_messages(request.system, request.conversation),
        }
        if request.tools:
            kwargs["tools"] = [
                {
                    "type": "function",
                    "function": {
                        "name": tool.name,
                        "description": tool.description,
                        "parameters": tool.input_schema(),
                    },
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
            f"OpenAI request failed: {message}",
            provider=self.name,
            status_code=status_code,
        )

    async def complete(self, request: CompletionRequest) -> CompletionResponse:
        client = self._get_client()
        try:
            response = await client.chat.completions.create(**self._request_kwargs(request))
        except openai.OpenAIError as exc:
            raise self._wrap_error(exc) from exc

        choice = response.choices[0]
        blocks: list[ContentBlock] = []
        if choice.message.content:
            blocks.append(TextBlock(choice.message.content))
        for call in choice.message.tool_calls or []:
            try:
                arguments = json.loads(call.function.arguments or "{}")
            except json.JSONDecodeError:
                logger.error("Dropping tool call %s with unparseable arguments", call.function.name)
                continue
            blocks.append(ToolUseBlock(call.id, call.function.name, arguments))
        usage = TokenUsage()
        if response.usage is not None:
            usage = usage.add(response.usage.prompt_tokens, response.usage.completion_tokens)
        return CompletionResponse(
            blocks=blocks,
            usage=usage,
            stop_reason=FINISH_REASONS.get(choice.finish_reason, choice.finish_reason),
        )

    async def stream(self, request: CompletionRequest) -> AsyncIterator[StreamEvent]:
        client = self._get_client()
        # Text occupies block 0; tool call N maps to block N + 1.
        open_tools: set[int] = set()
        stop_reason: str | None = None
        try:
            chunks = await client.chat.completions.create(
                **self._request_kwargs(request),
                stream=True,
                stream_options={"include_usage": True},
            )
            async for chunk in chunks:
                if getattr(chunk, "usage", None) is not None:
                    yield StreamEvent(
                        "usage",
                        input_tokens=chunk.usage.prompt_tokens or 0,
                        output_tokens=chunk.usage.completion_tokens or 0,
                    )
                for choice in chunk.choices or []:
                    delta = choice.delta
                    if delta is not None and delta.content:
                        yield StreamEvent("text_delta", index=0, text=delta.content)
                    for call in (delta.tool_calls if delta is not None else None) or []:
                        index = call.index + 1
                        if index not in open_tools:
                            open_tools.add(index)
                            yield StreamEvent(
                                "tool_use_start",
                                index=index,
                                tool_id=call.id or f"call_{call.index}",
                                tool_name=call.function.name if call.function else "",
                            )
                        arguments = call.function.arguments if call.function else None
                        if arguments:
                            yield StreamEvent("tool_input_delta", index=index, text=arguments)
                    if choice.finish_reason:
                        stop_reason = FINISH_REASONS.get(
                            choice.finish_reason, choice.finish_reason
                        )
        except openai.OpenAIError as exc:
            raise self._wrap_error(exc) from exc

        for index in sorted(open_tools):
            yield StreamEvent("block_stop", index=index)
        yield StreamEvent("stop", stop_reason=stop_reason)
