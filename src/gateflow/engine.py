from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator, Sequence
from dataclasses import dataclass, field
from typing import Any, Literal

from gateflow.conversation import (
    ContentBlock,
    Conversation,
    ExecutionOutcome,
    TerminationReason,
    TextBlock,
    TokenUsage,
    ToolResultBlock,
    ToolUseBlock,
)
from gateflow.providers.base import (
    CompletionProvider,
    CompletionRequest,
    ProviderConfigurationError,
)
from gateflow.tools.dispatcher import ToolCallContext, ToolDispatcher
from gateflow.tools.registry import ToolSchema, tools_for_role

logger = logging.getLogger(__name__)

DEFAULT_MAX_ITERATIONS = 10
DEFAULT_MAX_TOKENS = 8000

EngineEventKind = Literal["text", "tool_started", "tool_completed", "done", "error"]


@dataclass(slots=True, frozen=True)
class EngineEvent:
    kind: EngineEventKind
    text: str = ""
    tool_name: str = ""
    tool_use_id: str = ""
    tool_input: dict[str, Any] = field(default_factory=dict)
    success: bool = True
    outcome: ExecutionOutcome | None = None
    error: Exception | None = None


class _RoundBuffer:
    """Collects one streamed round, keyed by content-block index."""

    def __init__(self) -> None:
        self.texts: dict[int, list[str]] = {}
        self.pending_tools: dict[int, tuple[str, str, list[str]]] = {}
        self.tools: dict[int, ToolUseBlock] = {}
        self.stop_reason: str | None = None

    def add_text(self, index: int, text: str) -> None:
        self.texts.setdefault(index, []).append(text)

    def start_tool(self, index: int, tool_id: str, tool_name: str) -> None:
        self.pending_tools[index] = (tool_id, tool_name, [])

    def add_tool_input(self, index: int, fragment: str) -> None:
        pending = self.pending_tools.get(index)
        if pending is not None:
            pending[2].append(fragment)

    def close_block(self, index: int) -> None:
        pending = self.pending_tools.pop(index, None)
        if pending is None:
            return
        tool_id, tool_name, fragments = pending
        raw = "".join(fragments) or "{}"
        try:
            arguments = json.loads(raw)
        except json.JSONDecodeError as exc:
            logger.error("Dropping tool call %s: failed to parse input: %s", tool_name, exc)
            return
        if not isinstance(arguments, dict):
            logger.error("Dropping tool call %s: input is not an object", tool_name)
            return
        self.tools[index] = ToolUseBlock(tool_id, tool_name, arguments)

    def finish(self) -> None:
        for index, (_, tool_name, _) in self.pending_tools.items():
            logger.error("Dropping tool call %s: block %d was never closed", tool_name, index)
        self.pending_tools.clear()

    @property
    def text(self) -> str:
        return "".join("".join(self.texts[index]) for index in sorted(self.texts))

    def blocks(self) -> list[ContentBlock]:
        blocks: list[ContentBlock] = []
        for index in sorted(set(self.texts) | set(self.tools)):
            if index in self.tools:
                blocks.append(self.tools[index])
                continue
            text = "".join(self.texts[index])
            if text:
                blocks.append(TextBlock(text))
        return blocks


def longest_text(texts: Sequence[str]) -> str:
    """Pick the final deliverable among streamed rounds.

    The round with the most text wins; the earliest one wins ties. This is a
    heuristic: a short confirmation round after the real artifact is discarded,
    but nothing guarantees the longest round is the intended deliverable.
    """
    longest = ""
    for text in texts:
        if len(text) > len(longest):
            longest = text
    return longest


class CompletionLoop:
    """Drives a model through tool-invocation rounds until it answers or hits the cap."""

    def __init__(
        self,
        provider: CompletionProvider,
        dispatcher: ToolDispatcher,
        *,
        max_iterations: int = DEFAULT_MAX_ITERATIONS,
        max_tokens: int = DEFAULT_MAX_TOKENS,
        model: str | None = None,
    ) -> None:
        self.provider = provider
        self.dispatcher = dispatcher
        self.max_iterations = max_iterations
        self.max_tokens = max_tokens
        self.model = model or provider.model

    def _resolve_cap(self, iteration_cap: int | None) -> int:
        cap = self.max_iterations if iteration_cap is None else iteration_cap
        if cap < 1:
            raise ValueError("iteration_cap must be at least 1.")
        return cap

    def _request(
        self,
        system_instruction: str,
        conversation: Conversation,
        tool_catalog: Sequence[ToolSchema],
    ) -> CompletionRequest:
        return CompletionRequest(
            system=system_instruction,
            conversation=conversation,
            tools=tuple(tool_catalog),
            model=self.model,
            max_tokens=self.max_tokens,
        )

    async def _execute_tool(self, use: ToolUseBlock, context: ToolCallContext) -> ToolResultBlock:
        logger.info("Agent %s calling tool: %s", context.role, use.name)
        payload = await self.dispatcher.execute(use.name, use.input, context)
        return ToolResultBlock(
            tool_use_id=use.id,
            payload=payload,
            success=payload.get("success", True) is not False,
        )

    @staticmethod
    def _stop_reason(
        stop_reason: str | None, tool_uses: list[ToolUseBlock]
    ) -> TerminationReason | None:
        if stop_reason == "end_turn":
            return "end_turn"
        if not tool_uses:
            return "no_tool_use"
        return None

    def _warn_cap(self, role: str, cap: int) -> None:
        logger.warning("Agent %s hit max tool iterations (%d)", role, cap)

    async def run(
        self,
        system_instruction: str,
        user_instruction: str,
        role: str,
        *,
        tool_catalog: Sequence[ToolSchema] | None = None,
        iteration_cap: int | None = None,
        call_context: ToolCallContext | None = None,
    ) -> ExecutionOutcome:
        self.provider.ensure_available()
        cap = self._resolve_cap(iteration_cap)
        tools = list(tools_for_role(role) if tool_catalog is None else tool_catalog)
        context = call_context or ToolCallContext(project_id=None, role=role)
        conversation = Conversation(user_instruction)
        usage = TokenUsage()
        content = ""
        tool_calls: list[str] = []
        termination: TerminationReason = "iteration_cap"
        iterations = 0

        while iterations < cap:
            iterations += 1
            response = await self.provider.complete(
                self._request(system_instruction, conversation, tools)
            )
            usage = usage.add(response.usage.input_tokens, response.usage.output_tokens)
            content += "".join(
                block.text for block in response.blocks if isinstance(block, TextBlock)
            )
            tool_uses = [block for block in response.blocks if isinstance(block, ToolUseBlock)]
            reason = self._stop_reason(response.stop_reason, tool_uses)
            if reason is not None:
                termination = reason
                break

            conversation.append_assistant(response.blocks)
            results = [await self._execute_tool(use, context) for use in tool_uses]
            tool_calls.extend(use.name for use in tool_uses)
            conversation.append_tool_results(results)
        else:
            self._warn_cap(role, cap)

        return ExecutionOutcome(
            content=content,
            usage=usage,
            termination_reason=termination,
            iteration_count=iterations,
            model=self.model,
            tool_calls=tuple(tool_calls),
        )

    async def stream(
        self,
        system_instruction: str,
        user_instruction: str,
        role: str,
        *,
        tool_catalog: Sequence[ToolSchema] | None = None,
        iteration_cap: int | None = None,
        call_context: ToolCallContext | None = None,
    ) -> AsyncIterator[EngineEvent]:
        """Yield text and tool events as they happen, then one ``done`` or ``error``."""
        try:
            self.provider.ensure_available()
            cap = self._resolve_cap(iteration_cap)
        except (ProviderConfigurationError, ValueError) as exc:
            yield EngineEvent("error", error=exc)
            return

        tools = list(tools_for_role(role) if tool_catalog is None else tool_catalog)
        context = call_context or ToolCallContext(project_id=None, role=role)
        logger.info("Agent %s has %d tools available", role, len(tools))
        conversation = Conversation(user_instruction)
        usage = TokenUsage()
        round_texts: list[str] = []
        tool_calls: list[str] = []
        termination: TerminationReason = "iteration_cap"
        iterations = 0

        try:
            while iterations < cap:
                iterations += 1
                buffer = _RoundBuffer()
                request = self._request(system_instruction, conversation, tools)
                async for delta in self.provider.stream(request):
                    if delta.kind == "usage":
                        usage = usage.add(delta.input_tokens, delta.output_tokens)
                    elif delta.kind == "text_delta":
                        buffer.add_text(delta.index, delta.text)
                        yield EngineEvent("text", text=delta.text)
                    elif delta.kind == "tool_use_start":
                        buffer.start_tool(delta.index, delta.tool_id, delta.tool_name)
                    elif delta.kind == "tool_input_delta":
                        buffer.add_tool_input(delta.index, delta.text)
                    elif delta.kind == "block_stop":
                        buffer.close_block(delta.index)
                    elif delta.kind == "stop":
                        buffer.stop_reason = delta.stop_reason
                buffer.finish()

                if buffer.text.strip():
                    round_texts.append(buffer.text)
                blocks = buffer.blocks()
                tool_uses = [block for block in blocks if isinstance(block, ToolUseBlock)]
                reason = self._stop_reason(buffer.stop_reason, tool_uses)
                if reason is not None:
                    termination = reason
                    break

                conversation.append_assistant(blocks)
                results: list[ToolResultBlock] = []
                for use in tool_uses:
                    yield EngineEvent(
                        "tool_started",
                        tool_name=use.name,
                        tool_use_id=use.id,
                        tool_input=use.input,
                    )
                    result = await self._execute_tool(use, context)
                    results.append(result)
                    tool_calls.append(use.name)
                    yield EngineEvent(
                        "tool_completed",
                        tool_name=use.name,
                        tool_use_id=use.id,
                        tool_input=use.input,
                        success=result.success,
                    )
                conversation.append_tool_results(results)
            else:
                self._warn_cap(role, cap)
        except Exception as exc:
            logger.error("Agent %s execution failed: %s", role, exc)
            yield EngineEvent("error", error=exc)
            return

        logger.info(
            "Agent %s finished after %d iterations (%d content pieces)",
            role,
            iterations,
            len(round_texts),
        )
        outcome = ExecutionOutcome(
            content=longest_text(round_texts),
            usage=usage,
            termination_reason=termination,
            iteration_count=iterations,
            model=self.model,
            tool_calls=tuple(tool_calls),
        )
        yield EngineEvent("done", outcome=outcome)
