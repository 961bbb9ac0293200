from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Literal

Role = Literal["user", "assistant"]
TerminationReason = Literal["end_turn", "no_tool_use", "iteration_cap"]


class ConversationOrderError(ValueError):
    """Raised when a turn would break alternation or tool-result pairing."""


@dataclass(slots=True, frozen=True)
class TextBlock:
    text: str

    def to_wire(self) -> dict[str, Any]:
        return {"type": "text", "text": self.text}


@dataclass(slots=True, frozen=True)
class ToolUseBlock:
    id: str
    name: str
    input: dict[str, Any]

    def to_wire(self) -> dict[str, Any]:
        return {"type": "tool_use", "id": self.id, "name": self.name, "input": self.input}


@dataclass(slots=True, frozen=True)
class ToolResultBlock:
    tool_use_id: str
    payload: dict[str, Any]
    success: bool = True

    @property
    def content(self) -> str:
        return json.dumps(self.payload, ensure_ascii=False, default=str)

    def to_wire(self) -> dict[str, Any]:
        wire: dict[str, Any] = {
            "type": "tool_result",
            "tool_use_id": self.tool_use_id,
            "content": self.content,
        }
        if not self.success:
            wire["is_error"] = True
        return wire


ContentBlock = TextBlock | ToolUseBlock | ToolResultBlock


@dataclass(slots=True, frozen=True)
class ConversationTurn:
    role: Role
    blocks: tuple[ContentBlock, ...]

    @property
    def tool_uses(self) -> list[ToolUseBlock]:
        return [block for block in self.blocks if isinstance(block, ToolUseBlock)]

    @property
    def tool_results(self) -> list[ToolResultBlock]:
        return [block for block in self.blocks if isinstance(block, ToolResultBlock)]

    @property
    def text(self) -> str:
        return "".join(block.text for block in self.blocks if isinstance(block, TextBlock))

    def to_wire(self) -> dict[str, Any]:
        return {"role": self.role, "content": [block.to_wire() for block in self.blocks]}


class Conversation:
    """Append-only turn history for a single execution.

    Turns strictly alternate between user and assistant. An assistant turn that
    carries tool invocations must be followed by exactly one user turn holding one
    result per invocation, matched by invocation id.
    """

    def __init__(self, user_instruction: str) -> None:
        self._turns: list[ConversationTurn] = [
            ConversationTurn(role="user", blocks=(TextBlock(user_instruction),))
        ]

    @property
    def turns(self) -> tuple[ConversationTurn, ...]:
        return tuple(self._turns)

    def __len__(self) -> int:
        return len(self._turns)

    @property
    def last(self) -> ConversationTurn:
        return self._turns[-1]

    @property
    def awaiting_tool_results(self) -> bool:
        return self.last.role == "assistant" and bool(self.last.tool_uses)

    def append_assistant(self, blocks: list[ContentBlock]) -> ConversationTurn:
        if self.last.role != "user":
            raise ConversationOrderError("Assistant turn must follow a user turn.")
        if any(isinstance(block, ToolResultBlock) for block in blocks):
            raise ConversationOrderError("Assistant turn cannot carry tool results.")
        turn = ConversationTurn(role="assistant", blocks=tuple(blocks))
        self._turns.append(turn)
        return turn

    def append_tool_results(self, results: list[ToolResultBlock]) -> ConversationTurn:
        if not self.awaiting_tool_results:
            raise ConversationOrderError(
                "Tool results must immediately follow an assistant turn with tool invocations."
            )
        expected = [block.id for block in self.last.tool_uses]
        received = [result.tool_use_id for result in results]
        if len(received) != len(set(received)):
            raise ConversationOrderError("Duplicate tool result for a single invocation.")
        if sorted(expected) != sorted(received):
            missing = sorted(set(expected) - set(received))
            unexpected = sorted(set(received) - set(expected))
            raise ConversationOrderError(
                f"Tool results do not match invocations (missing={missing}, "
                f"unexpected={unexpected})."
            )
        turn = ConversationTurn(role="user", blocks=tuple(results))
        self._turns.append(turn)
        return turn

    def to_wire(self) -> list[dict[str, Any]]:
        return [turn.to_wire() for turn in self._turns]


@dataclass(slots=True, frozen=True)
class TokenUsage:
    input_tokens: int = 0
    output_tokens: int = 0

    def add(self, input_tokens: int = 0, output_tokens: int = 0) -> TokenUsage:
        """Return a new total; instances are never changed in place."""
        return TokenUsage(
            self.input_tokens + int(input_tokens or 0),
            self.output_tokens + int(output_tokens or 0),
        )

    def to_dict(self) -> dict[str, int]:
        return {"input_tokens": self.input_tokens, "output_tokens": self.output_tokens}


@dataclass(slots=True, frozen=True)
class ExecutionOutcome:
    content: str
    usage: TokenUsage
    termination_reason: TerminationReason
    iteration_count: int
    model: str = ""
    tool_calls: tuple[str, ...] = field(default_factory=tuple)

    def to_dict(self) -> dict[str, Any]:
        return {
            "content": self.content,
            "usage": self.usage.to_dict(),
            "termination_reason": self.termination_reason,
            "iteration_count": self.iteration_count,
            "model": self.model,
            "tool_calls": list(self.tool_calls),
        }
