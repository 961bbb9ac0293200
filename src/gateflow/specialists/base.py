from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Literal

from gateflow.tools.registry import ToolSchema, get_tool, is_known_tool, tools_for_role

ProgressPhase = Literal["start", "working", "finalizing"]

_THINKING_BLOCK = re.compile(r"<thinking>.*?</thinking>\s*", re.DOTALL | re.IGNORECASE)
_TOOL_MARKUP = re.compile(
    r"<(function_calls|tool_use|tool_result|invoke)\b[^>]*>.*?</\1>\s*",
    re.DOTALL | re.IGNORECASE,
)
_TOOL_PROGRESS_LINE = re.compile(
    r"^\[(Calling [\w.-]+\.\.\.|[\w.-]+ completed)\]\s*$", re.MULTILINE
)


class ToolPolicyError(RuntimeError):
    """Raised when a specialist is configured with tools its role may not call."""


@dataclass(slots=True, frozen=True)
class ProgressMessages:
    start: str
    working: str
    finalizing: str


class SpecialistAgent:
    role: str = "specialist"
    prompt: str = "You are a software specialist."
    document_category: str | None = None
    document_title: str | None = None
    artifact_kind: str | None = None
    expected_artifact_count: int = 0
    progress: ProgressMessages | None = None

    def __init__(self, *, allowed_tools: list[str] | None = None) -> None:
        self.system_prompt = self.prompt.strip()
        self.tool_names = self._normalize_allowed_tools(allowed_tools)

    def _normalize_allowed_tools(self, allowed_tools: list[str] | None) -> list[str]:
        if allowed_tools is None:
            return [tool.name for tool in tools_for_role(self.role)]
        normalized = sorted({str(tool).strip() for tool in allowed_tools if str(tool).strip()})
        rejected = [
            tool
            for tool in normalized
            if not is_known_tool(tool) or not get_tool(tool).allows(self.role)
        ]
        if rejected:
            raise ToolPolicyError(
                f"Tool policy rejected tools for {self.role}: " + ", ".join(rejected)
            )
        return normalized

    def tool_catalog(self) -> list[ToolSchema]:
        return [get_tool(name) for name in self.tool_names]

    @property
    def requires_artifacts(self) -> bool:
        return self.artifact_kind is not None and self.expected_artifact_count > 0

    def artifact_shortfall(self, saved: int) -> str | None:
        if not self.requires_artifacts or saved >= self.expected_artifact_count:
            return None
        return (
            f"Expected {self.expected_artifact_count} {self.artifact_kind}s, "
            f"only {saved} were saved."
        )

    def progress_message(self, phase: ProgressPhase) -> str:
        if self.progress is None:
            return f"{self.role.replace('_', ' ').upper()} is working..."
        return getattr(self.progress, phase)

    @staticmethod
    def clean_output(content: str) -> str:
        """Strip reasoning blocks and stray tool-call markup from final output."""
        cleaned = _THINKING_BLOCK.sub("", content)
        cleaned = _TOOL_MARKUP.sub("", cleaned)
        cleaned = _TOOL_PROGRESS_LINE.sub("", cleaned)
        return re.sub(r"\n{3,}", "\n\n", cleaned).strip()
