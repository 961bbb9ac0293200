import asyncio
import json
import logging
from collections.abc import AsyncIterator
from typing import Any

import pytest

from gateflow.conversation import TextBlock, TokenUsage, ToolUseBlock
from gateflow.engine import CompletionLoop, EngineEvent, longest_text
from gateflow.providers.base import (
    CompletionProvider,
    CompletionRequest,
    CompletionResponse,
    ProviderConfigurationError,
    ProviderRequestError,
    StreamEvent,
)
from gateflow.tools.dispatcher import ToolCallContext, ToolDispatcher


class ScriptedProvider(CompletionProvider):
    name = "scripted"

    def __init__(self, responses=(), rounds=(), **kwargs: Any) -> None:
        kwargs.setdefault("client", object())
        super().__init__(model="scripted-model", **kwargs)
        self.responses = list(responses)
        self.rounds = list(rounds)
        self.requests: list[CompletionRequest] = []

    async def complete(self, request: CompletionRequest) -> CompletionResponse:
        self.requests.append(request)
        return self.responses.pop(0)

    async def stream(self, request: CompletionRequest) -> AsyncIterator[StreamEvent]:
        self.requests.append(request)
        script = self.rounds.pop(0)
        if isinstance(script, Exception):
            raise script
        for event in script:
            yield event


def streamed_round(text: str, stop: str = "end_turn", tools=()) -> list[StreamEvent]:
    events = [StreamEvent("usage", input_tokens=10)]
    if text:
        events.append(StreamEvent("text_delta", index=0, text=text))
        events.append(StreamEvent("block_stop", index=0))
    for index, (tool_id, name, arguments) in enumerate(tools, start=1):
        events.append(StreamEvent("tool_use_start", index=index, tool_id=tool_id, tool_name=name))
        events.append(StreamEvent("tool_input_delta", index=index, text=json.dumps(arguments)))
        events.append(StreamEvent("block_stop", index=index))
    events.append(StreamEvent("usage", output_tokens=5))
    events.append(StreamEvent("stop", stop_reason=stop))
    return events


def _recording_dispatcher(calls: list[dict[str, Any]]) -> ToolDispatcher:
    async def read_file(arguments: dict[str, Any], context: ToolCallContext) -> dict[str, Any]:
        calls.append(arguments)
        return {"content": "file body"}

    return ToolDispatcher({"read_file": read_file})


async def _collect(stream: AsyncIterator[EngineEvent]) -> list[EngineEvent]:
    return [event async for event in stream]


def test_run_stops_at_iteration_cap_and_warns(caplog: pytest.LogCaptureFixture) -> None:
    responses = [
        CompletionResponse(
            blocks=[ToolUseBlock(f"tu_{n}", "read_file", {"file_path": "a.txt"})],
            usage=TokenUsage(3, 1),
            stop_reason="tool_use",
        )
        for n in range(10)
    ]
    calls: list[dict[str, Any]] = []
    loop = CompletionLoop(ScriptedProvider(responses=responses), _recording_dispatcher(calls))

    caplog.set_level(logging.WARNING, logger="gateflow.engine")
    outcome = asyncio.run(loop.run("system", "do it", "architect"))

    assert outcome.iteration_count == 10
    assert outcome.termination_reason == "iteration_cap"
    assert outcome.usage.to_dict() == {"input_tokens": 30, "output_tokens": 10}
    assert len(calls) == 10
    assert "hit max tool iterations (10)" in caplog.text


def test_run_concatenates_text_across_rounds() -> None:
    responses = [
        CompletionResponse(
            blocks=[TextBlock("Plan. "), ToolUseBlock("tu_1", "read_file", {"file_path": "x"})],
            stop_reason="tool_use",
        ),
        CompletionResponse(blocks=[TextBlock("Done.")], stop_reason="end_turn"),
    ]
    calls: list[dict[str, Any]] = []
    provider = ScriptedProvider(responses=responses)
    loop = CompletionLoop(provider, _recording_dispatcher(calls))

    outcome = asyncio.run(loop.run("system", "do it", "architect"))

    assert outcome.content == "Plan. Done."
    assert outcome.termination_reason == "end_turn"
    assert outcome.iteration_count == 2
    assert outcome.tool_calls == ("read_file",)
    second_request = provider.requests[1].conversation
    assert [turn.role for turn in second_request.turns] == ["user", "assistant", "user"]
    assert second_request.turns[2].tool_results[0].tool_use_id == "tu_1"


def test_run_does_not_execute_tools_on_end_turn() -> None:
    responses = [
        CompletionResponse(
            blocks=[TextBlock("final"), ToolUseBlock("tu_1", "read_file", {"file_path": "x"})],
            stop_reason="end_turn",
        )
    ]
    calls: list[dict[str, Any]] = []
    loop = CompletionLoop(ScriptedProvider(responses=responses), _recording_dispatcher(calls))

    outcome = asyncio.run(loop.run("system", "do it", "architect"))

    assert calls == []
    assert outcome.termination_reason == "end_turn"
    assert outcome.iteration_count == 1


def test_run_without_tool_uses_reports_no_tool_use() -> None:
    responses = [CompletionResponse(blocks=[TextBlock("answer")], stop_reason="max_tokens")]
    loop = CompletionLoop(ScriptedProvider(responses=responses), ToolDispatcher())

    outcome = asyncio.run(loop.run("system", "do it", "architect"))

    assert outcome.termination_reason == "no_tool_use"
    assert outcome.content == "answer"


def test_run_rejects_non_positive_cap() -> None:
    loop = CompletionLoop(ScriptedProvider(), ToolDispatcher())

    with pytest.raises(ValueError):
        asyncio.run(loop.run("system", "do it", "architect", iteration_cap=0))


def test_stream_keeps_longest_round_text() -> None:
    planning = "p" * 40
    confirm = "c" * 5
    artifact = "a" * 120
    rounds = [
        streamed_round(planning, "tool_use", [("tu_1", "read_file", {"file_path": "a"})]),
        streamed_round(confirm, "tool_use", [("tu_2", "read_file", {"file_path": "b"})]),
        streamed_round(artifact),
    ]
    calls: list[dict[str, Any]] = []
    loop = CompletionLoop(ScriptedProvider(rounds=rounds), _recording_dispatcher(calls))

    events = asyncio.run(_collect(loop.stream("system", "do it", "architect")))

    kinds = [event.kind for event in events]
    assert kinds.count("tool_started") == 2
    assert kinds.count("tool_completed") == 2
    assert kinds[-1] == "done"
    outcome = events[-1].outcome
    assert outcome is not None
    assert outcome.content == artifact
    assert outcome.iteration_count == 3
    assert outcome.usage.to_dict() == {"input_tokens": 30, "output_tokens": 15}
    assert [event.text for event in events if event.kind == "text"] == [
        planning,
        confirm,
        artifact,
    ]


def test_stream_reassembles_fragmented_tool_input() -> None:
    rounds = [
        [
            StreamEvent("tool_use_start", index=1, tool_id="tu_1", tool_name="read_file"),
            StreamEvent("tool_input_delta", index=1, text='{"file_'),
            StreamEvent("tool_input_delta", index=1, text='path": "docs/PRD.md"}'),
            StreamEvent("block_stop", index=1),
            StreamEvent("stop", stop_reason="tool_use"),
        ],
        streamed_round("done"),
    ]
    calls: list[dict[str, Any]] = []
    loop = CompletionLoop(ScriptedProvider(rounds=rounds), _recording_dispatcher(calls))

    events = asyncio.run(_collect(loop.stream("system", "do it", "architect")))

    assert calls == [{"file_path": "docs/PRD.md"}]
    started = next(event for event in events if event.kind == "tool_started")
    assert started.tool_input == {"file_path": "docs/PRD.md"}


def test_stream_drops_invocation_with_unparseable_input(
    caplog: pytest.LogCaptureFixture,
) -> None:
    rounds = [
        [
            StreamEvent("text_delta", index=0, text="trying"),
            StreamEvent("tool_use_start", index=1, tool_id="tu_1", tool_name="read_file"),
            StreamEvent("tool_input_delta", index=1, text='{"file_path": '),
            StreamEvent("block_stop", index=1),
            StreamEvent("stop", stop_reason="tool_use"),
        ]
    ]
    calls: list[dict[str, Any]] = []
    loop = CompletionLoop(ScriptedProvider(rounds=rounds), _recording_dispatcher(calls))

    caplog.set_level(logging.ERROR, logger="gateflow.engine")
    events = asyncio.run(_collect(loop.stream("system", "do it", "architect")))

    assert calls == []
    outcome = events[-1].outcome
    assert outcome is not None
    assert outcome.termination_reason == "no_tool_use"
    assert "failed to parse input" in caplog.text


def test_stream_reports_missing_credentials_as_error(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("GATEFLOW_TEST_KEY", raising=False)
    provider = ScriptedProvider(client=None, api_key_env="GATEFLOW_TEST_KEY")
    loop = CompletionLoop(provider, ToolDispatcher())

    events = asyncio.run(_collect(loop.stream("system", "do it", "architect")))

    assert [event.kind for event in events] == ["error"]
    assert isinstance(events[0].error, ProviderConfigurationError)
    assert provider.requests == []


def test_stream_surfaces_provider_failure() -> None:
    provider = ScriptedProvider(rounds=[ProviderRequestError("503 overloaded")])
    loop = CompletionLoop(provider, ToolDispatcher())

    events = asyncio.run(_collect(loop.stream("system", "do it", "architect")))

    assert events[-1].kind == "error"
    assert "503" in str(events[-1].error)
    assert all(event.kind != "done" for event in events)


def test_longest_text_prefers_earliest_on_tie() -> None:
    assert longest_text(["abc", "xyz", "de"]) == "abc"
    assert longest_text([]) == ""
