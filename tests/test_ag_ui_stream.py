"""
Tests for AG-UI protocol transcoding
"""

import json

import pytest

from agent_broker.ag_ui_stream import AgUiTranscoder, SseEvent, stream_as_ag_ui
from agent_broker.types import (
    DoneEvent,
    ErrorEvent,
    QueryResult,
    SessionEvent,
    TextDeltaEvent,
    ToolCall,
    ToolCallEvent,
    UsageEvent,
    UsageStats,
)


async def _events(*items, fail=False):
    for item in items:
        yield item
    if fail:
        raise RuntimeError("runtime crashed")


async def _collect(stream):
    return [(event.event, json.loads(event.data)) async for event in stream]


def test_sse_event_encoding():
    assert SseEvent(event="RUN_STARTED", data="{}").encode() == b"event: RUN_STARTED\ndata: {}\n\n"


@pytest.mark.asyncio
async def test_text_tool_text_uses_new_message_segment():
    stream = stream_as_ag_ui(
        _events(
            SessionEvent(session_id="s1"),
            TextDeltaEvent(text="A"),
            ToolCallEvent(tool_call=ToolCall(id="t1", name="Read", input={"path": "x"})),
            TextDeltaEvent(text="B"),
            DoneEvent(result=QueryResult(text="AB", session_id="s1", stop_reason="end_turn")),
        ),
        thread_id="thread-1",
        run_id="run-1",
        message_id="msg",
    )

    events = await _collect(stream)

    assert [name for name, _ in events] == [
        "RUN_STARTED",
        "CUSTOM",
        "TEXT_MESSAGE_START",
        "TEXT_MESSAGE_CONTENT",
        "TEXT_MESSAGE_END",
        "TOOL_CALL_START",
        "TOOL_CALL_ARGS",
        "TOOL_CALL_END",
        "TEXT_MESSAGE_START",
        "TEXT_MESSAGE_CONTENT",
        "TEXT_MESSAGE_END",
        "CUSTOM",
        "RUN_FINISHED",
    ]

    started = events[0][1]
    assert started["threadId"] == "thread-1"
    assert started["runId"] == "run-1"
    assert "timestamp" in started

    assert events[1][1]["name"] == "session"
    assert events[1][1]["value"] == {"sessionId": "s1"}

    assert events[2][1]["messageId"] == "msg"
    assert events[3][1]["delta"] == "A"
    assert events[5][1]["toolCallId"] == "t1"
    assert events[5][1]["toolCallName"] == "Read"
    assert events[5][1]["parentMessageId"] == "msg"
    assert events[6][1]["delta"] == '{"path":"x"}'

    assert events[8][1]["messageId"] == "msg-1"
    assert events[10][1]["messageId"] == "msg-1"

    assert events[11][1]["name"] == "done_result"
    assert events[11][1]["value"]["stopReason"] == "end_turn"


@pytest.mark.asyncio
async def test_empty_text_deltas_are_skipped():
    events = await _collect(stream_as_ag_ui(
        _events(TextDeltaEvent(text=""), DoneEvent(result=QueryResult())),
        thread_id="t",
        run_id="r",
    ))

    assert [name for name, _ in events] == ["RUN_STARTED", "CUSTOM", "RUN_FINISHED"]


@pytest.mark.asyncio
async def test_usage_maps_to_custom_event():
    events = await _collect(stream_as_ag_ui(
        _events(UsageEvent(usage=UsageStats(input_tokens=3))),
        thread_id="t",
        run_id="r",
    ))

    assert events[1][1]["name"] == "usage"
    assert events[1][1]["value"]["inputTokens"] == 3


@pytest.mark.asyncio
async def test_error_event_closes_text_and_stops():
    events = await _collect(stream_as_ag_ui(
        _events(
            TextDeltaEvent(text="partial"),
            ErrorEvent(error="boom"),
            TextDeltaEvent(text="never"),
        ),
        thread_id="t",
        run_id="r",
    ))

    assert [name for name, _ in events] == [
        "RUN_STARTED",
        "TEXT_MESSAGE_START",
        "TEXT_MESSAGE_CONTENT",
        "TEXT_MESSAGE_END",
        "RUN_ERROR",
    ]
    assert events[-1][1]["message"] == "boom"


@pytest.mark.asyncio
async def test_exception_becomes_run_error():
    events = await _collect(stream_as_ag_ui(
        _events(TextDeltaEvent(text="x"), fail=True),
        thread_id="t",
        run_id="r",
    ))

    assert [name for name, _ in events][-2:] == ["TEXT_MESSAGE_END", "RUN_ERROR"]
    assert events[-1][1]["message"] == "runtime crashed"
    assert "RUN_FINISHED" not in [name for name, _ in events]


def test_default_message_id():
    transcoder = AgUiTranscoder("t", "r")
    assert transcoder.current_message_id.startswith("msg-")
    transcoder.segment = 2
    assert transcoder.current_message_id.endswith("-2")
