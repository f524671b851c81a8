"""
Tests for run_query / stream_query
"""

import pytest

from agent_broker.run_query import build_agent_options, run_query, stream_query
from agent_broker.types import (
    AgentQueryConfig,
    DoneEvent,
    SessionEvent,
    SubagentConfig,
    TextDeltaEvent,
    TodoUpdateEvent,
    ToolCallEvent,
    UsageEvent,
)

from tests.fakes import FakeQuery, assistant, result, text_delta


async def _collect(events):
    return [event async for event in events]


@pytest.mark.asyncio
async def test_single_shot_turn_aggregates_result():
    fake = FakeQuery([
        assistant("m1", [{"type": "text", "text": "Hi"}], usage={"input_tokens": 5, "output_tokens": 2}),
        result("end_turn", usage={"input_tokens": 5, "output_tokens": 2}),
    ])

    query_result = await run_query(AgentQueryConfig(prompt="hello"), query_fn=fake)

    assert query_result.to_dict()["text"] == "Hi"
    assert query_result.to_dict()["stopReason"] == "end_turn"
    assert query_result.to_dict()["sessionId"] == "sess-1"
    assert query_result.to_dict()["usage"] == {
        "inputTokens": 5,
        "outputTokens": 2,
        "cacheReadInputTokens": 0,
        "cacheCreationInputTokens": 0,
    }


@pytest.mark.asyncio
async def test_single_shot_counts_duplicate_message_usage_once():
    usage = {"input_tokens": 3, "output_tokens": 1}
    fake = FakeQuery([
        assistant("m1", [{"type": "text", "text": "a"}], usage=usage),
        assistant("m1", [{"type": "tool_use", "id": "t1", "name": "Bash", "input": {}}], usage=usage),
        result("end_turn"),
    ])

    query_result = await run_query(AgentQueryConfig(prompt="x"), query_fn=fake)

    assert query_result.usage.input_tokens == 3
    assert query_result.usage.output_tokens == 1
    assert [tc.id for tc in query_result.tool_calls] == ["t1"]


@pytest.mark.asyncio
async def test_single_shot_propagates_stream_errors():
    fake = FakeQuery([assistant("m1", [{"type": "text", "text": "a"}])], raise_after=1)

    with pytest.raises(RuntimeError, match="stream failed"):
        await run_query(AgentQueryConfig(prompt="x"), query_fn=fake)


@pytest.mark.asyncio
async def test_streaming_text_deltas_then_usage_then_done():
    fake = FakeQuery([
        text_delta("Hel"),
        text_delta("lo"),
        result("end_turn", usage={"input_tokens": 4, "output_tokens": 2}),
    ])

    events = await _collect(stream_query(AgentQueryConfig(prompt="hi"), query_fn=fake))

    assert [event.type for event in events] == ["session", "text_delta", "text_delta", "usage", "done"]
    assert events[1].text == "Hel"
    assert events[2].text == "lo"
    assert events[3].usage.input_tokens == 4
    done = events[-1]
    assert done.result.text == "Hello"
    assert done.result.stop_reason == "end_turn"


@pytest.mark.asyncio
async def test_streaming_does_not_duplicate_assistant_text():
    fake = FakeQuery([
        text_delta("Hi"),
        assistant("m1", [{"type": "text", "text": "Hi"}]),
        result("end_turn"),
    ])

    events = await _collect(stream_query(AgentQueryConfig(prompt="hi"), query_fn=fake))

    assert [e.text for e in events if isinstance(e, TextDeltaEvent)] == ["Hi"]
    assert events[-1].result.text == "Hi"


@pytest.mark.asyncio
async def test_streaming_todo_update():
    fake = FakeQuery([
        assistant("m1", [{
            "type": "tool_use",
            "id": "t1",
            "name": "TodoWrite",
            "input": {"todos": [{"content": "A", "status": "done"}]},
        }]),
        result("end_turn"),
    ])

    events = await _collect(stream_query(AgentQueryConfig(prompt="plan"), query_fn=fake))

    todo_events = [e for e in events if isinstance(e, TodoUpdateEvent)]
    assert len(todo_events) == 1
    progress = todo_events[0].todos.to_dict()
    assert progress["total"] == 1
    assert progress["completed"] == 1
    assert progress["inProgress"] == 0
    assert progress["pending"] == 0


@pytest.mark.asyncio
async def test_streaming_event_order_within_message():
    fake = FakeQuery([
        assistant(
            "m1",
            [
                {"type": "tool_use", "id": "t1", "name": "Read", "input": {"path": "a"}},
                {"type": "tool_use", "id": "t2", "name": "TodoWrite", "input": {"todos": []}},
            ],
            usage={"input_tokens": 1, "output_tokens": 1},
        ),
        result("tool_use"),
    ])

    events = await _collect(stream_query(AgentQueryConfig(prompt="x"), query_fn=fake))

    assert [type(e) for e in events] == [
        SessionEvent,
        ToolCallEvent,
        ToolCallEvent,
        TodoUpdateEvent,
        UsageEvent,
        DoneEvent,
    ]
    assert events[-1].result.stop_reason == "tool_use"


@pytest.mark.asyncio
async def test_streaming_emits_session_only_when_changed():
    fake = FakeQuery([
        text_delta("a", session_id="s1"),
        text_delta("b", session_id="s1"),
        text_delta("c", session_id="s2"),
        result("end_turn", session_id="s2"),
    ])

    events = await _collect(stream_query(AgentQueryConfig(prompt="x"), query_fn=fake))

    assert [e.session_id for e in events if isinstance(e, SessionEvent)] == ["s1", "s2"]
    assert events[-1].result.session_id == "s2"


@pytest.mark.asyncio
async def test_streaming_done_without_result_message():
    fake = FakeQuery([])

    events = await _collect(stream_query(AgentQueryConfig(prompt="x"), query_fn=fake))

    assert len(events) == 1
    assert isinstance(events[0], DoneEvent)
    assert events[0].result.stop_reason is None


@pytest.mark.asyncio
async def test_defaults_applied_to_options():
    fake = FakeQuery([result("end_turn")])

    await run_query(
        AgentQueryConfig(prompt="x"),
        query_fn=fake,
        agent_config={"model": "opus", "max_turns": 7, "allowed_tools": ["Read"]},
    )

    call = fake.calls[0]
    assert call["prompt"] == "x"
    assert call["options"].model == "opus"
    assert call["options"].max_turns == 7
    assert call["options"].allowed_tools == ["Read"]


def test_build_agent_options():
    config = AgentQueryConfig(
        prompt="x",
        model="haiku",
        max_turns=3,
        allowed_tools=["Bash"],
        resume_session_id="s1",
        cwd="/tmp/work",
        agents={
            "reviewer": SubagentConfig(
                description="Reviews",
                prompt="Review code",
                tools=["Read"],
                disallowed_tools=["Bash"],
                model="sonnet",
                max_turns=4,
                skills=["lint"],
            ),
            "helper": SubagentConfig(description="Helps", prompt="Help"),
        },
    )

    options = build_agent_options(config, streaming=True)

    assert options.include_partial_messages is True
    assert options.resume == "s1"
    assert str(options.cwd) == "/tmp/work"
    reviewer = options.agents["reviewer"]
    assert reviewer.description == "Reviews"
    assert reviewer.tools == ["Read"]
    assert reviewer.disallowedTools == ["Bash"]
    assert reviewer.model == "sonnet"
    assert reviewer.maxTurns == 4
    assert reviewer.skills == ["lint"]
    helper = options.agents["helper"]
    assert helper.tools is None
    assert helper.disallowedTools is None
    assert helper.maxTurns is None
    assert helper.skills is None


@pytest.mark.asyncio
async def test_streaming_without_session_id():
    fake = FakeQuery([
        text_delta("Hel", session_id=None),
        text_delta("lo", session_id=None),
        result("end_turn", usage={"input_tokens": 1, "output_tokens": 2}, session_id=None),
    ])

    events = await _collect(stream_query(AgentQueryConfig(prompt="hi"), query_fn=fake))

    assert [event.type for event in events] == ["text_delta", "text_delta", "usage", "done"]
    assert events[-1].result.text == "Hello"
    assert events[-1].result.session_id is None
