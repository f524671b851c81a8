"""
Unit tests for raw message extraction and decoding
"""

from agent_broker.messages import (
    AssistantRecord,
    OtherRecord,
    PartialDeltaRecord,
    ResultRecord,
    decode_message,
    extract_text,
    extract_tool_calls,
    get_content_blocks,
    get_message_id,
    get_session_id,
    get_stop_reason,
    get_text_delta,
    get_usage,
    is_assistant,
    is_result,
    is_stream_event,
)
from agent_broker.types import ToolCall

from tests.fakes import assistant, result, text_delta


ASSISTANT = assistant(
    "m1",
    [
        {"type": "text", "text": "Hello "},
        {"type": "tool_use", "id": "t1", "name": "Bash", "input": {"command": "ls"}},
        {"type": "text", "text": "world"},
    ],
    usage={"input_tokens": 5, "output_tokens": 2},
)


def test_classification():
    assert is_assistant(ASSISTANT)
    assert is_result(result())
    assert is_stream_event(text_delta("x"))
    assert not is_assistant(result())
    assert not is_result({})


def test_extract_text_concatenates_text_blocks():
    assert extract_text(ASSISTANT) == "Hello world"


def test_extract_tool_calls():
    assert extract_tool_calls(ASSISTANT) == [ToolCall(id="t1", name="Bash", input={"command": "ls"})]


def test_missing_fields_return_empty_values():
    empty = {"type": "assistant"}
    assert get_content_blocks(empty) == []
    assert extract_text(empty) == ""
    assert extract_tool_calls(empty) == []
    assert get_message_id(empty) is None
    assert get_usage(empty) is None
    assert get_session_id(empty) is None
    assert get_stop_reason(empty) is None
    assert get_text_delta(empty) is None


def test_usage_location():
    assert get_usage(ASSISTANT) == {"input_tokens": 5, "output_tokens": 2}
    assert get_usage(result(usage={"output_tokens": 7})) == {"output_tokens": 7}


def test_session_id_accepts_camel_case():
    assert get_session_id({"sessionId": "abc"}) == "abc"
    assert get_session_id({"session_id": "def"}) == "def"


def test_text_delta_ignores_other_deltas():
    assert get_text_delta(text_delta("Hel")) == "Hel"
    assert get_text_delta({
        "type": "stream_event",
        "event": {"type": "content_block_delta", "delta": {"type": "input_json_delta", "partial_json": "{"}},
    }) is None
    assert get_text_delta({"type": "stream_event", "event": {"type": "message_start"}}) is None


def test_decode_assistant():
    record = decode_message(ASSISTANT)

    assert isinstance(record, AssistantRecord)
    assert record.message_id == "m1"
    assert record.session_id == "sess-1"
    assert record.text == "Hello world"
    assert [tc.name for tc in record.tool_calls] == ["Bash"]


def test_decode_partial_and_result():
    partial = decode_message(text_delta("lo", session_id="s2"))
    assert partial == PartialDeltaRecord(text="lo", session_id="s2")

    final = decode_message(result("max_tokens", usage={"input_tokens": 1}))
    assert isinstance(final, ResultRecord)
    assert final.stop_reason == "max_tokens"
    assert final.usage == {"input_tokens": 1}


def test_decode_other_messages():
    record = decode_message({"type": "system", "subtype": "init", "session_id": "s3"})
    assert record == OtherRecord(kind="system", session_id="s3")
