"""
Unit tests for stop reason predicates
"""

import pytest

from agent_broker.stop_reasons import (
    is_complete,
    is_max_tokens,
    is_refusal,
    is_stop_sequence,
    is_tool_use,
    stop_reason_label,
)


def test_predicates():
    assert is_complete("end_turn")
    assert is_max_tokens("max_tokens")
    assert is_refusal("refusal")
    assert is_tool_use("tool_use")
    assert is_stop_sequence("stop_sequence")

    assert not is_complete("max_tokens")
    assert not is_complete(None)
    assert not is_refusal("end_turn")


@pytest.mark.parametrize("reason, label", [
    ("end_turn", "Completed"),
    ("max_tokens", "Token limit reached"),
    ("refusal", "Refused"),
    ("tool_use", "Tool invocation"),
    ("stop_sequence", "Stop sequence"),
    ("something_new", "Unknown"),
    (None, "Unknown"),
])
def test_labels(reason, label):
    assert stop_reason_label(reason) == label
