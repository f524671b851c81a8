"""
Tests for TranscriptWriter
"""

import pytest

from agent_broker.error_handling import TranscriptWriteError
from agent_broker.session import SessionStore, TranscriptEvent, TranscriptWriter


class FailingStore(SessionStore):
    """append_event 总是失败的存储"""

    async def append_event(self, session_id, event):
        raise OSError("disk full")


@pytest.mark.asyncio
async def test_operations_apply_in_submission_order(tmp_path):
    store = SessionStore(tmp_path)
    writer = TranscriptWriter(store, queue_size=2)

    await writer.create("sess-1")
    for i in range(5):
        await writer.append_event("sess-1", TranscriptEvent("tool.call", {"index": i}))
    await writer.update_title("sess-1", "Title")
    await writer.flush()

    events = await store.get_events("sess-1")
    assert [e.data["index"] for e in events] == [0, 1, 2, 3, 4]
    assert (await store.get_session("sess-1")).title == "Title"

    await writer.close()


@pytest.mark.asyncio
async def test_log_policy_continues_after_failure(tmp_path):
    writer = TranscriptWriter(FailingStore(tmp_path), failure_policy="log")

    await writer.create("sess-1")
    await writer.append_event("sess-1", TranscriptEvent("user.message", {"content": "x"}))
    await writer.update_title("sess-1", "Still written")
    await writer.flush()

    assert (await writer.store.get_session("sess-1")).title == "Still written"
    await writer.close()


@pytest.mark.asyncio
async def test_raise_policy_surfaces_failure_on_flush(tmp_path):
    writer = TranscriptWriter(FailingStore(tmp_path), failure_policy="raise")

    await writer.append_event("sess-1", TranscriptEvent("user.message", {"content": "x"}))

    with pytest.raises(TranscriptWriteError, match="disk full"):
        await writer.flush()

    # 失败只报告一次
    await writer.flush()
    await writer.close()


@pytest.mark.asyncio
async def test_close_drains_queue_and_drops_later_writes(tmp_path):
    store = SessionStore(tmp_path)
    writer = TranscriptWriter(store)

    await writer.create("sess-1")
    await writer.append_event("sess-1", TranscriptEvent("user.message", {"content": "x"}))
    await writer.close()
    await writer.append_event("sess-1", TranscriptEvent("assistant.message", {"content": "late"}))

    assert [e.type for e in await store.get_events("sess-1")] == ["user.message"]


def test_invalid_failure_policy(tmp_path):
    with pytest.raises(ValueError):
        TranscriptWriter(SessionStore(tmp_path), failure_policy="ignore")
