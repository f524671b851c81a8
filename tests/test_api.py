"""
Tests for the aiohttp HTTP API
"""

import json

import pytest
import pytest_asyncio
from aiohttp import FormData, test_utils

from agent_broker.agent_system import AgentSystem
from agent_broker.api import AGENT_SYSTEM_KEY, create_app
from agent_broker.config_manager import ConfigManager

from tests.fakes import FakeQuery, assistant, result, text_delta


def _turn_messages():
    return [
        text_delta("Hel"),
        text_delta("lo"),
        assistant(
            "m1",
            [
                {"type": "text", "text": "Hello"},
                {"type": "tool_use", "id": "t1", "name": "Read", "input": {"path": "a.txt"}},
            ],
            usage={"input_tokens": 5, "output_tokens": 2},
        ),
        result("end_turn", usage={"input_tokens": 5, "output_tokens": 2}),
    ]


def _parse_sse(body: str):
    events = []
    for block in body.split("\n\n"):
        if not block.strip():
            continue
        lines = dict(line.split(": ", 1) for line in block.splitlines())
        events.append((lines["event"], json.loads(lines["data"])))
    return events


@pytest_asyncio.fixture
async def client(broker_config):
    system = AgentSystem(
        config_manager=ConfigManager(broker_config, env_file=broker_config.parent / ".env"),
        query_fn=FakeQuery(_turn_messages()),
        generate_titles=False,
    )
    test_client = test_utils.TestClient(test_utils.TestServer(create_app(system)))
    await test_client.start_server()
    yield test_client
    await test_client.close()


def _system(client) -> AgentSystem:
    return client.server.app[AGENT_SYSTEM_KEY]


@pytest.mark.asyncio
async def test_health(client):
    resp = await client.get("/health")
    assert resp.status == 200
    body = await resp.json()
    assert body["status"] == "ok"
    assert "timestamp" in body


@pytest.mark.asyncio
async def test_query(client):
    resp = await client.post("/query", json={"prompt": "hello"})

    assert resp.status == 200
    body = await resp.json()
    assert body["text"] == "Hello"
    assert body["sessionId"] == "sess-1"
    assert body["stopReason"] == "end_turn"
    assert body["toolCalls"][0]["name"] == "Read"


@pytest.mark.asyncio
async def test_query_requires_prompt(client):
    resp = await client.post("/query", json={"model": "opus"})

    assert resp.status == 400
    assert "prompt" in (await resp.json())["error"]


@pytest.mark.asyncio
async def test_query_rejects_invalid_json(client):
    resp = await client.post("/query", data="{oops", headers={"Content-Type": "application/json"})
    assert resp.status == 400


@pytest.mark.asyncio
async def test_stream_json(client):
    resp = await client.post("/stream", json={"prompt": "hello"})

    assert resp.status == 200
    assert resp.headers["Content-Type"].startswith("text/event-stream")
    events = _parse_sse(await resp.text())

    assert [name for name, _ in events] == [
        "session",
        "text_delta",
        "text_delta",
        "tool_call",
        "usage",
        "usage",
        "done",
    ]
    assert events[0][1] == {"type": "session", "sessionId": "sess-1"}
    assert events[-1][1]["result"]["text"] == "Hello"


@pytest.mark.asyncio
async def test_stream_multipart_with_files(client):
    form = FormData()
    form.add_field("prompt", "Analyze this")
    form.add_field("files", b"a,b\n1,2\n", filename="data.csv", content_type="text/csv")

    resp = await client.post("/stream", data=form)

    assert resp.status == 200
    events = _parse_sse(await resp.text())
    assert events[-1][0] == "done"

    prompt = _system(client)._query_fn.calls[0]["prompt"]
    assert prompt.startswith("Analyze this")
    assert prompt.endswith("data.csv")


@pytest.mark.asyncio
async def test_stream_rejects_disallowed_file_type(client):
    form = FormData()
    form.add_field("prompt", "x")
    form.add_field("files", b"%PDF", filename="doc.pdf", content_type="application/pdf")

    resp = await client.post("/stream", data=form)

    assert resp.status == 400
    assert "not allowed" in (await resp.json())["error"]


@pytest.mark.asyncio
async def test_sessions_and_events(client):
    await client.post("/stream", json={"prompt": "hello"})
    await _system(client).transcript_writer.flush()

    resp = await client.get("/sessions")
    sessions = (await resp.json())["sessions"]
    assert [s["id"] for s in sessions] == ["sess-1"]
    assert sessions[0]["status"] == "active"

    resp = await client.get("/sessions/sess-1/events")
    assert resp.status == 200
    body = await resp.json()
    assert body["session"]["id"] == "sess-1"
    assert [e["type"] for e in body["events"]] == [
        "user.message",
        "tool.call",
        "assistant.message",
        "session.done",
    ]


@pytest.mark.asyncio
async def test_unknown_session_events(client):
    resp = await client.get("/sessions/unknown/events")
    assert resp.status == 404


@pytest.mark.asyncio
async def test_upload_files(client):
    form = FormData()
    form.add_field("files", b"x", filename="a.txt", content_type="text/plain")
    resp = await client.post("/sessions/unknown/files", data=form)
    assert resp.status == 404

    await client.post("/query", json={"prompt": "hello"})

    form = FormData()
    form.add_field("files", b"x", filename="notes.txt", content_type="text/plain")
    resp = await client.post("/sessions/sess-1/files", data=form)

    assert resp.status == 200
    files = (await resp.json())["files"]
    assert files[0]["name"] == "notes.txt"
    assert files[0]["size"] == 1


@pytest.mark.asyncio
async def test_destroy_session(client):
    await client.post("/query", json={"prompt": "hello"})

    resp = await client.delete("/sessions/sess-1")

    assert resp.status == 200
    assert await resp.json() == {"status": "destroyed", "sessionId": "sess-1"}
    assert _system(client).environment_manager.lookup("sess-1") is None


@pytest.mark.asyncio
async def test_repeated_destroy_keeps_transcript_in_shared_dir(tmp_path):
    # transcript.base_dir 未配置时与工作目录共用 sessions.base_dir
    config_path = tmp_path / "shared.yaml"
    config_path.write_text(
        "sessions:\n"
        "  strategy: local\n"
        f"  base_dir: \"{tmp_path / 'sessions'}\"\n",
        encoding="utf-8",
    )
    system = AgentSystem(
        config_manager=ConfigManager(config_path, env_file=tmp_path / ".env"),
        query_fn=FakeQuery(_turn_messages()),
        generate_titles=False,
    )
    test_client = test_utils.TestClient(test_utils.TestServer(create_app(system)))
    await test_client.start_server()
    try:
        await test_client.post("/stream", json={"prompt": "hello"})
        await system.transcript_writer.flush()

        for _ in range(2):
            resp = await test_client.delete("/sessions/sess-1")
            assert resp.status == 200

        resp = await test_client.get("/sessions/sess-1/events")
        assert resp.status == 200
        body = await resp.json()
        assert body["events"][0]["type"] == "user.message"
    finally:
        await test_client.close()


@pytest.mark.asyncio
async def test_ag_ui(client):
    resp = await client.post("/ag-ui", json={
        "threadId": "thread-1",
        "runId": "run-1",
        "messages": [
            {"id": "1", "role": "user", "content": "first"},
            {"id": "2", "role": "assistant", "content": "ok"},
            {"id": "3", "role": "user", "content": [{"type": "text", "text": "hello"}]},
        ],
        "forwardedProps": {},
    })

    assert resp.status == 200
    events = _parse_sse(await resp.text())
    names = [name for name, _ in events]

    assert names[0] == "RUN_STARTED"
    assert names[-1] == "RUN_FINISHED"
    assert "TOOL_CALL_START" in names
    assert events[0][1]["threadId"] == "thread-1"
    assert _system(client)._query_fn.calls[0]["prompt"] == "hello"


@pytest.mark.asyncio
async def test_ag_ui_requires_user_message(client):
    resp = await client.post("/ag-ui", json={"messages": [{"role": "assistant", "content": "hi"}]})
    assert resp.status == 400
