"""
HTTP API 服务

基于 aiohttp 暴露 AgentSystem 的能力：

    GET    /health                  健康检查
    GET    /sessions                会话列表（按 updatedAt 倒序）
    GET    /sessions/{id}/events    会话元数据和事件
    POST   /query                   单次查询，返回 JSON 结果
    POST   /stream                  流式查询（JSON 或 multipart 带 files），SSE 领域事件
    POST   /sessions/{id}/files     向会话执行环境上传文件（multipart）
    DELETE /sessions/{id}           释放会话执行环境
    POST   /ag-ui                   AG-UI 协议端点（RunAgentInput JSON 或 multipart），SSE 协议事件
"""

import argparse
import json
import sys
import time
from contextlib import aclosing
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Dict, List, Optional, Tuple

from aiohttp import web

from ..agent_system import AgentSystem
from ..config_manager import ConfigManager, get_api_key
from ..error_handling import (
    ConfigError,
    RequestValidationError,
    SessionNotFoundError,
    UnsupportedOperationError,
)
from ..logging_config import get_logger
from ..types import AgentQueryConfig, FileUpload

logger = get_logger(__name__)

AGENT_SYSTEM_KEY = web.AppKey("agent_system", AgentSystem)

# 多个 10 MB 文件 + 表单字段
CLIENT_MAX_SIZE = 64 * 1024 * 1024

SSE_HEADERS = {
    "Content-Type": "text/event-stream",
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def _error(message: str, status: int) -> web.Response:
    return web.json_response({"error": message}, status=status)


def _error_response(error: Exception) -> web.Response:
    """把异常映射为 JSON 错误响应"""
    if isinstance(error, RequestValidationError):
        return _error(str(error), 400)
    if isinstance(error, SessionNotFoundError):
        return _error("Session not found", 404)
    if isinstance(error, UnsupportedOperationError):
        return _error(str(error), 501)
    return _error(str(error) or "Unknown error", 500)


def _system(request: web.Request) -> AgentSystem:
    return request.app[AGENT_SYSTEM_KEY]


# =============================================================================
# Request parsing
# =============================================================================


def _is_multipart(request: web.Request) -> bool:
    return request.content_type.startswith("multipart/form-data")


async def _read_json(request: web.Request) -> Dict[str, Any]:
    try:
        body = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise RequestValidationError("request body must be valid JSON")
    if not isinstance(body, dict):
        raise RequestValidationError("request body must be a JSON object")
    return body


def _form_files(form) -> List[FileUpload]:
    """从 multipart 表单中取出 files / files[] 字段的文件"""
    uploads = []
    for key in ("files", "files[]"):
        for item in form.getall(key, []):
            if isinstance(item, web.FileField):
                uploads.append(FileUpload(name=item.filename or "file", content=item.file.read()))
    return uploads


def _form_text(form, key: str) -> Optional[str]:
    value = form.get(key)
    return value if isinstance(value, str) and value else None


async def _parse_stream_request(request: web.Request) -> Tuple[AgentQueryConfig, List[FileUpload]]:
    """解析 /stream 请求（JSON 或 multipart）"""
    if _is_multipart(request):
        form = await request.post()
        body: Dict[str, Any] = {"prompt": _form_text(form, "prompt")}
        for key in ("resumeSessionId", "model"):
            if _form_text(form, key):
                body[key] = _form_text(form, key)
        return AgentQueryConfig.from_dict(body), _form_files(form)

    return AgentQueryConfig.from_dict(await _read_json(request)), []


def _message_text(content: Any) -> Optional[str]:
    """AG-UI 消息内容可以是字符串或 [{type: "text", text}] 列表"""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = [
            part.get("text", "")
            for part in content
            if isinstance(part, dict) and part.get("type") == "text"
        ]
        return "".join(parts) or None
    return None


async def _parse_ag_ui_request(request: web.Request) -> Tuple[str, str, AgentQueryConfig, List[FileUpload]]:
    """
    解析 /ag-ui 请求

    JSON 为 AG-UI RunAgentInput：prompt 取最后一条 user 消息，
    resumeSessionId 取自 forwardedProps。
    """
    now = int(time.time() * 1000)

    if _is_multipart(request):
        form = await request.post()
        prompt = _form_text(form, "prompt")
        if not prompt:
            raise RequestValidationError("prompt is required in multipart", field="prompt")
        thread_id = _form_text(form, "threadId") or f"thread-{now}"
        run_id = _form_text(form, "runId") or f"run-{now}"
        resume_session_id = _form_text(form, "resumeSessionId")
        files = _form_files(form)
    else:
        body = await _read_json(request)
        thread_id = body.get("threadId") or f"thread-{now}"
        run_id = body.get("runId") or f"run-{now}"

        messages = body.get("messages") or []
        user_messages = [
            m for m in messages
            if isinstance(m, dict) and m.get("role") == "user"
        ]
        prompt = _message_text(user_messages[-1].get("content")) if user_messages else None
        if not prompt:
            raise RequestValidationError("No user message found in messages array", field="messages")

        forwarded = body.get("forwardedProps") or {}
        resume_session_id = forwarded.get("resumeSessionId") if isinstance(forwarded, dict) else None
        files = []

    config = AgentQueryConfig(prompt=prompt, resume_session_id=resume_session_id or None)
    return str(thread_id), str(run_id), config, files


# =============================================================================
# SSE
# =============================================================================


async def _start_sse(request: web.Request) -> web.StreamResponse:
    response = web.StreamResponse(status=200, reason="OK", headers=SSE_HEADERS)
    await response.prepare(request)
    return response


async def _pipe_sse(response: web.StreamResponse, events: AsyncIterator[Tuple[str, str]]) -> None:
    """把 (event, data) 流写入 SSE 响应，客户端断开时停止消费"""
    try:
        async with aclosing(events) as stream:
            async for event_name, data in stream:
                await response.write(f"event: {event_name}\ndata: {data}\n\n".encode("utf-8"))
    except ConnectionResetError:
        logger.info("客户端已断开，停止推送")
        return
    await response.write_eof()


# =============================================================================
# Handlers
# =============================================================================


async def health_handler(request: web.Request) -> web.Response:
    return web.json_response({
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    })


async def list_sessions_handler(request: web.Request) -> web.Response:
    try:
        sessions = await _system(request).list_sessions()
    except Exception as e:
        logger.error(f"列出会话失败: {e}")
        return _error_response(e)
    return web.json_response({"sessions": [s.to_dict() for s in sessions]})


async def session_events_handler(request: web.Request) -> web.Response:
    session_id = request.match_info["session_id"]
    system = _system(request)
    try:
        meta = await system.get_session(session_id)
        if meta is None:
            raise SessionNotFoundError(session_id)
        events = await system.get_session_events(session_id)
    except Exception as e:
        return _error_response(e)
    return web.json_response({
        "session": meta.to_dict(),
        "events": [event.to_dict() for event in events],
    })


async def query_handler(request: web.Request) -> web.Response:
    """单次查询，失败时返回 {"error"}"""
    try:
        config = AgentQueryConfig.from_dict(await _read_json(request))
    except RequestValidationError as e:
        return _error_response(e)

    try:
        result = await _system(request).query(config)
    except Exception as e:
        logger.error(f"查询失败: {e}")
        return _error_response(e)
    return web.json_response(result.to_dict())


async def stream_handler(request: web.Request) -> web.StreamResponse:
    """流式查询，SSE 推送领域事件"""
    system = _system(request)
    try:
        config, files = await _parse_stream_request(request)
        turn = await system.prepare_turn(config, files)
    except Exception as e:
        logger.error(f"准备流式查询失败: {e}")
        return _error_response(e)

    async def events():
        async for event in system.stream_turn(turn):
            yield event.type, json.dumps(event.to_dict(), ensure_ascii=False)

    response = await _start_sse(request)
    await _pipe_sse(response, events())
    return response


async def upload_files_handler(request: web.Request) -> web.Response:
    session_id = request.match_info["session_id"]
    try:
        if not _is_multipart(request):
            raise RequestValidationError("multipart/form-data is required")
        files = _form_files(await request.post())
        if not files:
            raise RequestValidationError("No files provided", field="files")
        ingested = await _system(request).upload_files(session_id, files)
    except Exception as e:
        return _error_response(e)
    return web.json_response({"files": [f.to_dict() for f in ingested]})


async def destroy_session_handler(request: web.Request) -> web.Response:
    session_id = request.match_info["session_id"]
    try:
        await _system(request).destroy_environment(session_id)
    except Exception as e:
        logger.error(f"释放执行环境失败: {e}")
        return _error_response(e)
    return web.json_response({"status": "destroyed", "sessionId": session_id})


async def ag_ui_handler(request: web.Request) -> web.StreamResponse:
    """AG-UI 协议端点，兼容任意 AG-UI 客户端"""
    system = _system(request)
    try:
        thread_id, run_id, config, files = await _parse_ag_ui_request(request)
        turn = await system.prepare_turn(config, files)
    except Exception as e:
        logger.error(f"准备 AG-UI 查询失败: {e}")
        return _error_response(e)

    async def events():
        async for sse_event in system.stream_turn_as_ag_ui(turn, thread_id, run_id):
            yield sse_event.event, sse_event.data

    response = await _start_sse(request)
    await _pipe_sse(response, events())
    return response


# =============================================================================
# Application
# =============================================================================


@web.middleware
async def cors_middleware(request: web.Request, handler):
    """允许任意来源的跨域请求"""
    if request.method == "OPTIONS":
        response = web.Response(status=204)
    else:
        response = await handler(request)
    response.headers["Access-Control-Allow-Origin"] = "*"
    response.headers["Access-Control-Allow-Methods"] = "GET, POST, DELETE, OPTIONS"
    response.headers["Access-Control-Allow-Headers"] = "Content-Type, Authorization"
    return response


def create_routes() -> list:
    return [
        web.get("/health", health_handler),
        web.get("/sessions", list_sessions_handler),
        web.get("/sessions/{session_id}/events", session_events_handler),
        web.post("/query", query_handler),
        web.post("/stream", stream_handler),
        web.post("/sessions/{session_id}/files", upload_files_handler),
        web.delete("/sessions/{session_id}", destroy_session_handler),
        web.post("/ag-ui", ag_ui_handler),
    ]


async def on_startup(app: web.Application) -> None:
    await app[AGENT_SYSTEM_KEY].initialize()
    logger.info("Agent Broker API 已启动")


async def on_cleanup(app: web.Application) -> None:
    await app[AGENT_SYSTEM_KEY].close()
    logger.info("Agent Broker API 已停止")


def create_app(agent_system: Optional[AgentSystem] = None) -> web.Application:
    """
    创建 aiohttp 应用

    Args:
        agent_system: AgentSystem 实例（默认新建；启动时初始化，关闭时清理）

    Returns:
        web.Application
    """
    app = web.Application(middlewares=[cors_middleware], client_max_size=CLIENT_MAX_SIZE)
    app[AGENT_SYSTEM_KEY] = agent_system or AgentSystem()
    app.add_routes(create_routes())
    app.on_startup.append(on_startup)
    app.on_cleanup.append(on_cleanup)
    return app


def main(argv: Optional[List[str]] = None) -> None:
    parser = argparse.ArgumentParser(description="Agent Broker API 服务")
    parser.add_argument("--host", help="监听地址（覆盖配置）")
    parser.add_argument("--port", type=int, help="监听端口（覆盖配置 / API_PORT）")
    parser.add_argument("--config", help="配置文件路径（默认 broker.yaml）")
    args = parser.parse_args(argv)

    try:
        config_manager = ConfigManager(args.config)
        server_config = config_manager.server
        get_api_key()
    except ConfigError as e:
        print(f"错误: {e}")
        sys.exit(1)

    host = args.host or server_config["host"]
    port = args.port or server_config["port"]

    app = create_app(AgentSystem(config_manager=config_manager))
    logger.info(f"Agent Broker API 启动于 http://{host}:{port}")
    web.run_app(app, host=host, port=port, print=None)


if __name__ == "__main__":
    main()
