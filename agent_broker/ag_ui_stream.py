"""
AG-UI 协议转换

把 stream_query() 产出的领域事件转换为 AG-UI 协议事件，
使 API 可以被任何 AG-UI 客户端（CopilotKit、HttpAgent 等）消费。

事件映射：
- (开始)        -> RUN_STARTED
- text_delta    -> TEXT_MESSAGE_START / TEXT_MESSAGE_CONTENT / TEXT_MESSAGE_END
- tool_call     -> TOOL_CALL_START -> TOOL_CALL_ARGS -> TOOL_CALL_END
- todo_update   -> CUSTOM { name: "todo_update" }
- usage         -> CUSTOM { name: "usage" }
- session       -> CUSTOM { name: "session" }
- done          -> CUSTOM { name: "done_result" } -> RUN_FINISHED
- error         -> RUN_ERROR

协议要求文本消息在工具调用开始前关闭，且关闭后不能重新打开，
因此每次工具调用后分段计数加一，之后的文本使用新的消息 ID。
"""

import json
import time
from dataclasses import dataclass
from typing import AsyncIterator, Iterator, Optional

from ag_ui.core import (
    BaseEvent,
    CustomEvent,
    RunErrorEvent,
    RunFinishedEvent,
    RunStartedEvent,
    TextMessageContentEvent,
    TextMessageEndEvent,
    TextMessageStartEvent,
    ToolCallArgsEvent,
    ToolCallEndEvent,
    ToolCallStartEvent,
)

from .logging_config import get_logger
from .types import (
    DomainEvent,
    DoneEvent,
    ErrorEvent,
    SessionEvent,
    TextDeltaEvent,
    TodoUpdateEvent,
    ToolCallEvent,
    UsageEvent,
)

logger = get_logger(__name__)


def now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class SseEvent:
    """可直接写入 SSE 的事件（event 名称 + JSON 数据）"""

    event: str
    data: str

    def encode(self) -> bytes:
        return f"event: {self.event}\ndata: {self.data}\n\n".encode("utf-8")


def encode_event(event: BaseEvent) -> SseEvent:
    """把协议事件编码为 SSE 事件，数据中附带生成时间戳（毫秒）"""
    payload = event.model_dump(mode="json", by_alias=True, exclude_none=True)
    payload["timestamp"] = now_ms()
    return SseEvent(event=payload["type"], data=json.dumps(payload, ensure_ascii=False))


class AgUiTranscoder:
    """单次运行的协议转换状态"""

    def __init__(self, thread_id: str, run_id: str, message_id: Optional[str] = None):
        self.thread_id = thread_id
        self.run_id = run_id
        self.base_message_id = message_id or f"msg-{now_ms()}"
        self.segment = 0
        self.message_open = False

    @property
    def current_message_id(self) -> str:
        if self.segment == 0:
            return self.base_message_id
        return f"{self.base_message_id}-{self.segment}"

    def start(self) -> Iterator[BaseEvent]:
        yield RunStartedEvent(thread_id=self.thread_id, run_id=self.run_id)

    def close_text_message(self) -> Iterator[BaseEvent]:
        """关闭当前打开的文本消息（没有打开时不产出）"""
        if self.message_open:
            yield TextMessageEndEvent(message_id=self.current_message_id)
            self.message_open = False

    def fail(self, message: str) -> Iterator[BaseEvent]:
        yield from self.close_text_message()
        yield RunErrorEvent(message=message)

    def handle(self, event: DomainEvent) -> Iterator[BaseEvent]:
        """把一个领域事件映射为零个或多个协议事件"""
        if isinstance(event, TextDeltaEvent):
            # 协议不允许空增量
            if not event.text:
                return
            if not self.message_open:
                self.message_open = True
                yield TextMessageStartEvent(message_id=self.current_message_id, role="assistant")
            yield TextMessageContentEvent(message_id=self.current_message_id, delta=event.text)

        elif isinstance(event, ToolCallEvent):
            yield from self.close_text_message()

            tool_call = event.tool_call
            yield ToolCallStartEvent(
                tool_call_id=tool_call.id,
                tool_call_name=tool_call.name,
                parent_message_id=self.current_message_id,
            )
            yield ToolCallArgsEvent(
                tool_call_id=tool_call.id,
                delta=json.dumps(tool_call.input, ensure_ascii=False, separators=(",", ":")),
            )
            yield ToolCallEndEvent(tool_call_id=tool_call.id)

            # 之后的文本使用新的消息段
            self.segment += 1

        elif isinstance(event, TodoUpdateEvent):
            yield CustomEvent(name="todo_update", value=event.todos.to_dict())

        elif isinstance(event, UsageEvent):
            yield CustomEvent(name="usage", value=event.usage.to_dict())

        elif isinstance(event, SessionEvent):
            yield CustomEvent(name="session", value={"sessionId": event.session_id})

        elif isinstance(event, DoneEvent):
            yield from self.close_text_message()
            yield CustomEvent(name="done_result", value=event.result.to_dict())
            yield RunFinishedEvent(thread_id=self.thread_id, run_id=self.run_id)

        elif isinstance(event, ErrorEvent):
            yield from self.fail(event.error)


async def stream_as_ag_ui(
    events: AsyncIterator[DomainEvent],
    thread_id: str,
    run_id: str,
    message_id: Optional[str] = None
) -> AsyncIterator[SseEvent]:
    """
    把领域事件流转换为 AG-UI SSE 事件流

    领域事件流中的 error 事件或抛出的异常都会转换为 RUN_ERROR，之后不再产出任何事件。

    Args:
        events: 领域事件流
        thread_id: AG-UI 线程 ID
        run_id: AG-UI 运行 ID
        message_id: 文本消息基础 ID（默认 msg-<毫秒时间戳>）

    Yields:
        SseEvent
    """
    transcoder = AgUiTranscoder(thread_id, run_id, message_id)

    for protocol_event in transcoder.start():
        yield encode_event(protocol_event)

    try:
        async for event in events:
            for protocol_event in transcoder.handle(event):
                yield encode_event(protocol_event)
            if isinstance(event, ErrorEvent):
                return
    except Exception as e:
        logger.error(f"AG-UI 流处理失败: {e}")
        for protocol_event in transcoder.fail(str(e) or "Unknown error"):
            yield encode_event(protocol_event)
