"""
消息提取模块

对单条原始消息字典做分类和字段提取的纯函数，字段缺失时返回空值而不是抛出异常。
decode_message() 在流的入口处把原始消息一次性解码为带类型的记录，
下游只处理这些记录。
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Union

from .serializer import MessageSerializer
from .types import ToolCall

RawMessage = Mapping[str, Any]


def _inner_message(message: RawMessage) -> Mapping[str, Any]:
    inner = message.get("message") if isinstance(message, Mapping) else None
    return inner if isinstance(inner, Mapping) else {}


def is_assistant(message: RawMessage) -> bool:
    """是否为 assistant 消息"""
    return isinstance(message, Mapping) and message.get("type") == "assistant"


def is_result(message: RawMessage) -> bool:
    """是否为 result（终止）消息"""
    return isinstance(message, Mapping) and message.get("type") == "result"


def is_stream_event(message: RawMessage) -> bool:
    """是否为部分增量消息（include_partial_messages 开启时）"""
    return isinstance(message, Mapping) and message.get("type") == "stream_event"


def get_content_blocks(message: RawMessage) -> List[Dict[str, Any]]:
    """获取 assistant 消息的内容块列表"""
    content = _inner_message(message).get("content")
    if not isinstance(content, list):
        return []
    return [block for block in content if isinstance(block, dict)]


def extract_text(message: RawMessage) -> str:
    """按顺序拼接所有 text 内容块"""
    return "".join(
        block.get("text") or ""
        for block in get_content_blocks(message)
        if block.get("type") == "text"
    )


def extract_tool_calls(message: RawMessage) -> List[ToolCall]:
    """提取所有 tool_use 内容块并归一化为 ToolCall"""
    tool_calls = []
    for block in get_content_blocks(message):
        if block.get("type") != "tool_use":
            continue
        tool_input = block.get("input")
        tool_calls.append(ToolCall(
            id=str(block.get("id") or ""),
            name=str(block.get("name") or ""),
            input=dict(tool_input) if isinstance(tool_input, Mapping) else {},
        ))
    return tool_calls


def get_message_id(message: RawMessage) -> Optional[str]:
    """获取 assistant 消息 ID"""
    message_id = _inner_message(message).get("id")
    return message_id if isinstance(message_id, str) and message_id else None


def get_usage(message: RawMessage) -> Optional[Dict[str, Any]]:
    """获取消息用量记录（assistant 在 message.usage，result 在顶层 usage）"""
    usage = _inner_message(message).get("usage")
    if usage is None and isinstance(message, Mapping):
        usage = message.get("usage")
    return dict(usage) if isinstance(usage, Mapping) else None


def get_session_id(message: RawMessage) -> Optional[str]:
    """获取 SDK 会话 ID"""
    if not isinstance(message, Mapping):
        return None
    session_id = message.get("session_id") or message.get("sessionId")
    return session_id if isinstance(session_id, str) and session_id else None


def get_stop_reason(message: RawMessage) -> Optional[str]:
    """获取 result 消息的停止原因"""
    if not isinstance(message, Mapping):
        return None
    reason = message.get("stop_reason")
    return reason if isinstance(reason, str) else None


def get_text_delta(message: RawMessage) -> Optional[str]:
    """获取部分增量消息中的文本增量（content_block_delta / text_delta）"""
    if not is_stream_event(message):
        return None
    event = message.get("event")
    if not isinstance(event, Mapping) or event.get("type") != "content_block_delta":
        return None
    delta = event.get("delta")
    if not isinstance(delta, Mapping) or delta.get("type") != "text_delta":
        return None
    text = delta.get("text")
    return text if isinstance(text, str) else None


# ============================================
# Decoded runtime records
# ============================================


@dataclass(frozen=True)
class AssistantRecord:
    """完整的 assistant 消息"""

    message_id: Optional[str]
    content: List[Dict[str, Any]] = field(default_factory=list)
    usage: Optional[Dict[str, Any]] = None
    session_id: Optional[str] = None

    @property
    def text(self) -> str:
        return extract_text({"message": {"content": self.content}})

    @property
    def tool_calls(self) -> List[ToolCall]:
        return extract_tool_calls({"message": {"content": self.content}})


@dataclass(frozen=True)
class PartialDeltaRecord:
    """部分增量消息（text 为空表示非文本增量）"""

    text: Optional[str] = None
    session_id: Optional[str] = None


@dataclass(frozen=True)
class ResultRecord:
    """终止消息，携带停止原因和权威用量"""

    stop_reason: Optional[str] = None
    usage: Optional[Dict[str, Any]] = None
    session_id: Optional[str] = None


@dataclass(frozen=True)
class OtherRecord:
    """其他消息（system / user 等），只关心会话 ID"""

    kind: str = "unknown"
    session_id: Optional[str] = None


RuntimeRecord = Union[AssistantRecord, PartialDeltaRecord, ResultRecord, OtherRecord]


def decode_message(message: Any) -> RuntimeRecord:
    """
    将 SDK 消息对象或原始字典解码为带类型的运行时记录

    Args:
        message: SDK 消息对象或原始消息字典

    Returns:
        AssistantRecord / PartialDeltaRecord / ResultRecord / OtherRecord
    """
    raw = MessageSerializer.serialize_message(message)
    session_id = get_session_id(raw)

    if is_assistant(raw):
        return AssistantRecord(
            message_id=get_message_id(raw),
            content=get_content_blocks(raw),
            usage=get_usage(raw),
            session_id=session_id,
        )
    if is_stream_event(raw):
        return PartialDeltaRecord(text=get_text_delta(raw), session_id=session_id)
    if is_result(raw):
        return ResultRecord(
            stop_reason=get_stop_reason(raw),
            usage=get_usage(raw),
            session_id=session_id,
        )
    kind = raw.get("type") if isinstance(raw, Mapping) else None
    return OtherRecord(kind=str(kind or "unknown"), session_id=session_id)
