"""停止原因判定"""

from typing import Optional

from .types import StopReason

_LABELS = {
    StopReason.END_TURN: "Completed",
    StopReason.MAX_TOKENS: "Token limit reached",
    StopReason.REFUSAL: "Refused",
    StopReason.TOOL_USE: "Tool invocation",
    StopReason.STOP_SEQUENCE: "Stop sequence",
}


def is_complete(reason: Optional[str]) -> bool:
    """agent 正常完成回复"""
    return reason == StopReason.END_TURN


def is_max_tokens(reason: Optional[str]) -> bool:
    """被 token 上限截断"""
    return reason == StopReason.MAX_TOKENS


def is_refusal(reason: Optional[str]) -> bool:
    """agent 拒绝回复"""
    return reason == StopReason.REFUSAL


def is_tool_use(reason: Optional[str]) -> bool:
    """agent 停下来调用工具"""
    return reason == StopReason.TOOL_USE


def is_stop_sequence(reason: Optional[str]) -> bool:
    """命中配置的停止序列"""
    return reason == StopReason.STOP_SEQUENCE


def stop_reason_label(reason: Optional[str]) -> str:
    """停止原因的可读标签（None 或未知值返回 "Unknown"）"""
    try:
        return _LABELS[StopReason(reason)]
    except ValueError:
        return "Unknown"
