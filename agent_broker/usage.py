"""
用量统计模块

按消息 ID 去重累计 token 用量。SDK 会为同一条消息的多个内容块重复
发送相同的用量数据，直接求和会重复计数。
"""

from dataclasses import replace
from typing import Any, Mapping, Optional, Set

from .types import UsageStats


def _usage_from_raw(usage: Mapping[str, Any]) -> UsageStats:
    """将 SDK 的 snake_case 用量记录转换为 UsageStats（缺失字段按 0 处理）"""
    return UsageStats(
        input_tokens=usage.get("input_tokens") or 0,
        output_tokens=usage.get("output_tokens") or 0,
        cache_read_input_tokens=usage.get("cache_read_input_tokens") or 0,
        cache_creation_input_tokens=usage.get("cache_creation_input_tokens") or 0,
    )


class UsageTracker:
    """按消息 ID 去重的用量累加器"""

    def __init__(self):
        self._seen: Set[str] = set()
        self._totals = UsageStats()

    def track(self, message_id: str, usage: Optional[Mapping[str, Any]]) -> None:
        """
        累计一条 assistant 消息的用量

        同一个 message_id 只计数一次；usage 为空时不做任何处理。

        Args:
            message_id: 消息 ID
            usage: SDK 原始用量记录
        """
        if not usage or message_id in self._seen:
            return
        self._seen.add(message_id)

        delta = _usage_from_raw(usage)
        self._totals.input_tokens += delta.input_tokens
        self._totals.output_tokens += delta.output_tokens
        self._totals.cache_read_input_tokens += delta.cache_read_input_tokens
        self._totals.cache_creation_input_tokens += delta.cache_creation_input_tokens

    def set_totals(self, usage: Mapping[str, Any]) -> None:
        """用权威用量数据（如 result 消息）整体覆盖累计值"""
        self._totals = _usage_from_raw(usage)

    def get_stats(self) -> UsageStats:
        """获取当前累计用量（返回副本）"""
        return replace(self._totals)

    def reset(self) -> None:
        """清空去重集合和累计值"""
        self._seen.clear()
        self._totals = UsageStats()
