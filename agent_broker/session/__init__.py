"""
会话记录模块

负责对话记录的持久化和标题生成。

主要组件：
- SessionStore: 会话元数据（workspace.yaml）和事件日志（events.jsonl）存储
- TranscriptWriter: 有界队列写入器，保证同一进程内写操作按提交顺序执行
- generate_session_title: 用单次查询生成会话标题
"""

from .session_store import (
    EVENT_TYPES,
    SESSION_STATUSES,
    SessionMetadata,
    SessionStore,
    TranscriptEvent,
    utc_now_iso,
)
from .transcript_writer import TranscriptWriter
from .title_generator import build_title_prompt, clean_title, generate_session_title


__all__ = [
    # 存储
    "SessionStore",
    "SessionMetadata",
    "TranscriptEvent",
    "EVENT_TYPES",
    "SESSION_STATUSES",
    "utc_now_iso",

    # 写入
    "TranscriptWriter",

    # 标题
    "generate_session_title",
    "build_title_prompt",
    "clean_title",
]
