"""
会话记录存储

每个会话一个目录：
- workspace.yaml: 会话元数据（id / title / status / created_at / updated_at）
- events.jsonl:   只追加的事件日志（user.message / assistant.message / tool.call / session.done）
"""

import json
import re
import shutil
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from ..error_handling import RequestValidationError
from ..logging_config import get_logger

logger = get_logger(__name__)

WORKSPACE_FILE = "workspace.yaml"
EVENTS_FILE = "events.jsonl"

SESSION_STATUSES = ("active", "completed")
EVENT_TYPES = ("user.message", "assistant.message", "tool.call", "session.done")

_SESSION_ID_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")


def utc_now_iso() -> str:
    """当前 UTC 时间（ISO 8601，毫秒精度，Z 结尾）"""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _as_text(value: Any, default: str = "") -> str:
    if value is None:
        return default
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


@dataclass
class SessionMetadata:
    """会话元数据（标题初始为空，由后台任务补写）"""

    id: str
    title: str = ""
    status: str = "active"
    created_at: str = field(default_factory=utc_now_iso)
    updated_at: str = field(default_factory=utc_now_iso)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "status": self.status,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }


@dataclass
class TranscriptEvent:
    """events.jsonl 中的一条记录"""

    type: str
    data: Dict[str, Any] = field(default_factory=dict)
    timestamp: str = field(default_factory=utc_now_iso)

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type, "data": self.data, "timestamp": self.timestamp}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TranscriptEvent":
        return cls(
            type=data.get("type", ""),
            data=data.get("data") or {},
            timestamp=data.get("timestamp") or "",
        )


class SessionStore:
    """按会话目录存储元数据和事件日志"""

    def __init__(self, base_dir: Path | str = "./sessions"):
        self.base_dir = Path(base_dir).resolve()

    async def create(self, session_id: str) -> SessionMetadata:
        """创建会话目录和初始元数据（标题为空，状态 active）"""
        session_dir = self._session_dir(session_id)
        session_dir.mkdir(parents=True, exist_ok=True)

        meta = SessionMetadata(id=session_id)
        self._write_workspace(meta)
        logger.info(f"创建会话记录: {session_id}")
        return meta

    async def ensure_session(self, session_id: str) -> SessionMetadata:
        """会话元数据不存在时创建，存在时原样返回"""
        meta = await self.get_session(session_id)
        if meta is not None:
            return meta
        return await self.create(session_id)

    async def update_title(self, session_id: str, title: str) -> None:
        """更新会话标题（会话不存在时忽略）"""
        meta = await self.get_session(session_id)
        if meta is None:
            return
        meta.title = title
        meta.updated_at = utc_now_iso()
        self._write_workspace(meta)

    async def update_status(self, session_id: str, status: str) -> None:
        """更新会话状态（会话不存在时忽略）"""
        if status not in SESSION_STATUSES:
            raise ValueError(f"无效的会话状态: {status}")
        meta = await self.get_session(session_id)
        if meta is None:
            return
        meta.status = status
        meta.updated_at = utc_now_iso()
        self._write_workspace(meta)

    async def append_event(self, session_id: str, event: TranscriptEvent) -> None:
        """追加一条事件并刷新元数据的 updated_at"""
        session_dir = self._session_dir(session_id)
        session_dir.mkdir(parents=True, exist_ok=True)

        with open(session_dir / EVENTS_FILE, "a", encoding="utf-8") as f:
            f.write(json.dumps(event.to_dict(), ensure_ascii=False) + "\n")

        meta = await self.get_session(session_id)
        if meta is not None:
            meta.updated_at = utc_now_iso()
            self._write_workspace(meta)

    async def list_sessions(self) -> List[SessionMetadata]:
        """列出所有会话，按 updated_at 倒序"""
        if not self.base_dir.exists():
            return []

        sessions = []
        for entry in self.base_dir.iterdir():
            if not entry.is_dir() or not _SESSION_ID_PATTERN.match(entry.name):
                continue
            meta = await self.get_session(entry.name)
            if meta is not None:
                sessions.append(meta)

        sessions.sort(key=lambda m: m.updated_at, reverse=True)
        return sessions

    async def get_session(self, session_id: str) -> Optional[SessionMetadata]:
        """读取会话元数据，不存在时返回 None"""
        workspace_file = self._session_dir(session_id) / WORKSPACE_FILE
        if not workspace_file.exists():
            return None

        try:
            with open(workspace_file, "r", encoding="utf-8") as f:
                raw = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            logger.error(f"解析会话元数据失败 {workspace_file}: {e}")
            return None

        if not isinstance(raw, dict) or not raw.get("id"):
            return None

        now = utc_now_iso()
        return SessionMetadata(
            id=_as_text(raw.get("id")),
            title=_as_text(raw.get("title")),
            status=_as_text(raw.get("status"), "active"),
            created_at=_as_text(raw.get("created_at"), now),
            updated_at=_as_text(raw.get("updated_at"), now),
        )

    async def get_events(self, session_id: str) -> List[TranscriptEvent]:
        """按写入顺序读取所有事件"""
        events_file = self._session_dir(session_id) / EVENTS_FILE
        if not events_file.exists():
            return []

        events = []
        with open(events_file, "r", encoding="utf-8") as f:
            for line_num, line in enumerate(f, 1):
                line = line.strip()
                if not line:
                    continue
                try:
                    events.append(TranscriptEvent.from_dict(json.loads(line)))
                except json.JSONDecodeError as e:
                    logger.warning(f"跳过损坏的事件记录 {events_file}:{line_num}: {e}")
        return events

    async def delete_session(self, session_id: str) -> bool:
        """删除整个会话记录，返回是否确实删除了目录"""
        session_dir = self._session_dir(session_id)
        if not session_dir.exists():
            return False
        shutil.rmtree(session_dir)
        logger.info(f"删除会话记录: {session_id}")
        return True

    def _session_dir(self, session_id: str) -> Path:
        if not session_id or not _SESSION_ID_PATTERN.match(session_id):
            raise RequestValidationError(f"invalid session id: {session_id!r}", field="sessionId")
        return self.base_dir / session_id

    def _write_workspace(self, meta: SessionMetadata) -> None:
        data = {
            "id": meta.id,
            "title": meta.title,
            "status": meta.status,
            "created_at": meta.created_at,
            "updated_at": meta.updated_at,
        }
        workspace_file = self._session_dir(meta.id) / WORKSPACE_FILE
        with open(workspace_file, "w", encoding="utf-8") as f:
            yaml.safe_dump(data, f, allow_unicode=True, sort_keys=False)
