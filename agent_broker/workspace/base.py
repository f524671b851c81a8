"""
执行环境管理器基类

维护 SDK 会话 ID -> 执行环境 ID 的映射，并定义所有策略共用的生命周期：
- prepare(): 复用已关联的环境，或创建新环境
- associate(): SDK 返回会话 ID 后建立映射
- destroy(): 释放环境并删除映射（幂等）
- lookup(): 查询会话对应的环境 ID
- ingest_files(): 写入上传文件

并发说明：同一个尚未关联的新会话并发调用 prepare() 可能分配两个环境，
这里不做串行化，由调用方保证同一会话的首次请求不并发。
"""

import os
import re
import uuid
from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Sequence

from ..error_handling import RequestValidationError, UnsupportedOperationError
from ..logging_config import get_logger
from ..types import ExecutionEnvironment, FileUpload, IngestedFile, SessionStrategy

logger = get_logger(__name__)

ALLOWED_UPLOAD_EXTENSIONS = {".txt", ".csv"}
MAX_UPLOAD_BYTES = 10 * 1024 * 1024  # 10 MB
MAX_FILENAME_LENGTH = 100


def sanitize_filename(name: str) -> str:
    """
    清理上传文件名：去掉路径部分，替换非法字符，限制长度，保留扩展名

    Args:
        name: 原始文件名

    Returns:
        安全的文件名
    """
    name = os.path.basename(name.replace("\\", "/"))
    base, ext = os.path.splitext(name)
    base = re.sub(r"[^a-zA-Z0-9._-]", "_", base)[:MAX_FILENAME_LENGTH]
    if not base:
        base = "file"
    return base + ext


def validate_uploads(files: Sequence[FileUpload]) -> None:
    """
    校验上传文件（仅允许 .txt / .csv，单个文件不超过 10 MB）

    Raises:
        RequestValidationError: 文件类型或大小不合法
    """
    for upload in files:
        ext = os.path.splitext(upload.name)[1].lower()
        if ext not in ALLOWED_UPLOAD_EXTENSIONS:
            raise RequestValidationError(
                f"File type '{ext}' is not allowed. Supported: .txt, .csv",
                field="files"
            )
        if len(upload.content) > MAX_UPLOAD_BYTES:
            raise RequestValidationError(
                f"File '{upload.name}' exceeds 10 MB limit",
                field="files"
            )


class EnvironmentManager(ABC):
    """执行环境管理器（策略基类）"""

    strategy: SessionStrategy

    def __init__(self):
        # SDK 会话 ID -> 环境 ID
        self._session_to_env: Dict[str, str] = {}

    async def prepare(self, session_id: Optional[str] = None) -> ExecutionEnvironment:
        """
        获取会话的执行环境

        已关联的会话直接复用原环境，不再分配新资源；否则创建新环境。

        Args:
            session_id: 要恢复的 SDK 会话 ID（可选）

        Returns:
            ExecutionEnvironment

        Raises:
            EnvironmentProvisionError: 资源创建失败
        """
        env_id = self.lookup(session_id) if session_id else None
        if env_id is not None:
            env = await self._reuse(env_id)
            if env is not None:
                logger.debug(f"复用执行环境: {env_id} (session={session_id})")
                return env

        env_id = str(uuid.uuid4())
        env = await self._provision(env_id)
        logger.info(f"创建执行环境: {env_id} (strategy={self.strategy.value})")
        return env

    def associate(self, session_id: str, env_id: str) -> None:
        """记录 SDK 会话 ID 与环境 ID 的映射"""
        previous = self._session_to_env.get(session_id)
        if previous is not None and previous != env_id:
            logger.warning(f"会话 {session_id} 重新关联: {previous} -> {env_id}")
        self._session_to_env[session_id] = env_id

    def lookup(self, session_id: str) -> Optional[str]:
        """查询会话对应的环境 ID"""
        return self._session_to_env.get(session_id)

    async def destroy(self, session_id: str) -> None:
        """
        释放会话的执行环境（没有映射时把参数当作环境 ID）

        重复调用或未知 ID 都不会报错。
        """
        env_id = self._session_to_env.get(session_id, session_id)
        await self._release(env_id)
        self._session_to_env.pop(session_id, None)
        logger.info(f"已释放执行环境: {env_id} (strategy={self.strategy.value})")

    async def ingest_files(self, env_id: str, files: List[FileUpload]) -> List[IngestedFile]:
        """写入上传文件（默认不支持）"""
        raise UnsupportedOperationError(
            f"File upload is not yet implemented for the {self.strategy.value} session strategy",
            strategy=self.strategy.value
        )

    async def close(self) -> None:
        """释放管理器自身持有的资源"""
        return None

    @abstractmethod
    async def _reuse(self, env_id: str) -> Optional[ExecutionEnvironment]:
        """已知环境是否仍可复用，可复用时返回环境描述"""

    @abstractmethod
    async def _provision(self, env_id: str) -> ExecutionEnvironment:
        """创建新环境的底层资源"""

    @abstractmethod
    async def _release(self, env_id: str) -> None:
        """释放环境的底层资源（不存在时为空操作）"""
