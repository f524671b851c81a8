"""
本地目录策略

每个执行环境是 base_dir 下以环境 ID 命名的目录，适合本地开发：
- 创建目录时写入 .workspace_info.json 元数据
- 清理过期的工作目录
- 监控工作目录大小
"""

import json
import re
import shutil
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..error_handling import RequestValidationError
from ..logging_config import get_logger
from ..types import ExecutionEnvironment, FileUpload, IngestedFile, SessionStrategy
from .base import EnvironmentManager, sanitize_filename

logger = get_logger(__name__)

WORKSPACE_INFO_FILE = ".workspace_info.json"

_ENV_ID_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")


def is_valid_env_id(env_id: str) -> bool:
    """环境 ID 只能是单级目录名（不含路径分隔符，不以 . 开头）"""
    return bool(env_id) and _ENV_ID_PATTERN.fullmatch(env_id) is not None


def _dir_size_mb(path: Path) -> float:
    size_bytes = sum(
        f.stat().st_size
        for f in path.rglob("*")
        if f.is_file()
    )
    return size_bytes / (1024 * 1024)


class LocalEnvironmentManager(EnvironmentManager):
    """本地目录执行环境管理器"""

    strategy = SessionStrategy.LOCAL

    def __init__(
        self,
        base_dir: Path | str = "./sessions",
        retention_days: int = 30,
        max_size_mb: int = 500,
        warn_size_mb: int = 400
    ):
        """
        初始化本地目录管理器

        Args:
            base_dir: 工作目录根路径
            retention_days: 默认保留天数（cleanup_expired 使用）
            max_size_mb: 单个工作目录大小上限
            warn_size_mb: 大小警告阈值
        """
        super().__init__()
        self.base_dir = Path(base_dir).resolve()
        self.retention_days = retention_days
        self.max_size_mb = max_size_mb
        self.warn_size_mb = warn_size_mb

    def get_workspace_path(self, env_id: str) -> Path:
        """
        获取环境对应的目录路径

        Raises:
            RequestValidationError: 环境 ID 不是 base_dir 下的单级目录名
        """
        if not is_valid_env_id(env_id):
            raise RequestValidationError(f"invalid environment id: {env_id!r}", field="sessionId")
        return self.base_dir / env_id

    def is_workspace(self, env_id: str) -> bool:
        """目录是否为本管理器创建的工作目录（带 .workspace_info.json）"""
        if not is_valid_env_id(env_id):
            return False
        return (self.base_dir / env_id / WORKSPACE_INFO_FILE).is_file()

    async def _reuse(self, env_id: str) -> Optional[ExecutionEnvironment]:
        workspace_path = self.get_workspace_path(env_id)
        # 目录被外部删除时按同一个环境 ID 重建
        if not workspace_path.exists():
            self._create_directory(env_id)
        return ExecutionEnvironment(env_id=env_id, cwd=str(workspace_path))

    async def _provision(self, env_id: str) -> ExecutionEnvironment:
        workspace_path = self._create_directory(env_id)
        return ExecutionEnvironment(env_id=env_id, cwd=str(workspace_path))

    async def _release(self, env_id: str) -> None:
        # 会话记录目录与工作目录可能共用 base_dir，只删除带元数据文件的目录
        if not self.is_workspace(env_id):
            logger.debug(f"跳过非工作目录: {env_id!r}")
            return
        workspace_path = self.base_dir / env_id
        shutil.rmtree(workspace_path, ignore_errors=True)
        logger.info(f"已删除工作目录: {workspace_path}")

    async def ingest_files(self, env_id: str, files: List[FileUpload]) -> List[IngestedFile]:
        """
        将上传文件写入环境目录

        Args:
            env_id: 环境 ID
            files: 上传文件列表

        Returns:
            写入后的文件信息
        """
        workspace_path = self.get_workspace_path(env_id)
        workspace_path.mkdir(parents=True, exist_ok=True)

        results = []
        for upload in files:
            safe_name = sanitize_filename(upload.name)
            file_path = workspace_path / safe_name
            file_path.write_bytes(upload.content)
            results.append(IngestedFile(
                name=safe_name,
                path=str(file_path),
                size=len(upload.content)
            ))
            logger.debug(f"写入上传文件: {file_path} ({len(upload.content)} bytes)")

        logger.info(f"已写入 {len(results)} 个文件到环境 {env_id}")
        return results

    def cleanup_expired(
        self,
        retention_days: Optional[int] = None,
        dry_run: bool = False
    ) -> Dict[str, Any]:
        """
        清理过期的工作目录（手动调用）

        只处理带有 .workspace_info.json 的目录，会话记录目录不受影响。

        Args:
            retention_days: 保留天数（None 则使用构造参数）
            dry_run: 预览模式，只统计不删除

        Returns:
            清理报告，包含以下字段：
                - scanned: 扫描的工作目录数量
                - deleted: 删除的工作目录数量（预览模式下为将被删除的数量）
                - failed: 删除失败的数量
                - total_size_mb: 释放的总空间（MB）
                - deleted_envs: 已删除的环境列表
        """
        if retention_days is None:
            retention_days = self.retention_days

        report: Dict[str, Any] = {
            "scanned": 0,
            "deleted": 0,
            "failed": 0,
            "total_size_mb": 0.0,
            "deleted_envs": []
        }

        if not self.base_dir.exists():
            return report

        for workspace_dir in self.base_dir.iterdir():
            if not workspace_dir.is_dir():
                continue

            metadata_file = workspace_dir / WORKSPACE_INFO_FILE
            if not metadata_file.exists():
                continue

            report["scanned"] += 1

            try:
                with open(metadata_file, "r", encoding="utf-8") as f:
                    metadata = json.load(f)

                created_at = datetime.fromisoformat(metadata["created_at"])
                age_days = (datetime.now() - created_at).days

                if age_days > retention_days:
                    size_mb = _dir_size_mb(workspace_dir)
                    if not dry_run:
                        shutil.rmtree(workspace_dir)
                        logger.info(f"已删除过期工作目录: {workspace_dir} ({size_mb:.2f} MB)")

                    report["deleted"] += 1
                    report["total_size_mb"] += size_mb
                    report["deleted_envs"].append({
                        "env_id": workspace_dir.name,
                        "age_days": age_days,
                        "size_mb": size_mb
                    })

                    if dry_run:
                        continue

                    # 同时删除指向该目录的映射
                    for session_id, env_id in list(self._session_to_env.items()):
                        if env_id == workspace_dir.name:
                            del self._session_to_env[session_id]

            except (OSError, ValueError, KeyError) as e:
                logger.error(f"处理工作目录失败 {workspace_dir}: {e}")
                report["failed"] += 1

        return report

    def check_size(self, env_id: str) -> Dict[str, Any]:
        """
        检查工作目录大小

        Args:
            env_id: 环境 ID

        Returns:
            字典，包含以下字段：
                - size_mb: 当前大小（MB）
                - exceeded: 是否超过最大限制
                - warn: 是否超过警告阈值
        """
        workspace_path = self.get_workspace_path(env_id)
        if not workspace_path.exists():
            return {"size_mb": 0.0, "exceeded": False, "warn": False}

        size_mb = _dir_size_mb(workspace_path)
        return {
            "size_mb": size_mb,
            "exceeded": size_mb > self.max_size_mb,
            "warn": size_mb > self.warn_size_mb
        }

    def _create_directory(self, env_id: str) -> Path:
        """创建工作目录并写入元数据"""
        workspace_path = self.get_workspace_path(env_id)
        workspace_path.mkdir(parents=True, exist_ok=True)

        metadata = {
            "env_id": env_id,
            "created_at": datetime.now().isoformat(),
            "retention_days": self.retention_days,
            "max_size_mb": self.max_size_mb
        }

        metadata_file = workspace_path / WORKSPACE_INFO_FILE
        with open(metadata_file, "w", encoding="utf-8") as f:
            json.dump(metadata, f, indent=2, ensure_ascii=False)

        logger.info(f"创建工作目录: {workspace_path}")
        return workspace_path
