"""
Workspace 模块

为每个会话提供隔离的执行环境（本地目录 / Docker 容器 / Azure 动态会话）
"""

from typing import Any, Dict, Optional

from ..error_handling import ConfigError
from ..logging_config import get_logger
from ..types import SessionStrategy
from .base import (
    ALLOWED_UPLOAD_EXTENSIONS,
    MAX_UPLOAD_BYTES,
    EnvironmentManager,
    sanitize_filename,
    validate_uploads,
)
from .local_strategy import LocalEnvironmentManager
from .docker_strategy import DockerEnvironmentManager
from .azure_strategy import AzureEnvironmentManager, ExecutionResult

logger = get_logger(__name__)


def create_environment_manager(
    strategy: Optional[str] = None,
    config: Optional[Dict[str, Any]] = None
) -> EnvironmentManager:
    """
    创建执行环境管理器（每次返回新实例，由调用方持有）

    Args:
        strategy: 策略名（local / docker / azure），默认取 config["strategy"]
        config: 配置中的 sessions 段

    Returns:
        EnvironmentManager 实例

    Raises:
        ConfigError: 未知策略或策略缺少必需配置
    """
    config = config or {}
    name = strategy or config.get("strategy") or SessionStrategy.LOCAL.value

    try:
        resolved = SessionStrategy(name)
    except ValueError:
        raise ConfigError(f"Unknown session strategy: {name}")

    if resolved == SessionStrategy.LOCAL:
        manager: EnvironmentManager = LocalEnvironmentManager(
            base_dir=config.get("base_dir", "./sessions"),
            retention_days=config.get("retention_days", 30),
        )
    elif resolved == SessionStrategy.DOCKER:
        manager = DockerEnvironmentManager(
            image=config.get("docker_image", "agent-starter-api"),
            service_port=config.get("docker_port", 3000),
        )
    else:
        manager = AzureEnvironmentManager(
            pool_endpoint=config.get("azure_pool_endpoint"),
            audience=config.get("azure_audience") or "https://dynamicsessions.io/.default",
        )

    logger.info(f"使用会话策略: {resolved.value}")
    return manager


__all__ = [
    # 工厂
    "create_environment_manager",

    # 策略
    "EnvironmentManager",
    "LocalEnvironmentManager",
    "DockerEnvironmentManager",
    "AzureEnvironmentManager",
    "ExecutionResult",

    # 上传
    "sanitize_filename",
    "validate_uploads",
    "ALLOWED_UPLOAD_EXTENSIONS",
    "MAX_UPLOAD_BYTES",
]
