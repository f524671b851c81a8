"""
配置管理模块

统一管理所有配置相关功能，包括：
- 加载和解析 broker.yaml 配置文件（可选）
- 加载 .env 文件
- 环境变量替换与环境变量覆盖
- 配置验证
- 查询请求的默认值填充
"""

import copy
import os
import re
from dataclasses import replace
from pathlib import Path
from typing import Any, Optional

import yaml
from dotenv import load_dotenv

from .error_handling import ConfigError, ConfigValidationError
from .logging_config import get_logger
from .types import AgentQueryConfig, SessionStrategy

logger = get_logger(__name__)


DEFAULT_MODEL = "sonnet"
DEFAULT_MAX_TURNS = 100
DEFAULT_TITLE_MODEL = "haiku"
DEFAULT_ALLOWED_TOOLS = [
    "Task",
    "Bash",
    "Glob",
    "Grep",
    "LS",
    "Read",
    "Edit",
    "MultiEdit",
    "Write",
    "WebFetch",
    "TodoWrite",
    "WebSearch",
    "NotebookEdit",
    "BashOutput",
    "KillBash",
]

DEFAULT_CONFIG: dict[str, Any] = {
    "agent": {
        "model": DEFAULT_MODEL,
        "max_turns": DEFAULT_MAX_TURNS,
        "allowed_tools": list(DEFAULT_ALLOWED_TOOLS),
        "title_model": DEFAULT_TITLE_MODEL,
    },
    "sessions": {
        "strategy": SessionStrategy.LOCAL.value,
        "base_dir": "./sessions",
        "docker_image": "agent-starter-api",
        "docker_port": 3000,
        "azure_pool_endpoint": None,
        "azure_audience": "https://dynamicsessions.io/.default",
        "retention_days": 30,
    },
    "transcript": {
        "base_dir": None,
        "queue_size": 1000,
        "failure_policy": "log",
    },
    "server": {
        "host": "0.0.0.0",
        "port": 3000,
    },
    "logging": {
        "level": "INFO",
        "file": None,
    },
}

# 环境变量覆盖：(section, key, 环境变量名, 类型转换)
ENV_OVERRIDES = [
    ("agent", "model", "AGENT_MODEL", str),
    ("agent", "max_turns", "AGENT_MAX_TURNS", int),
    ("agent", "title_model", "SESSION_TITLE_MODEL", str),
    ("sessions", "strategy", "SESSION_STRATEGY", str),
    ("sessions", "base_dir", "SESSION_BASE_DIR", str),
    ("sessions", "docker_image", "DOCKER_IMAGE", str),
    ("sessions", "azure_pool_endpoint", "AZURE_SESSION_POOL_ENDPOINT", str),
    ("sessions", "azure_audience", "SESSION_POOL_AUDIENCE", str),
    ("server", "port", "API_PORT", int),
    ("logging", "level", "LOG_LEVEL", str),
    ("logging", "file", "LOG_FILE", str),
]

CONFIG_FILE_NAME = "broker.yaml"
CONFIG_PATH_ENV = "AGENT_BROKER_CONFIG"
API_KEY_ENV = "ANTHROPIC_API_KEY"


def get_api_key() -> str:
    """
    读取 Anthropic API Key

    Returns:
        API Key

    Raises:
        ConfigError: 环境变量未设置
    """
    key = os.environ.get(API_KEY_ENV)
    if not key:
        raise ConfigError(
            f"{API_KEY_ENV} environment variable is required. "
            "Set it in your .env file or environment."
        )
    return key


def resolve_query_config(
    request: AgentQueryConfig,
    agent_config: Optional[dict[str, Any]] = None
) -> AgentQueryConfig:
    """
    为查询请求填充默认值（model / max_turns / allowed_tools）

    Args:
        request: 原始请求
        agent_config: 配置中的 agent 段（缺省时使用内置默认值）

    Returns:
        填充默认值后的新请求对象
    """
    defaults = agent_config or DEFAULT_CONFIG["agent"]
    return replace(
        request,
        model=request.model or defaults.get("model") or DEFAULT_MODEL,
        max_turns=request.max_turns or defaults.get("max_turns") or DEFAULT_MAX_TURNS,
        allowed_tools=(
            request.allowed_tools
            if request.allowed_tools is not None
            else list(defaults.get("allowed_tools") or DEFAULT_ALLOWED_TOOLS)
        ),
    )


class ConfigManager:
    """统一的配置管理器"""

    # 子字段验证规则：(类型, 是否允许为空)
    AGENT_FIELDS = {
        "model": (str, False),
        "max_turns": (int, False),
        "allowed_tools": (list, False),
        "title_model": (str, False),
    }

    SESSIONS_FIELDS = {
        "strategy": (str, False),
        "base_dir": (str, False),
        "docker_image": (str, False),
        "docker_port": (int, False),
        "azure_pool_endpoint": (str, True),
        "azure_audience": (str, False),
        "retention_days": (int, False),
    }

    TRANSCRIPT_FIELDS = {
        "base_dir": (str, True),
        "queue_size": (int, False),
        "failure_policy": (str, False),
    }

    SERVER_FIELDS = {
        "host": (str, False),
        "port": (int, False),
    }

    LOGGING_FIELDS = {
        "level": (str, False),
        "file": (str, True),
    }

    VALID_FAILURE_POLICIES = ["log", "raise"]
    VALID_LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]

    def __init__(
        self,
        config_path: Optional[Path | str] = None,
        env_file: Optional[Path | str] = None
    ):
        """
        初始化配置管理器

        Args:
            config_path: 配置文件路径（默认读取 AGENT_BROKER_CONFIG 或 ./broker.yaml，不存在时只用默认值）
            env_file: .env 文件路径（默认 ./.env）
        """
        # 加载 .env 文件（如果存在），不覆盖已有环境变量
        env_path = Path(env_file) if env_file else Path.cwd() / ".env"
        if env_path.exists():
            load_dotenv(env_path)

        if config_path is None:
            config_path = os.environ.get(CONFIG_PATH_ENV) or CONFIG_FILE_NAME
        self.config_file = Path(config_path)

        self._config: dict[str, Any] | None = None

    def load_config(self) -> dict[str, Any]:
        """
        加载配置：默认值 <- 配置文件 <- 环境变量

        Returns:
            配置字典

        Raises:
            ConfigError: 配置加载失败
            ConfigValidationError: 配置验证失败
        """
        config = copy.deepcopy(DEFAULT_CONFIG)

        if self.config_file.exists():
            logger.info(f"加载配置文件: {self.config_file}")
            try:
                with open(self.config_file, "r", encoding="utf-8") as f:
                    file_config = yaml.safe_load(f) or {}
            except yaml.YAMLError as e:
                raise ConfigError(f"YAML 解析错误: {e}", str(self.config_file))
            except OSError as e:
                raise ConfigError(f"配置加载失败: {e}", str(self.config_file))

            if not isinstance(file_config, dict):
                raise ConfigError("配置文件顶层必须是字典", str(self.config_file))

            file_config = self._replace_env_vars(file_config)
            self._merge(config, file_config)
        else:
            logger.debug(f"未找到配置文件，使用默认配置: {self.config_file}")

        self._apply_env_overrides(config)
        self.validate_config(config)

        self._config = config
        logger.info(
            f"配置加载成功 (strategy={config['sessions']['strategy']}, "
            f"model={config['agent']['model']})"
        )
        return config

    def validate_config(self, config: dict[str, Any]) -> None:
        """
        验证配置字典

        Args:
            config: 配置字典

        Raises:
            ConfigValidationError: 配置验证失败
        """
        logger.debug("开始验证配置")

        self._validate_section(config, "agent", self.AGENT_FIELDS)
        self._validate_section(config, "sessions", self.SESSIONS_FIELDS)
        self._validate_section(config, "transcript", self.TRANSCRIPT_FIELDS)
        self._validate_section(config, "server", self.SERVER_FIELDS)
        self._validate_section(config, "logging", self.LOGGING_FIELDS)

        # 验证列表元素都是字符串
        for i, item in enumerate(config["agent"]["allowed_tools"]):
            if not isinstance(item, str):
                raise ConfigValidationError(
                    f"列表元素必须是字符串，实际为 {type(item).__name__}",
                    field=f"agent.allowed_tools[{i}]"
                )

        strategy = config["sessions"]["strategy"]
        valid_strategies = [s.value for s in SessionStrategy]
        if strategy not in valid_strategies:
            raise ConfigValidationError(
                f"无效的会话策略，有效值为: {', '.join(valid_strategies)}",
                field="sessions.strategy"
            )

        policy = config["transcript"]["failure_policy"]
        if policy not in self.VALID_FAILURE_POLICIES:
            raise ConfigValidationError(
                f"无效的失败策略，有效值为: {', '.join(self.VALID_FAILURE_POLICIES)}",
                field="transcript.failure_policy"
            )

        level = config["logging"]["level"].upper()
        if level not in self.VALID_LOG_LEVELS:
            raise ConfigValidationError(
                f"无效的日志级别，有效值为: {', '.join(self.VALID_LOG_LEVELS)}",
                field="logging.level"
            )

        # 验证数值范围
        for section, field in [
            ("agent", "max_turns"),
            ("sessions", "retention_days"),
            ("transcript", "queue_size"),
        ]:
            if config[section][field] < 1:
                raise ConfigValidationError(
                    f"{field} 必须大于 0",
                    field=f"{section}.{field}"
                )

        logger.debug("配置验证通过")

    # 属性访问器
    @property
    def config(self) -> dict[str, Any]:
        """获取已加载的配置（未加载时自动加载）"""
        if self._config is None:
            self.load_config()
        return self._config

    @property
    def agent(self) -> dict[str, Any]:
        return self.config["agent"]

    @property
    def sessions(self) -> dict[str, Any]:
        return self.config["sessions"]

    @property
    def transcript(self) -> dict[str, Any]:
        return self.config["transcript"]

    @property
    def server(self) -> dict[str, Any]:
        return self.config["server"]

    @property
    def transcript_dir(self) -> str:
        """会话记录目录（未单独配置时与执行环境目录相同）"""
        return self.transcript.get("base_dir") or self.sessions["base_dir"]

    # 私有方法
    def _merge(self, base: dict[str, Any], override: dict[str, Any]) -> None:
        """按 section 合并配置文件内容"""
        for section, values in override.items():
            if section not in base:
                logger.warning(f"忽略未知配置段: {section}")
                continue
            if not isinstance(values, dict):
                raise ConfigValidationError(
                    f"类型错误，期望 dict，实际为 {type(values).__name__}",
                    field=section
                )
            base[section].update(values)

    def _apply_env_overrides(self, config: dict[str, Any]) -> None:
        """使用环境变量覆盖配置"""
        for section, key, env_name, caster in ENV_OVERRIDES:
            raw = os.environ.get(env_name)
            if raw is None or raw == "":
                continue
            try:
                config[section][key] = caster(raw)
            except ValueError:
                raise ConfigValidationError(
                    f"环境变量 {env_name} 的值无效: {raw!r}",
                    field=f"{section}.{key}"
                )
            logger.debug(f"环境变量覆盖: {section}.{key} <- {env_name}")

    def _replace_env_vars(self, obj: Any) -> Any:
        """递归替换配置中的环境变量"""
        if isinstance(obj, dict):
            return {k: self._replace_env_vars(v) for k, v in obj.items()}
        elif isinstance(obj, list):
            return [self._replace_env_vars(item) for item in obj]
        elif isinstance(obj, str):
            return self._replace_env_var_in_string(obj)
        else:
            return obj

    def _replace_env_var_in_string(self, text: str) -> str:
        """替换字符串中的环境变量"""
        # 仅替换 ${VAR_NAME} 格式
        pattern = r'\$\{([A-Za-z_][A-Za-z0-9_]*)\}'
        text = re.sub(
            pattern,
            lambda m: os.environ.get(m.group(1), m.group(0)),
            text
        )
        return text

    def _validate_section(
        self,
        config: dict[str, Any],
        section: str,
        fields: dict[str, tuple]
    ) -> None:
        """验证单个配置段的字段类型"""
        values = config.get(section)
        if not isinstance(values, dict):
            raise ConfigValidationError("配置段必须是字典", field=section)

        for field, (expected_type, nullable) in fields.items():
            value = values.get(field)
            if value is None:
                if nullable:
                    continue
                raise ConfigValidationError("缺少必需字段", field=f"{section}.{field}")
            # bool 是 int 的子类，需要单独排除
            if isinstance(value, bool) and expected_type is int:
                raise ConfigValidationError(
                    f"类型错误，期望 int，实际为 bool",
                    field=f"{section}.{field}"
                )
            if not isinstance(value, expected_type):
                raise ConfigValidationError(
                    f"类型错误，期望 {expected_type.__name__}，实际为 {type(value).__name__}",
                    field=f"{section}.{field}"
                )
