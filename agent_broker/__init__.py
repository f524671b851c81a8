"""
Agent Broker

基于 Claude Agent SDK 的 Agent 查询服务：
为每个会话提供隔离的执行环境，流式输出结构化事件（含 AG-UI 协议），并持久化会话记录。
"""

__version__ = "0.1.0"

# 导出主类
from .agent_system import AgentSystem, PreparedTurn

# 导出查询编排
from .run_query import build_agent_options, run_query, stream_query
from .ag_ui_stream import AgUiTranscoder, SseEvent, stream_as_ag_ui

# 导出核心组件
from .config_manager import ConfigManager, get_api_key, resolve_query_config
from .usage import UsageTracker
from .workspace import EnvironmentManager, create_environment_manager
from .session import SessionStore, TranscriptWriter, generate_session_title

# 导出数据类型
from .types import (
    AgentQueryConfig,
    QueryResult,
    SessionStrategy,
    StopReason,
    SubagentConfig,
    TodoItem,
    TodoProgress,
    TodoStatus,
    ToolCall,
    UsageStats,
)

# 导出错误类
from .error_handling import (
    AgentBrokerError,
    ConfigError,
    ConfigValidationError,
    RequestValidationError,
    EnvironmentProvisionError,
    UnsupportedOperationError,
    SandboxExecutionError,
    SessionNotFoundError,
    TranscriptWriteError,
)

# 导出日志配置
from .logging_config import setup_logger, get_logger, set_log_level, configure_logging

__all__ = [
    # 版本
    "__version__",
    # 主类
    "AgentSystem",
    "PreparedTurn",
    # 查询编排
    "run_query",
    "stream_query",
    "build_agent_options",
    "stream_as_ag_ui",
    "AgUiTranscoder",
    "SseEvent",
    # 核心组件
    "ConfigManager",
    "get_api_key",
    "resolve_query_config",
    "UsageTracker",
    "EnvironmentManager",
    "create_environment_manager",
    "SessionStore",
    "TranscriptWriter",
    "generate_session_title",
    # 数据类型
    "AgentQueryConfig",
    "QueryResult",
    "SessionStrategy",
    "StopReason",
    "SubagentConfig",
    "TodoItem",
    "TodoProgress",
    "TodoStatus",
    "ToolCall",
    "UsageStats",
    # 错误类
    "AgentBrokerError",
    "ConfigError",
    "ConfigValidationError",
    "RequestValidationError",
    "EnvironmentProvisionError",
    "UnsupportedOperationError",
    "SandboxExecutionError",
    "SessionNotFoundError",
    "TranscriptWriteError",
    # 日志
    "setup_logger",
    "get_logger",
    "set_log_level",
    "configure_logging",
]
