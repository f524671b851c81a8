"""
错误处理模块

定义自定义异常类，用于 Agent Broker 中的错误处理
"""


class AgentBrokerError(Exception):
    """Agent Broker 基础异常类"""
    pass


class ConfigError(AgentBrokerError):
    """配置相关错误"""
    def __init__(self, message: str, config_path: str | None = None):
        self.config_path = config_path
        if config_path:
            message = f"配置错误 ({config_path}): {message}"
        super().__init__(message)


class ConfigValidationError(ConfigError):
    """配置验证错误"""
    def __init__(self, message: str, field: str | None = None):
        self.field = field
        if field:
            message = f"配置字段 '{field}' 验证失败: {message}"
        super().__init__(message)


class RequestValidationError(AgentBrokerError):
    """请求参数验证错误（在创建执行环境之前抛出）"""
    def __init__(self, message: str, field: str | None = None):
        self.field = field
        super().__init__(message)


class EnvironmentProvisionError(AgentBrokerError):
    """执行环境创建或检查失败"""
    def __init__(self, message: str, env_id: str | None = None):
        self.env_id = env_id
        if env_id:
            message = f"执行环境错误 ({env_id}): {message}"
        super().__init__(message)


class UnsupportedOperationError(AgentBrokerError):
    """当前会话策略不支持的操作"""
    def __init__(self, message: str, strategy: str | None = None):
        self.strategy = strategy
        super().__init__(message)


class SandboxExecutionError(AgentBrokerError):
    """远程沙箱执行失败"""
    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        timed_out: bool = False
    ):
        self.status_code = status_code
        self.timed_out = timed_out
        super().__init__(message)


class SessionNotFoundError(AgentBrokerError):
    """会话不存在"""
    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(f"Session not found: {session_id}")


class TranscriptWriteError(AgentBrokerError):
    """会话记录写入失败"""
    pass
