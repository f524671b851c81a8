"""
核心数据类型

用量统计、Todo 进度、工具调用、查询请求/结果以及流式领域事件。
对外输出（JSON / SSE）统一使用 camelCase 字段名。
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from .error_handling import RequestValidationError


# ============================================
# Enums
# ============================================


class StopReason(str, Enum):
    """SDK 返回的停止原因（封闭枚举，null 表示未知）"""

    END_TURN = "end_turn"
    MAX_TOKENS = "max_tokens"
    REFUSAL = "refusal"
    TOOL_USE = "tool_use"
    STOP_SEQUENCE = "stop_sequence"


class TodoStatus(str, Enum):
    """Todo 条目状态"""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class SessionStrategy(str, Enum):
    """执行环境隔离策略"""

    LOCAL = "local"
    DOCKER = "docker"
    AZURE = "azure"


# ============================================
# Usage / Todo / Tool call
# ============================================


@dataclass
class UsageStats:
    """Token 用量统计"""

    input_tokens: int = 0
    output_tokens: int = 0
    cache_read_input_tokens: int = 0
    cache_creation_input_tokens: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {
            "inputTokens": self.input_tokens,
            "outputTokens": self.output_tokens,
            "cacheReadInputTokens": self.cache_read_input_tokens,
            "cacheCreationInputTokens": self.cache_creation_input_tokens,
        }


@dataclass
class TodoItem:
    """TodoWrite 工具调用中的单个条目"""

    content: str
    status: TodoStatus = TodoStatus.PENDING

    def to_dict(self) -> Dict[str, Any]:
        return {"content": self.content, "status": self.status.value}


@dataclass
class TodoProgress:
    """Todo 进度快照（每次从最新列表整体重算）"""

    items: List[TodoItem] = field(default_factory=list)
    total: int = 0
    completed: int = 0
    in_progress: int = 0
    pending: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "todos": [item.to_dict() for item in self.items],
            "total": self.total,
            "completed": self.completed,
            "inProgress": self.in_progress,
            "pending": self.pending,
        }


@dataclass
class ToolCall:
    """从 SDK 消息中归一化出的工具调用"""

    id: str
    name: str
    input: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "name": self.name, "input": self.input}


# ============================================
# Query request / result
# ============================================


@dataclass
class SubagentConfig:
    """子代理定义（对应 SDK 的 AgentDefinition）"""

    description: str
    prompt: str
    tools: Optional[List[str]] = None
    disallowed_tools: Optional[List[str]] = None
    model: Optional[str] = None
    max_turns: Optional[int] = None
    skills: Optional[List[str]] = None


@dataclass
class AgentQueryConfig:
    """
    一次对话轮次的请求参数

    Attributes:
        prompt: 发送给 agent 的提示词（必需）
        model: 模型选择（sonnet / opus / haiku）
        max_turns: 最大轮次
        resume_session_id: 要恢复的会话 ID
        fork_session: 是否从已有会话分叉
        cwd: 工作目录覆盖（指定后不再分配执行环境）
        allowed_tools: 允许使用的工具
        agents: 子代理定义
        system_prompt: 系统提示词覆盖
        max_budget_usd: 预算上限（美元）
        setting_sources: 需要加载的文件系统设置来源
    """

    prompt: str
    model: Optional[str] = None
    max_turns: Optional[int] = None
    resume_session_id: Optional[str] = None
    fork_session: bool = False
    cwd: Optional[str] = None
    allowed_tools: Optional[List[str]] = None
    agents: Optional[Dict[str, SubagentConfig]] = None
    system_prompt: Optional[str] = None
    max_budget_usd: Optional[float] = None
    setting_sources: Optional[List[str]] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AgentQueryConfig":
        """
        从请求体（camelCase 字段）构建查询参数

        Args:
            data: 请求 JSON

        Returns:
            AgentQueryConfig 实例

        Raises:
            RequestValidationError: 缺少 prompt 或字段类型错误
        """
        if not isinstance(data, dict):
            raise RequestValidationError("request body must be a JSON object")

        prompt = data.get("prompt")
        if not isinstance(prompt, str) or not prompt.strip():
            raise RequestValidationError("prompt is required", field="prompt")

        agents = None
        raw_agents = _typed(data, "agents", dict)
        if raw_agents is not None:
            agents = {}
            for name, definition in raw_agents.items():
                if not isinstance(definition, dict):
                    raise RequestValidationError(
                        f"agent definition must be an object: {name}", field="agents"
                    )
                description = definition.get("description")
                agent_prompt = definition.get("prompt")
                if not isinstance(description, str) or not isinstance(agent_prompt, str):
                    raise RequestValidationError(
                        f"agent '{name}' requires description and prompt", field="agents"
                    )
                agents[name] = SubagentConfig(
                    description=description,
                    prompt=agent_prompt,
                    tools=_typed(definition, "tools", list),
                    disallowed_tools=_typed(definition, "disallowedTools", list),
                    model=_typed(definition, "model", str),
                    max_turns=_typed(definition, "maxTurns", int),
                    skills=_typed(definition, "skills", list),
                )

        budget = data.get("maxBudgetUsd")
        if budget is not None and (isinstance(budget, bool) or not isinstance(budget, (int, float))):
            raise RequestValidationError("maxBudgetUsd must be a number", field="maxBudgetUsd")

        return cls(
            prompt=prompt,
            model=_typed(data, "model", str),
            max_turns=_typed(data, "maxTurns", int),
            resume_session_id=_typed(data, "resumeSessionId", str),
            fork_session=bool(_typed(data, "forkSession", bool)),
            cwd=_typed(data, "cwd", str),
            allowed_tools=_typed(data, "allowedTools", list),
            agents=agents,
            system_prompt=_typed(data, "systemPrompt", str),
            max_budget_usd=float(budget) if budget is not None else None,
            setting_sources=_typed(data, "settingSources", list),
        )


def _typed(data: Dict[str, Any], key: str, expected: type) -> Any:
    """读取可选字段并校验类型（None 视为未提供）"""
    value = data.get(key)
    if value is None:
        return None
    # bool 是 int 的子类
    if expected is int and isinstance(value, bool):
        raise RequestValidationError(f"{key} must be an integer", field=key)
    if not isinstance(value, expected):
        raise RequestValidationError(
            f"{key} must be of type {expected.__name__}", field=key
        )
    return value


@dataclass
class QueryResult:
    """单次（非流式）查询的聚合结果"""

    text: str = ""
    session_id: Optional[str] = None
    stop_reason: Optional[str] = None
    usage: UsageStats = field(default_factory=UsageStats)
    todos: TodoProgress = field(default_factory=TodoProgress)
    tool_calls: List[ToolCall] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "text": self.text,
            "sessionId": self.session_id,
            "stopReason": self.stop_reason,
            "usage": self.usage.to_dict(),
            "todos": self.todos.to_dict(),
            "toolCalls": [tc.to_dict() for tc in self.tool_calls],
        }


# ============================================
# Execution environments
# ============================================


@dataclass
class ExecutionEnvironment:
    """
    执行环境

    Attributes:
        env_id: 环境 ID（不透明字符串）
        cwd: 工作上下文（目录路径 / 容器内目录 / 远程会话目录）
    """

    env_id: str
    cwd: str


@dataclass
class FileUpload:
    """待写入执行环境的上传文件"""

    name: str
    content: bytes


@dataclass
class IngestedFile:
    """写入执行环境后的文件信息"""

    name: str
    path: str
    size: int

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "path": self.path, "size": self.size}


# ============================================
# Domain events (streaming)
# ============================================


@dataclass
class TextDeltaEvent:
    text: str
    type: str = field(default="text_delta", init=False)

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type, "text": self.text}


@dataclass
class ToolCallEvent:
    tool_call: ToolCall
    type: str = field(default="tool_call", init=False)

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type, "toolCall": self.tool_call.to_dict()}


@dataclass
class TodoUpdateEvent:
    todos: TodoProgress
    type: str = field(default="todo_update", init=False)

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type, "todos": self.todos.to_dict()}


@dataclass
class UsageEvent:
    usage: UsageStats
    type: str = field(default="usage", init=False)

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type, "usage": self.usage.to_dict()}


@dataclass
class SessionEvent:
    session_id: str
    type: str = field(default="session", init=False)

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type, "sessionId": self.session_id}


@dataclass
class DoneEvent:
    result: QueryResult
    type: str = field(default="done", init=False)

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type, "result": self.result.to_dict()}


@dataclass
class ErrorEvent:
    error: str
    type: str = field(default="error", init=False)

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type, "error": self.error}


DomainEvent = Union[
    TextDeltaEvent,
    ToolCallEvent,
    TodoUpdateEvent,
    UsageEvent,
    SessionEvent,
    DoneEvent,
    ErrorEvent,
]
