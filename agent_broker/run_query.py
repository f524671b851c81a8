"""
查询编排模块

驱动一个对话轮次通过 Claude Agent SDK：
- run_query(): 单次模式，消费完整个消息流后返回聚合结果
- stream_query(): 流式模式，边消费边产出领域事件，最后以 done 事件结束

两种模式共用同一个消费循环：原始消息在入口处经 decode_message() 解码，
之后只处理带类型的记录。消息流中的异常不在这里捕获，由调用方处理。
"""

from typing import Any, AsyncIterator, Callable, Dict, List, Optional

from claude_agent_sdk import AgentDefinition, ClaudeAgentOptions

from .config_manager import resolve_query_config
from .logging_config import get_logger
from .messages import AssistantRecord, PartialDeltaRecord, ResultRecord, decode_message
from .todos import empty_progress, extract_todos, get_todo_progress
from .types import (
    AgentQueryConfig,
    DomainEvent,
    DoneEvent,
    QueryResult,
    SessionEvent,
    TextDeltaEvent,
    TodoProgress,
    TodoUpdateEvent,
    ToolCall,
    ToolCallEvent,
    UsageEvent,
)
from .usage import UsageTracker

logger = get_logger(__name__)

QueryFn = Callable[..., AsyncIterator[Any]]


def _default_query_fn() -> QueryFn:
    from claude_agent_sdk import query
    return query


def build_agent_options(config: AgentQueryConfig, streaming: bool = False) -> ClaudeAgentOptions:
    """
    生成 ClaudeAgentOptions

    Args:
        config: 已填充默认值的查询参数
        streaming: 是否开启部分增量消息（流式模式）

    Returns:
        ClaudeAgentOptions 实例
    """
    options: Dict[str, Any] = {
        "model": config.model,
        "max_turns": config.max_turns,
        "allowed_tools": list(config.allowed_tools or []),
    }

    if streaming:
        options["include_partial_messages"] = True
    if config.cwd:
        options["cwd"] = config.cwd
    if config.system_prompt:
        options["system_prompt"] = config.system_prompt
    if config.resume_session_id:
        options["resume"] = config.resume_session_id
    if config.fork_session:
        options["fork_session"] = True
    if config.max_budget_usd:
        options["max_budget_usd"] = config.max_budget_usd
    if config.setting_sources:
        options["setting_sources"] = list(config.setting_sources)

    if config.agents:
        agents = {}
        for name, sub in config.agents.items():
            definition: Dict[str, Any] = {
                "description": sub.description,
                "prompt": sub.prompt,
            }
            if sub.tools is not None:
                definition["tools"] = list(sub.tools)
            if sub.disallowed_tools is not None:
                definition["disallowedTools"] = list(sub.disallowed_tools)
            if sub.model:
                definition["model"] = sub.model
            if sub.max_turns is not None:
                definition["maxTurns"] = sub.max_turns
            if sub.skills is not None:
                definition["skills"] = list(sub.skills)
            agents[name] = AgentDefinition(**definition)
        options["agents"] = agents

    return ClaudeAgentOptions(**options)


class _TurnState:
    """单个轮次的累积状态"""

    def __init__(self):
        self.tracker = UsageTracker()
        self.text = ""
        self.session_id: Optional[str] = None
        self.stop_reason: Optional[str] = None
        self.todos: TodoProgress = empty_progress()
        self.tool_calls: List[ToolCall] = []

    def to_result(self) -> QueryResult:
        return QueryResult(
            text=self.text,
            session_id=self.session_id,
            stop_reason=self.stop_reason,
            usage=self.tracker.get_stats(),
            todos=self.todos,
            tool_calls=list(self.tool_calls),
        )


def _start_query(
    config: AgentQueryConfig,
    streaming: bool,
    query_fn: Optional[QueryFn],
    agent_config: Optional[Dict[str, Any]],
) -> AsyncIterator[Any]:
    resolved = resolve_query_config(config, agent_config)
    options = build_agent_options(resolved, streaming=streaming)
    logger.debug(
        f"启动查询 (model={resolved.model}, max_turns={resolved.max_turns}, "
        f"resume={resolved.resume_session_id}, streaming={streaming})"
    )
    fn = query_fn or _default_query_fn()
    return fn(prompt=resolved.prompt, options=options)


async def run_query(
    config: AgentQueryConfig,
    query_fn: Optional[QueryFn] = None,
    agent_config: Optional[Dict[str, Any]] = None,
) -> QueryResult:
    """
    单次查询：消费完整个消息流后返回聚合结果

    Args:
        config: 查询参数
        query_fn: SDK query 函数（测试时可替换）
        agent_config: 配置中的 agent 段（默认值来源）

    Returns:
        QueryResult

    Raises:
        消息流中的任何异常都会原样抛出
    """
    state = _TurnState()

    async for message in _start_query(config, False, query_fn, agent_config):
        record = decode_message(message)
        if record.session_id:
            state.session_id = record.session_id

        if isinstance(record, AssistantRecord):
            state.text += record.text
            if record.message_id:
                state.tracker.track(record.message_id, record.usage)
            state.tool_calls.extend(record.tool_calls)

            todos = extract_todos(record.content)
            if todos is not None:
                state.todos = get_todo_progress(todos)

        elif isinstance(record, ResultRecord):
            state.stop_reason = record.stop_reason
            if record.usage:
                state.tracker.set_totals(record.usage)

    result = state.to_result()
    logger.info(
        f"查询完成 (session={result.session_id}, stop_reason={result.stop_reason}, "
        f"tool_calls={len(result.tool_calls)})"
    )
    return result


async def stream_query(
    config: AgentQueryConfig,
    query_fn: Optional[QueryFn] = None,
    agent_config: Optional[Dict[str, Any]] = None,
) -> AsyncIterator[DomainEvent]:
    """
    流式查询：边消费消息流边产出领域事件

    事件规则：
    - session: 会话 ID 首次出现或变化时产出
    - text_delta: 只来自部分增量消息，完整 assistant 消息的文本不再重复产出
    - tool_call / todo_update: 按 assistant 消息中出现的顺序产出
    - usage: 在同一条消息的其他派生事件之后产出；result 消息覆盖总量后再产出一次
    - done: 总是最后产出且只产出一次

    Args:
        config: 查询参数
        query_fn: SDK query 函数（测试时可替换）
        agent_config: 配置中的 agent 段（默认值来源）

    Yields:
        领域事件
    """
    state = _TurnState()

    async for message in _start_query(config, True, query_fn, agent_config):
        record = decode_message(message)
        if record.session_id and record.session_id != state.session_id:
            state.session_id = record.session_id
            yield SessionEvent(session_id=record.session_id)

        if isinstance(record, PartialDeltaRecord):
            if record.text:
                state.text += record.text
                yield TextDeltaEvent(text=record.text)
            continue

        if isinstance(record, AssistantRecord):
            for tool_call in record.tool_calls:
                state.tool_calls.append(tool_call)
                yield ToolCallEvent(tool_call=tool_call)

            todos = extract_todos(record.content)
            if todos is not None:
                state.todos = get_todo_progress(todos)
                yield TodoUpdateEvent(todos=state.todos)

            if record.message_id:
                state.tracker.track(record.message_id, record.usage)
                yield UsageEvent(usage=state.tracker.get_stats())

        elif isinstance(record, ResultRecord):
            state.stop_reason = record.stop_reason
            # result 消息携带整个查询的权威用量
            if record.usage:
                state.tracker.set_totals(record.usage)
                yield UsageEvent(usage=state.tracker.get_stats())

    yield DoneEvent(result=state.to_result())
