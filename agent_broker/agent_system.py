"""
Agent 系统主类

整合所有组件，提供统一的接口：
- 配置（ConfigManager）
- 执行环境管理（EnvironmentManager，按策略创建，由本对象持有）
- 会话记录（SessionStore + TranscriptWriter）
- 查询编排（run_query / stream_query）与 AG-UI 协议转换
"""

import asyncio
from dataclasses import dataclass, field, replace
from functools import wraps
from typing import Any, AsyncIterator, Dict, List, Optional, Set

from .ag_ui_stream import SseEvent, stream_as_ag_ui
from .config_manager import ConfigManager
from .error_handling import AgentBrokerError, SessionNotFoundError
from .logging_config import configure_logging, get_logger
from .run_query import QueryFn, run_query, stream_query
from .session import (
    SessionMetadata,
    SessionStore,
    TranscriptEvent,
    TranscriptWriter,
    generate_session_title,
)
from .types import (
    AgentQueryConfig,
    DomainEvent,
    DoneEvent,
    ErrorEvent,
    ExecutionEnvironment,
    FileUpload,
    IngestedFile,
    QueryResult,
    SessionEvent,
    TextDeltaEvent,
    ToolCallEvent,
)
from .workspace import EnvironmentManager, create_environment_manager, validate_uploads

logger = get_logger(__name__)

FILE_CONTEXT_TEMPLATE = "\n\nThe following files have been uploaded to your working directory: {names}"


@dataclass
class PreparedTurn:
    """
    已准备好执行的对话轮次

    Attributes:
        config: 最终查询参数（cwd 已指向执行环境，prompt 已附加上传文件说明）
        user_prompt: 用户原始提示词（用于会话记录和标题生成）
        environment: 执行环境（请求显式指定 cwd 时为 None）
        ingested_files: 已写入执行环境的文件
    """
    config: AgentQueryConfig
    user_prompt: str
    environment: Optional[ExecutionEnvironment] = None
    ingested_files: List[IngestedFile] = field(default_factory=list)


def require_initialized(func):
    """装饰器：确保系统已初始化"""
    @wraps(func)
    def wrapper(self, *args, **kwargs):
        if not self._initialized:
            raise AgentBrokerError("系统未初始化，请先调用 initialize()")
        return func(self, *args, **kwargs)
    return wrapper


class AgentSystem:
    """Agent Broker 系统"""

    def __init__(
        self,
        config_manager: Optional[ConfigManager] = None,
        environment_manager: Optional[EnvironmentManager] = None,
        session_store: Optional[SessionStore] = None,
        query_fn: Optional[QueryFn] = None,
        generate_titles: bool = True
    ):
        """
        初始化 Agent 系统

        Args:
            config_manager: 配置管理器（默认读取 broker.yaml / 环境变量）
            environment_manager: 执行环境管理器（默认按配置的策略创建）
            session_store: 会话记录存储（默认使用配置的目录）
            query_fn: SDK query 函数（测试时可替换）
            generate_titles: 是否在首轮对话后自动生成会话标题
        """
        self.config_manager = config_manager or ConfigManager()
        self.environment_manager = environment_manager
        self.session_store = session_store
        self.transcript_writer: Optional[TranscriptWriter] = None
        self.generate_titles = generate_titles

        self._query_fn = query_fn
        self._config: Dict[str, Any] = {}
        self._title_tasks: Set[asyncio.Task] = set()
        self._initialized = False

    async def initialize(self) -> None:
        """
        初始化系统（加载配置、创建执行环境管理器和会话记录组件）

        Raises:
            ConfigError: 配置错误
        """
        if self._initialized:
            logger.warning("系统已初始化，跳过")
            return

        logger.info("开始初始化系统")

        # 1. 加载配置
        self._config = self.config_manager.load_config()
        logging_config = self._config["logging"]
        configure_logging(logging_config["level"], logging_config.get("file"))

        # 2. 执行环境管理器
        if self.environment_manager is None:
            self.environment_manager = create_environment_manager(config=self._config["sessions"])

        # 3. 会话记录
        if self.session_store is None:
            self.session_store = SessionStore(self.config_manager.transcript_dir)
        transcript_config = self._config["transcript"]
        self.transcript_writer = TranscriptWriter(
            self.session_store,
            queue_size=transcript_config["queue_size"],
            failure_policy=transcript_config["failure_policy"],
        )

        self._initialized = True
        logger.info(
            f"系统初始化完成 (strategy={self.environment_manager.strategy.value}, "
            f"transcripts={self.session_store.base_dir})"
        )

    @property
    def config(self) -> Dict[str, Any]:
        return self._config

    # ============================================
    # Turns
    # ============================================

    @require_initialized
    async def query(self, request: AgentQueryConfig) -> QueryResult:
        """
        单次查询：准备执行环境，运行完整个轮次后返回聚合结果

        Args:
            request: 查询参数

        Returns:
            QueryResult

        Raises:
            消息流中的异常原样抛出（已完成的环境操作不会回滚）
        """
        turn = await self.prepare_turn(request)
        result = await run_query(turn.config, query_fn=self._query_fn, agent_config=self._config["agent"])

        # SDK 返回会话 ID 后建立映射，后续带 resume_session_id 的查询复用同一环境
        if result.session_id and turn.environment is not None:
            self.environment_manager.associate(result.session_id, turn.environment.env_id)

        return result

    @require_initialized
    async def prepare_turn(
        self,
        request: AgentQueryConfig,
        files: Optional[List[FileUpload]] = None
    ) -> PreparedTurn:
        """
        准备一个对话轮次：校验上传文件，获取执行环境，写入文件

        请求显式指定 cwd 时跳过执行环境管理（不建立映射，不写入文件）。

        Raises:
            RequestValidationError: 上传文件不合法（在创建执行环境之前抛出）
            EnvironmentProvisionError: 执行环境创建失败
            UnsupportedOperationError: 当前策略不支持写入文件
        """
        files = files or []
        if files:
            validate_uploads(files)

        if request.cwd:
            if files:
                logger.warning(f"请求指定了 cwd，忽略 {len(files)} 个上传文件")
            return PreparedTurn(config=request, user_prompt=request.prompt)

        environment = await self.environment_manager.prepare(request.resume_session_id)

        ingested: List[IngestedFile] = []
        prompt = request.prompt
        if files:
            ingested = await self.environment_manager.ingest_files(environment.env_id, files)
            names = ", ".join(f.name for f in ingested)
            prompt = prompt + FILE_CONTEXT_TEMPLATE.format(names=names)

        return PreparedTurn(
            config=replace(request, cwd=environment.cwd, prompt=prompt),
            user_prompt=request.prompt,
            environment=environment,
            ingested_files=ingested,
        )

    @require_initialized
    async def stream_turn(self, turn: PreparedTurn) -> AsyncIterator[DomainEvent]:
        """
        流式执行一个轮次并记录会话

        消息流失败时产出一个 error 事件作为结束信号，已产出的事件不会撤回。

        Yields:
            领域事件
        """
        try:
            async for event in self._recorded_stream(turn):
                yield event
        except Exception as e:
            logger.error(f"流式查询失败: {e}")
            yield ErrorEvent(error=str(e) or "Unknown error")

    @require_initialized
    def stream_turn_as_ag_ui(
        self,
        turn: PreparedTurn,
        thread_id: str,
        run_id: str,
        message_id: Optional[str] = None
    ) -> AsyncIterator[SseEvent]:
        """流式执行一个轮次并转换为 AG-UI 协议事件（失败时以 RUN_ERROR 结束）"""
        return stream_as_ag_ui(self._recorded_stream(turn), thread_id, run_id, message_id)

    # ============================================
    # Environments
    # ============================================

    @require_initialized
    async def upload_files(self, session_id: str, files: List[FileUpload]) -> List[IngestedFile]:
        """
        向已有会话的执行环境写入文件

        Raises:
            SessionNotFoundError: 会话没有关联的执行环境
            RequestValidationError: 上传文件不合法
        """
        env_id = self.environment_manager.lookup(session_id)
        if env_id is None:
            raise SessionNotFoundError(session_id)
        validate_uploads(files)
        return await self.environment_manager.ingest_files(env_id, files)

    @require_initialized
    async def destroy_environment(self, session_id: str) -> None:
        """释放会话的执行环境（幂等）"""
        await self.environment_manager.destroy(session_id)

    # ============================================
    # Transcripts
    # ============================================

    @require_initialized
    async def list_sessions(self) -> List[SessionMetadata]:
        return await self.session_store.list_sessions()

    @require_initialized
    async def get_session(self, session_id: str) -> Optional[SessionMetadata]:
        return await self.session_store.get_session(session_id)

    @require_initialized
    async def get_session_events(self, session_id: str) -> List[TranscriptEvent]:
        """
        获取会话的全部事件

        Raises:
            SessionNotFoundError: 会话不存在
        """
        if await self.session_store.get_session(session_id) is None:
            raise SessionNotFoundError(session_id)
        return await self.session_store.get_events(session_id)

    async def close(self) -> None:
        """
        清理资源：取消标题生成任务，写完会话记录，关闭执行环境管理器

        应该在应用程序关闭时调用
        """
        if not self._initialized:
            return

        logger.info("清理 AgentSystem 资源...")

        for task in list(self._title_tasks):
            task.cancel()
        if self._title_tasks:
            await asyncio.gather(*self._title_tasks, return_exceptions=True)
        self._title_tasks.clear()

        try:
            await self.transcript_writer.close()
        except AgentBrokerError as e:
            logger.error(f"关闭会话记录写入器失败: {e}")

        await self.environment_manager.close()

        self._initialized = False
        logger.info("AgentSystem 资源清理完成")

    # ============================================
    # Internals
    # ============================================

    async def _recorded_stream(self, turn: PreparedTurn) -> AsyncIterator[DomainEvent]:
        """
        运行 stream_query 并按因果顺序记录会话：
        user.message（首次得到会话 ID 时）-> tool.call* -> assistant.message -> session.done
        """
        writer = self.transcript_writer
        session_id: Optional[str] = turn.config.resume_session_id
        user_recorded = False
        full_text = ""

        async def on_session(sid: str) -> None:
            nonlocal session_id, user_recorded
            session_id = sid
            # 在首个 session 事件时关联，而不是轮次成功结束后：
            # 轮次随后失败时 SDK 会话已存在，恢复该会话仍应回到同一个环境
            if turn.environment is not None:
                self.environment_manager.associate(sid, turn.environment.env_id)
            if not user_recorded:
                await writer.create(sid)
                await writer.append_event(sid, TranscriptEvent(
                    type="user.message",
                    data={"content": turn.user_prompt},
                ))
                user_recorded = True

        async for event in stream_query(
            turn.config,
            query_fn=self._query_fn,
            agent_config=self._config["agent"]
        ):
            if isinstance(event, SessionEvent):
                await on_session(event.session_id)

            elif isinstance(event, TextDeltaEvent):
                full_text += event.text

            elif isinstance(event, ToolCallEvent) and session_id:
                await writer.append_event(session_id, TranscriptEvent(
                    type="tool.call",
                    data={"toolCall": event.tool_call.to_dict()},
                ))

            elif isinstance(event, DoneEvent):
                # done 事件可能携带此前未出现过的会话 ID
                if not user_recorded and event.result.session_id:
                    await on_session(event.result.session_id)

                if session_id:
                    await writer.append_event(session_id, TranscriptEvent(
                        type="assistant.message",
                        data={"content": full_text},
                    ))
                    await writer.append_event(session_id, TranscriptEvent(
                        type="session.done",
                        data={"stopReason": event.result.stop_reason},
                    ))
                    if writer.failure_policy == "raise":
                        await writer.flush()
                    self._schedule_title(session_id, turn.user_prompt, full_text)

            yield event

    def _schedule_title(self, session_id: str, user_prompt: str, response: str) -> None:
        """后台生成会话标题（仅当会话还没有标题时）"""
        if not self.generate_titles:
            return
        task = asyncio.create_task(self._generate_title(session_id, user_prompt, response))
        self._title_tasks.add(task)
        task.add_done_callback(self._title_tasks.discard)

    async def _generate_title(self, session_id: str, user_prompt: str, response: str) -> None:
        try:
            await self.transcript_writer.flush()
            meta = await self.session_store.get_session(session_id)
            if meta is None or meta.title:
                return

            title = await generate_session_title(
                user_prompt,
                response,
                model=self._config["agent"]["title_model"],
                query_fn=self._query_fn,
                agent_config=self._config["agent"],
            )
            if title:
                await self.transcript_writer.update_title(session_id, title)
                logger.info(f"会话标题已生成: {session_id} -> {title}")
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"生成会话标题失败 ({session_id}): {e}")

    def __repr__(self) -> str:
        if self._initialized:
            return (
                f"AgentSystem(strategy='{self.environment_manager.strategy.value}', "
                f"transcripts='{self.session_store.base_dir}')"
            )
        return "AgentSystem(uninitialized)"
