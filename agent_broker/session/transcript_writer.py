"""异步会话记录写入器"""

import asyncio
from typing import Any, Awaitable, Callable, Optional, Tuple

from ..error_handling import TranscriptWriteError
from ..logging_config import get_logger
from .session_store import SessionStore, TranscriptEvent

logger = get_logger(__name__)

FAILURE_POLICIES = ("log", "raise")

_Operation = Tuple[str, Callable[..., Awaitable[Any]], tuple]


class TranscriptWriter:
    """
    异步会话记录写入器

    特性：
    - 所有写操作进入同一个有界队列，由单个后台任务按提交顺序执行
    - 队列满时提交方等待（背压）
    - 失败策略 log：记录日志后继续
    - 失败策略 raise：记录第一个失败，flush() / close() 时抛出 TranscriptWriteError
    - close() 时处理完剩余操作并停止
    """

    def __init__(
        self,
        store: SessionStore,
        queue_size: int = 1000,
        failure_policy: str = "log"
    ):
        """
        初始化 TranscriptWriter

        Args:
            store: 会话记录存储
            queue_size: 队列容量
            failure_policy: 失败策略（log / raise）
        """
        if failure_policy not in FAILURE_POLICIES:
            raise ValueError(f"无效的失败策略: {failure_policy}")

        self.store = store
        self.queue_size = queue_size
        self.failure_policy = failure_policy

        self._queue: Optional[asyncio.Queue] = None
        self._worker: Optional[asyncio.Task] = None
        self._failure: Optional[BaseException] = None
        self._stopped = False

    # ----- 提交操作 -----

    async def create(self, session_id: str) -> None:
        await self._submit("create", self.store.ensure_session, session_id)

    async def append_event(self, session_id: str, event: TranscriptEvent) -> None:
        await self._submit(f"append {event.type}", self.store.append_event, session_id, event)

    async def update_title(self, session_id: str, title: str) -> None:
        await self._submit("update_title", self.store.update_title, session_id, title)

    async def update_status(self, session_id: str, status: str) -> None:
        await self._submit("update_status", self.store.update_status, session_id, status)

    # ----- 生命周期 -----

    async def flush(self) -> None:
        """
        等待所有已提交的操作执行完毕

        Raises:
            TranscriptWriteError: raise 策略下存在失败的操作
        """
        if self._queue is not None:
            await self._queue.join()
        self._raise_pending_failure()

    async def close(self) -> None:
        """
        处理完剩余操作并停止后台任务

        此方法应在服务关闭时调用
        """
        if self._stopped:
            return

        try:
            if self._queue is not None:
                await self._queue.join()
        finally:
            self._stopped = True
            if self._worker:
                self._worker.cancel()
                try:
                    await self._worker
                except asyncio.CancelledError:
                    pass
                self._worker = None

        logger.info("TranscriptWriter 已停止")
        self._raise_pending_failure()

    # ----- 内部实现 -----

    async def _submit(self, name: str, func: Callable[..., Awaitable[Any]], *args: Any) -> None:
        if self._stopped:
            logger.warning(f"TranscriptWriter 已停止，丢弃操作: {name}")
            return

        self._ensure_worker()
        await self._queue.put((name, func, args))

    def _ensure_worker(self) -> None:
        """在当前事件循环中惰性创建队列和后台任务"""
        if self._queue is None:
            self._queue = asyncio.Queue(maxsize=self.queue_size)
        if self._worker is None or self._worker.done():
            self._worker = asyncio.create_task(self._run())

    async def _run(self) -> None:
        """后台任务：按顺序执行队列中的写操作"""
        while True:
            name, func, args = await self._queue.get()
            try:
                await func(*args)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"会话记录写入失败 ({name}): {e}")
                if self.failure_policy == "raise" and self._failure is None:
                    self._failure = e
            finally:
                self._queue.task_done()

    def _raise_pending_failure(self) -> None:
        if self._failure is not None:
            failure, self._failure = self._failure, None
            raise TranscriptWriteError(f"会话记录写入失败: {failure}") from failure
