"""
状态引擎

StatusCache 的唯一写入者。按 FIFO 顺序逐条处理队列中的更新：
1. 写入缓存
2. 同步保存快照（失败即致命）
3. 广播 update 消息

一条更新处理完才取下一条，所以缓存不需要加锁。
"""

import asyncio
import logging

from .broadcast import Broadcaster
from .models import StatusCache, StatusUpdate
from .protocol import update_message
from .store import PersistenceError, SnapshotStore

logger = logging.getLogger(__name__)


class StateEngine:
    """更新队列的唯一消费者"""

    def __init__(
        self,
        cache: StatusCache,
        store: SnapshotStore,
        broadcaster: Broadcaster,
        queue: "asyncio.Queue[StatusUpdate]",
    ):
        self.cache = cache
        self.store = store
        self.broadcaster = broadcaster
        self.queue = queue
        self.applied = 0

    async def process(self, update: StatusUpdate) -> None:
        """处理一条更新；快照写入失败时抛出 PersistenceError"""
        self.cache.apply(update)

        snapshot = self.cache.snapshot()
        await asyncio.to_thread(self.store.save, snapshot)

        self.applied += 1
        await self.broadcaster.publish(update_message(update))

    async def run(self):
        """
        运行消费循环

        只在 PersistenceError 时退出（向上抛出，由 main 终止进程）。
        """
        logger.info(f"Starting state engine (queue capacity={self.queue.maxsize})")

        while True:
            update = await self.queue.get()
            try:
                await self.process(update)
            except PersistenceError:
                logger.critical(
                    f"Snapshot write failed after applying {update!r}, stopping",
                    exc_info=True,
                )
                raise
            except asyncio.CancelledError:
                logger.info("State engine cancelled")
                raise
            finally:
                self.queue.task_done()
