"""
应用上下文

启动时构造一次，把配置、缓存、队列、连接登记等组件显式传给需要它们的地方，
不使用模块级全局单例。
"""

import asyncio
from dataclasses import dataclass

from .broadcast import Broadcaster
from .config import AppConfig
from .connections import ConnectionRegistry
from .engine import StateEngine
from .models import StatusCache, StatusUpdate
from .protocol import OutboundMessage, hello_message
from .store import SnapshotStore
from .validator import UpdateValidator


@dataclass
class AppContext:
    config: AppConfig
    cache: StatusCache
    store: SnapshotStore
    queue: "asyncio.Queue[StatusUpdate]"
    registry: ConnectionRegistry
    broadcaster: Broadcaster
    engine: StateEngine
    validator: UpdateValidator

    def hello(self) -> OutboundMessage:
        """当前完整状态的 hello 消息"""
        return hello_message(self.config.topology, self.cache.snapshot())


def build_context(config: AppConfig) -> AppContext:
    """
    组装所有组件

    从快照文件加载状态；快照无法解码时抛出 PersistenceError。
    """
    store = SnapshotStore(config.state.path)
    cache = store.load(config.topology)

    queue: "asyncio.Queue[StatusUpdate]" = asyncio.Queue(maxsize=config.webhook.queue_size)
    registry = ConnectionRegistry(send_timeout=config.broadcast.send_timeout)
    broadcaster = Broadcaster(registry)

    return AppContext(
        config=config,
        cache=cache,
        store=store,
        queue=queue,
        registry=registry,
        broadcaster=broadcaster,
        engine=StateEngine(cache, store, broadcaster, queue),
        validator=UpdateValidator(
            topology=config.topology,
            key=config.webhook.key,
            allowed_ips=config.webhook.allowed_ips,
            queue=queue,
        ),
    )
