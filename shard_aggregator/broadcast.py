"""
广播

消息只编码一次，然后交给 ConnectionRegistry 推送给所有在线连接。
StateEngine（每次提交更新）和心跳任务共用这一条推送路径。
"""

import logging

from .connections import ConnectionRegistry
from .protocol import OutboundMessage

logger = logging.getLogger(__name__)


class Broadcaster:
    """广播引擎"""

    def __init__(self, registry: ConnectionRegistry):
        self.registry = registry

    async def publish(self, message: OutboundMessage) -> int:
        """推送消息，返回成功送达的连接数"""
        payload = message.encode()
        delivered = await self.registry.fan_out(payload)
        logger.debug(f"Published {message.op.value} to {delivered} connection(s)")
        return delivered
