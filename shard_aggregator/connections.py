"""
前端连接登记

对连接集合的读写（新增、移除、复制推送列表）都在同一把 asyncio.Lock 内完成，
推送本身在锁外进行。
移除采用“与末尾交换再截断”，O(1)，因此连接遍历顺序不固定，不能依赖。
"""

import asyncio
import logging
import uuid
from typing import Callable, Dict, List, Optional

from fastapi import WebSocket

from .protocol import OutboundMessage

logger = logging.getLogger(__name__)


class ObserverConnection:
    """单个前端 WebSocket 会话的句柄"""

    def __init__(self, websocket: WebSocket):
        self.id = str(uuid.uuid4())[:8]
        self._websocket = websocket
        client = websocket.client
        self.remote = f"{client.host}:{client.port}" if client else "unknown"
        # 心跳和更新可能同时推送到同一连接
        self._send_lock = asyncio.Lock()

    async def send_text(self, payload: str) -> None:
        async with self._send_lock:
            await self._websocket.send_text(payload)

    async def close(self, code: int = 1000) -> None:
        await self._websocket.close(code=code)

    def __repr__(self) -> str:
        return f"<ObserverConnection {self.id} {self.remote}>"


class ConnectionRegistry:
    """
    当前在线连接集合

    - add: 登记并立即发送 hello（完整状态），新连接不会拿到过期数据
    - remove: 移除并关闭连接，同一连接只会被移除一次
    - fan_out: 把已编码的消息发给所有连接，失败的连接被移除
    """

    def __init__(self, send_timeout: float = 2.0):
        self.send_timeout = send_timeout
        self._connections: List[ObserverConnection] = []
        self._positions: Dict[int, int] = {}
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._connections)

    def __contains__(self, conn: object) -> bool:
        return id(conn) in self._positions

    async def add(self, conn, hello: Callable[[], OutboundMessage]) -> bool:
        """
        登记连接并发送 hello

        hello 在锁内生成，保证它和随后的广播之间不会漏掉更新。
        发送失败时撤销登记，返回 False。
        """
        async with self._lock:
            self._positions[id(conn)] = len(self._connections)
            self._connections.append(conn)

            try:
                await self._send(conn, hello().encode())
            except Exception as e:
                logger.info(f"Hello to {conn!r} failed: {e!r}")
                self._remove_locked(conn)
                await self._close(conn, code=1011)
                return False

        logger.info(f"{conn!r} opened and saluted ({len(self._connections)} active)")
        return True

    async def remove(self, conn, code: int = 1000) -> bool:
        """移除连接；已经不在集合中时返回 False"""
        async with self._lock:
            removed = self._remove_locked(conn)
        if removed:
            await self._close(conn, code=code)
            logger.info(f"{conn!r} closed ({len(self._connections)} active)")
        return removed

    async def fan_out(self, payload: str) -> int:
        """
        推送一条已编码消息

        锁内只复制连接列表，发送在锁外并发进行，一个卡住的连接不会阻塞其他推送；
        返回成功送达的连接数。
        """
        async with self._lock:
            connections = list(self._connections)

        results = await asyncio.gather(
            *(self._send(conn, payload) for conn in connections),
            return_exceptions=True,
        )

        delivered = 0
        failed = []
        async with self._lock:
            for conn, result in zip(connections, results):
                if not isinstance(result, BaseException):
                    delivered += 1
                    continue
                logger.info(f"Delivery to {conn!r} failed: {result!r}")
                if self._remove_locked(conn):
                    failed.append(conn)

        for conn in failed:
            await self._close(conn, code=1011)

        return delivered

    def _remove_locked(self, conn) -> bool:
        index: Optional[int] = self._positions.pop(id(conn), None)
        if index is None:
            return False

        last = self._connections.pop()
        if last is not conn:
            # 末尾元素填到被移除的位置
            self._connections[index] = last
            self._positions[id(last)] = index
        return True

    async def _send(self, conn, payload: str) -> None:
        await asyncio.wait_for(conn.send_text(payload), timeout=self.send_timeout)

    async def _close(self, conn, code: int) -> None:
        try:
            await asyncio.wait_for(conn.close(code=code), timeout=self.send_timeout)
        except Exception as e:
            # 对端可能已断开
            logger.debug(f"Closing {conn!r} raised {e!r}")
