"""
WebSocket 推送端点

连接建立后先收到 hello（完整状态），之后接收 update / tick。
前端不需要发送任何消息；收到的内容直接忽略，只用来感知断开。
"""

import logging

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect

from ...connections import ObserverConnection
from ...context import AppContext
from ..dependencies import get_context

logger = logging.getLogger(__name__)

router = APIRouter(tags=["socket"])


@router.websocket("/api/socket")
async def socket_endpoint(websocket: WebSocket, ctx: AppContext = Depends(get_context)):
    await websocket.accept()

    conn = ObserverConnection(websocket)
    if not await ctx.registry.add(conn, ctx.hello):
        return

    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                logger.info(f"{conn!r} disconnected with code {message.get('code')}")
                break
    except WebSocketDisconnect as e:
        logger.info(f"{conn!r} disconnected with code {e.code}")
    except RuntimeError as e:
        # 推送失败后连接已被关闭
        logger.debug(f"{conn!r} receive loop ended: {e}")
    finally:
        await ctx.registry.remove(conn)
