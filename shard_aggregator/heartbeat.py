"""
心跳任务

固定周期向所有连接推送 tick，与更新流量无关，让前端在安静期也能发现断线。
"""

import asyncio
import logging

from .broadcast import Broadcaster
from .protocol import tick_message

logger = logging.getLogger(__name__)


async def run_heartbeat(broadcaster: Broadcaster, interval: float):
    """
    运行心跳循环

    按单调时钟排期，推送耗时不会让周期漂移；落后超过一个周期时跳到下一个排期点。
    """
    loop = asyncio.get_running_loop()
    next_tick = loop.time() + interval

    logger.info(f"Starting heartbeat task (interval={interval}s)")

    while True:
        try:
            await asyncio.sleep(max(0.0, next_tick - loop.time()))
            await broadcaster.publish(tick_message())

            next_tick += interval
            now = loop.time()
            if next_tick <= now:
                next_tick = now + interval

        except asyncio.CancelledError:
            logger.info("Heartbeat task cancelled")
            raise
        except Exception as e:
            logger.error(f"Heartbeat error: {e}", exc_info=True)
            next_tick = loop.time() + interval
