"""
演示模式

不接真实 bot 时，为 bot 0 生成随机分片状态：先给每个分片一个初始状态，
之后每隔 interval 秒随机改一个分片。直接写入更新队列，同样受背压约束。
"""

import asyncio
import logging
import random
from typing import Optional

from .config import TopologyConfig
from .models import ShardStatus, StatusUpdate

logger = logging.getLogger(__name__)

# 不生成 UNKNOWN
_DEMO_STATUSES = [s for s in ShardStatus if s != ShardStatus.UNKNOWN]


def random_update(rng: random.Random, total_shards: int) -> StatusUpdate:
    return StatusUpdate(
        bot=0,
        shard=rng.randrange(total_shards),
        status=int(rng.choice(_DEMO_STATUSES)),
    )


async def run_demo(
    queue: "asyncio.Queue[StatusUpdate]",
    topology: TopologyConfig,
    interval: float = 1.0,
    rng: Optional[random.Random] = None,
):
    """运行演示数据生成任务"""
    rng = rng or random.Random()

    if topology.total_shards <= 0:
        logger.warning("DEMO MODE requested but total_shards is 0, nothing to generate")
        return

    logger.info("DEMO MODE enabled!")

    for shard in range(topology.total_shards):
        status = int(rng.choice(_DEMO_STATUSES))
        await queue.put(StatusUpdate(bot=0, shard=shard, status=status))

    while True:
        await queue.put(random_update(rng, topology.total_shards))
        await asyncio.sleep(interval)
