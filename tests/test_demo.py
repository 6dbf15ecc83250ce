"""
测试演示模式数据生成
"""

import asyncio
import random

import pytest

from shard_aggregator.config import TopologyConfig
from shard_aggregator.demo import random_update, run_demo


@pytest.mark.asyncio
async def test_demo_seeds_every_shard_of_bot_zero(topology):
    queue = asyncio.Queue()
    task = asyncio.create_task(run_demo(queue, topology, interval=10, rng=random.Random(7)))
    await asyncio.sleep(0.05)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    updates = [queue.get_nowait() for _ in range(queue.qsize())]

    # 每个分片一条初始状态，外加循环里的第一条随机更新
    assert len(updates) == topology.total_shards + 1
    assert [u.shard for u in updates[:topology.total_shards]] == list(range(topology.total_shards))
    assert all(u.bot == 0 for u in updates)
    assert all(1 <= u.status <= 4 for u in updates)


@pytest.mark.asyncio
async def test_demo_respects_backpressure(topology):
    queue = asyncio.Queue(maxsize=3)
    task = asyncio.create_task(run_demo(queue, topology, interval=0.01, rng=random.Random(1)))
    await asyncio.sleep(0.05)

    assert queue.qsize() == 3
    assert not task.done()

    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task


@pytest.mark.asyncio
async def test_demo_without_shards_does_nothing():
    queue = asyncio.Queue()
    await run_demo(queue, TopologyConfig(total_shards=0, patron_bots=0, patron_shards=0))
    assert queue.empty()


def test_random_update_stays_in_range():
    rng = random.Random(3)
    for _ in range(200):
        update = random_update(rng, 10)
        assert 0 <= update.shard < 10
        assert update.status != 0
