"""
测试连接登记与广播

覆盖：
- 新连接第一条消息是 hello
- 推送失败的连接被移除，其余连接照常收到
- 连接只会被移除一次
- 交换移除后集合保持完整（遍历顺序不作要求）
"""

import asyncio

import pytest

from shard_aggregator.broadcast import Broadcaster
from shard_aggregator.connections import ConnectionRegistry
from shard_aggregator.models import StatusCache, StatusUpdate
from shard_aggregator.protocol import hello_message, tick_message, update_message

from .conftest import FakeConnection


@pytest.fixture
def registry():
    return ConnectionRegistry(send_timeout=0.1)


@pytest.fixture
def hello(topology):
    cache = StatusCache(topology)
    return lambda: hello_message(topology, cache.snapshot())


@pytest.mark.asyncio
async def test_add_sends_hello_first(registry, hello):
    conn = FakeConnection()

    assert await registry.add(conn, hello) is True

    assert conn in registry
    assert conn.ops() == ["hello"]
    data = conn.messages()[0]["data"]
    assert data["totalShards"] == 10
    assert data["totalPatrons"] == 2
    assert data["patronShards"] == 5
    assert data["state"] == {"0": {}, "1": {}, "2": {}}


@pytest.mark.asyncio
async def test_failed_hello_is_not_registered(registry, hello):
    conn = FakeConnection(fail=True)

    assert await registry.add(conn, hello) is False

    assert len(registry) == 0
    assert conn.closed == [1011]


@pytest.mark.asyncio
async def test_failure_on_one_connection_does_not_stop_others(registry, hello):
    good_a, bad, good_b = FakeConnection("a"), FakeConnection("bad"), FakeConnection("b")
    for conn in (good_a, bad, good_b):
        await registry.add(conn, hello)
    bad.fail = True

    delivered = await registry.fan_out(tick_message().encode())

    assert delivered == 2
    assert good_a.ops() == ["hello", "tick"]
    assert good_b.ops() == ["hello", "tick"]
    assert bad not in registry
    assert bad.closed == [1011]

    await registry.fan_out(tick_message().encode())
    assert good_a.ops() == ["hello", "tick", "tick"]
    assert good_b.ops() == ["hello", "tick", "tick"]
    assert bad.ops() == ["hello"]


@pytest.mark.asyncio
async def test_stalled_connection_times_out_and_is_removed(registry, hello):
    fast, slow = FakeConnection("fast"), FakeConnection("slow")
    await registry.add(fast, hello)
    await registry.add(slow, hello)
    slow.delay = 1.0

    delivered = await registry.fan_out(tick_message().encode())

    assert delivered == 1
    assert slow not in registry
    assert fast.ops() == ["hello", "tick"]


@pytest.mark.asyncio
async def test_remove_happens_once(registry, hello):
    conn = FakeConnection()
    await registry.add(conn, hello)

    assert await registry.remove(conn) is True
    assert await registry.remove(conn) is False
    assert conn.closed == [1000]


@pytest.mark.asyncio
async def test_remove_after_delivery_failure_is_noop(registry, hello):
    conn = FakeConnection()
    await registry.add(conn, hello)
    conn.fail = True
    await registry.fan_out(tick_message().encode())

    assert await registry.remove(conn) is False
    assert conn.closed == [1011]


@pytest.mark.asyncio
async def test_swap_removal_keeps_remaining_connections(registry, hello):
    conns = [FakeConnection(str(i)) for i in range(5)]
    for conn in conns:
        await registry.add(conn, hello)

    await registry.remove(conns[1])
    await registry.remove(conns[4])
    await registry.remove(conns[0])

    remaining = {conns[2], conns[3]}
    assert len(registry) == 2
    assert all(c in registry for c in remaining)

    await registry.fan_out(tick_message().encode())
    for conn in conns:
        expected = ["hello", "tick"] if conn in remaining else ["hello"]
        assert conn.ops() == expected


@pytest.mark.asyncio
async def test_concurrent_add_and_remove(registry, hello):
    conns = [FakeConnection(str(i)) for i in range(20)]
    await asyncio.gather(*(registry.add(c, hello) for c in conns))
    await asyncio.gather(
        *(registry.remove(c) for c in conns[::2]),
        registry.fan_out(tick_message().encode()),
    )

    assert len(registry) == 10
    assert all(c in registry for c in conns[1::2])


@pytest.mark.asyncio
async def test_broadcaster_encodes_once_for_all(registry, hello):
    conns = [FakeConnection(str(i)) for i in range(3)]
    for conn in conns:
        await registry.add(conn, hello)

    message = update_message(StatusUpdate(bot=0, shard=3, status=2))
    delivered = await Broadcaster(registry).publish(message)

    assert delivered == 3
    # 所有连接收到的是同一个字符串对象
    payloads = [conn.sent[-1] for conn in conns]
    assert all(p is payloads[0] for p in payloads)
    assert conns[0].messages()[-1] == {"op": "update", "data": {"bot": 0, "shard": 3, "status": 2}}


@pytest.mark.asyncio
async def test_stalled_tick_does_not_block_next_update(hello):
    registry = ConnectionRegistry(send_timeout=1.0)
    fast, slow = FakeConnection("fast"), FakeConnection("slow")
    await registry.add(fast, hello)
    await registry.add(slow, hello)
    slow.delay = 0.3

    tick = asyncio.create_task(registry.fan_out(tick_message().encode()))
    await asyncio.sleep(0.01)
    update = asyncio.create_task(
        registry.fan_out(update_message(StatusUpdate(bot=0, shard=3, status=2)).encode())
    )
    await asyncio.sleep(0.05)

    # 慢连接的 tick 还没发完，快连接已经收到 update
    assert not tick.done()
    assert fast.ops() == ["hello", "tick", "update"]

    assert await tick == 2
    assert await update == 2
    assert slow.ops() == ["hello", "tick", "update"]
