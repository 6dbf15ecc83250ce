"""
测试公共 fixture

拓扑统一使用 total_shards=10, patron_bots=2, patron_shards=5。
"""

import asyncio
import json
from typing import Any, Dict, List

import pytest

from shard_aggregator.config import (
    AppConfig,
    BroadcastConfig,
    FrontendConfig,
    StateConfig,
    TopologyConfig,
    WebhookConfig,
)


class FakeConnection:
    """代替 WebSocket 的前端连接"""

    def __init__(self, name: str = "fake", fail: bool = False, delay: float = 0.0):
        self.name = name
        self.fail = fail
        self.delay = delay
        self.sent: List[str] = []
        self.closed: List[int] = []

    async def send_text(self, payload: str) -> None:
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise ConnectionResetError(f"{self.name}: connection reset")
        self.sent.append(payload)

    async def close(self, code: int = 1000) -> None:
        self.closed.append(code)

    def messages(self) -> List[Dict[str, Any]]:
        return [json.loads(p) for p in self.sent]

    def ops(self) -> List[str]:
        return [m["op"] for m in self.messages()]

    def __repr__(self) -> str:
        return f"<FakeConnection {self.name}>"


@pytest.fixture
def topology() -> TopologyConfig:
    return TopologyConfig(total_shards=10, patron_bots=2, patron_shards=5)


@pytest.fixture
def state_path(tmp_path):
    return tmp_path / "state.dat"


@pytest.fixture
def app_config(topology, state_path) -> AppConfig:
    return AppConfig(
        topology=topology,
        webhook=WebhookConfig(key="secret", allowed_ips=["testclient", "127.0.0.1"]),
        broadcast=BroadcastConfig(heartbeat_interval=0.05, send_timeout=0.2),
        state=StateConfig(path=str(state_path)),
        frontend=FrontendConfig(enabled=False),
    )
