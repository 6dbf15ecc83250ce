"""
数据模型定义

包括：
- Pydantic 模型（上报数据校验、API 响应）
- 内存状态缓存
"""

import copy
import logging
from enum import IntEnum
from typing import Dict, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, StrictInt

from .config import TopologyConfig

logger = logging.getLogger(__name__)


# =============================================================================
# Pydantic 模型
# =============================================================================

class ShardStatus(IntEnum):
    """分片状态码（0 = 未知）"""
    UNKNOWN = 0
    CONNECTING = 1
    READY = 2
    IDLE = 3
    RECONNECTING = 4


class StatusUpdate(BaseModel):
    """
    单条分片状态上报

    请求体字段为 {bot, id, status}，内部统一使用 shard 命名。
    """
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    bot: StrictInt
    shard: StrictInt = Field(alias="id")
    status: StrictInt = Field(ge=0)


class HealthResponse(BaseModel):
    """健康检查响应（GET /api/health）"""
    status: str = "ok"
    connections: int
    queue_depth: int
    queue_capacity: int
    bots: int


# =============================================================================
# 内存缓存
# =============================================================================

StateMapping = Dict[int, Dict[int, int]]


class StatusCache:
    """
    分片状态缓存：{bot_id: {shard_id: status}}

    构造时为拓扑内每个 bot 建好条目，之后只增改分片，不删除 bot。
    只有 StateEngine 会写入，因此不加锁；读取方通过 snapshot() 拿副本。
    """

    def __init__(self, topology: TopologyConfig, state: Optional[Mapping[int, Mapping[int, int]]] = None):
        self.topology = topology
        self._state: StateMapping = {bot: {} for bot in range(topology.patron_bots + 1)}

        if state:
            for bot, shards in state.items():
                if bot not in self._state:
                    logger.warning(f"Ignoring bot {bot} from snapshot: outside topology")
                    continue
                self._state[bot].update({int(shard): int(status) for shard, status in shards.items()})

    def apply(self, update: StatusUpdate) -> None:
        """写入一条状态（覆盖旧值）"""
        self._state[update.bot][update.shard] = update.status

    def get(self, bot: int, shard: int) -> int:
        """读取状态，未上报过的分片返回 0"""
        return self._state.get(bot, {}).get(shard, ShardStatus.UNKNOWN)

    def snapshot(self) -> StateMapping:
        """深拷贝当前状态"""
        return copy.deepcopy(self._state)

    def __len__(self) -> int:
        return len(self._state)
