"""
推送消息协议

所有推送给前端的消息都是 {"op": ..., "data": ...} 形式的 JSON：
- hello:  连接建立后第一条，携带完整状态和拓扑常量
- update: 单个分片状态变化
- tick:   心跳，无数据
"""

from enum import Enum
from typing import Dict, Union

from pydantic import BaseModel, ConfigDict, Field

from .config import TopologyConfig
from .models import StateMapping, StatusUpdate


class Op(str, Enum):
    HELLO = "hello"
    UPDATE = "update"
    TICK = "tick"


class HelloData(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    total_shards: int = Field(serialization_alias="totalShards")
    total_patrons: int = Field(serialization_alias="totalPatrons")
    patron_shards: int = Field(serialization_alias="patronShards")
    state: Dict[int, Dict[int, int]]


class UpdateData(BaseModel):
    bot: int
    shard: int
    status: int


class OutboundMessage(BaseModel):
    op: Op
    data: Union[HelloData, UpdateData, bool]

    def encode(self) -> str:
        """序列化为 JSON 文本（广播时只调用一次）"""
        return self.model_dump_json(by_alias=True)


def hello_message(topology: TopologyConfig, state: StateMapping) -> OutboundMessage:
    return OutboundMessage(
        op=Op.HELLO,
        data=HelloData(
            total_shards=topology.total_shards,
            total_patrons=topology.patron_bots,
            patron_shards=topology.patron_shards,
            state=state,
        ),
    )


def update_message(update: StatusUpdate) -> OutboundMessage:
    return OutboundMessage(
        op=Op.UPDATE,
        data=UpdateData(bot=update.bot, shard=update.shard, status=update.status),
    )


def tick_message() -> OutboundMessage:
    return OutboundMessage(op=Op.TICK, data=True)
