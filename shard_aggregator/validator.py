"""
上报校验

按顺序检查：来源地址 → key → 请求体格式 → bot 范围 → shard 范围。
全部通过后放入更新队列，调用方立即得到“已接受”，不等待写入完成。
"""

import asyncio
import hmac
import json
import logging
from enum import Enum
from typing import Iterable, Optional

from pydantic import ValidationError

from .config import TopologyConfig
from .models import StatusUpdate

logger = logging.getLogger(__name__)


class Rejection(str, Enum):
    """拒绝原因及对应 HTTP 状态码"""
    FORBIDDEN = "forbidden"
    UNAUTHORIZED = "unauthorized"
    UNDECODABLE = "undecodable"
    MALFORMED = "malformed"
    OUT_OF_RANGE = "out_of_range"

    @property
    def status_code(self) -> int:
        return _STATUS_CODES[self]


_STATUS_CODES = {
    Rejection.FORBIDDEN: 403,
    Rejection.UNAUTHORIZED: 401,
    Rejection.UNDECODABLE: 500,
    Rejection.MALFORMED: 400,
    Rejection.OUT_OF_RANGE: 400,
}


class UpdateRejected(Exception):
    """上报被拒绝"""

    def __init__(self, reason: Rejection, detail: str = ""):
        self.reason = reason
        self.detail = detail
        super().__init__(f"{reason.value}: {detail}" if detail else reason.value)


class UpdateValidator:
    """
    上报校验器（更新队列的生产端）

    allowed_ips 为空时不做来源检查（开发环境），启动时会打印警告。
    """

    def __init__(
        self,
        topology: TopologyConfig,
        key: str,
        allowed_ips: Iterable[str],
        queue: "asyncio.Queue[StatusUpdate]",
    ):
        self.topology = topology
        self._key = key
        self._allowed_ips = {ip.strip() for ip in allowed_ips if ip.strip()}
        self._queue = queue

        if not self._allowed_ips:
            logger.warning("Webhook source allow-list is empty, accepting updates from any address")

    def authorize(self, source: Optional[str], key: str) -> None:
        """来源地址和 key 检查，在读取请求体之前调用"""
        if self._allowed_ips and source not in self._allowed_ips:
            raise UpdateRejected(Rejection.FORBIDDEN, f"source {source} not allowed")

        if not hmac.compare_digest(key.encode("utf-8"), self._key.encode("utf-8")):
            raise UpdateRejected(Rejection.UNAUTHORIZED, "key mismatch")

    def decode(self, raw: bytes) -> StatusUpdate:
        """解析请求体并检查 bot / shard 范围"""
        try:
            body = json.loads(raw)
        except (ValueError, UnicodeDecodeError) as e:
            raise UpdateRejected(Rejection.UNDECODABLE, str(e)) from e

        try:
            update = StatusUpdate.model_validate(body)
        except ValidationError as e:
            raise UpdateRejected(Rejection.MALFORMED, f"{e.error_count()} invalid field(s)") from e

        self.check_range(update)
        return update

    def validate(self, raw: bytes, source: Optional[str], key: str) -> StatusUpdate:
        """完整校验一次上报，失败时抛出 UpdateRejected"""
        self.authorize(source, key)
        return self.decode(raw)

    def check_range(self, update: StatusUpdate) -> None:
        """bot ∈ [0, patron_bots]；shard ∈ [0, total_shards]（bot 0）或 [0, patron_shards]"""
        if not 0 <= update.bot <= self.topology.patron_bots:
            raise UpdateRejected(Rejection.OUT_OF_RANGE, f"invalid bot {update.bot}")

        limit = self.topology.shard_limit(update.bot)
        if not 0 <= update.shard <= limit:
            raise UpdateRejected(
                Rejection.OUT_OF_RANGE,
                f"invalid shard {update.shard} for bot {update.bot} (max {limit})",
            )

    def admit(self, source: Optional[str], key: str) -> None:
        """authorize 并记录拒绝日志"""
        try:
            self.authorize(source, key)
        except UpdateRejected as e:
            logger.warning(f"Rejected update from {source}: {e}")
            raise

    async def enqueue(self, raw: bytes, source: Optional[str]) -> StatusUpdate:
        """
        解析已通过 authorize 的请求体并入队

        队列满时在此等待（背压），不会丢弃更新。
        """
        try:
            update = self.decode(raw)
        except UpdateRejected as e:
            logger.warning(f"Rejected update from {source}: {e}")
            raise

        await self._queue.put(update)
        return update

    async def submit(self, raw: bytes, source: Optional[str], key: str) -> StatusUpdate:
        """校验并入队"""
        self.admit(source, key)
        return await self.enqueue(raw, source)
