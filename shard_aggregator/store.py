"""
状态快照持久化

整个 StatusCache 用 msgpack 编码写入单个本地文件，每次更新后整体覆盖。
拓扑规模有限，整文件重写比增量日志简单，写放大可以接受。

读写失败都是致命错误：无法保证磁盘与内存一致时进程必须停止。
"""

import logging
import os
import tempfile
from pathlib import Path
from typing import Union

import msgpack

from .config import TopologyConfig
from .models import StateMapping, StatusCache

logger = logging.getLogger(__name__)

SNAPSHOT_FILE_MODE = 0o600


class PersistenceError(RuntimeError):
    """快照读写失败（致命）"""


def _is_state_mapping(value) -> bool:
    """校验解码结果为 {int: {int: int}}"""
    if not isinstance(value, dict):
        return False
    for bot, shards in value.items():
        if not isinstance(bot, int) or not isinstance(shards, dict):
            return False
        if not all(isinstance(k, int) and isinstance(v, int) for k, v in shards.items()):
            return False
    return True


class SnapshotStore:
    """快照文件读写"""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)

    def load(self, topology: TopologyConfig) -> StatusCache:
        """
        启动时加载快照

        文件不存在时返回按拓扑预置的空缓存；文件存在但无法解码则抛出 PersistenceError。
        """
        if not self.path.exists():
            logger.info(f"No snapshot at {self.path}, starting from empty state")
            return StatusCache(topology)

        try:
            raw = self.path.read_bytes()
            state = msgpack.unpackb(raw, raw=False, strict_map_key=False)
        except (OSError, ValueError, msgpack.UnpackException) as e:
            raise PersistenceError(f"Failed to read snapshot {self.path}: {e}") from e

        if not _is_state_mapping(state):
            raise PersistenceError(f"Snapshot {self.path} has unexpected layout")

        logger.info(f"Loaded snapshot from {self.path} ({len(state)} bots)")
        return StatusCache(topology, state)

    def save(self, state: StateMapping) -> None:
        """
        覆盖写入快照

        先写同目录临时文件再 os.replace，崩溃时不会留下半截文件。
        """
        try:
            payload = msgpack.packb(state, use_bin_type=True)
            self.path.parent.mkdir(parents=True, exist_ok=True)

            fd, tmp_name = tempfile.mkstemp(prefix=f".{self.path.name}.", dir=str(self.path.parent))
            try:
                with os.fdopen(fd, "wb") as f:
                    f.write(payload)
                    f.flush()
                    os.fsync(f.fileno())
                os.chmod(tmp_name, SNAPSHOT_FILE_MODE)
                os.replace(tmp_name, self.path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except (OSError, ValueError, TypeError) as e:
            raise PersistenceError(f"Failed to write snapshot {self.path}: {e}") from e

        logger.debug(f"Saved snapshot to {self.path}")
