"""
Shard Status Aggregator - 分片状态聚合服务

负责：
- 接收各 bot 分片的状态上报（webhook）
- 维护最新状态缓存并持久化到本地快照
- 通过 WebSocket 向前端实时推送更新和心跳
"""

__version__ = "1.0.0"
