"""
配置加载模块

从 config.yaml 加载配置，支持 Pydantic 验证和环境变量覆盖。
"""

import os
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class TopologyConfig(BaseModel):
    """分片拓扑（无默认值，必须配置）"""
    total_shards: int = Field(..., ge=0)
    patron_bots: int = Field(..., ge=0)
    patron_shards: int = Field(..., ge=0)

    def shard_limit(self, bot: int) -> int:
        """bot 0 使用 total_shards，patron bot 使用 patron_shards"""
        return self.total_shards if bot == 0 else self.patron_shards


class WebhookConfig(BaseModel):
    """上报接口配置"""
    key: str = Field(..., min_length=1)
    allowed_ips: List[str] = Field(default_factory=list)
    queue_size: int = Field(default=128, ge=1)


class BroadcastConfig(BaseModel):
    """推送配置"""
    heartbeat_interval: float = Field(default=5.0, gt=0)
    send_timeout: float = Field(default=2.0, gt=0)


class StateConfig(BaseModel):
    """状态快照配置"""
    path: str = "state.dat"


class DemoConfig(BaseModel):
    """演示模式配置"""
    enabled: bool = False
    interval: float = Field(default=1.0, gt=0)


class APIConfig(BaseModel):
    """API 服务配置"""
    host: str = "0.0.0.0"
    port: int = 8080
    cors_origins: List[str] = ["http://localhost:8080", "http://127.0.0.1:8080"]


class FrontendConfig(BaseModel):
    """前端配置"""
    path: str = "website"
    enabled: bool = True


class LoggingConfig(BaseModel):
    """日志配置"""
    level: str = "INFO"
    file: Optional[str] = None
    max_size_mb: int = 50
    backup_count: int = 5


class AppConfig(BaseModel):
    """应用配置（完整配置）"""
    topology: TopologyConfig
    webhook: WebhookConfig
    broadcast: BroadcastConfig = Field(default_factory=BroadcastConfig)
    state: StateConfig = Field(default_factory=StateConfig)
    demo: DemoConfig = Field(default_factory=DemoConfig)
    api: APIConfig = Field(default_factory=APIConfig)
    frontend: FrontendConfig = Field(default_factory=FrontendConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


class EnvOverrides(BaseSettings):
    """
    环境变量覆盖项

    变量名沿用旧版部署脚本（BOT_SHARDS 等），未设置或为空字符串的项保持为 None。
    """
    model_config = SettingsConfigDict(extra="ignore", env_ignore_empty=True)

    bot_shards: Optional[int] = Field(default=None, validation_alias="BOT_SHARDS")
    patron_bots: Optional[int] = Field(default=None, validation_alias="PATRON_BOTS")
    patron_shards: Optional[int] = Field(default=None, validation_alias="PATRON_SHARDS")
    enable_demo: Optional[bool] = Field(default=None, validation_alias="ENABLE_DEMO")
    webhook_key: Optional[str] = Field(default=None, validation_alias="WEBHOOK_KEY")
    webhook_ips: Optional[str] = Field(default=None, validation_alias="WEBHOOK_IPS")
    state_path: Optional[str] = Field(default=None, validation_alias="STATE_PATH")
    host: Optional[str] = Field(default=None, validation_alias="HOST")
    port: Optional[int] = Field(default=None, validation_alias="PORT")
    log_level: Optional[str] = Field(default=None, validation_alias="LOG_LEVEL")

    def apply(self, raw_config: Dict[str, Any]) -> Dict[str, Any]:
        """把已设置的环境变量写入原始配置字典"""
        mapping = [
            ("topology", "total_shards", self.bot_shards),
            ("topology", "patron_bots", self.patron_bots),
            ("topology", "patron_shards", self.patron_shards),
            ("demo", "enabled", self.enable_demo),
            ("webhook", "key", self.webhook_key),
            ("state", "path", self.state_path),
            ("api", "host", self.host),
            ("api", "port", self.port),
            ("logging", "level", self.log_level),
        ]
        for section, field, value in mapping:
            if value is not None:
                raw_config.setdefault(section, {})[field] = value

        if self.webhook_ips is not None:
            ips = [ip.strip() for ip in self.webhook_ips.split(",") if ip.strip()]
            raw_config.setdefault("webhook", {})["allowed_ips"] = ips

        return raw_config


def _resolve_paths(raw_config: Dict[str, Any], base_dir: Path) -> None:
    """配置文件中的相对路径以配置文件所在目录为基准"""

    def _resolve(value: Optional[str]) -> Optional[str]:
        if not value:
            return value
        path = Path(value)
        if path.is_absolute():
            return str(path)
        return str((base_dir / path).resolve())

    for section, field in (("state", "path"), ("frontend", "path"), ("logging", "file")):
        block = raw_config.get(section)
        if isinstance(block, dict) and field in block:
            block[field] = _resolve(block[field])


def load_config(config_path: Optional[str] = None) -> AppConfig:
    """
    加载配置文件

    优先级：
    1. 环境变量（见 EnvOverrides）
    2. 参数指定的路径 / 环境变量 SHARD_AGGREGATOR_CONFIG / ./config.yaml

    配置文件不存在不算错误；缺少拓扑或 key 时抛出 ValidationError。
    """
    if config_path is None:
        config_path = os.environ.get("SHARD_AGGREGATOR_CONFIG", "config.yaml")

    config_file = Path(config_path)
    raw_config: Dict[str, Any] = {}

    if config_file.exists():
        with open(config_file, "r", encoding="utf-8") as f:
            raw_config = yaml.safe_load(f) or {}
        _resolve_paths(raw_config, config_file.resolve().parent)

    EnvOverrides().apply(raw_config)
    return AppConfig(**raw_config)
