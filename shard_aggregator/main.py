"""
主程序入口

启动并发任务：
1. 状态引擎（消费更新队列）
2. 心跳推送
3. 演示数据生成（可选）
4. HTTP / WebSocket 服务

任一任务因快照读写失败退出时，整个进程终止。
"""

import asyncio
import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

import uvicorn
import yaml
from pydantic import ValidationError

from . import __version__
from .config import AppConfig, load_config
from .context import AppContext, build_context
from .demo import run_demo
from .heartbeat import run_heartbeat


def setup_logging(config: AppConfig):
    """配置日志"""
    log_format = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    level = getattr(logging, config.logging.level.upper(), logging.INFO)

    logging.basicConfig(
        level=level,
        format=log_format,
        handlers=[logging.StreamHandler(sys.stdout)]
    )

    if config.logging.file:
        log_path = Path(config.logging.file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = RotatingFileHandler(
            str(log_path),
            maxBytes=config.logging.max_size_mb * 1024 * 1024,
            backupCount=config.logging.backup_count,
            encoding="utf-8",
        )
        file_handler.setFormatter(logging.Formatter(log_format))
        logging.getLogger().addHandler(file_handler)

    # 降低第三方库日志级别
    logging.getLogger("uvicorn").setLevel(logging.INFO)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


def acquire_single_instance_lock(lock_path: Path):
    """
    防止同一个快照文件被多个进程写入。

    通过文件锁实现：同一路径下只能有一个进程持锁。
    """
    lock_path.parent.mkdir(parents=True, exist_ok=True)
    handle = open(lock_path, "a+b")

    try:
        if os.name == "nt":
            import msvcrt  # type: ignore

            handle.seek(0)
            msvcrt.locking(handle.fileno(), msvcrt.LK_NBLCK, 1)
        else:
            import fcntl  # type: ignore

            fcntl.flock(handle, fcntl.LOCK_EX | fcntl.LOCK_NB)
    except OSError as e:
        handle.close()
        raise RuntimeError(f"Another aggregator instance is already running (lock: {lock_path})") from e

    handle.seek(0)
    handle.truncate()
    handle.write(str(os.getpid()).encode("utf-8"))
    handle.flush()

    return handle


async def run_api_server(ctx: AppContext):
    """运行 API 服务器"""
    from .api.app import create_app

    config = ctx.config
    app = create_app(ctx)

    server_config = uvicorn.Config(
        app=app,
        host=config.api.host,
        port=config.api.port,
        log_level="info",
        access_log=False
    )
    server = uvicorn.Server(server_config)
    await server.serve()


async def main(config: AppConfig):
    """主函数：加载快照并启动所有任务"""
    logger = logging.getLogger(__name__)

    logger.info("=" * 60)
    logger.info(f"Shard Status Aggregator v{__version__}")
    logger.info("=" * 60)

    topology = config.topology
    logger.info(
        f"Topology: total_shards={topology.total_shards} "
        f"patron_bots={topology.patron_bots} patron_shards={topology.patron_shards}"
    )
    logger.info(f"API={config.api.host}:{config.api.port} state={config.state.path}")

    state_path = Path(config.state.path)
    lock_handle = None

    try:
        lock_handle = acquire_single_instance_lock(state_path.parent / f"{state_path.name}.lock")
        ctx = build_context(config)

        tasks = [
            ctx.engine.run(),
            run_heartbeat(ctx.broadcaster, config.broadcast.heartbeat_interval),
            run_api_server(ctx),
        ]
        if config.demo.enabled:
            tasks.append(run_demo(ctx.queue, topology, config.demo.interval))

        logger.info("Starting concurrent tasks...")
        await asyncio.gather(*tasks)
    except asyncio.CancelledError:
        logger.info("Tasks cancelled, shutting down...")
    except Exception as e:
        logger.critical(f"Fatal error: {e}", exc_info=True)
        raise
    finally:
        if lock_handle is not None:
            lock_handle.close()


def cli():
    """命令行入口"""
    try:
        config = load_config()
    except (ValidationError, yaml.YAMLError) as e:
        print(f"Error: invalid configuration: {e}", file=sys.stderr)
        sys.exit(1)

    setup_logging(config)

    try:
        asyncio.run(main(config))
    except KeyboardInterrupt:
        print("\nShutdown requested, exiting...")
        sys.exit(0)
    except Exception:
        sys.exit(1)


if __name__ == "__main__":
    cli()
