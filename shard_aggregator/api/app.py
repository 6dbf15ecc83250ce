"""
FastAPI 应用配置

配置 CORS、静态文件托管、路由注册。
"""

import logging
from pathlib import Path

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles

from .. import __version__
from ..context import AppContext
from .routers import health, socket, webhook

logger = logging.getLogger(__name__)


def create_app(context: AppContext) -> FastAPI:
    """
    创建 FastAPI 应用实例

    配置：
    - CORS 中间件
    - API 路由（webhook、WebSocket、健康检查）
    - 静态文件托管（前端）
    """
    config = context.config

    app = FastAPI(
        title="Shard Status Aggregator",
        description="分片状态聚合与实时推送",
        version=__version__,
        docs_url="/api/docs",
        redoc_url="/api/redoc",
        openapi_url="/api/openapi.json"
    )
    app.state.context = context

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.api.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(webhook.router)
    app.include_router(socket.router)
    app.include_router(health.router)

    # 静态文件托管（前端），必须最后挂载
    if config.frontend.enabled:
        frontend_path = Path(config.frontend.path)
        if frontend_path.exists():
            app.mount("/", StaticFiles(directory=str(frontend_path), html=True), name="frontend")
            logger.info(f"Serving frontend from {frontend_path}")
        else:
            logger.warning(f"Frontend path not found: {frontend_path}")

    return app
