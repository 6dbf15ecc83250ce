"""
依赖注入模块

提供 FastAPI 依赖项。
"""

from starlette.requests import HTTPConnection

from ..context import AppContext


async def get_context(connection: HTTPConnection) -> AppContext:
    """获取应用上下文（HTTP 和 WebSocket 路由通用）"""
    return connection.app.state.context
