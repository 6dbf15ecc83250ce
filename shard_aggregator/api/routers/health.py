"""
健康检查 API
"""

from fastapi import APIRouter, Depends

from ...context import AppContext
from ...models import HealthResponse
from ..dependencies import get_context

router = APIRouter(prefix="/api/health", tags=["health"])


@router.get("", response_model=HealthResponse)
async def health(ctx: AppContext = Depends(get_context)):
    """在线连接数与更新队列深度"""
    return HealthResponse(
        connections=len(ctx.registry),
        queue_depth=ctx.queue.qsize(),
        queue_capacity=ctx.queue.maxsize,
        bots=len(ctx.cache),
    )
