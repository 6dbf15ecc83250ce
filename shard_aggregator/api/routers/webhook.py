"""
状态上报 API

bot 通过 POST /api/webhook/{key} 上报分片状态，请求体为 {"bot": int, "id": int, "status": int}。
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from starlette.requests import ClientDisconnect

from ...context import AppContext
from ...validator import UpdateRejected
from ..dependencies import get_context

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/webhook", tags=["webhook"])


@router.post("/{key}", status_code=status.HTTP_202_ACCEPTED)
async def status_webhook(
    key: str,
    request: Request,
    ctx: AppContext = Depends(get_context),
):
    """
    接收一条分片状态

    来源和 key 在读取请求体之前检查；校验通过后入队即返回 202，不等待写入和广播完成。
    """
    source = request.client.host if request.client else None

    try:
        ctx.validator.admit(source, key)
    except UpdateRejected as e:
        raise HTTPException(status_code=e.reason.status_code, detail=e.reason.value)

    try:
        raw = await request.body()
    except ClientDisconnect as e:
        logger.error(f"Failed to read webhook body: {e!r}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to read request body"
        )

    try:
        await ctx.validator.enqueue(raw, source)
    except UpdateRejected as e:
        raise HTTPException(status_code=e.reason.status_code, detail=e.reason.value)

    return Response(status_code=status.HTTP_202_ACCEPTED)
