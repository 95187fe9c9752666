"""
Quick chat -- smart routing through the coordinator.

  POST /api/quick-chat  -- The coordinator answers or hands off to the
                           weather, math, or research specialist.
"""

from typing import Any

from fastapi import APIRouter, Body, Request

from ..models.responses import ChatData, SuccessResponse, success

router = APIRouter()


@router.post(
    "/quick-chat",
    response_model=SuccessResponse[ChatData],
    response_model_exclude_unset=True,
)
async def quick_chat(request: Request, payload: Any = Body(None)) -> dict:
    """agent_used is always the coordinator; last_agent is whoever answered."""
    result = await request.app.state.chat_handler.quick_chat(payload)
    return success(result.to_dict())
