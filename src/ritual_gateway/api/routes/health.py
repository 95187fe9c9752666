"""
Health endpoint.

  GET /health  -- Liveness probe (always 200 if the process is alive; no auth)
"""

import time

from fastapi import APIRouter, Request

from ..models.responses import HealthData, SuccessResponse, success

router = APIRouter()


@router.get(
    "/health",
    response_model=SuccessResponse[HealthData],
    response_model_exclude_unset=True,
)
async def liveness(request: Request) -> dict:
    """Liveness probe -- returns 200 if the process is running."""
    start_time = getattr(request.app.state, "start_time", time.time())
    return success({
        "status": "healthy",
        "agents_registered": request.app.state.registry.count,
        "uptime_seconds": round(time.time() - start_time, 1),
    })
