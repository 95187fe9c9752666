"""
Chat API -- single-agent chat (optionally streamed) and the ritual workflow.

  POST /api/chat/ritual-workflow  -- Compose, synthesize, screen, revise
  POST /api/chat/{agent_id}       -- Chat with one agent; SSE when stream=true

The workflow route is registered first so "ritual-workflow" is never taken
for an agent id.

Bodies arrive as raw JSON and are validated by the handler after the agent
lookup: an unknown agent is 404 even when the body is also invalid.
"""

import json
import logging
from collections.abc import AsyncIterator
from typing import Any

from fastapi import APIRouter, Body, Request
from fastapi.responses import StreamingResponse

from ...orchestration.chat import ChatHandler
from ..models.responses import ChatData, SuccessResponse, WorkflowData, success

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post(
    "/chat/ritual-workflow",
    response_model=SuccessResponse[WorkflowData],
    response_model_exclude_unset=True,
)
async def ritual_workflow(request: Request, payload: Any = Body(None)) -> dict:
    """
    Run the ritual workflow.

    Five perspective composers run concurrently; their drafts are synthesized
    into one ritual, screened, and revised once if the screen flags issues.
    """
    workflow = request.app.state.workflow
    logger.info(f"[ChatAPI] Ritual workflow requested by {request.state.auth.user_id}")
    result = await workflow.run(payload)
    return success(result.to_dict())


@router.post(
    "/chat/{agent_id}",
    response_model=SuccessResponse[ChatData],
    response_model_exclude_unset=True,
)
async def chat(agent_id: str, request: Request, payload: Any = Body(None)):
    """
    Send a message to one agent.

    With stream=true the response is a Server-Sent Events stream:
      - start:   {agent}
      - content: {delta}   (zero or more)
      - result:  {data}    (same payload as the non-streaming response)
      - end
    A failure after start emits a single error event {error, message} instead.
    """
    handler: ChatHandler = request.app.state.chat_handler
    agent, chat_request = handler.prepare(agent_id, payload)
    logger.info(f"[ChatAPI] {request.state.auth.user_id} -> {agent.id}")

    if not chat_request.stream:
        result = await handler.run(agent, chat_request)
        return success(result.to_dict())

    async def event_generator() -> AsyncIterator[str]:
        events = handler.stream(agent, chat_request)
        try:
            async for event in events:
                yield _sse_event(event.type, event.to_dict())
        finally:
            await events.aclose()

    logger.debug(f"[ChatAPI] Streaming {agent.id}")
    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )


# =============================================================================
# SSE HELPERS
# =============================================================================


def _sse_event(event_type: str, data: dict) -> str:
    """Format a Server-Sent Event."""
    return f"event: {event_type}\ndata: {json.dumps(data, default=str)}\n\n"
