"""
Agent registry API -- create, list, and inspect agents.

  POST /api/agents       -- Create a custom agent (generated id)
  GET  /api/agents       -- List all registered agents
  GET  /api/agents/{id}  -- Get one agent's descriptor

Security:
  - Tool names must exist in the tool catalog
  - Handoff targets must be registered agents
  - Name and instructions must be non-blank
"""

import logging

from fastapi import APIRouter, Request

from ..models.requests import AgentCreateRequest
from ..models.responses import AgentInfo, SuccessResponse, success

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get(
    "/agents",
    response_model=SuccessResponse[list[AgentInfo]],
    response_model_exclude_unset=True,
)
async def list_agents(request: Request) -> dict:
    """List all registered agents in registration order."""
    registry = request.app.state.registry
    return success(registry.list_info())


@router.post(
    "/agents",
    status_code=201,
    response_model=SuccessResponse[AgentInfo],
    response_model_exclude_unset=True,
)
async def create_agent(body: AgentCreateRequest, request: Request) -> dict:
    """Create a custom agent from name, instructions, model, tools and handoffs."""
    registry = request.app.state.registry
    descriptor = registry.create(
        name=body.name,
        instructions=body.instructions,
        model=body.model,
        tools=body.tools,
        handoffs=body.handoffs,
    )
    logger.info(f"[AgentsAPI] Created: {descriptor.id} ({descriptor.name})")
    return success(descriptor.to_dict(), message="Agent created successfully")


@router.get(
    "/agents/{agent_id}",
    response_model=SuccessResponse[AgentInfo],
    response_model_exclude_unset=True,
)
async def get_agent(agent_id: str, request: Request) -> dict:
    """Get one agent's descriptor (404 agent_not_found if unknown)."""
    registry = request.app.state.registry
    return success(registry.get(agent_id).to_dict())
