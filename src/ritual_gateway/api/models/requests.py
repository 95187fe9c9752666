"""
Pydantic request models -- the API contract for clients.

Chat and workflow bodies are validated by the orchestration layer
(orchestration/contracts.py) after the agent lookup, so only the agent
creation body lives here.
"""

from pydantic import BaseModel, Field

from ...agents.descriptor import DEFAULT_MODEL

MAX_NAME_LENGTH = 200
MAX_INSTRUCTIONS_LENGTH = 50_000
MAX_TOOLS = 50


class AgentCreateRequest(BaseModel):
    """Body of POST /api/agents."""

    name: str = Field(..., min_length=1, max_length=MAX_NAME_LENGTH)
    instructions: str = Field(..., min_length=1, max_length=MAX_INSTRUCTIONS_LENGTH)
    model: str = Field(DEFAULT_MODEL, min_length=1, description="Model identifier")
    tools: list[str] = Field(
        default_factory=list,
        max_length=MAX_TOOLS,
        description="Tool names from the built-in catalog",
    )
    handoffs: list[str] = Field(
        default_factory=list,
        max_length=MAX_TOOLS,
        description="Ids of registered agents this agent may transfer to",
    )
