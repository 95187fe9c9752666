"""
Pydantic response models -- what the API returns.

Every success body is wrapped in the envelope:
    {"success": true, "data": <payload>, "message"?: <text>}
Routes set response_model_exclude_unset so an absent message is omitted.
"""

from typing import Any, Generic, TypeVar

from pydantic import BaseModel, Field

T = TypeVar("T")


class SuccessResponse(BaseModel, Generic[T]):
    """Success envelope."""

    success: bool = True
    data: T
    message: str | None = None


def success(data: Any, message: str | None = None) -> dict[str, Any]:
    """Build a success envelope. message is only included when given."""
    body: dict[str, Any] = {"success": True, "data": data}
    if message is not None:
        body["message"] = message
    return body


# =============================================================================
# AGENT REGISTRY
# =============================================================================


class AgentInfo(BaseModel):
    """A registered agent descriptor."""

    id: str
    name: str
    description: str = ""
    instructions: str
    model: str
    tools: list[str] = Field(default_factory=list)
    handoffs: list[str] = Field(default_factory=list)
    output_schema: str | None = None
    created_at: int


# =============================================================================
# CHAT
# =============================================================================


class ChatData(BaseModel):
    """Result of a single-agent chat or quick chat."""

    response: str | dict[str, Any]
    history: list[dict[str, Any]] = Field(default_factory=list)
    agent_used: str
    last_agent: str
    tools_used: list[str] = Field(default_factory=list)
    run_id: str


class PerspectiveStatus(BaseModel):
    status: str
    attempts: int = 0
    reason: str | None = None


class WorkflowData(BaseModel):
    """Result of a completed ritual workflow run."""

    response: dict[str, Any]
    history: list[dict[str, Any]] = Field(default_factory=list)
    agent_used: str = "ritual-workflow"
    workflow_steps: list[str] = Field(default_factory=list)
    perspectives: dict[str, PerspectiveStatus] = Field(default_factory=dict)


# =============================================================================
# HEALTH
# =============================================================================


class HealthData(BaseModel):
    """Liveness probe payload."""

    status: str = "healthy"
    agents_registered: int = 0
    uptime_seconds: float = 0.0
