"""Pydantic models for API request/response contracts."""
from .requests import AgentCreateRequest
from .responses import (
    AgentInfo,
    ChatData,
    HealthData,
    SuccessResponse,
    WorkflowData,
    success,
)
