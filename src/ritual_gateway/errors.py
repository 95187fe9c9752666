"""
Error taxonomy -- every failure the gateway reports has a stable code.

All errors derive from ApiError, which carries:
  - code:        machine-readable, stable across releases (e.g. "agent_not_found")
  - status_code: HTTP status the gateway responds with
  - message:     human-readable explanation
  - details:     optional structured detail (e.g. per-field validation issues)

The API layer renders these as:
    {"success": false, "error": code, "message": message, "details": details}

Never return a partial/ambiguous success -- raise one of these instead.
"""

from typing import Any


class ApiError(Exception):
    """Base class for all errors surfaced through the gateway."""

    code: str = "internal_error"
    status_code: int = 500
    default_message: str = "An unexpected error occurred"

    def __init__(self, message: str | None = None, details: Any = None):
        self.message = message or self.default_message
        self.details = details
        super().__init__(self.message)

    def to_dict(self) -> dict:
        body = {"success": False, "error": self.code, "message": self.message}
        if self.details is not None:
            body["details"] = self.details
        return body


# =============================================================================
# REQUEST ERRORS (4xx)
# =============================================================================


class ValidationError(ApiError, ValueError):
    """Malformed or missing request fields. Contains a user-friendly message."""

    code = "validation_error"
    status_code = 400
    default_message = "Invalid input data"


class InvalidDescriptor(ValidationError):
    code = "invalid_descriptor"
    default_message = "Agent descriptor is invalid"


class Unauthorized(ApiError):
    code = "unauthorized"
    status_code = 401
    default_message = "Invalid or missing API key"


class CORSRejected(ApiError):
    code = "cors_rejected"
    status_code = 403
    default_message = "Origin not allowed"


class AgentNotFound(ApiError):
    code = "agent_not_found"
    status_code = 404
    default_message = "Agent not found"


class EndpointNotFound(ApiError):
    code = "endpoint_not_found"
    status_code = 404
    default_message = "Available endpoints: /agents, /chat, /quick-chat"


class MethodNotAllowed(ApiError):
    code = "method_not_allowed"
    status_code = 405
    default_message = "Method not allowed"


class DuplicateAgent(ApiError):
    code = "duplicate_agent"
    status_code = 409
    default_message = "An agent with this id is already registered"


class RateLimitExceeded(ApiError):
    code = "rate_limit_exceeded"
    status_code = 429
    default_message = "Too many requests, please try again later"

    def __init__(self, retry_after: float = 60.0, message: str | None = None):
        super().__init__(message)
        self.retry_after = retry_after


# =============================================================================
# SERVER-SIDE ERRORS (5xx)
# =============================================================================


class InternalError(ApiError):
    pass


class ChatFailed(ApiError):
    code = "chat_error"
    default_message = "Failed to process chat"


class QuickChatFailed(ChatFailed):
    code = "quick_chat_error"
    default_message = "Failed to process quick chat"


class CoordinatorUnavailable(ApiError):
    code = "coordinator_not_available"
    default_message = "Coordinator agent not available"


class WorkflowError(ApiError):
    """A ritual workflow stage could not obtain a schema-conforming result."""

    code = "workflow_failed"
    default_message = "Ritual workflow failed"


class CompositionFailed(WorkflowError):
    code = "composition_failed"
    default_message = "All perspective composers failed"


class SynthesisFailed(WorkflowError):
    code = "synthesis_failed"
    default_message = "Synthesis did not produce a valid ritual"


class ScreeningFailed(WorkflowError):
    code = "screening_failed"
    default_message = "Ethical screening did not produce a valid report"


class RevisionFailed(WorkflowError):
    code = "revision_failed"
    default_message = "Revision did not produce a valid ritual"


class WorkflowTimeout(WorkflowError):
    code = "timeout"
    default_message = "Ritual workflow exceeded its deadline"
