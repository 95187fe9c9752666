"""
Validated request shapes for the orchestration handlers.

Handlers receive raw JSON bodies and validate them here so that the
agent lookup happens first (404 beats 400, matching the public API) and
validation failures carry per-field detail.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from ..errors import ValidationError
from ..llm.models import ConversationTurn

MAX_MESSAGE_LENGTH = 100_000
MAX_HISTORY_TURNS = 200


class ChatRequest(BaseModel):
    """Body of POST /api/chat/{id} and /api/quick-chat."""

    model_config = ConfigDict(extra="ignore")

    message: str = Field(..., min_length=1, max_length=MAX_MESSAGE_LENGTH)
    history: list[ConversationTurn] = Field(
        default_factory=list, max_length=MAX_HISTORY_TURNS
    )
    stream: bool = False


class WorkflowRequest(BaseModel):
    """Body of POST /api/chat/ritual-workflow."""

    model_config = ConfigDict(extra="ignore")

    message: str = Field(..., min_length=1, max_length=MAX_MESSAGE_LENGTH)
    history: list[ConversationTurn] = Field(
        default_factory=list, max_length=MAX_HISTORY_TURNS
    )


def field_errors(error: PydanticValidationError) -> list[dict[str, str]]:
    """Flatten pydantic errors to [{field, message}]."""
    return [
        {
            "field": ".".join(str(part) for part in err["loc"]) or "body",
            "message": err["msg"],
        }
        for err in error.errors()
    ]


def parse_body(model: type[BaseModel], payload: Any) -> Any:
    """Validate a raw body against model. Raises ValidationError with field details."""
    try:
        return model.model_validate(payload)
    except PydanticValidationError as e:
        raise ValidationError("Invalid input data", details=field_errors(e)) from e
