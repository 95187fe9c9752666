"""
Data models shared by the generation layer and its callers.

ConversationTurn is a pydantic model because it crosses the HTTP boundary
(chat history in requests and responses); the rest are plain dataclasses.
"""

import json
from dataclasses import dataclass, field
from typing import Any, Literal

from pydantic import BaseModel, Field


class ConversationTurn(BaseModel):
    """A single turn of conversation history."""

    role: Literal["user", "assistant"]
    content: str | dict[str, Any] = Field(..., description="Text or structured payload")

    def content_text(self) -> str:
        """Content as text (structured payloads are JSON-encoded)."""
        if isinstance(self.content, str):
            return self.content
        return json.dumps(self.content, default=str)


@dataclass
class GenerationResult:
    """Outcome of a successful generation invocation."""

    output: str | dict[str, Any]
    history: list[ConversationTurn] = field(default_factory=list)
    last_agent: str = ""
    tools_used: list[str] = field(default_factory=list)


@dataclass
class GenerationEvent:
    """One item of a streamed generation.

    kind == "content": data is {"delta": str}
    kind == "result":  data is None, result holds the GenerationResult
    """

    kind: Literal["content", "result"]
    data: dict[str, Any] | None = None
    result: GenerationResult | None = None


class GenerationError(Exception):
    """The generation service could not produce a (schema-conforming) reply.

    Codes:
      llm_error                 -- provider call failed after retries
      schema_validation_failed  -- final output did not satisfy the output schema
      max_turns_exceeded        -- tool/handoff loop did not converge
      unknown_tool              -- model requested a tool the agent does not declare
      tool_error                -- a declared tool raised
      unknown_handoff           -- handoff to an undeclared agent, or a second handoff
    """

    def __init__(self, code: str, message: str):
        self.code = code
        self.message = message
        super().__init__(f"{code}: {message}")
