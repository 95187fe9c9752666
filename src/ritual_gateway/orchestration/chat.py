"""
ChatHandler -- single-agent chat, streaming chat, and coordinator quick chat.

  chat(agent_id, payload)  -- resolve agent, validate, generate once
  stream(agent, request)   -- ordered event stream for a prepared request:
                              start, content*, result, end   (or ... error)
  quick_chat(payload)      -- always targets the coordinator; the generation
                              service decides whether to hand off, the
                              handler reports who answered

Lookup happens before body validation, so an unknown agent is a 404 even
when the body is also malformed.
"""

import logging
import uuid
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from typing import Any

from ..agents.builtin import COORDINATOR_AGENT_ID
from ..agents.descriptor import AgentDescriptor
from ..agents.registry import AgentRegistry
from ..errors import (
    AgentNotFound,
    ChatFailed,
    CoordinatorUnavailable,
    QuickChatFailed,
)
from ..llm.generation import GenerationService
from ..llm.models import GenerationError, GenerationResult
from ..security import detect_injection_attempt, validate_not_empty
from .contracts import ChatRequest, parse_body

logger = logging.getLogger(__name__)


# =============================================================================
# DATA MODELS
# =============================================================================


@dataclass
class ChatResult:
    """Payload returned by chat and quick chat (and the stream's result event)."""

    response: str | dict[str, Any]
    history: list[dict[str, Any]]
    agent_used: str
    last_agent: str
    tools_used: list[str] = field(default_factory=list)
    run_id: str = field(default_factory=lambda: uuid.uuid4().hex)

    @classmethod
    def from_generation(cls, agent_id: str, result: GenerationResult) -> "ChatResult":
        return cls(
            response=result.output,
            history=[turn.model_dump() for turn in result.history],
            agent_used=agent_id,
            last_agent=result.last_agent or agent_id,
            tools_used=list(result.tools_used),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "response": self.response,
            "history": self.history,
            "agent_used": self.agent_used,
            "last_agent": self.last_agent,
            "tools_used": self.tools_used,
            "run_id": self.run_id,
        }


@dataclass
class StreamEvent:
    """One event of a chat stream. type: start | content | result | end | error."""

    type: str
    data: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, **self.data}


# =============================================================================
# CHAT HANDLER
# =============================================================================


class ChatHandler:
    """
    Drives single-agent chat on top of the registry and generation service.

    Usage:
        handler = ChatHandler(registry=registry, generation=service)
        result = await handler.chat("weather", {"message": "Paris?"})
        print(result.response, result.last_agent)
    """

    def __init__(
        self,
        registry: AgentRegistry,
        generation: GenerationService,
        coordinator_id: str = COORDINATOR_AGENT_ID,
    ):
        self._registry = registry
        self._generation = generation
        self._coordinator_id = coordinator_id

    def prepare(self, agent_id: str, payload: Any) -> tuple[AgentDescriptor, ChatRequest]:
        """Resolve the agent (AgentNotFound) then validate the body (ValidationError)."""
        agent = self._registry.get(agent_id)
        request = parse_body(ChatRequest, payload)
        validate_not_empty(request.message, "message")
        detect_injection_attempt(request.message)
        return agent, request

    async def chat(self, agent_id: str, payload: Any) -> ChatResult:
        """Non-streaming chat with one agent."""
        agent, request = self.prepare(agent_id, payload)
        return await self.run(agent, request)

    async def run(self, agent: AgentDescriptor, request: ChatRequest) -> ChatResult:
        handoffs = self._registry.resolve_handoffs(agent)
        try:
            result = await self._generation.generate(
                agent, request.history, request.message, handoffs=handoffs
            )
        except GenerationError as e:
            logger.error(f"[ChatHandler] {agent.id} failed: {e.code}")
            raise ChatFailed(e.message, details={"code": e.code}) from e

        logger.info(
            f"[ChatHandler] {agent.id} answered "
            f"(last_agent={result.last_agent}, tools={result.tools_used})"
        )
        return ChatResult.from_generation(agent.id, result)

    async def stream(
        self, agent: AgentDescriptor, request: ChatRequest
    ) -> AsyncIterator[StreamEvent]:
        """
        Ordered event stream for one chat turn.

        Emits start, zero or more content deltas, one result, then end. A
        failure after start emits a single error event and ends the stream;
        nothing is emitted after error or end.
        """
        yield StreamEvent("start", {"agent": agent.id})

        handoffs = self._registry.resolve_handoffs(agent)
        events = self._generation.stream(
            agent, request.history, request.message, handoffs=handoffs
        )
        try:
            async for event in events:
                if event.kind == "content":
                    yield StreamEvent("content", dict(event.data or {}))
                elif event.kind == "result" and event.result is not None:
                    result = ChatResult.from_generation(agent.id, event.result)
                    yield StreamEvent("result", {"data": result.to_dict()})
        except GenerationError as e:
            logger.error(f"[ChatHandler] Stream from {agent.id} failed: {e.code}")
            yield StreamEvent("error", {"error": e.code, "message": e.message})
            return
        except Exception as e:
            logger.exception(f"[ChatHandler] Stream from {agent.id} crashed")
            yield StreamEvent("error", {"error": "chat_error", "message": str(e)})
            return
        finally:
            await events.aclose()

        yield StreamEvent("end")

    async def quick_chat(self, payload: Any) -> ChatResult:
        """Smart routing via the coordinator's handoffs."""
        try:
            coordinator = self._registry.get(self._coordinator_id)
        except AgentNotFound as e:
            raise CoordinatorUnavailable() from e

        request = parse_body(ChatRequest, payload)
        validate_not_empty(request.message, "message")
        try:
            return await self.run(coordinator, request)
        except ChatFailed as e:
            raise QuickChatFailed(e.message, details=e.details) from e
