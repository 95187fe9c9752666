"""
AgentRegistry -- process-wide, in-memory mapping of agent id -> AgentDescriptor.

Created once by the application factory, seeded with the built-in agents,
and injected into handlers via app.state. Never a module global.

Usage:
    registry = AgentRegistry(known_tools=catalog.names())
    register_builtin_agents(registry)

    registry.register(AgentDescriptor(id="weather", name="Weather Assistant", ...))
    agent = registry.get("weather")            # raises AgentNotFound
    custom = registry.create(name="Poet", instructions="Write haiku.")
    for agent in registry.list():              # registration order, restartable
        ...

Concurrency: reads are frequent and cheap, registration is rare. A single
RLock guards the dict so no reader observes a half-registered descriptor.
"""

import logging
import threading
import time
import uuid
from collections.abc import Iterable, Iterator

from ..errors import AgentNotFound, DuplicateAgent, InvalidDescriptor, ValidationError
from ..security.validators import validate_identifier, validate_known_names
from .descriptor import DEFAULT_MODEL, AgentDescriptor

logger = logging.getLogger(__name__)


class AgentListing:
    """Lazy, finite, restartable view over the registry in registration order.

    Each iteration takes a fresh snapshot, so agents registered between two
    iterations show up in the second one.
    """

    def __init__(self, registry: "AgentRegistry"):
        self._registry = registry

    def __iter__(self) -> Iterator[AgentDescriptor]:
        return iter(self._registry._snapshot())

    def __len__(self) -> int:
        return self._registry.count


class AgentRegistry:
    """Thread-safe registry of immutable agent descriptors."""

    def __init__(self, known_tools: Iterable[str] | None = None):
        self._agents: dict[str, AgentDescriptor] = {}
        self._lock = threading.RLock()
        self._known_tools = set(known_tools) if known_tools is not None else None

    def register(self, descriptor: AgentDescriptor) -> AgentDescriptor:
        """Add a descriptor. Rejects duplicates, malformed ids and empty name/instructions."""
        try:
            validate_identifier(descriptor.id or "", "id")
        except ValidationError as e:
            raise InvalidDescriptor(e.message, details=e.details) from e
        if not descriptor.name or not descriptor.name.strip():
            raise InvalidDescriptor(
                "Agent name cannot be empty",
                details=[{"field": "name", "message": "cannot be empty"}],
            )
        if not descriptor.instructions or not descriptor.instructions.strip():
            raise InvalidDescriptor(
                "Agent instructions cannot be empty",
                details=[{"field": "instructions", "message": "cannot be empty"}],
            )

        with self._lock:
            if descriptor.id in self._agents:
                raise DuplicateAgent(f"Agent '{descriptor.id}' is already registered")
            self._agents[descriptor.id] = descriptor

        logger.info(f"[AgentRegistry] Registered agent: {descriptor.id} ({descriptor.name})")
        return descriptor

    def create(
        self,
        name: str,
        instructions: str,
        model: str | None = None,
        tools: Iterable[str] = (),
        handoffs: Iterable[str] = (),
    ) -> AgentDescriptor:
        """Build a custom descriptor with a generated id and register it."""
        tools = list(tools)
        handoffs = list(handoffs)
        try:
            if self._known_tools is not None:
                validate_known_names(tools, self._known_tools, "tools")
            with self._lock:
                validate_known_names(handoffs, self._agents, "handoffs")
        except ValidationError as e:
            raise InvalidDescriptor(e.message, details=e.details) from e

        descriptor = AgentDescriptor(
            id=f"custom_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}",
            name=name,
            instructions=instructions,
            model=model or DEFAULT_MODEL,
            tools=tools,
            handoffs=handoffs,
        )
        return self.register(descriptor)

    def get(self, agent_id: str) -> AgentDescriptor:
        """Get a descriptor by id. Raises AgentNotFound."""
        with self._lock:
            descriptor = self._agents.get(agent_id)
        if descriptor is None:
            raise AgentNotFound(f"Agent '{agent_id}' not found")
        return descriptor

    def resolve_handoffs(self, descriptor: AgentDescriptor) -> list[AgentDescriptor]:
        """Descriptors for the agent's declared handoff targets (missing ones skipped)."""
        targets = []
        with self._lock:
            for target_id in descriptor.handoffs:
                target = self._agents.get(target_id)
                if target is None:
                    logger.warning(
                        f"[AgentRegistry] {descriptor.id} hands off to unknown '{target_id}'"
                    )
                    continue
                targets.append(target)
        return targets

    def list_info(self) -> list[dict]:
        """Serializable info for all agents (for API responses)."""
        return [descriptor.to_dict() for descriptor in self._snapshot()]

    def clear(self) -> None:
        """Drop every descriptor (process shutdown / test teardown)."""
        with self._lock:
            self._agents.clear()
        logger.info("[AgentRegistry] Cleared")

    def _snapshot(self) -> list[AgentDescriptor]:
        with self._lock:
            return list(self._agents.values())

    def __contains__(self, agent_id: object) -> bool:
        with self._lock:
            return agent_id in self._agents

    @property
    def count(self) -> int:
        """Total number of registered agents."""
        with self._lock:
            return len(self._agents)

    # Defined last: inside the class body this name shadows the builtin for
    # any annotation that follows it.
    def list(self) -> AgentListing:
        """All descriptors in registration order."""
        return AgentListing(self)
