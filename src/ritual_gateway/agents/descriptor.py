"""
AgentDescriptor -- the immutable configuration behind a generation invocation.

A descriptor is not a process or a thread; it is the (instructions, model,
tools, output schema, handoffs) bundle the generation service is driven by.
"""

import time
from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel

DEFAULT_MODEL = "gpt-4o"


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True)
class AgentDescriptor:
    """Immutable agent configuration. Owned by the AgentRegistry."""

    id: str
    name: str
    instructions: str
    model: str = DEFAULT_MODEL
    tools: tuple[str, ...] = ()
    output_schema: type[BaseModel] | None = None
    handoffs: tuple[str, ...] = ()
    description: str = ""
    created_at: int = field(default_factory=_now_ms)

    def __post_init__(self):
        # Accept lists from callers but store tuples so the descriptor stays hashable
        object.__setattr__(self, "tools", tuple(self.tools))
        object.__setattr__(self, "handoffs", tuple(self.handoffs))

    @property
    def summary(self) -> str:
        """One-line description shown to coordinators choosing a handoff."""
        if self.description:
            return self.description
        return self.instructions.strip().splitlines()[0][:200] if self.instructions.strip() else ""

    def to_dict(self) -> dict[str, Any]:
        """Serialize for API responses."""
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "instructions": self.instructions,
            "model": self.model,
            "tools": list(self.tools),
            "handoffs": list(self.handoffs),
            "output_schema": self.output_schema.__name__ if self.output_schema else None,
            "created_at": self.created_at,
        }
