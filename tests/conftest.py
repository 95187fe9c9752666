"""Test fixtures -- scripted LLM, registry with built-ins, gateway app."""

from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from ritual_gateway.agents import AgentRegistry, register_builtin_agents
from ritual_gateway.api.gateway import create_app
from ritual_gateway.config import GatewaySettings
from ritual_gateway.llm import LLMResponse, default_tool_catalog
from ritual_gateway.llm.models import ConversationTurn, GenerationResult
from ritual_gateway.orchestration import WorkflowConfig


class ScriptedLLM:
    """LLM client double. complete() pops replies, stream() pops chunk lists.

    A reply (or a chunk) that is an Exception instance is raised instead.
    Every call's messages are copied into .calls for later inspection.
    """

    def __init__(self, replies=None, streams=None):
        self.replies = list(replies or [])
        self.streams = list(streams or [])
        self.calls: list[dict] = []

    async def complete(self, system, messages, model=None, temperature=0.5,
                       max_tokens=4096, role="assistant"):
        self.calls.append({
            "system": system,
            "messages": [dict(m) for m in messages],
            "model": model,
        })
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return LLMResponse(content=reply, model=model or "mock-model", provider="mock")

    async def stream(self, system, messages, model=None, temperature=0.5, max_tokens=4096):
        self.calls.append({
            "system": system,
            "messages": [dict(m) for m in messages],
            "model": model,
        })
        for chunk in self.streams.pop(0):
            if isinstance(chunk, Exception):
                raise chunk
            yield chunk


def make_result(output, agent_id: str, message: str = "hi", tools_used=()) -> GenerationResult:
    return GenerationResult(
        output=output,
        history=[
            ConversationTurn(role="user", content=message),
            ConversationTurn(role="assistant", content=output),
        ],
        last_agent=agent_id,
        tools_used=list(tools_used),
    )


@pytest.fixture
def registry():
    """Registry seeded with the built-in agents and tool catalog names."""
    reg = AgentRegistry(known_tools=default_tool_catalog().names())
    register_builtin_agents(reg)
    return reg


@pytest.fixture
def generation():
    """Generation service mock. Set generation.generate.side_effect per test."""
    service = MagicMock()
    service.generate = AsyncMock()
    service.tools = default_tool_catalog()
    return service


@pytest.fixture
def fast_workflow_config():
    """No backoff sleeps, short deadlines."""
    return WorkflowConfig(
        perspective_timeout=1.0,
        run_timeout=5.0,
        max_retries=2,
        retry_base_delay=0.0,
    )


@pytest.fixture
def settings():
    return GatewaySettings(api_key=None, environment="development")


@pytest.fixture
def make_client(registry, generation, fast_workflow_config):
    """Build a TestClient; override settings, registry, or generation per test."""

    def _make(settings=None, registry=registry, generation=generation):
        app = create_app(
            settings=settings or GatewaySettings(api_key=None, environment="development"),
            registry=registry,
            generation=generation,
            workflow_config=fast_workflow_config,
        )
        return TestClient(app)

    return _make


@pytest.fixture
def client(make_client):
    return make_client()
