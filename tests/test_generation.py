"""
GenerationService -- turn protocol against a scripted LLM client.
"""

import json

import pytest

from ritual_gateway.llm import GenerationService, LLMCallError, default_tool_catalog
from ritual_gateway.llm.models import ConversationTurn, GenerationError
from tests.conftest import ScriptedLLM

ARTIFACT = {
    "narrative": "Walk slowly around the block at dusk.",
    "activity_name": "Dusk Walk",
    "description": "A ten-minute walk to close the workday.",
    "themes": ["transition"],
}


def envelope(kind: str, **fields) -> str:
    return json.dumps({"type": kind, **fields})


def service(llm: ScriptedLLM, **kwargs) -> GenerationService:
    return GenerationService(llm=llm, tools=default_tool_catalog(), **kwargs)


class TestPlainAndToolTurns:
    @pytest.mark.asyncio
    async def test_plain_text_reply(self, registry):
        llm = ScriptedLLM(replies=["  Hello there!  "])
        history = [
            ConversationTurn(role="user", content="hi"),
            ConversationTurn(role="assistant", content="hello"),
        ]
        result = await service(llm).generate(registry.get("coordinator"), history, "how are you?")

        assert result.output == "Hello there!"
        assert result.last_agent == "coordinator"
        assert result.tools_used == []
        assert [t.content for t in result.history] == ["hi", "hello", "how are you?", "Hello there!"]
        assert [m["content"] for m in llm.calls[0]["messages"]] == ["hi", "hello", "how are you?"]

    @pytest.mark.asyncio
    async def test_tool_call_loop(self, registry):
        llm = ScriptedLLM(replies=[
            envelope("tool_call", tool="get_weather", arguments={"location": "Tokyo"}),
            "It is rainy in Tokyo.",
        ])
        result = await service(llm).generate(registry.get("weather"), [], "Weather in Tokyo?")

        assert result.output == "It is rainy in Tokyo."
        assert result.tools_used == ["get_weather"]
        tool_turn = llm.calls[1]["messages"][-1]
        assert tool_turn["role"] == "user"
        assert "Rainy, 68°F" in tool_turn["content"]
        assert "<TOOL_RESULT>" in tool_turn["content"]

    @pytest.mark.asyncio
    async def test_undeclared_tool_rejected(self, registry):
        llm = ScriptedLLM(replies=[envelope("tool_call", tool="get_weather", arguments={})])
        with pytest.raises(GenerationError) as exc:
            await service(llm).generate(registry.get("math"), [], "weather?")
        assert exc.value.code == "unknown_tool"

    @pytest.mark.asyncio
    async def test_tool_error(self, registry):
        llm = ScriptedLLM(replies=[envelope("tool_call", tool="calculate", arguments={"expr": "1"})])
        with pytest.raises(GenerationError) as exc:
            await service(llm).generate(registry.get("math"), [], "1?")
        assert exc.value.code == "tool_error"

    @pytest.mark.asyncio
    async def test_max_turns(self, registry):
        call = envelope("tool_call", tool="calculate", arguments={"expression": "1+1"})
        llm = ScriptedLLM(replies=[call, call])
        with pytest.raises(GenerationError) as exc:
            await service(llm, max_turns=2).generate(registry.get("math"), [], "loop")
        assert exc.value.code == "max_turns_exceeded"

    @pytest.mark.asyncio
    async def test_llm_failure(self, registry):
        llm = ScriptedLLM(replies=[LLMCallError("rate limited")])
        with pytest.raises(GenerationError) as exc:
            await service(llm).generate(registry.get("math"), [], "1+1")
        assert exc.value.code == "llm_error"

    @pytest.mark.asyncio
    async def test_system_prompt_describes_tools(self, registry):
        llm = ScriptedLLM(replies=["ok"])
        agent = registry.get("math")
        await service(llm).generate(agent, [], "hi")
        system = llm.calls[0]["system"]
        assert system.startswith(agent.instructions)
        assert '"name": "calculate"' in system
        assert llm.calls[0]["model"] == agent.model


class TestHandoffs:
    @pytest.mark.asyncio
    async def test_handoff_switches_agent(self, registry):
        coordinator = registry.get("coordinator")
        llm = ScriptedLLM(replies=[
            envelope("handoff", agent="math"),
            envelope("tool_call", tool="calculate", arguments={"expression": "2+2"}),
            "2 + 2 = 4",
        ])
        result = await service(llm).generate(
            coordinator, [], "2+2?", handoffs=registry.resolve_handoffs(coordinator)
        )
        assert result.output == "2 + 2 = 4"
        assert result.last_agent == "math"
        assert result.tools_used == ["calculate"]
        assert llm.calls[1]["system"].startswith(registry.get("math").instructions)

    @pytest.mark.asyncio
    async def test_handoff_is_one_level_deep(self, registry):
        coordinator = registry.get("coordinator")
        llm = ScriptedLLM(replies=[
            envelope("handoff", agent="math"),
            envelope("handoff", agent="weather"),
        ])
        with pytest.raises(GenerationError) as exc:
            await service(llm).generate(
                coordinator, [], "hi", handoffs=registry.resolve_handoffs(coordinator)
            )
        assert exc.value.code == "unknown_handoff"

    @pytest.mark.asyncio
    async def test_unknown_handoff_target(self, registry):
        llm = ScriptedLLM(replies=[envelope("handoff", agent="ghost")])
        with pytest.raises(GenerationError) as exc:
            await service(llm).generate(registry.get("weather"), [], "hi")
        assert exc.value.code == "unknown_handoff"


class TestOutputSchemas:
    @pytest.mark.asyncio
    async def test_final_envelope_validated(self, registry):
        llm = ScriptedLLM(replies=[envelope("final", output=ARTIFACT)])
        result = await service(llm).generate(registry.get("synthesizer"), [], "drafts")
        assert result.output == ARTIFACT
        assert result.history[-1].content == ARTIFACT

    @pytest.mark.asyncio
    async def test_bare_object_in_fence_accepted(self, registry):
        llm = ScriptedLLM(replies=[f"Here you go:\n```json\n{json.dumps(ARTIFACT)}\n```"])
        result = await service(llm).generate(registry.get("synthesizer"), [], "drafts")
        assert result.output["activity_name"] == "Dusk Walk"

    @pytest.mark.asyncio
    async def test_schema_mismatch(self, registry):
        broken = {k: v for k, v in ARTIFACT.items() if k != "narrative"}
        llm = ScriptedLLM(replies=[envelope("final", output=broken)])
        with pytest.raises(GenerationError) as exc:
            await service(llm).generate(registry.get("synthesizer"), [], "drafts")
        assert exc.value.code == "schema_validation_failed"

    @pytest.mark.asyncio
    async def test_plain_text_fails_schema(self, registry):
        llm = ScriptedLLM(replies=["I think the ritual is fine."])
        with pytest.raises(GenerationError) as exc:
            await service(llm).generate(registry.get("red-flag-checker"), [], "ritual")
        assert exc.value.code == "schema_validation_failed"

    @pytest.mark.asyncio
    async def test_red_flag_report(self, registry):
        report = {"flagged": True, "issues": ["x"], "suggestions": ["y"]}
        llm = ScriptedLLM(replies=[envelope("final", output=report)])
        result = await service(llm).generate(registry.get("red-flag-checker"), [], "ritual")
        assert result.output == report


class TestStreaming:
    @pytest.mark.asyncio
    async def test_plain_text_passthrough(self, registry):
        llm = ScriptedLLM(streams=[["", "Hi", " there"]])
        events = [e async for e in service(llm).stream(registry.get("math"), [], "hi")]
        assert [e.kind for e in events] == ["content", "content", "result"]
        assert [e.data["delta"] for e in events[:-1]] == ["Hi", " there"]
        assert events[-1].result.output == "Hi there"

    @pytest.mark.asyncio
    async def test_structured_output_sent_as_one_delta(self, registry):
        text = envelope("final", output=ARTIFACT)
        llm = ScriptedLLM(streams=[[text[:10], text[10:]]])
        events = [e async for e in service(llm).stream(registry.get("synthesizer"), [], "x")]
        assert [e.kind for e in events] == ["content", "result"]
        assert json.loads(events[0].data["delta"]) == ARTIFACT
