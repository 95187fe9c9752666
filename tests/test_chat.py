"""
Single-agent chat, SSE streaming, and coordinator quick chat.
"""

import json

import pytest

from ritual_gateway.agents import AgentRegistry
from ritual_gateway.errors import ChatFailed, CoordinatorUnavailable, ValidationError
from ritual_gateway.llm import GenerationService, LLMCallError, default_tool_catalog
from ritual_gateway.llm.models import GenerationError
from ritual_gateway.orchestration import ChatHandler, ChatRequest
from tests.conftest import ScriptedLLM, make_result


def parse_sse(text: str) -> list[tuple[str, dict]]:
    """Split an SSE body into (event, data) pairs."""
    events = []
    for block in text.strip().split("\n\n"):
        lines = dict(line.split(": ", 1) for line in block.splitlines())
        events.append((lines["event"], json.loads(lines["data"])))
    return events


class TestChatRoute:
    def test_non_streaming_chat(self, client, generation, registry):
        generation.generate.return_value = make_result(
            "Tokyo: Rainy, 68°F", "weather", "Tokyo?", tools_used=["get_weather"]
        )
        response = client.post(
            "/api/chat/weather",
            json={"message": "Tokyo?", "history": [{"role": "user", "content": "hello"}]},
        )
        assert response.status_code == 200
        data = response.json()["data"]
        assert data["response"] == "Tokyo: Rainy, 68°F"
        assert data["agent_used"] == "weather"
        assert data["last_agent"] == "weather"
        assert data["tools_used"] == ["get_weather"]
        assert data["run_id"]

        agent, history, message = generation.generate.call_args.args
        assert agent is registry.get("weather")
        assert [t.content for t in history] == ["hello"]
        assert message == "Tokyo?"

    def test_unknown_agent_beats_invalid_body(self, client, generation):
        response = client.post("/api/chat/ghost", json={})
        assert response.status_code == 404
        assert response.json()["error"] == "agent_not_found"
        generation.generate.assert_not_called()

    def test_missing_message_is_validation_error(self, client, generation):
        response = client.post("/api/chat/weather", json={"history": []})
        assert response.status_code == 400
        body = response.json()
        assert body["error"] == "validation_error"
        assert body["details"][0]["field"] == "message"
        generation.generate.assert_not_called()

    def test_blank_message_is_validation_error(self, client):
        response = client.post("/api/chat/weather", json={"message": "   "})
        assert response.status_code == 400

    def test_bad_history_role_is_validation_error(self, client):
        response = client.post(
            "/api/chat/weather",
            json={"message": "hi", "history": [{"role": "system", "content": "x"}]},
        )
        assert response.status_code == 400
        assert response.json()["details"][0]["field"].startswith("history")

    def test_generation_failure_is_chat_error(self, client, generation):
        generation.generate.side_effect = GenerationError("llm_error", "provider down")
        response = client.post("/api/chat/weather", json={"message": "hi"})
        assert response.status_code == 500
        body = response.json()
        assert body["error"] == "chat_error"
        assert body["details"] == {"code": "llm_error"}

    def test_ritual_workflow_path_is_not_an_agent_id(self, client, generation):
        async def fake_generate(agent, history, message, handoffs=()):
            if agent.id.startswith("composer-"):
                return make_result(f"{agent.id} draft", agent.id)
            if agent.id == "red-flag-checker":
                return make_result({"flagged": False, "issues": [], "suggestions": []}, agent.id)
            return make_result(
                {"narrative": "n", "activity_name": "Walk", "description": "d", "themes": []},
                agent.id,
            )

        generation.generate.side_effect = fake_generate
        response = client.post("/api/chat/ritual-workflow", json={"message": "calm evenings"})
        assert response.status_code == 200
        data = response.json()["data"]
        assert data["agent_used"] == "ritual-workflow"
        assert data["response"]["activity_name"] == "Walk"
        assert data["workflow_steps"][-2:] == ["synthesizer", "red-flag-checker"]
        assert data["perspectives"]["composer-biology"]["status"] == "succeeded"

    def test_ritual_workflow_all_composers_failing_is_error_envelope(self, client, generation):
        generation.generate.side_effect = GenerationError("llm_error", "provider down")
        response = client.post("/api/chat/ritual-workflow", json={"message": "calm evenings"})
        assert response.status_code == 500
        body = response.json()
        assert body["success"] is False
        assert body["error"] == "composition_failed"
        assert body["message"] == "All perspective composers failed"
        assert body["details"]["composer-biology"] == "llm_error"
        called = {c.args[0].id for c in generation.generate.call_args_list}
        assert all(agent_id.startswith("composer-") for agent_id in called)


class TestStreaming:
    @pytest.fixture
    def stream_client(self, make_client, registry):
        def _make(llm):
            service = GenerationService(llm=llm, tools=default_tool_catalog())
            return make_client(generation=service)
        return _make

    def test_event_order(self, stream_client):
        client = stream_client(ScriptedLLM(streams=[["Hel", "lo ", "there"]]))
        response = client.post("/api/chat/math", json={"message": "hi", "stream": True})
        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")

        events = parse_sse(response.text)
        types = [event for event, _ in events]
        assert types == ["start", "content", "content", "content", "result", "end"]
        assert events[0][1] == {"type": "start", "agent": "math"}
        assert "".join(d["delta"] for e, d in events if e == "content") == "Hello there"
        result = events[4][1]["data"]
        assert result["response"] == "Hello there"
        assert result["agent_used"] == "math"

    def test_mid_stream_failure_emits_one_error_and_stops(self, stream_client):
        llm = ScriptedLLM(streams=[["partial ", LLMCallError("connection reset")]])
        client = stream_client(llm)
        response = client.post("/api/chat/math", json={"message": "hi", "stream": True})

        events = parse_sse(response.text)
        types = [event for event, _ in events]
        assert types == ["start", "content", "error"]
        assert events[-1][1]["error"] == "llm_error"

    def test_tool_call_is_buffered_not_streamed(self, stream_client):
        llm = ScriptedLLM(streams=[
            ['{"type": "tool_call", ', '"tool": "calculate", "arguments": {"expression": "2+2"}}'],
            ["2+2 ", "is 4"],
        ])
        client = stream_client(llm)
        events = parse_sse(
            client.post("/api/chat/math", json={"message": "2+2?", "stream": True}).text
        )
        deltas = [d["delta"] for e, d in events if e == "content"]
        assert "".join(deltas) == "2+2 is 4"
        assert events[-2][1]["data"]["tools_used"] == ["calculate"]

    def test_validation_happens_before_stream_opens(self, stream_client):
        client = stream_client(ScriptedLLM())
        response = client.post("/api/chat/math", json={"stream": True})
        assert response.status_code == 400
        assert response.json()["error"] == "validation_error"


class TestQuickChat:
    def test_reports_specialist_as_last_agent(self, client, generation):
        generation.generate.return_value = make_result("4", "math")
        response = client.post("/api/quick-chat", json={"message": "2+2?"})
        assert response.status_code == 200
        data = response.json()["data"]
        assert data["agent_used"] == "coordinator"
        assert data["last_agent"] == "math"

        agent = generation.generate.call_args.args[0]
        handoffs = generation.generate.call_args.kwargs["handoffs"]
        assert agent.id == "coordinator"
        assert [h.id for h in handoffs] == ["weather", "math", "research"]

    def test_coordinator_answers_itself(self, client, generation):
        generation.generate.return_value = make_result("Hello!", "coordinator")
        data = client.post("/api/quick-chat", json={"message": "hey"}).json()["data"]
        assert data["last_agent"] == "coordinator"

    def test_failure_is_quick_chat_error(self, client, generation):
        generation.generate.side_effect = GenerationError("max_turns_exceeded", "loop")
        response = client.post("/api/quick-chat", json={"message": "hey"})
        assert response.status_code == 500
        assert response.json()["error"] == "quick_chat_error"

    def test_missing_coordinator(self, make_client):
        client = make_client(registry=AgentRegistry())
        response = client.post("/api/quick-chat", json={"message": "hey"})
        assert response.status_code == 500
        assert response.json()["error"] == "coordinator_not_available"


class TestChatHandler:
    @pytest.mark.asyncio
    async def test_chat_maps_generation_error(self, registry, generation):
        generation.generate.side_effect = GenerationError("tool_error", "tool blew up")
        handler = ChatHandler(registry=registry, generation=generation)
        with pytest.raises(ChatFailed) as exc:
            await handler.chat("weather", {"message": "hi"})
        assert exc.value.details == {"code": "tool_error"}

    @pytest.mark.asyncio
    async def test_quick_chat_without_coordinator(self, generation):
        handler = ChatHandler(registry=AgentRegistry(), generation=generation)
        with pytest.raises(CoordinatorUnavailable):
            await handler.quick_chat({"message": "hi"})

    def test_prepare_validates_after_lookup(self, registry, generation):
        handler = ChatHandler(registry=registry, generation=generation)
        with pytest.raises(ValidationError):
            handler.prepare("weather", {"message": ""})
        agent, request = handler.prepare("weather", {"message": "hi", "extra": 1})
        assert agent.id == "weather"
        assert request == ChatRequest(message="hi")

    @pytest.mark.asyncio
    async def test_stream_closes_upstream_on_early_exit(self, registry):
        closed = []

        class Upstream:
            def stream(self, agent, history, message, handoffs=()):
                async def gen():
                    try:
                        yield GenerationEventStub("content", {"delta": "a"})
                        yield GenerationEventStub("content", {"delta": "b"})
                    finally:
                        closed.append(True)
                return gen()

        handler = ChatHandler(registry=registry, generation=Upstream())
        events = handler.stream(registry.get("math"), ChatRequest(message="hi"))
        assert (await events.__anext__()).type == "start"
        assert (await events.__anext__()).type == "content"
        await events.aclose()
        assert closed == [True]


class GenerationEventStub:
    def __init__(self, kind, data=None, result=None):
        self.kind, self.data, self.result = kind, data, result
