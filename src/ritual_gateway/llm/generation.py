"""
GenerationService -- turns (agent, history, message) into a validated reply.

This is the boundary every handler and the ritual workflow talk to:

    result = await service.generate(agent, history, message, handoffs=[...])
    result.output       # str, or dict when agent.output_schema is set
    result.history      # history + user turn + assistant turn (new list)
    result.last_agent   # id of the agent that produced the final output
    result.tools_used   # tool names executed, in order

    async for event in service.stream(agent, history, message):
        ...  # GenerationEvent("content", {"delta": ...}) ... GenerationEvent("result")

Failures raise GenerationError(code, message); nothing is returned that
doesn't satisfy the agent's output schema.

Turn protocol (appended to the agent's instructions, which are otherwise
passed verbatim):
  - Plain text                  -> final answer (agents without an output schema)
  - {"type": "tool_call", ...}  -> run a declared tool, feed the result back
  - {"type": "handoff", ...}    -> switch to one of the declared handoff targets
  - {"type": "final", "output"} -> final answer (required shape when a schema is set)

Handoffs are one level deep: after a transfer the target answers with its
own tools and cannot hand off again.
"""

import json
import logging
from collections.abc import AsyncIterator, Sequence
from dataclasses import dataclass, field
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from ..agents.descriptor import AgentDescriptor
from ..security.prompt_guard import wrap_user_content
from .client import LLMCallError, LLMClient
from .json_parser import extract_json
from .models import ConversationTurn, GenerationError, GenerationEvent, GenerationResult
from .tools import ToolCatalog

logger = logging.getLogger(__name__)

DEFAULT_MAX_TURNS = 8
DEFAULT_TEMPERATURE = 0.5
ENVELOPE_TYPES = ("tool_call", "handoff", "final")


@dataclass
class _Reply:
    """A parsed model reply."""

    kind: str  # "tool_call" | "handoff" | "final"
    payload: dict[str, Any] = field(default_factory=dict)
    output: Any = None


@dataclass
class _RunState:
    """Mutable state of one generate()/stream() invocation."""

    agent: AgentDescriptor
    handoff_targets: dict[str, AgentDescriptor]
    history: list[ConversationTurn]
    message: str
    transcript: list[dict] = field(default_factory=list)
    tools_used: list[str] = field(default_factory=list)


class GenerationService:
    """
    Runs the tool-call / handoff loop for one agent on top of an LLMClient.

    Usage:
        service = GenerationService(llm=create_client(), tools=default_tool_catalog())
        result = await service.generate(weather_agent, [], "Weather in Tokyo?")
    """

    def __init__(
        self,
        llm: LLMClient,
        tools: ToolCatalog | None = None,
        max_turns: int = DEFAULT_MAX_TURNS,
        temperature: float = DEFAULT_TEMPERATURE,
    ):
        self._llm = llm
        self._tools = tools or ToolCatalog()
        self._max_turns = max_turns
        self._temperature = temperature

    @property
    def tools(self) -> ToolCatalog:
        return self._tools

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    async def generate(
        self,
        agent: AgentDescriptor,
        history: Sequence[ConversationTurn],
        message: str,
        handoffs: Sequence[AgentDescriptor] = (),
    ) -> GenerationResult:
        """Run the agent to completion. Raises GenerationError."""
        state = self._start(agent, history, message, handoffs)

        for turn in range(self._max_turns):
            text = await self._complete(state)
            result = await self._advance(state, text)
            if result is not None:
                logger.debug(
                    f"[Generation] {agent.id} finished in {turn + 1} turn(s) "
                    f"(last_agent={result.last_agent})"
                )
                return result

        raise GenerationError(
            "max_turns_exceeded",
            f"Agent '{agent.id}' did not produce a final answer in {self._max_turns} turns",
        )

    async def stream(
        self,
        agent: AgentDescriptor,
        history: Sequence[ConversationTurn],
        message: str,
        handoffs: Sequence[AgentDescriptor] = (),
    ) -> AsyncIterator[GenerationEvent]:
        """
        Stream the agent's answer.

        Plain-text turns are forwarded delta by delta; protocol envelopes are
        buffered and acted on. Ends with exactly one "result" event, or raises
        GenerationError.
        """
        state = self._start(agent, history, message, handoffs)

        for _ in range(self._max_turns):
            buffer: list[str] = []
            passthrough: bool | None = None
            try:
                async for delta in self._llm.stream(
                    system=self._system_prompt(state),
                    messages=state.transcript,
                    model=state.agent.model,
                    temperature=self._temperature,
                ):
                    buffer.append(delta)
                    if passthrough is None:
                        head = "".join(buffer).lstrip()
                        if not head:
                            continue
                        passthrough = (
                            state.agent.output_schema is None
                            and not _looks_structured(head)
                        )
                        if passthrough:
                            yield GenerationEvent("content", {"delta": head})
                    elif passthrough:
                        yield GenerationEvent("content", {"delta": delta})
            except LLMCallError as e:
                raise GenerationError("llm_error", str(e)) from e

            result = await self._advance(state, "".join(buffer))
            if result is not None:
                if not passthrough:
                    yield GenerationEvent("content", {"delta": _as_text(result.output)})
                yield GenerationEvent("result", result=result)
                return

        raise GenerationError(
            "max_turns_exceeded",
            f"Agent '{agent.id}' did not produce a final answer in {self._max_turns} turns",
        )

    # -------------------------------------------------------------------------
    # Turn loop
    # -------------------------------------------------------------------------

    def _start(
        self,
        agent: AgentDescriptor,
        history: Sequence[ConversationTurn],
        message: str,
        handoffs: Sequence[AgentDescriptor],
    ) -> _RunState:
        state = _RunState(
            agent=agent,
            handoff_targets={h.id: h for h in handoffs},
            history=list(history),
            message=message,
        )
        state.transcript = _to_messages(
            [{"role": t.role, "content": t.content_text()} for t in history]
            + [{"role": "user", "content": message}]
        )
        return state

    async def _complete(self, state: _RunState) -> str:
        try:
            response = await self._llm.complete(
                system=self._system_prompt(state),
                messages=state.transcript,
                model=state.agent.model,
                temperature=self._temperature,
                role=state.agent.id,
            )
        except LLMCallError as e:
            raise GenerationError("llm_error", str(e)) from e
        return response.content

    async def _advance(self, state: _RunState, text: str) -> GenerationResult | None:
        """Act on one model reply. Returns the result when the run is finished."""
        reply = self._parse_reply(state.agent, text)

        if reply.kind == "final":
            return self._finish(state, reply.output)

        state.transcript.append({"role": "assistant", "content": text})

        if reply.kind == "tool_call":
            tool_output = await self._run_tool(state, reply.payload)
            state.transcript.append({
                "role": "user",
                "content": wrap_user_content(tool_output, "TOOL_RESULT"),
            })
            return None

        target_id = str(reply.payload.get("agent", ""))
        target = state.handoff_targets.get(target_id)
        if target is None:
            raise GenerationError(
                "unknown_handoff",
                f"Agent '{state.agent.id}' cannot hand off to '{target_id}'",
            )
        logger.info(f"[Generation] Handoff {state.agent.id} -> {target.id}")
        state.agent = target
        state.handoff_targets = {}
        state.transcript.append({
            "role": "user",
            "content": (
                f"You are now {target.name}. "
                f"Continue helping with the user's last message."
            ),
        })
        return None

    async def _run_tool(self, state: _RunState, payload: dict) -> str:
        name = str(payload.get("tool", ""))
        arguments = payload.get("arguments") or {}
        if name not in state.agent.tools or name not in self._tools:
            raise GenerationError(
                "unknown_tool", f"Agent '{state.agent.id}' has no tool '{name}'"
            )
        if not isinstance(arguments, dict):
            raise GenerationError("tool_error", f"Arguments for '{name}' must be an object")
        try:
            output = await self._tools.execute(name, arguments)
        except Exception as e:
            logger.warning(f"[Generation] Tool {name} failed: {type(e).__name__}: {e}")
            raise GenerationError("tool_error", f"Tool '{name}' failed: {e}") from e
        state.tools_used.append(name)
        return output

    def _finish(self, state: _RunState, output: Any) -> GenerationResult:
        return GenerationResult(
            output=output,
            history=[
                *state.history,
                ConversationTurn(role="user", content=state.message),
                ConversationTurn(role="assistant", content=output),
            ],
            last_agent=state.agent.id,
            tools_used=list(state.tools_used),
        )

    # -------------------------------------------------------------------------
    # Reply parsing and prompt building
    # -------------------------------------------------------------------------

    def _parse_reply(self, agent: AgentDescriptor, text: str) -> _Reply:
        schema = agent.output_schema
        data = extract_json(text) if schema or _looks_structured(text.lstrip()) else None

        if isinstance(data, dict) and data.get("type") in ENVELOPE_TYPES:
            if data["type"] != "final":
                return _Reply(kind=data["type"], payload=data)
            output = data.get("output")
        elif schema is not None:
            output = data
        else:
            return _Reply(kind="final", output=text.strip())

        if schema is None:
            if not isinstance(output, (str, dict)):
                output = _as_text(output)
            return _Reply(kind="final", output=output)

        if not isinstance(output, dict):
            raise GenerationError(
                "schema_validation_failed",
                f"Agent '{agent.id}' returned no {schema.__name__} object",
            )
        try:
            validated = schema.model_validate(output)
        except PydanticValidationError as e:
            raise GenerationError(
                "schema_validation_failed",
                f"Agent '{agent.id}' output does not match {schema.__name__}: "
                f"{e.error_count()} error(s)",
            ) from e
        return _Reply(kind="final", output=validated.model_dump())

    def _system_prompt(self, state: _RunState) -> str:
        agent = state.agent
        sections = [agent.instructions]
        protocol = []

        tools = [self._tools.get(t) for t in agent.tools if t in self._tools]
        if tools:
            protocol.append(
                "Available tools:\n"
                + json.dumps([t.describe() for t in tools], indent=2)
                + '\nTo call a tool, reply with ONLY: '
                '{"type": "tool_call", "tool": "<name>", "arguments": {...}}'
            )
        if state.handoff_targets:
            targets = "\n".join(
                f"  - {h.id}: {h.name} -- {h.summary}"
                for h in state.handoff_targets.values()
            )
            protocol.append(
                f"You may transfer the conversation to a specialist:\n{targets}\n"
                'To transfer, reply with ONLY: {"type": "handoff", "agent": "<id>"}'
            )
        if agent.output_schema is not None:
            protocol.append(
                'Give your final answer as ONLY: {"type": "final", "output": <object>} '
                "where <object> matches this JSON schema:\n"
                + json.dumps(agent.output_schema.model_json_schema(), indent=2)
            )
        elif protocol:
            protocol.append("Otherwise, answer the user directly in plain text.")

        if protocol:
            sections.append("## Response protocol\n" + "\n\n".join(protocol))
        return "\n\n".join(sections)


# =============================================================================
# HELPERS
# =============================================================================


def _looks_structured(text: str) -> bool:
    return text.startswith(("{", "```"))


def _as_text(output: Any) -> str:
    return output if isinstance(output, str) else json.dumps(output, default=str)


def _to_messages(messages: list[dict]) -> list[dict]:
    """Merge consecutive same-role messages (providers require alternation)."""
    merged: list[dict] = []
    for m in messages:
        if merged and merged[-1]["role"] == m["role"]:
            merged[-1] = {
                "role": m["role"],
                "content": f"{merged[-1]['content']}\n\n{m['content']}",
            }
        else:
            merged.append(dict(m))
    return merged
