"""
Ritual Workflow -- composes one ritual from five perspectives.

State machine (one WorkflowRun per request, never persisted):

    PENDING -> COMPOSING -> COLLECTED -> SYNTHESIZING -> SCREENING -> DONE
                                                             |
                                                             +-> REVISING -> DONE
    any non-terminal state -> FAILED

Stages:
  1. Composing:    five composer agents run concurrently (asyncio.gather),
                   each attempt bounded by perspective_timeout, retried with
                   exponential backoff. Coroutines record an outcome, never raise.
  2. Collected:    outcomes in fixed perspective order. Zero successes fails
                   the run with CompositionFailed.
  3. Synthesizing: successful drafts, in fixed order, go to the synthesizer
                   as one batch. Output must be a RitualArtifact.
  4. Screening:    red-flag-checker returns a RedFlagReport.
  5. Revising:     only when flagged. The reviser's artifact replaces the
                   synthesis. At most once and not re-screened.

The whole run is bounded by run_timeout; on expiry in-flight invocations are
cancelled and WorkflowTimeout is raised. No partial artifact is returned.
"""

import asyncio
import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from ..agents.builtin import (
    PERSPECTIVE_AGENT_IDS,
    REVISION_AGENT_ID,
    SCREENING_AGENT_ID,
    SYNTHESIZER_AGENT_ID,
)
from ..agents.registry import AgentRegistry
from ..errors import (
    CompositionFailed,
    RevisionFailed,
    ScreeningFailed,
    SynthesisFailed,
    WorkflowError,
    WorkflowTimeout,
)
from ..llm.generation import GenerationService
from ..llm.models import ConversationTurn, GenerationError
from ..security import detect_injection_attempt, validate_not_empty, wrap_user_content
from .contracts import WorkflowRequest, parse_body

logger = logging.getLogger(__name__)

WORKFLOW_AGENT_ID = "ritual-workflow"


# =============================================================================
# STATE MACHINE
# =============================================================================


class WorkflowState(str, Enum):
    PENDING = "pending"
    COMPOSING = "composing"
    COLLECTED = "collected"
    SYNTHESIZING = "synthesizing"
    SCREENING = "screening"
    REVISING = "revising"
    DONE = "done"
    FAILED = "failed"


_TRANSITIONS: dict[WorkflowState, frozenset[WorkflowState]] = {
    WorkflowState.PENDING: frozenset({WorkflowState.COMPOSING}),
    WorkflowState.COMPOSING: frozenset({WorkflowState.COLLECTED}),
    WorkflowState.COLLECTED: frozenset({WorkflowState.SYNTHESIZING}),
    WorkflowState.SYNTHESIZING: frozenset({WorkflowState.SCREENING}),
    WorkflowState.SCREENING: frozenset({WorkflowState.REVISING, WorkflowState.DONE}),
    WorkflowState.REVISING: frozenset({WorkflowState.DONE}),
    WorkflowState.DONE: frozenset(),
    WorkflowState.FAILED: frozenset(),
}

TERMINAL_STATES = frozenset({WorkflowState.DONE, WorkflowState.FAILED})


@dataclass
class PerspectiveOutcome:
    """Result of one composer: pending, succeeded (with result) or failed (with reason)."""

    agent_id: str
    status: str = "pending"
    result: str | None = None
    reason: str | None = None
    attempts: int = 0

    @property
    def succeeded(self) -> bool:
        return self.status == "succeeded"

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"status": self.status, "attempts": self.attempts}
        if self.reason:
            data["reason"] = self.reason
        return data


@dataclass
class WorkflowRun:
    message: str
    history: list[ConversationTurn] = field(default_factory=list)
    perspectives: dict[str, PerspectiveOutcome] = field(default_factory=dict)
    synthesis: dict[str, Any] | None = None
    screening: dict[str, Any] | None = None
    revision: dict[str, Any] | None = None
    state: WorkflowState = WorkflowState.PENDING
    steps: list[str] = field(default_factory=list)
    failure: str | None = None

    def __post_init__(self):
        if not self.perspectives:
            self.perspectives = {
                agent_id: PerspectiveOutcome(agent_id) for agent_id in PERSPECTIVE_AGENT_IDS
            }

    def transition(self, target: WorkflowState) -> None:
        """Move to target. Raises RuntimeError on an edge the machine does not allow."""
        if target is WorkflowState.FAILED:
            allowed = self.state not in TERMINAL_STATES
        else:
            allowed = target in _TRANSITIONS[self.state]
        if not allowed:
            raise RuntimeError(
                f"Illegal workflow transition {self.state.value} -> {target.value}"
            )
        logger.debug(f"[RitualWorkflow] {self.state.value} -> {target.value}")
        self.state = target

    def fail(self, code: str) -> None:
        if self.state not in TERMINAL_STATES:
            self.transition(WorkflowState.FAILED)
        self.failure = code

    @property
    def succeeded_perspectives(self) -> list[PerspectiveOutcome]:
        """Successful outcomes, in fixed perspective order."""
        return [o for o in self.perspectives.values() if o.succeeded]

    @property
    def final_artifact(self) -> dict[str, Any] | None:
        return self.revision if self.revision is not None else self.synthesis


@dataclass
class WorkflowConfig:
    """Retry and timeout tunables for a RitualWorkflow."""

    perspective_timeout: float = 90.0
    run_timeout: float = 600.0
    max_retries: int = 2
    retry_base_delay: float = 1.0
    retry_max_delay: float = 8.0
    synthesis_retries: int = 1
    screening_retries: int = 1
    revision_retries: int = 1

    @classmethod
    def from_settings(cls, settings: Any) -> "WorkflowConfig":
        return cls(
            perspective_timeout=settings.perspective_timeout,
            run_timeout=settings.run_timeout,
            max_retries=settings.max_retries,
            retry_base_delay=settings.retry_base_delay,
        )

    def backoff(self, attempt: int) -> float:
        """Delay before retry number attempt+1 (attempt counts from 0)."""
        return min(self.retry_base_delay * (2 ** attempt), self.retry_max_delay)


@dataclass
class WorkflowResult:
    """Response body of a completed workflow run."""

    response: dict[str, Any]
    history: list[dict[str, Any]]
    workflow_steps: list[str]
    perspectives: dict[str, dict[str, Any]]
    agent_used: str = WORKFLOW_AGENT_ID

    @classmethod
    def from_run(cls, run: WorkflowRun) -> "WorkflowResult":
        artifact = run.final_artifact or {}
        history = [
            *run.history,
            ConversationTurn(role="user", content=run.message),
            ConversationTurn(role="assistant", content=artifact),
        ]
        return cls(
            response=artifact,
            history=[turn.model_dump() for turn in history],
            workflow_steps=list(run.steps),
            perspectives={k: o.to_dict() for k, o in run.perspectives.items()},
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "response": self.response,
            "history": self.history,
            "agent_used": self.agent_used,
            "workflow_steps": self.workflow_steps,
            "perspectives": self.perspectives,
        }


# =============================================================================
# ORCHESTRATOR
# =============================================================================


class RitualWorkflow:
    """
    Runs the compose / synthesize / screen / revise pipeline.

    Usage:
        workflow = RitualWorkflow(registry, generation, WorkflowConfig())
        result = await workflow.run({"message": "A morning ritual for focus"})
        result.response["activity_name"]
    """

    def __init__(
        self,
        registry: AgentRegistry,
        generation: GenerationService,
        config: WorkflowConfig | None = None,
    ):
        self._registry = registry
        self._generation = generation
        self.config = config or WorkflowConfig()

    async def run(self, payload: Any) -> WorkflowResult:
        """Execute one workflow run. Raises a WorkflowError subclass on failure."""
        if isinstance(payload, WorkflowRequest):
            request = payload
        else:
            request = parse_body(WorkflowRequest, payload)
        validate_not_empty(request.message, "message")
        detect_injection_attempt(request.message)

        run = WorkflowRun(message=request.message, history=list(request.history))
        try:
            await asyncio.wait_for(self._execute(run), timeout=self.config.run_timeout)
        except asyncio.TimeoutError as e:
            run.fail(WorkflowTimeout.code)
            logger.error(
                f"[RitualWorkflow] Run exceeded {self.config.run_timeout}s "
                f"(steps so far: {run.steps})"
            )
            raise WorkflowTimeout() from e
        except WorkflowError as e:
            run.fail(e.code)
            logger.error(f"[RitualWorkflow] Run failed: {e.code} ({e.message})")
            raise

        logger.info(f"[RitualWorkflow] Done: {run.steps}")
        return WorkflowResult.from_run(run)

    async def _execute(self, run: WorkflowRun) -> None:
        run.transition(WorkflowState.COMPOSING)
        logger.info(f"[RitualWorkflow] Composing ({len(run.perspectives)} perspectives)")
        await self._compose(run)

        run.transition(WorkflowState.COLLECTED)
        drafts = run.succeeded_perspectives
        if not drafts:
            raise CompositionFailed(
                details={k: o.reason for k, o in run.perspectives.items()}
            )
        run.steps.extend(o.agent_id for o in drafts)

        run.transition(WorkflowState.SYNTHESIZING)
        run.synthesis = await self._invoke_stage(
            run,
            SYNTHESIZER_AGENT_ID,
            _synthesis_input(run),
            self.config.synthesis_retries,
            SynthesisFailed,
        )
        run.steps.append(SYNTHESIZER_AGENT_ID)

        run.transition(WorkflowState.SCREENING)
        run.screening = await self._invoke_stage(
            run,
            SCREENING_AGENT_ID,
            wrap_user_content(_dumps(run.synthesis), "RITUAL"),
            self.config.screening_retries,
            ScreeningFailed,
        )
        run.steps.append(SCREENING_AGENT_ID)

        if not run.screening.get("flagged"):
            run.transition(WorkflowState.DONE)
            return

        logger.info(
            f"[RitualWorkflow] Screening flagged {len(run.screening.get('issues', []))} "
            f"issue(s), revising"
        )
        run.transition(WorkflowState.REVISING)
        run.revision = await self._invoke_stage(
            run,
            REVISION_AGENT_ID,
            _revision_input(run.synthesis, run.screening),
            self.config.revision_retries,
            RevisionFailed,
        )
        run.steps.append(REVISION_AGENT_ID)
        run.transition(WorkflowState.DONE)

    # -------------------------------------------------------------------------
    # Composing
    # -------------------------------------------------------------------------

    async def _compose(self, run: WorkflowRun) -> None:
        outcomes = await asyncio.gather(
            *(self._compose_one(run, outcome) for outcome in run.perspectives.values())
        )
        failed = [o.agent_id for o in outcomes if not o.succeeded]
        if failed:
            logger.warning(f"[RitualWorkflow] Perspectives failed: {failed}")

    async def _compose_one(
        self, run: WorkflowRun, outcome: PerspectiveOutcome
    ) -> PerspectiveOutcome:
        try:
            agent = self._registry.get(outcome.agent_id)
        except Exception as e:
            outcome.status, outcome.reason = "failed", str(e)
            return outcome

        for attempt in range(self.config.max_retries + 1):
            outcome.attempts = attempt + 1
            try:
                result = await asyncio.wait_for(
                    self._generation.generate(agent, run.history, run.message),
                    timeout=self.config.perspective_timeout,
                )
            except asyncio.TimeoutError:
                outcome.reason = "timeout"
            except GenerationError as e:
                outcome.reason = e.code
            except Exception as e:
                logger.exception(f"[RitualWorkflow] {agent.id} crashed")
                outcome.reason = f"{type(e).__name__}: {e}"
            else:
                outcome.status = "succeeded"
                outcome.result = _as_text(result.output)
                outcome.reason = None
                return outcome

            logger.warning(
                f"[RitualWorkflow] {agent.id} attempt {attempt + 1} failed: {outcome.reason}"
            )
            if attempt < self.config.max_retries:
                await asyncio.sleep(self.config.backoff(attempt))

        outcome.status = "failed"
        return outcome

    # -------------------------------------------------------------------------
    # Sequential stages
    # -------------------------------------------------------------------------

    async def _invoke_stage(
        self,
        run: WorkflowRun,
        agent_id: str,
        message: str,
        retries: int,
        error_cls: type[WorkflowError],
    ) -> dict[str, Any]:
        """Invoke one schema-bound stage agent with retries. Raises error_cls."""
        agent = self._registry.get(agent_id)
        last_code = None

        for attempt in range(retries + 1):
            try:
                result = await asyncio.wait_for(
                    self._generation.generate(agent, [], message),
                    timeout=self.config.perspective_timeout,
                )
            except asyncio.TimeoutError:
                last_code = "timeout"
            except GenerationError as e:
                last_code = e.code
            else:
                if isinstance(result.output, dict):
                    return result.output
                last_code = "schema_validation_failed"

            logger.warning(
                f"[RitualWorkflow] {agent_id} attempt {attempt + 1} failed: {last_code}"
            )
            if attempt < retries:
                await asyncio.sleep(self.config.backoff(attempt))

        raise error_cls(details={"agent": agent_id, "reason": last_code})


# =============================================================================
# HELPERS
# =============================================================================


def _as_text(output: Any) -> str:
    return output if isinstance(output, str) else _dumps(output)


def _dumps(data: Any) -> str:
    return json.dumps(data, indent=2, default=str)


def _synthesis_input(run: WorkflowRun) -> str:
    sections = [f"Ritual request:\n{wrap_user_content(run.message, 'USER_REQUEST')}"]
    for outcome in run.succeeded_perspectives:
        sections.append(
            f"## {outcome.agent_id}\n"
            f"{wrap_user_content(outcome.result or '', 'PERSPECTIVE_DRAFT')}"
        )
    return "\n\n".join(sections)


def _revision_input(artifact: dict[str, Any], report: dict[str, Any]) -> str:
    feedback = {
        "issues": report.get("issues", []),
        "suggestions": report.get("suggestions", []),
    }
    return (
        f"Ritual to revise:\n{wrap_user_content(_dumps(artifact), 'RITUAL')}\n\n"
        f"Screening feedback:\n{wrap_user_content(_dumps(feedback), 'RED_FLAGS')}"
    )
