"""
Request orchestration on top of the registry and the generation service.

Two interaction modes:
  - ChatHandler: one agent per request (plain, streaming, coordinator quick chat)
  - RitualWorkflow: five concurrent composers, synthesis, screening, revision
"""
from .chat import ChatHandler, ChatResult, StreamEvent
from .contracts import ChatRequest, WorkflowRequest
from .ritual_workflow import (
    RitualWorkflow,
    WorkflowConfig,
    WorkflowResult,
    WorkflowRun,
    WorkflowState,
)
