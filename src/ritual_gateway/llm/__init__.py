"""
Generation layer -- LLM client, tool catalog, and the GenerationService.

Usage:
    from .llm import GenerationService, create_client, default_tool_catalog

    service = GenerationService(llm=create_client(), tools=default_tool_catalog())
    result = await service.generate(agent, history=[], message="Hello")
    print(result.output, result.last_agent)
"""

from .client import LLMCallError, LLMClient, LLMResponse, create_client
from .generation import GenerationService
from .models import ConversationTurn, GenerationError, GenerationEvent, GenerationResult
from .tools import ToolCatalog, ToolSpec, default_tool_catalog
