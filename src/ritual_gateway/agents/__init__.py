"""
Agent descriptors and their registry.

- descriptor.py: AgentDescriptor, the immutable agent configuration
- registry.py: AgentRegistry, the thread-safe id -> descriptor store
- schemas.py: output schemas the ritual agents must satisfy
- builtin.py: descriptors registered at startup
"""
from .descriptor import AgentDescriptor
from .registry import AgentRegistry
from .builtin import register_builtin_agents
