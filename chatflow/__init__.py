"""Conversation workflow runtime package.

Subpackages:
- engine: Graph model, execution context, template engine, and the executor
- nodes: Node handler registry and built-in handler implementations
- agents: LLM client contract and provider clients
- integrations: Knowledge search and integration action collaborators
"""

from .engine.context import ChatbotConfig, ExecutionContext, ExecutionState
from .engine.executor import ConversationExecutor
from .engine.graph import WorkflowGraph, validate_graph

__all__ = [
    "ChatbotConfig",
    "ConversationExecutor",
    "ExecutionContext",
    "ExecutionState",
    "WorkflowGraph",
    "validate_graph",
]
