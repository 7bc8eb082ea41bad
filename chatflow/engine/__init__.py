"""Conversation execution engine.

- context: ExecutionContext / ExecutionResult / ExecutionState models
- graph: immutable workflow graph, edge selection, static validation
- template: variable interpolation and condition evaluation
- executor: the driver loop and the conversation lifecycle API (imported
  directly, it depends on the node handlers)
"""

from .context import (
    ChatbotConfig,
    ChatMessage,
    ExecutionContext,
    ExecutionResult,
    ExecutionState,
    NodeResponse,
    create_initial_context,
)
from .graph import (
    EdgeDefinition,
    GraphValidationResult,
    NodeConfig,
    WorkflowGraph,
    detect_cycles,
    validate_graph,
)
from .template import evaluate_condition, interpolate

__all__ = [
    "ChatbotConfig",
    "ChatMessage",
    "EdgeDefinition",
    "ExecutionContext",
    "ExecutionResult",
    "ExecutionState",
    "GraphValidationResult",
    "NodeConfig",
    "NodeResponse",
    "WorkflowGraph",
    "create_initial_context",
    "detect_cycles",
    "evaluate_condition",
    "interpolate",
    "validate_graph",
]
