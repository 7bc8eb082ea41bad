"""Error hierarchy for the conversation runtime.

Only GraphError for a missing start node on a fresh conversation ever reaches
the caller of the lifecycle API. Every other error is absorbed by the executor
or by the handler that produced it.
"""

from __future__ import annotations

from typing import Optional


class ChatflowError(Exception):
    """Base class for all runtime errors."""


class GraphError(ChatflowError):
    """Raised when the workflow graph cannot be walked (no start node, missing node)."""

    def __init__(self, message: str, node_id: Optional[str] = None):
        self.node_id = node_id
        super().__init__(message)


class UnsupportedNodeError(ChatflowError):
    """Raised when no handler is registered for a node type."""

    def __init__(self, node_type: str, node_id: Optional[str] = None):
        self.node_type = node_type
        self.node_id = node_id
        super().__init__(f"No handler for node type: {node_type}")


class ValidationError(ChatflowError):
    """User input rejected by a buttons or capture_input node."""

    def __init__(self, message: str, field: Optional[str] = None):
        self.field = field
        super().__init__(message)


class IterationLimitExceeded(ChatflowError):
    """A single external call executed more nodes than the iteration bound."""

    def __init__(self, node_id: str, limit: int):
        self.node_id = node_id
        self.limit = limit
        super().__init__(
            f"Workflow execution exceeded maximum iterations ({limit}) at node '{node_id}'"
        )


class CollaboratorError(ChatflowError):
    """Raised by an external collaborator (LLM, knowledge search, integrations)."""


class LLMClientError(CollaboratorError):
    """Raised when an LLM provider call fails."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class KnowledgeSearchError(CollaboratorError):
    """Raised when a knowledge base search fails."""


class IntegrationActionError(CollaboratorError):
    """Raised when an integration action cannot be dispatched."""
