"""External collaborators: knowledge search and integration actions."""

from .actions import ACTION_TYPES, ActionContext, ActionDispatcher, ActionRegistry, ActionResult
from .knowledge import HttpKnowledgeSearchClient, KnowledgeResult, KnowledgeSearcher

__all__ = [
    "ACTION_TYPES",
    "ActionContext",
    "ActionDispatcher",
    "ActionRegistry",
    "ActionResult",
    "HttpKnowledgeSearchClient",
    "KnowledgeResult",
    "KnowledgeSearcher",
]
