"""Node Handler Registry

This module provides the registration system that maps node type tags to
handler implementations, and the per-workflow registry of handler instances.

Key Components:
- NodeDefinition: Metadata for a node type (config schema, outgoing handles)
- BaseHandler: Abstract base for all node handlers
- register_node_type: Decorator for registering handler classes
- HandlerDependencies: Collaborators injected into handlers
- HandlerRegistry: type tag -> handler instance, built once per workflow

Design Principles:
- One handler class per node type, each owning its config schema
- Handlers are stateless; all conversation state lives in the context
- New node types plug in through the decorator without touching the executor
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import (
    TYPE_CHECKING,
    Any,
    Callable,
    Dict,
    Iterable,
    List,
    Optional,
    Tuple,
    Type,
    TypeVar,
)

import pydantic
from pydantic import ConfigDict

from ..engine.context import (
    ChatbotConfig,
    ChatflowModel,
    ConversationStatus,
    ExecutionContext,
    ExecutionResult,
    NodeResponse,
)
from ..engine.graph import NodeConfig
from ..errors import UnsupportedNodeError

if TYPE_CHECKING:
    import httpx

    from ..agents.llm_client import LLMClient
    from ..integrations.actions import ActionDispatcher
    from ..integrations.knowledge import KnowledgeSearcher

logger = logging.getLogger(__name__)

# Type variable for handler classes
T = TypeVar("T", bound="BaseHandler")


class NodeConfigModel(ChatflowModel):
    """Base schema for node configs. Unknown keys (editor metadata) are ignored."""

    model_config = ConfigDict(extra="ignore")


@dataclass
class NodeDefinition:
    """Metadata definition for a node type.

    Attributes:
        node_type: Unique identifier for the node type (e.g., "send_message")
        display_name: Human-readable name for UI display
        description: Brief description of node behavior
        category: Category for grouping (e.g., "basic", "logic", "ai")
        config_model: Pydantic model for the node's config
        handles: Outgoing handles the node selects (empty for single-exit nodes)
        suspends: Whether the node can halt the chain awaiting user input
    """

    node_type: str
    display_name: str
    description: str
    category: str
    config_model: Type[NodeConfigModel] = NodeConfigModel
    handles: Tuple[str, ...] = ()
    suspends: bool = False

    def __post_init__(self):
        """Validate node definition after initialization."""
        if not self.node_type:
            raise ValueError("node_type cannot be empty")
        if not self.display_name:
            raise ValueError("display_name cannot be empty")
        if not issubclass(self.config_model, pydantic.BaseModel):
            raise ValueError("config_model must be a pydantic model")


@dataclass
class HandlerDependencies:
    """Collaborators injected into handlers when a registry is built.

    Attributes:
        chatbot: Chatbot persona and AI settings
        llm_client: LLM collaborator (ai_response, intent_classifier); resolved
            from the chatbot's provider when None
        knowledge_searcher: Knowledge-search collaborator (knowledge_lookup)
        action_dispatcher: Integration-action collaborator (integration_action)
        http_transport: Optional httpx transport for the api_call node
    """

    chatbot: ChatbotConfig
    llm_client: Optional["LLMClient"] = None
    knowledge_searcher: Optional["KnowledgeSearcher"] = None
    action_dispatcher: Optional["ActionDispatcher"] = None
    http_transport: Optional["httpx.AsyncBaseTransport"] = None


class BaseHandler(ABC):
    """Abstract base class for node handlers.

    Subclasses implement execute(); they must not mutate the incoming
    context and return an updated copy inside the ExecutionResult.
    """

    definition: NodeDefinition

    def __init__(self, deps: HandlerDependencies):
        self.deps = deps

    @property
    def chatbot(self) -> ChatbotConfig:
        return self.deps.chatbot

    @abstractmethod
    async def execute(
        self,
        node: NodeConfig,
        context: ExecutionContext,
        user_message: Optional[str] = None,
    ) -> ExecutionResult:
        """Execute the node's logic. Must be implemented by subclasses."""

    def parse_config(self, node: NodeConfig) -> Any:
        """Parse the node's raw config with this handler's schema.

        Raises:
            pydantic.ValidationError: If the config does not match the schema
        """
        return self.definition.config_model.model_validate(dict(node.config))

    def validate_config(self, node: NodeConfig) -> List[Dict[str, str]]:
        """Validate node configuration against the handler's schema.

        Returns:
            List of validation errors, each containing:
                - field: Name of the invalid field
                - error: Description of the validation error
            Empty list if validation passes
        """
        try:
            self.parse_config(node)
        except pydantic.ValidationError as e:
            return [
                {
                    "field": ".".join(str(part) for part in err["loc"]) or "config",
                    "error": err["msg"],
                }
                for err in e.errors()
            ]
        return []

    def output_handles(self, node: NodeConfig) -> Tuple[str, ...]:
        """Handles this node can select. Empty for single-exit nodes.

        Branching nodes whose handles come from their config (switch cases,
        button values, intents) extend the declared ones.
        """
        return self.definition.handles

    def result(
        self,
        node: NodeConfig,
        context: ExecutionContext,
        response: Optional[NodeResponse] = None,
        should_continue: bool = True,
        selected_handle: Optional[str] = None,
        conversation_status: Optional[ConversationStatus] = None,
    ) -> ExecutionResult:
        """Build an ExecutionResult for ``node``."""
        return ExecutionResult(
            response=response,
            context=context,
            node_id=node.id,
            should_continue=should_continue,
            selected_handle=selected_handle,
            conversation_status=conversation_status,
        )


# Global registry for node types
NODE_REGISTRY: Dict[str, NodeDefinition] = {}
NODE_CLASSES: Dict[str, Type[BaseHandler]] = {}


def register_node_type(
    node_type: str,
    display_name: str,
    description: str,
    category: str,
    config_model: Type[NodeConfigModel] = NodeConfigModel,
    handles: Iterable[str] = (),
    suspends: bool = False,
) -> Callable[[Type[T]], Type[T]]:
    """Decorator to register a node handler class.

    This decorator registers both the node definition metadata and the
    handler class implementation.

    Example:
        @register_node_type(
            node_type="send_message",
            display_name="Send Message",
            description="Sends a templated message",
            category="basic",
            config_model=SendMessageConfig,
        )
        class SendMessageHandler(BaseHandler):
            async def execute(self, node, context, user_message=None):
                ...
    """

    def decorator(cls: Type[T]) -> Type[T]:
        definition = NodeDefinition(
            node_type=node_type,
            display_name=display_name,
            description=description,
            category=category,
            config_model=config_model,
            handles=tuple(handles),
            suspends=suspends,
        )

        NODE_REGISTRY[node_type] = definition
        NODE_CLASSES[node_type] = cls
        cls.definition = definition

        logger.debug(f"Registered node type: {node_type} ({display_name})")

        return cls

    return decorator


def create_handler(node_type: str, deps: HandlerDependencies) -> BaseHandler:
    """Factory function to create a handler instance.

    Raises:
        UnsupportedNodeError: If node_type is not registered
    """
    if node_type not in NODE_CLASSES:
        raise UnsupportedNodeError(node_type)
    return NODE_CLASSES[node_type](deps)


class HandlerRegistry:
    """Maps node type tags to handler instances for one workflow.

    Built once per workflow; read-only afterwards, so a single registry can
    serve concurrent conversations.
    """

    def __init__(self, handlers: Dict[str, BaseHandler]):
        self._handlers = dict(handlers)

    @classmethod
    def build(
        cls,
        deps: HandlerDependencies,
        node_types: Optional[Iterable[str]] = None,
    ) -> HandlerRegistry:
        """Instantiate handlers for ``node_types`` (default: every registered type)."""
        types = list(node_types) if node_types is not None else list(NODE_CLASSES)
        handlers = {
            node_type: create_handler(node_type, deps)
            for node_type in types
            if node_type in NODE_CLASSES
        }
        return cls(handlers)

    def get(self, node_type: str) -> BaseHandler:
        """Return the handler for ``node_type``.

        Raises:
            UnsupportedNodeError: If no handler is registered for the type
        """
        handler = self._handlers.get(node_type)
        if handler is None:
            raise UnsupportedNodeError(node_type)
        return handler

    def has_handler(self, node_type: str) -> bool:
        return node_type in self._handlers

    @property
    def node_types(self) -> List[str]:
        return list(self._handlers)


def get_node_definition(node_type: str) -> Optional[NodeDefinition]:
    """Get the definition for a registered node type."""
    return NODE_REGISTRY.get(node_type)


def list_node_types() -> List[NodeDefinition]:
    """List all registered node types."""
    return list(NODE_REGISTRY.values())


def list_node_types_by_category(category: str) -> List[NodeDefinition]:
    """List all registered node types in a specific category."""
    return [
        definition
        for definition in NODE_REGISTRY.values()
        if definition.category == category
    ]


def is_node_type_registered(node_type: str) -> bool:
    """Check if a node type is registered."""
    return node_type in NODE_REGISTRY
