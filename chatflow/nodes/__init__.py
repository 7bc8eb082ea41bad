"""Node handler implementations.

Importing this package registers every built-in node type with the registry.

Modules:
- registry: register_node_type decorator, BaseHandler, HandlerRegistry
- base: start, end, send_message
- inputs: buttons, capture_input
- logic: condition, switch, set_variable
- integrations: api_call, integration_action
- ai: ai_response, knowledge_lookup, intent_classifier
- handoff: human_handoff
"""

from .registry import (
    NODE_CLASSES,
    NODE_REGISTRY,
    BaseHandler,
    HandlerDependencies,
    HandlerRegistry,
    NodeConfigModel,
    NodeDefinition,
    create_handler,
    get_node_definition,
    is_node_type_registered,
    list_node_types,
    list_node_types_by_category,
    register_node_type,
)

# Import handler modules to trigger registration
from . import ai, base, handoff, inputs, integrations, logic  # noqa: F401

__all__ = [
    "NODE_CLASSES",
    "NODE_REGISTRY",
    "BaseHandler",
    "HandlerDependencies",
    "HandlerRegistry",
    "NodeConfigModel",
    "NodeDefinition",
    "create_handler",
    "get_node_definition",
    "is_node_type_registered",
    "list_node_types",
    "list_node_types_by_category",
    "register_node_type",
]
