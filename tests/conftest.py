"""Shared fixtures for runtime tests.

Provides:
- A chatbot config and a fresh execution context
- Factories for nodes, graphs, handler dependencies and handlers
- A mocked LLM collaborator returning a fixed completion
- A recording execution observer
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional
from unittest.mock import AsyncMock

import pytest

from chatflow.agents.llm_client import ChatCompletion, TokenUsage
from chatflow.engine.context import ChatbotConfig, create_initial_context
from chatflow.engine.graph import NodeConfig, WorkflowGraph
from chatflow.nodes.registry import HandlerDependencies, create_handler
from chatflow.tracer import ExecutionObserver


@pytest.fixture
def chatbot() -> ChatbotConfig:
    return ChatbotConfig(
        id="bot_1",
        workspace_id="ws_1",
        persona_name="Ava",
        ai_provider="openai",
        ai_model="gpt-4o-mini",
        ai_temperature=0.5,
        ai_max_tokens=256,
        fallback_message="Sorry, something went wrong.",
    )


@pytest.fixture
def context():
    return create_initial_context("conv_1", "sess_1", "bot_1", "wf_1")


@pytest.fixture
def llm():
    """LLM collaborator mock; chat() returns a fixed completion."""
    client = AsyncMock()
    client.chat = AsyncMock(return_value=ChatCompletion(
        content="Here is the answer.",
        model="gpt-4o-mini",
        usage=TokenUsage(prompt_tokens=12, completion_tokens=8, total_tokens=20),
        finish_reason="stop",
    ))
    return client


@pytest.fixture
def make_node():
    def _make(node_type: str, node_id: Optional[str] = None, **config: Any) -> NodeConfig:
        return NodeConfig(id=node_id or node_type, type=node_type, config=config)

    return _make


@pytest.fixture
def make_graph():
    def _make(nodes: List[Dict[str, Any]], edges: List[Dict[str, Any]]) -> WorkflowGraph:
        return WorkflowGraph.from_dict({"nodes": nodes, "edges": edges})

    return _make


@pytest.fixture
def make_deps(chatbot):
    def _make(**overrides: Any) -> HandlerDependencies:
        return HandlerDependencies(chatbot=overrides.pop("chatbot", chatbot), **overrides)

    return _make


@pytest.fixture
def make_handler(make_deps):
    def _make(node_type: str, **deps: Any):
        return create_handler(node_type, make_deps(**deps))

    return _make


class RecordingObserver(ExecutionObserver):
    """Collects executor events as (event, node_id) tuples."""

    def __init__(self):
        self.events: List[tuple] = []
        self.errors: List[BaseException] = []

    def on_node_start(self, conversation_id, node):
        self.events.append(("start", node.id))

    def on_node_complete(self, conversation_id, node, result, duration_ms):
        self.events.append(("complete", node.id))

    def on_node_error(self, conversation_id, node_id, error):
        self.events.append(("error", node_id))
        self.errors.append(error)

    def on_iteration_limit(self, conversation_id, node_id, limit):
        self.events.append(("iteration_limit", node_id))


@pytest.fixture
def observer() -> RecordingObserver:
    return RecordingObserver()
