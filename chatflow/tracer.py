"""Node execution observers for the conversation executor.

The executor reports node start/complete/error events and iteration-limit
terminations to an observer. The base class ignores everything; subclasses
log events or push them to an async queue for streaming.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Optional

from .engine.context import ExecutionResult, utc_now
from .engine.graph import NodeConfig


class ExecutionObserver:
    """No-op observer. Override the hooks you need."""

    def on_node_start(self, conversation_id: str, node: NodeConfig) -> None:
        """Called before a node's handler runs."""

    def on_node_complete(
        self,
        conversation_id: str,
        node: NodeConfig,
        result: ExecutionResult,
        duration_ms: float,
    ) -> None:
        """Called after a node's handler returned."""

    def on_node_error(
        self,
        conversation_id: str,
        node_id: Optional[str],
        error: BaseException,
    ) -> None:
        """Called when a node could not be resolved or its handler raised."""

    def on_iteration_limit(self, conversation_id: str, node_id: str, limit: int) -> None:
        """Called when a chain stopped at the iteration bound."""


class LoggingObserver(ExecutionObserver):
    """Writes executor events to a logger (``chatflow.runtime`` by default).

    Handlers for that logger are attached by logging_config.get_runtime_logger().
    """

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger("chatflow.runtime")

    def on_node_start(self, conversation_id, node):
        self.logger.info(f"[{conversation_id}] -> {node.id} ({node.type})")

    def on_node_complete(self, conversation_id, node, result, duration_ms):
        response_type = result.response.type if result.response else "-"
        self.logger.info(
            f"[{conversation_id}] <- {node.id} response={response_type} "
            f"handle={result.selected_handle} continue={result.should_continue} "
            f"({duration_ms:.1f}ms)"
        )

    def on_node_error(self, conversation_id, node_id, error):
        self.logger.error(f"[{conversation_id}] node {node_id} failed: {error}")

    def on_iteration_limit(self, conversation_id, node_id, limit):
        self.logger.warning(
            f"[{conversation_id}] stopped after {limit} nodes, next node was {node_id}"
        )


class QueueObserver(ExecutionObserver):
    """Pushes node status events to an asyncio queue for live streaming."""

    def __init__(self, event_queue: asyncio.Queue):
        self.queue = event_queue

    def _put(self, data: Dict[str, Any]) -> None:
        data["timestamp"] = utc_now()
        self.queue.put_nowait({"event": "node_update", "data": data})

    def on_node_start(self, conversation_id, node):
        self._put({
            "conversation_id": conversation_id,
            "node": node.id,
            "status": "running",
        })

    def on_node_complete(self, conversation_id, node, result, duration_ms):
        content = result.response.content if result.response else ""
        self._put({
            "conversation_id": conversation_id,
            "node": node.id,
            "status": "completed",
            "output": content[:500],  # Truncate large outputs
            "duration_ms": round(duration_ms, 2),
        })

    def on_node_error(self, conversation_id, node_id, error):
        self._put({
            "conversation_id": conversation_id,
            "node": node_id,
            "status": "failed",
            "output": str(error)[:500],
        })

    def on_iteration_limit(self, conversation_id, node_id, limit):
        self._put({
            "conversation_id": conversation_id,
            "node": node_id,
            "status": "iteration_limit",
            "output": f"stopped after {limit} nodes",
        })
