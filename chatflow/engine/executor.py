"""Conversation Executor

Drives one conversation through a workflow graph, one external call at a
time. Each call walks node handlers along the graph's edges until a node
halts the chain (waits for input, ends, hands off) or no edge remains, then
returns the produced results together with the updated context. The caller
owns persistence: it stores ``get_execution_state(context)`` plus the message
history between turns and rebuilds the context with ``restore_context``.

Key Components:
- ConversationExecutor.start_conversation: fresh context, run from the start node
- ConversationExecutor.process_message: resume a suspended node, follow the
  current node's edge, or restart from the start node
- ConversationExecutor.execute_from_node: the bounded interpreter loop
- get_execution_state / restore_context: the persistence contract
"""

from __future__ import annotations

import logging
import time
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

from .. import settings
from ..errors import GraphError, IterationLimitExceeded, UnsupportedNodeError
from ..nodes.registry import HandlerDependencies, HandlerRegistry
from ..tracer import ExecutionObserver, LoggingObserver
from .context import (
    CONVERSATION_STATUS_VAR,
    AwaitingInputConfig,
    ChatbotConfig,
    ChatMessage,
    ExecutionContext,
    ExecutionResult,
    ExecutionState,
    TraceEntry,
    create_initial_context,
)
from .graph import WorkflowGraph

logger = logging.getLogger(__name__)

ExecutionOutcome = Tuple[List[ExecutionResult], ExecutionContext]


class ConversationExecutor:
    """Executes a workflow graph for any number of conversations.

    The executor holds only the read-only graph, chatbot config and handler
    registry; all per-conversation state travels in the ExecutionContext, so
    one instance can serve concurrent conversations.
    """

    def __init__(
        self,
        graph: WorkflowGraph,
        chatbot: ChatbotConfig,
        *,
        llm_client=None,
        knowledge_searcher=None,
        action_dispatcher=None,
        http_transport=None,
        registry: Optional[HandlerRegistry] = None,
        observer: Optional[ExecutionObserver] = None,
        max_iterations: Optional[int] = None,
    ):
        self.graph = graph
        self.chatbot = chatbot
        if registry is None:
            registry = HandlerRegistry.build(HandlerDependencies(
                chatbot=chatbot,
                llm_client=llm_client,
                knowledge_searcher=knowledge_searcher,
                action_dispatcher=action_dispatcher,
                http_transport=http_transport,
            ))
        self.registry = registry
        self.observer = observer if observer is not None else LoggingObserver()
        self.max_iterations = (
            max_iterations if max_iterations is not None else settings.MAX_NODE_ITERATIONS
        )

    # ------------------------------------------------------------------
    # Lifecycle API
    # ------------------------------------------------------------------

    async def start_conversation(
        self,
        conversation_id: str,
        session_id: str,
        chatbot_id: str,
        workflow_id: str,
        initial_variables: Optional[Dict[str, Any]] = None,
        awaiting_input: Optional[bool] = None,
        awaiting_input_config: Optional[AwaitingInputConfig] = None,
    ) -> ExecutionOutcome:
        """Start a new conversation and run it from the start node.

        Raises:
            GraphError: If the workflow has no start node
        """
        start_node = self.graph.find_start_node()

        context = create_initial_context(conversation_id, session_id, chatbot_id, workflow_id)
        if initial_variables:
            context = context.with_variables(initial_variables)
        if awaiting_input is not None or awaiting_input_config is not None:
            context = context.model_copy(update={
                "awaiting_input": bool(awaiting_input),
                "awaiting_input_config": awaiting_input_config,
            })

        logger.info(f"Starting conversation {conversation_id} on workflow {workflow_id}")
        return await self.execute_from_node(start_node.id, context)

    async def process_message(
        self,
        user_message: str,
        context: ExecutionContext,
    ) -> ExecutionOutcome:
        """Process one user message against a conversation context."""
        context = context.with_message(ChatMessage(role="user", content=user_message))

        # (a) Resume the node waiting for this input
        if context.awaiting_input and context.awaiting_input_config is not None:
            return await self.execute_from_node(
                context.awaiting_input_config.node_id, context, user_message
            )

        # (b) Continue past the node the previous turn stopped at
        if context.current_node_id:
            edge = self.graph.find_next_edge(context.current_node_id)
            if edge is not None:
                return await self.execute_from_node(edge.target, context, user_message)

        # (c) Nothing to continue: restart from the start node
        try:
            start_node = self.graph.find_start_node()
        except GraphError as e:
            logger.error(f"Conversation {context.conversation_id}: {e}")
            return [], context
        return await self.execute_from_node(start_node.id, context, user_message)

    @staticmethod
    def get_execution_state(context: ExecutionContext) -> ExecutionState:
        """Extract the snapshot to persist between turns."""
        return ExecutionState(
            current_node_id=context.current_node_id,
            variables=dict(context.variables),
            awaiting_input=context.awaiting_input,
            awaiting_input_config=context.awaiting_input_config,
        )

    @staticmethod
    def restore_context(
        conversation_id: str,
        session_id: str,
        chatbot_id: str,
        workflow_id: str,
        messages: List[Union[ChatMessage, Mapping[str, Any]]],
        state: Union[ExecutionState, Mapping[str, Any]],
    ) -> ExecutionContext:
        """Rebuild a context from persisted state. The execution trace restarts empty."""
        if not isinstance(state, ExecutionState):
            state = ExecutionState.model_validate(state)
        return ExecutionContext(
            conversation_id=conversation_id,
            session_id=session_id,
            chatbot_id=chatbot_id,
            workflow_id=workflow_id,
            current_node_id=state.current_node_id,
            variables=dict(state.variables),
            messages=[
                m if isinstance(m, ChatMessage) else ChatMessage.model_validate(m)
                for m in messages
            ],
            execution_history=[],
            awaiting_input=state.awaiting_input,
            awaiting_input_config=state.awaiting_input_config,
        )

    # ------------------------------------------------------------------
    # Driver loop
    # ------------------------------------------------------------------

    async def execute_from_node(
        self,
        node_id: str,
        context: ExecutionContext,
        user_message: Optional[str] = None,
        source_handle: Optional[str] = None,
    ) -> ExecutionOutcome:
        """Run the chain starting at ``node_id``.

        ``user_message`` is fed to the first node only. ``source_handle`` is
        used to leave the first node when its handler selects no handle.
        Returns the results that carry a response, plus the final context.
        Errors are logged and reported to the observer; they stop the chain
        but never propagate.
        """
        conversation_id = context.conversation_id
        results: List[ExecutionResult] = []
        current_id: Optional[str] = node_id
        forced_handle = source_handle
        iterations = 0

        while current_id is not None:
            if iterations >= self.max_iterations:
                limit_error = IterationLimitExceeded(current_id, self.max_iterations)
                logger.warning(f"Conversation {conversation_id}: {limit_error}")
                self._notify("on_iteration_limit", conversation_id, current_id, self.max_iterations)
                break
            iterations += 1

            node = self.graph.get_node(current_id)
            if node is None:
                graph_error = GraphError(f"Node not found: {current_id}", node_id=current_id)
                logger.error(f"Conversation {conversation_id}: {graph_error}")
                self._notify("on_node_error", conversation_id, current_id, graph_error)
                break

            try:
                handler = self.registry.get(node.type)
            except UnsupportedNodeError as e:
                e.node_id = node.id
                logger.error(f"Conversation {conversation_id}: {e} (node {node.id})")
                self._notify("on_node_error", conversation_id, node.id, e)
                break

            self._notify("on_node_start", conversation_id, node)
            started = time.perf_counter()
            try:
                result = await handler.execute(node, context, user_message)
            except Exception as e:
                logger.exception(
                    f"Conversation {conversation_id}: node {node.id} ({node.type}) failed: {e}"
                )
                self._notify("on_node_error", conversation_id, node.id, e)
                break
            duration_ms = (time.perf_counter() - started) * 1000

            context = result.context.model_copy(update={"current_node_id": node.id})
            context = context.with_trace(TraceEntry(
                node_id=node.id,
                node_type=node.type,
                input=user_message,
                output=result.response.content if result.response else None,
                duration_ms=round(duration_ms, 3),
                selected_handle=result.selected_handle,
            ))
            if result.response is not None and result.response.content:
                context = context.with_message(ChatMessage(
                    role="assistant",
                    content=result.response.content,
                    node_id=node.id,
                ))
            if result.conversation_status:
                context = context.with_variables(
                    {CONVERSATION_STATUS_VAR: result.conversation_status}
                )

            result = result.model_copy(update={"context": context})
            if result.response is not None:
                results.append(result)
            self._notify("on_node_complete", conversation_id, node, result, duration_ms)

            if not result.should_continue or context.awaiting_input:
                break

            # The message was consumed by the first node
            user_message = None

            edge = self.graph.find_next_edge(node.id, result.selected_handle or forced_handle)
            forced_handle = None
            current_id = edge.target if edge is not None else None

        return results, context

    def _notify(self, hook: str, *args: Any) -> None:
        """Call an observer hook. Observer failures are logged and never stop the chain."""
        try:
            getattr(self.observer, hook)(*args)
        except Exception as e:
            logger.exception(f"Observer {type(self.observer).__name__}.{hook} failed: {e}")
