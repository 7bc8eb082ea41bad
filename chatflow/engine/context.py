"""Execution Context and Result Models

The execution context is the complete state of one conversation's progress
through a workflow graph. It is a value: handlers never mutate it in place,
they return an updated copy. Everything in it is JSON-serializable so that a
caller can persist it between turns and resume in another process.

Key Components:
- ExecutionContext: conversation ids, current node, variables, histories, awaiting-input marker
- ExecutionResult: what a handler returns for one node execution
- ExecutionState: the minimal snapshot persisted between turns
- ChatbotConfig: read-only persona and AI settings injected into handlers
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

# Reserved variables written by the runtime
SESSION_ID_VAR = "session_id"
CONVERSATION_ID_VAR = "conversation_id"
STARTED_AT_VAR = "timestamp"
CONVERSATION_STATUS_VAR = "_conversationStatus"

ResponseType = Literal["message", "buttons", "handoff", "end", "input_request"]
ConversationStatus = Literal["active", "waiting_for_human", "handed_off", "closed"]


def utc_now() -> str:
    """Current UTC time as an ISO 8601 string with a Z suffix."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class ChatflowModel(BaseModel):
    """Base model accepting both snake_case names and the editor's camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ChatMessage(ChatflowModel):
    role: Literal["user", "assistant", "system"]
    content: str
    timestamp: str = Field(default_factory=utc_now)
    node_id: Optional[str] = None


class TraceEntry(ChatflowModel):
    """One executed node in the execution history."""

    node_id: str
    node_type: str
    timestamp: str = Field(default_factory=utc_now)
    input: Any = None
    output: Any = None
    duration_ms: float = 0.0
    selected_handle: Optional[str] = None


class ButtonOption(ChatflowModel):
    label: str
    value: str


class InputValidationRules(ChatflowModel):
    """Validation rules applied to captured user input."""

    required: bool = False
    min_length: Optional[int] = None
    max_length: Optional[int] = None
    pattern: Optional[str] = None
    pattern_message: Optional[str] = None
    error_message: Optional[str] = None


class AwaitingInputConfig(ChatflowModel):
    """Marker recorded by a node that suspended waiting for user input."""

    node_id: str
    kind: str = Field(validation_alias=AliasChoices("kind", "type"))
    validation: Optional[InputValidationRules] = None
    buttons: Optional[List[ButtonOption]] = None
    retry_count: int = 0
    max_retries: int = 3


class ExecutionContext(ChatflowModel):
    """Full state of one conversation's progress through the graph.

    Invariants:
        - current_node_id, when set, references a node of the workflow graph
        - awaiting_input implies awaiting_input_config.node_id == current_node_id
        - messages and execution_history only ever grow
    """

    conversation_id: str
    session_id: str
    chatbot_id: str
    workflow_id: str

    current_node_id: Optional[str] = None
    variables: Dict[str, Any] = Field(default_factory=dict)

    messages: List[ChatMessage] = Field(default_factory=list)
    execution_history: List[TraceEntry] = Field(default_factory=list)

    awaiting_input: bool = False
    awaiting_input_config: Optional[AwaitingInputConfig] = None

    def with_variables(self, updates: Dict[str, Any]) -> ExecutionContext:
        """Return a copy with ``updates`` merged into the variables."""
        return self.model_copy(update={"variables": {**self.variables, **updates}})

    def with_message(self, message: ChatMessage) -> ExecutionContext:
        """Return a copy with ``message`` appended to the message history."""
        return self.model_copy(update={"messages": [*self.messages, message]})

    def with_trace(self, entry: TraceEntry) -> ExecutionContext:
        """Return a copy with ``entry`` appended to the execution history."""
        return self.model_copy(update={"execution_history": [*self.execution_history, entry]})

    def awaiting(self, config: AwaitingInputConfig) -> ExecutionContext:
        """Return a copy suspended on ``config.node_id``."""
        return self.model_copy(update={"awaiting_input": True, "awaiting_input_config": config})

    def resumed(self) -> ExecutionContext:
        """Return a copy with the awaiting-input marker cleared."""
        return self.model_copy(update={"awaiting_input": False, "awaiting_input_config": None})


class NodeResponse(ChatflowModel):
    """Bot output produced by a node."""

    type: ResponseType
    content: str = ""
    buttons: Optional[List[ButtonOption]] = None
    metadata: Optional[Dict[str, Any]] = None
    input_type: Optional[str] = None


class ExecutionResult(ChatflowModel):
    """Result of executing a single node."""

    response: Optional[NodeResponse] = None
    context: ExecutionContext
    node_id: str
    should_continue: bool
    selected_handle: Optional[str] = None
    conversation_status: Optional[ConversationStatus] = None


class ChatbotConfig(ChatflowModel):
    """Read-only chatbot persona and AI settings."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    id: str
    workspace_id: Optional[str] = None

    persona_name: Optional[str] = None
    persona_role: Optional[str] = None
    persona_tone: Optional[str] = None
    persona_instructions: Optional[str] = None

    ai_provider: str = "openai"
    ai_model: str = "gpt-4o-mini"
    ai_temperature: float = 0.7
    ai_max_tokens: int = 1000

    greeting_message: Optional[str] = None
    fallback_message: Optional[str] = None
    handoff_message: Optional[str] = None


class ExecutionState(ChatflowModel):
    """Minimal snapshot persisted between turns.

    Message history is stored separately by the caller and handed back to
    restore_context(); the execution trace is not persisted.
    """

    current_node_id: Optional[str] = None
    variables: Dict[str, Any] = Field(default_factory=dict)
    awaiting_input: bool = False
    awaiting_input_config: Optional[AwaitingInputConfig] = None

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")


def create_initial_context(
    conversation_id: str,
    session_id: str,
    chatbot_id: str,
    workflow_id: str,
) -> ExecutionContext:
    """Create a fresh context with the reserved variables set."""
    return ExecutionContext(
        conversation_id=conversation_id,
        session_id=session_id,
        chatbot_id=chatbot_id,
        workflow_id=workflow_id,
        variables={
            SESSION_ID_VAR: session_id,
            CONVERSATION_ID_VAR: conversation_id,
            STARTED_AT_VAR: utc_now(),
        },
    )
