"""human_handoff node: transfers the conversation to a human agent.

The node renders the hand-off message, builds a payload for the agent
(summary, department, priority, collected contact fields), marks the
conversation as waiting for a human and halts the automated chain.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import AliasChoices, Field

from .. import settings
from ..engine.context import ExecutionContext, NodeResponse, utc_now
from ..engine.graph import NodeConfig
from ..engine.template import interpolate
from .registry import BaseHandler, NodeConfigModel, register_node_type

HANDOFF_REQUESTED_VAR = "_handoffRequested"
HANDOFF_DATA_VAR = "_handoffData"

# Collected when the node does not list its own fields
STANDARD_FIELDS = ("name", "email", "phone", "company", "issue", "orderId", "accountId")

# User messages considered for the summary
SUMMARY_WINDOW = 10


class HumanHandoffConfig(NodeConfigModel):
    message: Optional[str] = None
    department: Optional[str] = None
    priority: str = "normal"
    required_fields: Optional[List[str]] = Field(
        default=None,
        validation_alias=AliasChoices("requiredFields", "required_fields", "collectFields"),
    )


@register_node_type(
    node_type="human_handoff",
    display_name="Human Handoff",
    description="Hands the conversation over to a human agent",
    category="basic",
    config_model=HumanHandoffConfig,
)
class HumanHandoffHandler(BaseHandler):
    async def execute(self, node: NodeConfig, context: ExecutionContext, user_message: Optional[str] = None):
        config: HumanHandoffConfig = self.parse_config(node)
        message = config.message or self.chatbot.handoff_message or settings.DEFAULT_HANDOFF_MESSAGE

        handoff_data = {
            "department": config.department,
            "priority": config.priority or "normal",
            "conversationSummary": summarize_conversation(context),
            "collectedInfo": collect_info(context.variables, config.required_fields),
            "requestedAt": utc_now(),
        }

        return self.result(
            node,
            context.with_variables({
                HANDOFF_REQUESTED_VAR: True,
                HANDOFF_DATA_VAR: handoff_data,
            }),
            response=NodeResponse(
                type="handoff",
                content=interpolate(message, context.variables),
                metadata=handoff_data,
            ),
            should_continue=False,
            conversation_status="waiting_for_human",
        )


def summarize_conversation(context: ExecutionContext) -> str:
    """First and most recent user message of the recent history."""
    user_messages = [m.content for m in context.messages[-SUMMARY_WINDOW:] if m.role == "user"]
    if not user_messages:
        return "No conversation history available."
    if len(user_messages) == 1:
        return f'User inquiry: "{user_messages[0]}"'
    return f'Initial inquiry: "{user_messages[0]}"\nMost recent message: "{user_messages[-1]}"'


def collect_info(variables: Dict[str, Any], fields: Optional[List[str]] = None) -> Dict[str, Any]:
    field_names = fields if fields is not None else STANDARD_FIELDS
    return {name: variables[name] for name in field_names if name in variables}
