"""Basic flow nodes: start, end, send_message."""

from __future__ import annotations

from typing import Optional

from ..engine.context import ExecutionContext, NodeResponse
from ..engine.graph import NodeConfig
from ..engine.template import interpolate
from .registry import BaseHandler, NodeConfigModel, register_node_type


# ---------------------------------------------------------------------------
# start
# ---------------------------------------------------------------------------


@register_node_type(
    node_type="start",
    display_name="Start",
    description="Entry point of the workflow; exactly one per graph",
    category="basic",
)
class StartHandler(BaseHandler):
    """Pass-through: produces no response and continues."""

    async def execute(self, node: NodeConfig, context: ExecutionContext, user_message: Optional[str] = None):
        return self.result(node, context)


# ---------------------------------------------------------------------------
# end
# ---------------------------------------------------------------------------


class EndConfig(NodeConfigModel):
    message: Optional[str] = None
    close_conversation: Optional[bool] = None


@register_node_type(
    node_type="end",
    display_name="End",
    description="Sends an optional closing message and ends the chain",
    category="basic",
    config_model=EndConfig,
)
class EndHandler(BaseHandler):
    async def execute(self, node: NodeConfig, context: ExecutionContext, user_message: Optional[str] = None):
        config: EndConfig = self.parse_config(node)
        content = interpolate(config.message, context.variables) if config.message else ""
        return self.result(
            node,
            context,
            response=NodeResponse(
                type="end",
                content=content,
                metadata={"closeConversation": config.close_conversation is not False},
            ),
            should_continue=False,
        )


# ---------------------------------------------------------------------------
# send_message
# ---------------------------------------------------------------------------


class SendMessageConfig(NodeConfigModel):
    message: Optional[str] = None


@register_node_type(
    node_type="send_message",
    display_name="Send Message",
    description="Sends a templated message and continues",
    category="basic",
    config_model=SendMessageConfig,
)
class SendMessageHandler(BaseHandler):
    async def execute(self, node: NodeConfig, context: ExecutionContext, user_message: Optional[str] = None):
        config: SendMessageConfig = self.parse_config(node)
        content = interpolate(config.message or "Hello!", context.variables)
        return self.result(node, context, response=NodeResponse(type="message", content=content))
