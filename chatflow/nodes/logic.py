"""Logic nodes: condition, switch, set_variable.

condition and switch read one variable (dot paths allowed) and compare it with
evaluate_condition(); neither ever fails on bad operands. set_variable
coerces its templated value and degrades to a safe value instead of raising.
"""

from __future__ import annotations

import json
import logging
import math
from typing import Any, List, Optional, Tuple

from pydantic import AliasChoices, Field

from ..engine.context import ChatflowModel, ExecutionContext
from ..engine.graph import NodeConfig
from ..engine.template import evaluate_condition, get_nested_value, interpolate
from .registry import BaseHandler, NodeConfigModel, register_node_type

logger = logging.getLogger(__name__)

DEFAULT_HANDLE = "default"


# ---------------------------------------------------------------------------
# condition
# ---------------------------------------------------------------------------


class ConditionConfig(NodeConfigModel):
    variable_name: str = Field(
        validation_alias=AliasChoices("variableName", "variable_name", "variable")
    )
    operator: str = "equals"
    value: Any = ""


@register_node_type(
    node_type="condition",
    display_name="Condition",
    description="Routes to the 'true' or 'false' handle",
    category="logic",
    config_model=ConditionConfig,
    handles=("true", "false"),
)
class ConditionHandler(BaseHandler):
    async def execute(self, node: NodeConfig, context: ExecutionContext, user_message: Optional[str] = None):
        config: ConditionConfig = self.parse_config(node)
        left = get_nested_value(context.variables, config.variable_name)
        matched = evaluate_condition(left, config.operator, config.value)
        return self.result(node, context, selected_handle="true" if matched else "false")


# ---------------------------------------------------------------------------
# switch
# ---------------------------------------------------------------------------


class SwitchCase(ChatflowModel):
    id: str
    label: Optional[str] = None
    operator: str = "equals"
    value: Any = ""


class SwitchConfig(NodeConfigModel):
    variable_name: str = Field(
        validation_alias=AliasChoices("variableName", "variable_name", "variable")
    )
    cases: List[SwitchCase] = []


@register_node_type(
    node_type="switch",
    display_name="Switch",
    description="Routes to the first matching case id, else 'default'",
    category="logic",
    config_model=SwitchConfig,
    handles=(DEFAULT_HANDLE,),
)
class SwitchHandler(BaseHandler):
    async def execute(self, node: NodeConfig, context: ExecutionContext, user_message: Optional[str] = None):
        config: SwitchConfig = self.parse_config(node)
        left = get_nested_value(context.variables, config.variable_name)
        for case in config.cases:
            if evaluate_condition(left, case.operator, case.value):
                return self.result(node, context, selected_handle=case.id)
        return self.result(node, context, selected_handle=DEFAULT_HANDLE)

    def output_handles(self, node: NodeConfig) -> Tuple[str, ...]:
        return tuple(case.id for case in self.parse_config(node).cases) + self.definition.handles


# ---------------------------------------------------------------------------
# set_variable
# ---------------------------------------------------------------------------


class SetVariableConfig(NodeConfigModel):
    variable_name: str
    value: Any = ""
    value_type: str = "string"


@register_node_type(
    node_type="set_variable",
    display_name="Set Variable",
    description="Stores a templated value coerced to string, number, boolean or json",
    category="logic",
    config_model=SetVariableConfig,
)
class SetVariableHandler(BaseHandler):
    async def execute(self, node: NodeConfig, context: ExecutionContext, user_message: Optional[str] = None):
        config: SetVariableConfig = self.parse_config(node)
        raw = config.value if isinstance(config.value, str) else json.dumps(config.value)
        rendered = interpolate(raw, context.variables)
        value = coerce_value(rendered, config.value_type)
        return self.result(node, context.with_variables({config.variable_name: value}))


def coerce_value(text: str, value_type: str) -> Any:
    """Coerce rendered text to ``value_type``.

    Invalid numbers become 0 and invalid json stays the raw string.
    """
    if value_type == "number":
        try:
            number = float(text.strip()) if text.strip() else 0.0
        except ValueError:
            return 0
        if not math.isfinite(number):
            return 0
        return int(number) if number.is_integer() else number
    if value_type == "boolean":
        return text.lower() == "true" or text == "1"
    if value_type == "json":
        try:
            return json.loads(text)
        except json.JSONDecodeError:
            return text
    return text
