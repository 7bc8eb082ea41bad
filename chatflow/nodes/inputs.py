"""Input nodes: buttons and capture_input.

Both are two-phase. The first visit renders a prompt, records the node as
the awaiting-input node and halts the chain. The next user message is routed
back to the same node, which validates it:

- valid: store the parsed value, clear the awaiting marker, continue
- invalid: increment retry_count and re-prompt while below max_retries
- invalid at max_retries: accept the raw value and continue
"""

from __future__ import annotations

import logging
import math
import re
from datetime import datetime, timezone
from typing import Any, List, Optional, Tuple

from .. import settings
from ..engine.context import (
    AwaitingInputConfig,
    ButtonOption,
    ExecutionContext,
    InputValidationRules,
    NodeResponse,
)
from ..engine.graph import NodeConfig
from ..engine.template import interpolate
from ..errors import ValidationError
from .registry import BaseHandler, NodeConfigModel, register_node_type

logger = logging.getLogger(__name__)

LAST_BUTTON_SELECTION_VAR = "_lastButtonSelection"

_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_PHONE_RE = re.compile(r"^[\d\s\-+()]+$")
_MIN_PHONE_DIGITS = 7

# Accepted in addition to ISO 8601
_DATE_FORMATS = ("%m/%d/%Y", "%Y/%m/%d", "%B %d, %Y", "%b %d, %Y", "%d %B %Y", "%d %b %Y")


def _awaiting_this_node(node: NodeConfig, context: ExecutionContext) -> bool:
    config = context.awaiting_input_config
    return context.awaiting_input and config is not None and config.node_id == node.id


def _max_retries(configured: Optional[int]) -> int:
    return configured if configured is not None else settings.DEFAULT_INPUT_MAX_RETRIES


# ---------------------------------------------------------------------------
# buttons
# ---------------------------------------------------------------------------


class ButtonsConfig(NodeConfigModel):
    message: Optional[str] = None
    buttons: List[ButtonOption] = []
    variable_name: Optional[str] = None
    max_retries: Optional[int] = None


@register_node_type(
    node_type="buttons",
    display_name="Buttons",
    description="Offers a set of options and routes on the chosen option's value",
    category="input",
    config_model=ButtonsConfig,
    suspends=True,
)
class ButtonsHandler(BaseHandler):
    async def execute(self, node: NodeConfig, context: ExecutionContext, user_message: Optional[str] = None):
        config: ButtonsConfig = self.parse_config(node)

        if not _awaiting_this_node(node, context):
            content = interpolate(config.message or "Please select an option:", context.variables)
            awaiting = AwaitingInputConfig(
                node_id=node.id,
                kind="buttons",
                buttons=config.buttons,
                retry_count=0,
                max_retries=_max_retries(config.max_retries),
            )
            return self.result(
                node,
                context.awaiting(awaiting),
                response=NodeResponse(type="buttons", content=content, buttons=config.buttons),
                should_continue=False,
            )

        awaiting = context.awaiting_input_config
        try:
            selected = self._match(config.buttons, user_message)
        except ValidationError as e:
            retry_count = awaiting.retry_count + 1
            if retry_count < awaiting.max_retries:
                logger.debug(f"Node {node.id}: {e} (attempt {retry_count}/{awaiting.max_retries})")
                return self.result(
                    node,
                    context.awaiting(awaiting.model_copy(update={"retry_count": retry_count})),
                    response=NodeResponse(
                        type="buttons",
                        content="Please select one of the available options.",
                        buttons=config.buttons,
                    ),
                    should_continue=False,
                )

            # Out of retries: keep the raw answer and move on along the default edge
            raw_value = user_message or ""
            logger.info(f"Node {node.id}: retries exhausted, accepting {raw_value!r}")
            return self.result(node, self._store(context, config, raw_value).resumed())

        return self.result(
            node,
            self._store(context, config, selected.value).resumed(),
            selected_handle=selected.value,
        )

    def output_handles(self, node: NodeConfig) -> Tuple[str, ...]:
        return tuple(button.value for button in self.parse_config(node).buttons)

    @staticmethod
    def _match(buttons: List[ButtonOption], user_message: Optional[str]) -> ButtonOption:
        for button in buttons:
            if user_message == button.value or user_message == button.label:
                return button
        raise ValidationError("Selection does not match any option", field="buttons")

    @staticmethod
    def _store(context: ExecutionContext, config: ButtonsConfig, value: str) -> ExecutionContext:
        updates = {LAST_BUTTON_SELECTION_VAR: value}
        if config.variable_name:
            updates[config.variable_name] = value
        return context.with_variables(updates)


# ---------------------------------------------------------------------------
# capture_input
# ---------------------------------------------------------------------------


class CaptureInputConfig(NodeConfigModel):
    variable_name: str
    prompt: Optional[str] = None
    input_type: str = "text"
    validation: Optional[InputValidationRules] = None
    max_retries: Optional[int] = None


@register_node_type(
    node_type="capture_input",
    display_name="Capture Input",
    description="Asks for free-text input, validates it and stores it in a variable",
    category="input",
    config_model=CaptureInputConfig,
    suspends=True,
)
class CaptureInputHandler(BaseHandler):
    async def execute(self, node: NodeConfig, context: ExecutionContext, user_message: Optional[str] = None):
        config: CaptureInputConfig = self.parse_config(node)

        if not _awaiting_this_node(node, context):
            content = interpolate(
                config.prompt or f"Please enter your {config.variable_name}:",
                context.variables,
            )
            awaiting = AwaitingInputConfig(
                node_id=node.id,
                kind="capture_input",
                validation=config.validation,
                retry_count=0,
                max_retries=_max_retries(config.max_retries),
            )
            return self.result(
                node,
                context.awaiting(awaiting),
                response=NodeResponse(type="input_request", content=content, input_type=config.input_type),
                should_continue=False,
            )

        awaiting = context.awaiting_input_config
        raw_value = user_message or ""
        try:
            validate_input(raw_value, config.input_type, config.validation or awaiting.validation)
        except ValidationError as e:
            retry_count = awaiting.retry_count + 1
            if retry_count >= awaiting.max_retries:
                logger.info(f"Node {node.id}: retries exhausted, accepting {raw_value!r}")
                return self.result(
                    node,
                    context.with_variables({config.variable_name: raw_value}).resumed(),
                    response=NodeResponse(type="message", content="Let's continue with what you provided."),
                )
            return self.result(
                node,
                context.awaiting(awaiting.model_copy(update={"retry_count": retry_count})),
                response=NodeResponse(type="input_request", content=str(e), input_type=config.input_type),
                should_continue=False,
            )

        value = parse_input(raw_value, config.input_type)
        return self.result(node, context.with_variables({config.variable_name: value}).resumed())


def validate_input(value: str, input_type: str, rules: Optional[InputValidationRules]) -> None:
    """Check captured input against the node's rules.

    Raises:
        ValidationError: With the user-facing message for the first failed rule
    """
    rules = rules or InputValidationRules()
    trimmed = value.strip()

    if not trimmed:
        if rules.required:
            raise ValidationError("This field is required.", field="required")
        return

    if rules.min_length and len(trimmed) < rules.min_length:
        raise ValidationError(f"Please enter at least {rules.min_length} characters.", field="min_length")
    if rules.max_length and len(trimmed) > rules.max_length:
        raise ValidationError(f"Please enter no more than {rules.max_length} characters.", field="max_length")

    type_error = _check_type(trimmed, input_type)
    if type_error:
        raise ValidationError(rules.error_message or type_error, field="input_type")

    if rules.pattern:
        try:
            matched = re.search(rules.pattern, trimmed) is not None
        except re.error as e:
            logger.warning(f"Ignoring invalid validation pattern {rules.pattern!r}: {e}")
            matched = True
        if not matched:
            raise ValidationError(rules.pattern_message or "Please enter a valid value.", field="pattern")


def _check_type(value: str, input_type: str) -> Optional[str]:
    if input_type == "email" and not _EMAIL_RE.match(value):
        return "Please enter a valid email address."
    if input_type == "phone":
        digits = sum(ch.isdigit() for ch in value)
        if not _PHONE_RE.match(value) or digits < _MIN_PHONE_DIGITS:
            return "Please enter a valid phone number."
    if input_type == "number" and _parse_number(value) is None:
        return "Please enter a valid number."
    if input_type == "date" and _parse_date(value) is None:
        return "Please enter a valid date."
    return None


def _parse_number(value: str) -> Optional[float]:
    try:
        number = float(value)
    except ValueError:
        return None
    return number if math.isfinite(number) else None


def _parse_date(value: str) -> Optional[datetime]:
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        parsed = None
        for fmt in _DATE_FORMATS:
            try:
                parsed = datetime.strptime(value, fmt)
                break
            except ValueError:
                continue
    if parsed is None:
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def parse_input(value: str, input_type: str) -> Any:
    """Convert validated input: number -> int/float, date -> ISO 8601 UTC, else trimmed text."""
    trimmed = value.strip()
    if not trimmed:
        return ""
    if input_type == "number":
        number = _parse_number(trimmed)
        if number is not None:
            return int(number) if number.is_integer() else number
    if input_type == "date":
        parsed = _parse_date(trimmed)
        if parsed is not None:
            return parsed.isoformat(timespec="milliseconds").replace("+00:00", "Z")
    return trimmed
