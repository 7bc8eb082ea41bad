"""Template Engine for Variable Interpolation and Condition Evaluation

Templates use ``{{dot.path}}`` placeholders resolved against the conversation
variables. Conditions compare a variable against an operand using a fixed
operator vocabulary shared by the condition and switch nodes.

Supported operators:
- Equality: equals, not_equals (also == and !=)
- Text (case-insensitive): contains, not_contains, starts_with, ends_with
- Numeric: greater_than, less_than, greater_or_equal, less_or_equal
  (also >, <, >=, <=); non-numeric operands compare false
- Presence: is_empty, is_not_empty
- Pattern: matches_regex; an invalid pattern compares false

Neither function raises on bad input: unknown operators evaluate false and
unresolved placeholders are left in place.
"""

from __future__ import annotations

import json
import logging
import math
import re
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)

_PLACEHOLDER_RE = re.compile(r"\{\{([^}]+)\}\}")

# Sentinel for "path not found" (distinct from a stored None)
_MISSING = object()


def to_text(value: Any) -> str:
    """Render a variable value as template text.

    None renders empty, booleans as true/false, integral floats without a
    fractional part, and dicts/lists as compact JSON.
    """
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (dict, list, tuple)):
        return json.dumps(value, ensure_ascii=False, separators=(",", ":"), default=str)
    return str(value)


def get_nested_value(variables: Dict[str, Any], path: str) -> Any:
    """Get a nested value using dot notation.

    Dicts are traversed by key and lists by numeric index. Returns None when
    any segment is missing or an intermediate value is not traversable.

    Example:
        get_nested_value({"user": {"name": "John"}}, "user.name") -> "John"
    """
    value = _lookup(variables, path)
    return None if value is _MISSING else value


def _lookup(variables: Dict[str, Any], path: str) -> Any:
    current: Any = variables
    for part in path.split("."):
        if isinstance(current, dict):
            if part not in current:
                return _MISSING
            current = current[part]
        elif isinstance(current, (list, tuple)) and part.isdigit():
            index = int(part)
            if index >= len(current):
                return _MISSING
            current = current[index]
        else:
            return _MISSING
    return current


def interpolate(template: Optional[str], variables: Dict[str, Any]) -> str:
    """Replace ``{{path}}`` placeholders with values from ``variables``.

    Missing or null values keep the original placeholder text so that typos
    stay visible in the rendered output.

    Example:
        interpolate("Hello {{name}}", {"name": "World"}) -> "Hello World"
    """
    if not template:
        return ""

    def _replace(match: re.Match) -> str:
        value = _lookup(variables, match.group(1).strip())
        if value is _MISSING or value is None:
            return match.group(0)
        return to_text(value)

    return _PLACEHOLDER_RE.sub(_replace, template)


def extract_variables(template: Optional[str]) -> List[str]:
    """Return the distinct placeholder paths in a template, in order of appearance."""
    if not template:
        return []
    seen: Dict[str, None] = {}
    for match in _PLACEHOLDER_RE.finditer(template):
        seen.setdefault(match.group(1).strip(), None)
    return list(seen)


def has_variables(template: Optional[str]) -> bool:
    """Check whether a template contains any placeholder."""
    return bool(template) and _PLACEHOLDER_RE.search(template) is not None


def _to_number(text: str) -> Optional[float]:
    stripped = text.strip()
    if not stripped:
        return None
    try:
        number = float(stripped)
    except ValueError:
        return None
    return number if math.isfinite(number) else None


def _numeric(compare: Callable[[float, float], bool]) -> Callable[[str, str], bool]:
    def _evaluate(left: str, right: str) -> bool:
        left_num = _to_number(left)
        right_num = _to_number(right)
        if left_num is None or right_num is None:
            return False
        return compare(left_num, right_num)

    return _evaluate


def _matches_regex(left: str, right: str) -> bool:
    try:
        return re.search(right, left) is not None
    except re.error as e:
        logger.debug("Invalid regex %r in condition: %s", right, e)
        return False


_EMPTY_MARKERS = ("", "undefined", "null")

_OPERATORS: Dict[str, Callable[[str, str], bool]] = {
    "equals": lambda left, right: left == right,
    "not_equals": lambda left, right: left != right,
    "contains": lambda left, right: right.lower() in left.lower(),
    "not_contains": lambda left, right: right.lower() not in left.lower(),
    "starts_with": lambda left, right: left.lower().startswith(right.lower()),
    "ends_with": lambda left, right: left.lower().endswith(right.lower()),
    "greater_than": _numeric(lambda a, b: a > b),
    "less_than": _numeric(lambda a, b: a < b),
    "greater_or_equal": _numeric(lambda a, b: a >= b),
    "less_or_equal": _numeric(lambda a, b: a <= b),
    "is_empty": lambda left, _right: left in _EMPTY_MARKERS,
    "is_not_empty": lambda left, _right: left not in _EMPTY_MARKERS,
    "matches_regex": _matches_regex,
}

_OPERATOR_ALIASES = {
    "==": "equals",
    "!=": "not_equals",
    ">": "greater_than",
    "<": "less_than",
    ">=": "greater_or_equal",
    "<=": "less_or_equal",
    "matches": "matches_regex",
}

OPERATORS = tuple(_OPERATORS)


def evaluate_condition(left_value: Any, operator: str, right_value: Any) -> bool:
    """Evaluate ``left <operator> right`` on the text form of both operands.

    Returns False for an unknown operator, a non-numeric operand of a numeric
    comparison, or an invalid regex. Never raises.
    """
    op_name = _OPERATOR_ALIASES.get(operator, operator)
    op_func = _OPERATORS.get(op_name)
    if op_func is None:
        logger.warning("Unknown condition operator: %r", operator)
        return False
    return op_func(to_text(left_value), to_text(right_value))
