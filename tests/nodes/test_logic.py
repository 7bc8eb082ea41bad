"""Unit tests for the condition, switch and set_variable nodes

Tests cover:
- condition routing to true/false, including dot paths and missing variables
- switch routing to the first matching case, else default
- set_variable templating and type coercion
"""

import pytest

from chatflow.nodes.logic import coerce_value


class TestCondition:
    @pytest.mark.parametrize(
        "age,operator,value,handle",
        [
            (21, "greater_than", "18", "true"),
            (16, "greater_than", "18", "false"),
            ("18", "greater_or_equal", 18, "true"),
            ("unknown", "greater_than", "18", "false"),
            (21, "equals", "21", "true"),
        ],
    )
    @pytest.mark.asyncio
    async def test_routes_on_comparison(self, make_handler, make_node, context, age, operator, value, handle):
        node = make_node("condition", variableName="age", operator=operator, value=value)

        result = await make_handler("condition").execute(node, context.with_variables({"age": age}))

        assert result.selected_handle == handle
        assert result.response is None
        assert result.should_continue is True

    @pytest.mark.asyncio
    async def test_missing_variable(self, make_handler, make_node, context):
        handler = make_handler("condition")

        empty = await handler.execute(make_node("condition", variableName="plan", operator="is_empty"), context)
        equals = await handler.execute(make_node("condition", variableName="plan", value="pro"), context)

        assert empty.selected_handle == "true"
        assert equals.selected_handle == "false"

    @pytest.mark.asyncio
    async def test_dot_path(self, make_handler, make_node, context):
        node = make_node("condition", variable="order.status", operator="equals", value="shipped")
        ctx = context.with_variables({"order": {"status": "shipped"}})

        result = await make_handler("condition").execute(node, ctx)

        assert result.selected_handle == "true"

    @pytest.mark.asyncio
    async def test_unknown_operator_is_false(self, make_handler, make_node, context):
        node = make_node("condition", variableName="session_id", operator="sounds_like", value="sess_1")
        result = await make_handler("condition").execute(node, context)
        assert result.selected_handle == "false"


class TestSwitch:
    CASES = [
        {"id": "billing", "operator": "contains", "value": "invoice"},
        {"id": "shipping", "operator": "contains", "value": "package"},
        {"id": "any_invoice", "operator": "contains", "value": "invoice"},
    ]

    @pytest.mark.asyncio
    async def test_first_matching_case(self, make_handler, make_node, context):
        node = make_node("switch", variableName="topic", cases=self.CASES)
        ctx = context.with_variables({"topic": "Where is my INVOICE?"})

        result = await make_handler("switch").execute(node, ctx)

        assert result.selected_handle == "billing"

    @pytest.mark.asyncio
    async def test_default_when_nothing_matches(self, make_handler, make_node, context):
        node = make_node("switch", variableName="topic", cases=self.CASES)
        ctx = context.with_variables({"topic": "hello"})

        result = await make_handler("switch").execute(node, ctx)

        assert result.selected_handle == "default"

    @pytest.mark.asyncio
    async def test_no_cases(self, make_handler, make_node, context):
        result = await make_handler("switch").execute(make_node("switch", variableName="topic"), context)
        assert result.selected_handle == "default"


class TestSetVariable:
    @pytest.mark.asyncio
    async def test_templated_string(self, make_handler, make_node, context):
        node = make_node("set_variable", variableName="greeting", value="Hello {{name}}")
        ctx = context.with_variables({"name": "Ann"})

        result = await make_handler("set_variable").execute(node, ctx)

        assert result.context.variables["greeting"] == "Hello Ann"
        assert "greeting" not in ctx.variables
        assert result.selected_handle is None

    @pytest.mark.asyncio
    async def test_number_from_variable(self, make_handler, make_node, context):
        node = make_node("set_variable", variableName="total", value="{{count}}", valueType="number")
        ctx = context.with_variables({"count": "7"})

        result = await make_handler("set_variable").execute(node, ctx)

        assert result.context.variables["total"] == 7

    @pytest.mark.asyncio
    async def test_json_value(self, make_handler, make_node, context):
        node = make_node(
            "set_variable",
            variableName="profile",
            value='{"name": "{{name}}", "tags": ["vip"]}',
            valueType="json",
        )
        ctx = context.with_variables({"name": "Ann"})

        result = await make_handler("set_variable").execute(node, ctx)

        assert result.context.variables["profile"] == {"name": "Ann", "tags": ["vip"]}

    @pytest.mark.asyncio
    async def test_non_string_config_value(self, make_handler, make_node, context):
        node = make_node("set_variable", variableName="flags", value={"beta": True}, valueType="json")

        result = await make_handler("set_variable").execute(node, context)

        assert result.context.variables["flags"] == {"beta": True}


class TestCoerceValue:
    @pytest.mark.parametrize(
        "text,expected",
        [("42", 42), ("2.5", 2.5), ("", 0), ("abc", 0), ("nan", 0), ("1e400", 0), (" 3 ", 3)],
    )
    def test_number(self, text, expected):
        assert coerce_value(text, "number") == expected

    @pytest.mark.parametrize(
        "text,expected",
        [("true", True), ("TRUE", True), ("1", True), ("false", False), ("yes", False), ("", False)],
    )
    def test_boolean(self, text, expected):
        assert coerce_value(text, "boolean") is expected

    def test_json(self):
        assert coerce_value("[1, 2]", "json") == [1, 2]
        assert coerce_value("{not json", "json") == "{not json"

    def test_string_is_unchanged(self):
        assert coerce_value(" padded ", "string") == " padded "
        assert coerce_value("x", "unknown_type") == "x"
