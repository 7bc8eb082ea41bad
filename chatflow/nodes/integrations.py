"""Integration nodes: api_call and integration_action.

Both store their outcome under a configured variable name plus suffixed
diagnostic variables and route on "success" / "error". Transport and
collaborator failures are mapped to the "error" route, never raised.

Variables written (``<var>`` = the configured response variable):
- api_call: <var>, <var>_status, <var>_ok, and <var>_error on transport failure
- integration_action: <var>, <var>_success, <var>_error, <var>_metadata
"""

from __future__ import annotations

import json
import logging
from dataclasses import asdict
from typing import Any, Dict, List, Optional, Union

import httpx
from pydantic import AliasChoices, Field

from .. import settings
from ..engine.context import ChatflowModel, ExecutionContext
from ..engine.graph import NodeConfig
from ..engine.template import interpolate
from ..integrations.actions import ActionContext, ActionResult
from .registry import BaseHandler, NodeConfigModel, register_node_type

logger = logging.getLogger(__name__)

SUCCESS_HANDLE = "success"
ERROR_HANDLE = "error"


# ---------------------------------------------------------------------------
# api_call
# ---------------------------------------------------------------------------


class HeaderEntry(ChatflowModel):
    key: str = ""
    value: str = ""


class ApiCallConfig(NodeConfigModel):
    method: str = "GET"
    url: str
    headers: Union[List[HeaderEntry], Dict[str, str]] = []
    body: Optional[str] = None
    response_variable: str = Field(
        validation_alias=AliasChoices("responseVariable", "response_variable", "variableName")
    )
    timeout: int = settings.API_CALL_DEFAULT_TIMEOUT_MS  # milliseconds


@register_node_type(
    node_type="api_call",
    display_name="API Call",
    description="Performs a templated HTTP request and routes on the response status",
    category="integration",
    config_model=ApiCallConfig,
    handles=(SUCCESS_HANDLE, ERROR_HANDLE),
)
class ApiCallHandler(BaseHandler):
    async def execute(self, node: NodeConfig, context: ExecutionContext, user_message: Optional[str] = None):
        config: ApiCallConfig = self.parse_config(node)
        variables = context.variables
        var = config.response_variable

        method = (interpolate(config.method, variables) or "GET").upper()
        url = interpolate(config.url, variables)
        headers = self._build_headers(config, variables)
        body = interpolate(config.body, variables) if config.body else None
        timeout = (config.timeout or settings.API_CALL_DEFAULT_TIMEOUT_MS) / 1000

        try:
            async with httpx.AsyncClient(transport=self.deps.http_transport, timeout=timeout) as client:
                resp = await client.request(
                    method,
                    url,
                    headers=headers,
                    content=body if method != "GET" and body else None,
                )
        except httpx.TimeoutException as e:
            return self._failed(node, context, var, f"Request timed out after {config.timeout}ms: {e}")
        except (httpx.HTTPError, httpx.InvalidURL, ValueError) as e:
            return self._failed(node, context, var, str(e) or type(e).__name__)

        data = self._read_body(resp)
        logger.info(f"Node {node.id}: {method} {url} -> {resp.status_code}")
        return self.result(
            node,
            context.with_variables({
                var: data,
                f"{var}_status": resp.status_code,
                f"{var}_ok": resp.is_success,
            }),
            selected_handle=SUCCESS_HANDLE if resp.is_success else ERROR_HANDLE,
        )

    @staticmethod
    def _build_headers(config: ApiCallConfig, variables: Dict[str, Any]) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if isinstance(config.headers, dict):
            entries = [HeaderEntry(key=k, value=v) for k, v in config.headers.items()]
        else:
            entries = config.headers
        for entry in entries:
            if entry.key and entry.value:
                headers[entry.key] = interpolate(entry.value, variables)
        return headers

    @staticmethod
    def _read_body(resp: httpx.Response) -> Any:
        if "application/json" in resp.headers.get("content-type", ""):
            try:
                return resp.json()
            except ValueError:
                logger.debug("Response declared JSON but did not parse, keeping text")
        return resp.text

    def _failed(self, node: NodeConfig, context: ExecutionContext, var: str, error: str):
        logger.warning(f"Node {node.id}: request failed: {error}")
        return self.result(
            node,
            context.with_variables({
                var: None,
                f"{var}_status": 0,
                f"{var}_ok": False,
                f"{var}_error": error,
            }),
            selected_handle=ERROR_HANDLE,
        )


# ---------------------------------------------------------------------------
# integration_action
# ---------------------------------------------------------------------------


class IntegrationActionConfig(NodeConfigModel):
    integration_id: str
    action_type: str
    inputs: Dict[str, Any] = {}
    response_variable: str = Field(
        validation_alias=AliasChoices("responseVariable", "response_variable", "variableName")
    )
    continue_on_error: bool = True


@register_node_type(
    node_type="integration_action",
    display_name="Integration Action",
    description="Runs a CRM/helpdesk action through the integration dispatcher",
    category="integration",
    config_model=IntegrationActionConfig,
    handles=(SUCCESS_HANDLE, ERROR_HANDLE),
)
class IntegrationActionHandler(BaseHandler):
    async def execute(self, node: NodeConfig, context: ExecutionContext, user_message: Optional[str] = None):
        config: IntegrationActionConfig = self.parse_config(node)
        var = config.response_variable
        inputs = {
            key: interpolate(value, context.variables) if isinstance(value, str) else value
            for key, value in config.inputs.items()
        }

        dispatcher = self.deps.action_dispatcher
        if dispatcher is None:
            result = ActionResult(success=False, error="No integration action dispatcher configured")
        else:
            action_context = ActionContext(
                integration_id=config.integration_id,
                workflow_id=context.workflow_id,
                conversation_id=context.conversation_id,
                variables=dict(context.variables),
            )
            try:
                result = await dispatcher.execute(config.action_type, action_context, inputs)
            except Exception as e:
                logger.exception(f"Integration action error: {config.action_type}: {e}")
                result = ActionResult(success=False, error=str(e) or "Unknown error")

        if not result.success:
            logger.error(f"Integration action failed: {config.action_type}: {result.error}")

        updated = context.with_variables({
            var: _jsonable(result.data),
            f"{var}_success": result.success,
            f"{var}_error": result.error,
            f"{var}_metadata": result.metadata,
        })
        return self.result(
            node,
            updated,
            should_continue=result.success or config.continue_on_error,
            selected_handle=SUCCESS_HANDLE if result.success else ERROR_HANDLE,
        )


def _jsonable(data: Any) -> Any:
    """Keep stored action data JSON-serializable (dataclasses become dicts)."""
    if hasattr(data, "__dataclass_fields__"):
        return asdict(data)
    try:
        json.dumps(data)
    except (TypeError, ValueError):
        return str(data)
    return data
