"""Integration action collaborator.

The integration_action node hands an action type (e.g. "crm.create_contact")
plus templated inputs to an ActionDispatcher and routes on the outcome.
Provider clients (CRM, helpdesk) live outside the runtime; ActionRegistry is
an in-process dispatcher that callers populate with their own coroutines.

Usage:
    actions = ActionRegistry()

    @actions.register("crm.create_contact", provider="hubspot")
    async def create_contact(context, inputs):
        ...
        return {"id": "123"}

    result = await actions.execute("crm.create_contact", ActionContext("int_1"), {...})
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Optional, Protocol, Union, runtime_checkable

from ..engine.context import utc_now
from ..errors import IntegrationActionError

logger = logging.getLogger(__name__)

# Action types understood by the integration_action node
ACTION_TYPES = (
    # CRM
    "crm.create_contact",
    "crm.update_contact",
    "crm.get_contact",
    "crm.search_contacts",
    "crm.create_company",
    "crm.create_deal",
    "crm.update_deal",
    # Helpdesk
    "helpdesk.create_ticket",
    "helpdesk.update_ticket",
    "helpdesk.add_comment",
    "helpdesk.get_ticket",
    "helpdesk.search_tickets",
    # Generic
    "integration.test_connection",
)


@dataclass
class ActionContext:
    integration_id: str
    workflow_id: Optional[str] = None
    conversation_id: Optional[str] = None
    variables: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ActionResult:
    success: bool
    data: Any = None
    error: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None


@runtime_checkable
class ActionDispatcher(Protocol):
    """What the runtime needs from the integrations layer."""

    async def execute(
        self,
        action_type: str,
        context: ActionContext,
        inputs: Dict[str, Any],
    ) -> ActionResult:
        ...


ActionFunc = Callable[[ActionContext, Dict[str, Any]], Awaitable[Union[ActionResult, Any]]]


class ActionRegistry:
    """In-process ActionDispatcher backed by registered coroutines.

    A registered function returns an ActionResult, or any other value which
    is wrapped as a successful result's data. Exceptions become failed results.
    """

    def __init__(self):
        self._actions: Dict[str, ActionFunc] = {}
        self._providers: Dict[str, str] = {}

    def register(self, action_type: str, provider: str = "custom") -> Callable[[ActionFunc], ActionFunc]:
        """Decorator registering ``func`` as the implementation of ``action_type``."""

        def decorator(func: ActionFunc) -> ActionFunc:
            if action_type not in ACTION_TYPES:
                logger.warning(f"Registering non-standard action type: {action_type}")
            self._actions[action_type] = func
            self._providers[action_type] = provider
            return func

        return decorator

    def has_action(self, action_type: str) -> bool:
        return action_type in self._actions

    async def execute(
        self,
        action_type: str,
        context: ActionContext,
        inputs: Dict[str, Any],
    ) -> ActionResult:
        func = self._actions.get(action_type)
        if func is None:
            return ActionResult(success=False, error=f"Unknown action type: {action_type}")

        try:
            outcome = await func(context, inputs)
        except IntegrationActionError as e:
            logger.warning(f"Action {action_type} failed: {e}")
            return ActionResult(success=False, error=str(e))
        except Exception as e:
            logger.exception(f"Action execution error ({action_type}): {e}")
            return ActionResult(success=False, error=str(e) or "Action execution failed")

        result = outcome if isinstance(outcome, ActionResult) else ActionResult(success=True, data=outcome)
        if result.metadata is None:
            result.metadata = {
                "provider": self._providers[action_type],
                "action": action_type,
                "executedAt": utc_now(),
            }
        return result
