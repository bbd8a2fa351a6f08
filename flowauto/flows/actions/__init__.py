from flowauto.flows.actions.base import (
    ActionHandler,
    ActionRegistry,
    ActionResult,
    action_registry,
    register_action,
)

# Built-in handlers register themselves on import
from flowauto.flows.actions import card, notify, email  # noqa: F401,E402

__all__ = [
    "ActionHandler",
    "ActionRegistry",
    "ActionResult",
    "action_registry",
    "register_action",
]
