"""
Action capability interface and registry.

New action kinds subclass ActionHandler and register themselves with
``@register_action``; the matcher and executor never change.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from flowauto.flows.errors import ActionFailure
from flowauto.logging_config import get_logger

logger = get_logger(__name__)

ACTION_CATEGORIES = ("card", "notification", "integration")


@dataclass
class ActionResult:
    success: bool
    output: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None
    details: Optional[str] = None

    @classmethod
    def ok(cls, details=None, **output):
        return cls(success=True, output=output, details=details)

    @classmethod
    def failed(cls, error, details=None):
        return cls(success=False, error=error, details=details)

    def to_dict(self):
        data = {'success': self.success}
        if self.output:
            data['output'] = self.output
        if self.error:
            data['error'] = self.error
        if self.details:
            data['details'] = self.details
        return data


class ActionHandler:
    kind: str = None
    label: str = ""
    category: str = "card"
    # Config key -> error message when the key is missing or empty
    required_config: Dict[str, str] = {}
    # Config keys that must be strings when present
    text_config: Tuple[str, ...] = ()

    def validate(self, config) -> List[str]:
        config = config or {}
        errors = []
        for key, message in self.required_config.items():
            value = config.get(key)
            if value is None or value == "" or value == []:
                errors.append(message)
        for key in self.text_config:
            value = config.get(key)
            if value is not None and not isinstance(value, str):
                errors.append(f"{key} must be text")
        return errors

    def execute(self, config, context) -> ActionResult:
        raise NotImplementedError

    def run(self, config, context) -> ActionResult:
        """Validate then execute. Invalid config is an ActionFailure."""
        errors = self.validate(config)
        if errors:
            raise ActionFailure("; ".join(errors), action_kind=self.kind)
        result = self.execute(config, context)
        if result is None:
            return ActionResult.ok()
        return result

    def describe(self):
        return {
            'type': self.kind,
            'label': self.label,
            'category': self.category,
            'requiredConfig': list(self.required_config),
        }


class ActionRegistry:
    def __init__(self):
        self._handlers: Dict[str, ActionHandler] = {}

    def register(self, handler: ActionHandler):
        if handler.kind in self._handlers:
            logger.warning("Overwriting existing action handler", kind=handler.kind)
        self._handlers[handler.kind] = handler
        return handler

    def get(self, kind) -> Optional[ActionHandler]:
        return self._handlers.get(kind)

    def all(self) -> List[ActionHandler]:
        return list(self._handlers.values())

    def by_category(self) -> Dict[str, List[ActionHandler]]:
        grouped = {category: [] for category in ACTION_CATEGORIES}
        for handler in self._handlers.values():
            grouped.setdefault(handler.category, []).append(handler)
        return grouped

    def __contains__(self, kind):
        return kind in self._handlers

    def __len__(self):
        return len(self._handlers)


action_registry = ActionRegistry()


def register_action(cls):
    """Class decorator: instantiate and register an ActionHandler subclass."""
    action_registry.register(cls())
    return cls
