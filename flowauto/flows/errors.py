"""
Error taxonomy for the flow automation engine.

Only ValidationError ever reaches an HTTP caller. Everything raised during
execution is caught at the rule boundary and turned into an ErrorDescriptor.
"""
from dataclasses import dataclass


class FlowError(Exception):
    """Base class for engine errors."""


class ValidationError(FlowError):
    """Malformed inbound event."""


class StoreUnavailable(FlowError):
    """Rule read failed. Callers treat this as zero matches."""


class MalformedCondition(FlowError):
    """A rule's trigger condition (or card filter) cannot be evaluated."""

    def __init__(self, message, rule_id=None):
        super().__init__(message)
        self.rule_id = rule_id


class ActionFailure(FlowError):
    """A single action in a rule's chain failed."""

    def __init__(self, message, action_kind=None):
        super().__init__(message)
        self.action_kind = action_kind


class Timeout(ActionFailure):
    """A rule's action chain exceeded its execution budget."""


@dataclass(frozen=True)
class ErrorDescriptor:
    kind: str
    message: str

    @classmethod
    def from_exception(cls, exc):
        return cls(kind=type(exc).__name__, message=str(exc))

    def to_dict(self):
        return {'kind': self.kind, 'message': self.message}
