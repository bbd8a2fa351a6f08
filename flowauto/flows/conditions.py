"""
Predicate evaluation for trigger conditions and card filters.

A TriggerCondition is an event-type filter plus field predicates over the
event payload. A predicate on a payload field the event does not carry is
false, never an error. Card filters use the same predicates against the
current card state, where absent values read as None.
"""
from dataclasses import dataclass
from typing import Any, Mapping, Optional, Tuple

from flowauto.flows.errors import MalformedCondition
from flowauto.flows.events import EventKind, parse_event_kind, payload_fields_for


class _Missing:
    def __repr__(self):
        return "<missing>"


MISSING = _Missing()

# Operators that compare against a configured value
VALUE_OPERATORS = frozenset({
    "equals", "not_equals", "contains", "not_contains", "is_one_of",
    "greater_than", "less_than", "at_least", "at_most",
})
# Operators that only inspect the field itself
UNARY_OPERATORS = frozenset({"is_empty", "is_not_empty", "is_set", "is_not_set"})
OPERATORS = VALUE_OPERATORS | UNARY_OPERATORS

# Card fields a filter may reference (plus custom.<name>)
CARD_FILTER_FIELDS = frozenset({
    "title", "description", "priority", "status", "column", "assignee",
    "assignee_name", "due_date", "tags", "creator",
})


def _as_text(value) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _as_number(value) -> Optional[float]:
    if isinstance(value, bool) or value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _is_empty(value) -> bool:
    return value is None or value == "" or (isinstance(value, (list, tuple, set, dict)) and len(value) == 0)


def apply_operator(operator: str, field_value, expected) -> bool:
    """Evaluate ``field_value <operator> expected``. Never raises."""
    if operator == "equals":
        return _as_text(field_value) == _as_text(expected)
    if operator == "not_equals":
        return _as_text(field_value) != _as_text(expected)
    if operator in ("contains", "not_contains"):
        needle = _as_text(expected).lower()
        if isinstance(field_value, (list, tuple, set)):
            found = any(needle in _as_text(item).lower() for item in field_value)
        else:
            found = needle in _as_text(field_value).lower()
        return found if operator == "contains" else not found
    if operator == "is_one_of":
        allowed = expected if isinstance(expected, (list, tuple, set)) else [expected]
        allowed_text = {_as_text(v) for v in allowed}
        if isinstance(field_value, (list, tuple, set)):
            return any(_as_text(v) in allowed_text for v in field_value)
        return _as_text(field_value) in allowed_text
    if operator in ("greater_than", "less_than", "at_least", "at_most"):
        left, right = _as_number(field_value), _as_number(expected)
        if left is None or right is None:
            return False
        return {
            "greater_than": left > right,
            "less_than": left < right,
            "at_least": left >= right,
            "at_most": left <= right,
        }[operator]
    if operator == "is_empty":
        return _is_empty(field_value)
    if operator == "is_not_empty":
        return not _is_empty(field_value)
    if operator == "is_set":
        return field_value is not None
    if operator == "is_not_set":
        return field_value is None
    return False


@dataclass(frozen=True)
class FieldPredicate:
    field: str
    operator: str
    value: Any = None

    @classmethod
    def from_dict(cls, raw) -> "FieldPredicate":
        if not isinstance(raw, Mapping):
            raise MalformedCondition("Predicate must be an object")
        field_name = raw.get("field")
        operator = raw.get("operator")
        if not isinstance(field_name, str) or not field_name.strip():
            raise MalformedCondition("Predicate field is required")
        if operator not in OPERATORS:
            raise MalformedCondition(f"Unknown operator: {operator!r}")
        if operator in VALUE_OPERATORS and "value" not in raw:
            raise MalformedCondition(f"Operator {operator!r} on {field_name!r} requires a value")
        return cls(field=field_name.strip(), operator=operator, value=raw.get("value"))

    def evaluate(self, values: Mapping[str, Any]) -> bool:
        field_value = values.get(self.field, MISSING)
        if field_value is MISSING:
            return False
        return apply_operator(self.operator, field_value, self.value)

    def to_dict(self):
        return {'field': self.field, 'operator': self.operator, 'value': self.value}


@dataclass(frozen=True)
class TriggerCondition:
    event_type: EventKind
    predicates: Tuple[FieldPredicate, ...] = ()

    def validate(self):
        """Raise MalformedCondition unless every predicate names a field of the event's schema."""
        allowed = payload_fields_for(self.event_type)
        for predicate in self.predicates:
            if predicate.field not in allowed:
                raise MalformedCondition(
                    f"Field {predicate.field!r} is not part of the {self.event_type.value} payload"
                )
        return self

    def matches(self, event) -> bool:
        if event.type != self.event_type:
            return False
        return all(predicate.evaluate(event.payload) for predicate in self.predicates)

    @classmethod
    def from_dict(cls, raw) -> "TriggerCondition":
        if not isinstance(raw, Mapping):
            raise MalformedCondition("Trigger condition must be an object")
        kind = parse_event_kind(raw.get("event_type") or raw.get("eventType"))
        if kind is None:
            raise MalformedCondition(f"Unknown event type: {raw.get('event_type') or raw.get('eventType')!r}")
        predicates = raw.get("predicates") or []
        if not isinstance(predicates, (list, tuple)):
            raise MalformedCondition("predicates must be a list")
        return cls(
            event_type=kind,
            predicates=tuple(FieldPredicate.from_dict(p) for p in predicates),
        ).validate()


def parse_card_filters(raw_filters):
    """Parse a rule's card filters, validating field names."""
    if not raw_filters:
        return ()
    if not isinstance(raw_filters, (list, tuple)):
        raise MalformedCondition("conditions must be a list")
    filters = []
    for raw in raw_filters:
        predicate = FieldPredicate.from_dict(raw)
        if predicate.field not in CARD_FILTER_FIELDS and not predicate.field.startswith("custom."):
            raise MalformedCondition(f"Unknown card field: {predicate.field!r}")
        filters.append(predicate)
    return tuple(filters)


def check_card_filters(filters, card) -> bool:
    """AND all card filters against a CardSnapshot. No filters means pass."""
    for predicate in filters:
        field_value = card.field_value(predicate.field)
        if not apply_operator(predicate.operator, field_value, predicate.value):
            return False
    return True
