"""
Event model: the canonical shape of a board occurrence.
"""
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping, Optional

from flowauto.flows.errors import ValidationError


class EventKind(str, Enum):
    CARD_MOVED = "card_moved"
    CARD_CREATED = "card_created"
    CARD_ARCHIVED = "card_archived"
    CARD_DELETED = "card_deleted"
    CARD_ASSIGNEE_SET = "card_assignee_set"
    CARD_ASSIGNEE_REMOVED = "card_assignee_removed"
    CARD_PRIORITY_CHANGED = "card_priority_changed"
    CARD_TAG_ADDED = "card_tag_added"
    CARD_TAG_REMOVED = "card_tag_removed"
    CARD_DUE_DATE_SET = "card_due_date_set"
    CARD_FIELD_CHANGED = "card_field_changed"
    DUE_DATE_APPROACHING = "due_date_approaching"
    DUE_DATE_PASSED = "due_date_passed"
    CARD_STUCK_IN_COLUMN = "card_stuck_in_column"


# Payload fields every event may carry
COMMON_PAYLOAD_FIELDS = frozenset({"userName"})

# Payload fields a trigger condition may reference, per event kind
EVENT_SCHEMAS = {
    EventKind.CARD_MOVED: frozenset({"fromColumnId", "toColumnId", "fromColumn", "toColumn"}),
    EventKind.CARD_CREATED: frozenset({"columnId", "column"}),
    EventKind.CARD_ARCHIVED: frozenset({"columnId"}),
    EventKind.CARD_DELETED: frozenset({"columnId"}),
    EventKind.CARD_ASSIGNEE_SET: frozenset({"assigneeId"}),
    EventKind.CARD_ASSIGNEE_REMOVED: frozenset({"removedUserId"}),
    EventKind.CARD_PRIORITY_CHANGED: frozenset({"fromPriority", "toPriority"}),
    EventKind.CARD_TAG_ADDED: frozenset({"tag"}),
    EventKind.CARD_TAG_REMOVED: frozenset({"tag"}),
    EventKind.CARD_DUE_DATE_SET: frozenset({"dueDate", "previousDueDate"}),
    EventKind.CARD_FIELD_CHANGED: frozenset({"fieldId", "fromValue", "toValue"}),
    EventKind.DUE_DATE_APPROACHING: frozenset({"dueDate", "daysBefore"}),
    EventKind.DUE_DATE_PASSED: frozenset({"dueDate", "daysOverdue"}),
    EventKind.CARD_STUCK_IN_COLUMN: frozenset({"columnId", "daysInColumn"}),
}


def payload_fields_for(kind: EventKind) -> frozenset:
    return EVENT_SCHEMAS.get(kind, frozenset()) | COMMON_PAYLOAD_FIELDS


def parse_event_kind(value) -> Optional[EventKind]:
    """Return the EventKind for ``value`` or None if it is not a known kind."""
    if isinstance(value, EventKind):
        return value
    try:
        return EventKind(value)
    except ValueError:
        return None


@dataclass(frozen=True)
class Event:
    """One workspace occurrence. Immutable; the payload is a read-only view."""
    type: EventKind
    board_id: str
    card_id: str
    triggered_by: Optional[str] = None
    payload: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, "payload", MappingProxyType(dict(self.payload or {})))

    def to_dict(self):
        return {
            'type': self.type.value,
            'boardId': self.board_id,
            'cardId': self.card_id,
            'triggeredBy': self.triggered_by,
            'payload': dict(self.payload),
        }


def _required_str(raw, *keys):
    for key in keys:
        value = raw.get(key)
        if value is None:
            continue
        if not isinstance(value, str):
            raise ValidationError(f"{keys[0]} must be a string")
        value = value.strip()
        if value:
            return value
    return None


def construct_event(raw, triggered_by=None) -> Event:
    """
    Build an Event from an inbound mapping.

    Accepts camelCase (``boardId``) or snake_case (``board_id``) keys.

    Raises:
        ValidationError: if type, boardId or cardId is missing or empty, the
            type is unknown, or the payload is not an object.
    """
    if not isinstance(raw, Mapping):
        raise ValidationError("Event body must be a JSON object")

    event_type = _required_str(raw, "type")
    board_id = _required_str(raw, "boardId", "board_id")
    card_id = _required_str(raw, "cardId", "card_id")

    missing = [name for name, value in (("type", event_type), ("boardId", board_id), ("cardId", card_id))
               if not value]
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    kind = parse_event_kind(event_type)
    if kind is None:
        raise ValidationError(f"Unknown event type: {event_type}")

    payload = raw.get("payload")
    if payload is None:
        payload = {}
    elif not isinstance(payload, Mapping):
        raise ValidationError("payload must be a JSON object")

    return Event(
        type=kind,
        board_id=board_id,
        card_id=card_id,
        triggered_by=triggered_by if triggered_by is not None else raw.get("triggeredBy"),
        payload=payload,
    )
