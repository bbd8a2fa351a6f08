"""
Named trigger kinds.

Each kind turns a rule's ``trigger_config`` into a TriggerCondition, so the
matcher only ever evaluates one shape. ``custom`` takes the condition
verbatim from the config.
"""
from dataclasses import dataclass
from typing import Callable, Dict, List, Tuple

from flowauto.flows.conditions import FieldPredicate, TriggerCondition
from flowauto.flows.errors import MalformedCondition
from flowauto.flows.events import EventKind
from flowauto.logging_config import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class ConfigBinding:
    """Maps one config key onto a payload predicate."""
    config_key: str
    payload_field: str
    operator: str = "equals"
    required: bool = False


@dataclass(frozen=True)
class TriggerKind:
    kind: str
    label: str
    event_type: EventKind
    bindings: Tuple[ConfigBinding, ...] = ()
    build: Callable = None

    def compile(self, config) -> TriggerCondition:
        config = config or {}
        if not isinstance(config, dict):
            raise MalformedCondition(f"{self.kind}: trigger config must be an object")
        if self.build is not None:
            return self.build(config)

        predicates = []
        for binding in self.bindings:
            value = config.get(binding.config_key)
            if value in (None, ""):
                if binding.required:
                    raise MalformedCondition(f"{self.kind}: {binding.config_key} is required")
                continue
            predicates.append(FieldPredicate(binding.payload_field, binding.operator, value))
        return TriggerCondition(self.event_type, tuple(predicates)).validate()

    def describe(self):
        return {
            'type': self.kind,
            'label': self.label,
            'eventType': self.event_type.value if self.event_type else None,
            'configKeys': [b.config_key for b in self.bindings],
        }


class TriggerRegistry:
    def __init__(self):
        self._kinds: Dict[str, TriggerKind] = {}

    def register(self, trigger_kind: TriggerKind):
        if trigger_kind.kind in self._kinds:
            logger.warning("Overwriting existing trigger kind", kind=trigger_kind.kind)
        self._kinds[trigger_kind.kind] = trigger_kind
        return trigger_kind

    def get(self, kind):
        return self._kinds.get(kind)

    def all(self) -> List[TriggerKind]:
        return list(self._kinds.values())

    def __contains__(self, kind):
        return kind in self._kinds

    def __len__(self):
        return len(self._kinds)


trigger_registry = TriggerRegistry()


def compile_trigger(trigger_type, trigger_config) -> TriggerCondition:
    """
    Compile a stored trigger into a TriggerCondition.

    Raises:
        MalformedCondition: unknown trigger type or invalid config.
    """
    trigger_kind = trigger_registry.get(trigger_type)
    if trigger_kind is None:
        raise MalformedCondition(f"Unknown trigger type: {trigger_type!r}")
    return trigger_kind.compile(trigger_config)


def _positive_number(config, key, default, kind):
    raw = config.get(key)
    if raw in (None, ""):
        return default
    try:
        number = float(raw)
    except (TypeError, ValueError):
        raise MalformedCondition(f"{kind}: {key} must be a positive number")
    if number < 1:
        raise MalformedCondition(f"{kind}: {key} must be a positive number")
    return number


def _build_due_date_approaching(config):
    days_before = _positive_number(config, "daysBefore", 2, "due_date_approaching")
    return TriggerCondition(
        EventKind.DUE_DATE_APPROACHING,
        (FieldPredicate("daysBefore", "at_most", days_before),),
    ).validate()


def _build_stuck_in_column(config):
    days = _positive_number(config, "days", 3, "card_stuck_in_column")
    predicates = [FieldPredicate("daysInColumn", "at_least", days)]
    if config.get("columnId"):
        predicates.insert(0, FieldPredicate("columnId", "equals", config["columnId"]))
    return TriggerCondition(EventKind.CARD_STUCK_IN_COLUMN, tuple(predicates)).validate()


def _build_custom(config):
    return TriggerCondition.from_dict(config)


_B = ConfigBinding

for _kind in (
    TriggerKind("card_moved_to", "Card moved to column", EventKind.CARD_MOVED,
                (_B("targetColumnId", "toColumnId", required=True),)),
    TriggerKind("card_moved_from", "Card moved from column", EventKind.CARD_MOVED,
                (_B("sourceColumnId", "fromColumnId", required=True),)),
    TriggerKind("card_moved_between", "Card moved between columns", EventKind.CARD_MOVED,
                (_B("fromColumnId", "fromColumnId", required=True),
                 _B("toColumnId", "toColumnId", required=True))),
    TriggerKind("card_created", "Card created", EventKind.CARD_CREATED,
                (_B("columnId", "columnId"),)),
    TriggerKind("card_archived", "Card archived", EventKind.CARD_ARCHIVED),
    TriggerKind("card_deleted", "Card deleted", EventKind.CARD_DELETED),
    TriggerKind("card_assignee_set", "Card assignee set", EventKind.CARD_ASSIGNEE_SET,
                (_B("userId", "assigneeId"),)),
    TriggerKind("card_assignee_removed", "Card assignee removed", EventKind.CARD_ASSIGNEE_REMOVED,
                (_B("userId", "removedUserId"),)),
    TriggerKind("card_priority_changed", "Card priority changed", EventKind.CARD_PRIORITY_CHANGED,
                (_B("fromPriority", "fromPriority"), _B("toPriority", "toPriority"))),
    TriggerKind("card_tag_added", "Card tag added", EventKind.CARD_TAG_ADDED,
                (_B("tag", "tag", required=True),)),
    TriggerKind("card_tag_removed", "Card tag removed", EventKind.CARD_TAG_REMOVED,
                (_B("tag", "tag", required=True),)),
    TriggerKind("card_due_date_set", "Card due date set", EventKind.CARD_DUE_DATE_SET),
    TriggerKind("card_field_changed", "Custom field changed", EventKind.CARD_FIELD_CHANGED,
                (_B("fieldId", "fieldId", required=True),
                 _B("fromValue", "fromValue"),
                 _B("toValue", "toValue"))),
    TriggerKind("due_date_approaching", "Due date approaching", EventKind.DUE_DATE_APPROACHING,
                (_B("daysBefore", "daysBefore", "at_most"),), build=_build_due_date_approaching),
    TriggerKind("due_date_passed", "Due date passed", EventKind.DUE_DATE_PASSED),
    TriggerKind("card_stuck_in_column", "Card stuck in column", EventKind.CARD_STUCK_IN_COLUMN,
                (_B("columnId", "columnId"), _B("days", "daysInColumn", "at_least")),
                build=_build_stuck_in_column),
    TriggerKind("custom", "Custom condition", None, build=_build_custom),
):
    trigger_registry.register(_kind)
