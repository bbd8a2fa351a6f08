"""
Read path for automation rules.

The engine only ever sees immutable Rule snapshots; FlowRule rows are never
mutated here.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError

from flowauto.flows.errors import StoreUnavailable
from flowauto.logging_config import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class ActionSpec:
    id: str
    kind: str
    config: Dict[str, Any] = field(default_factory=dict)
    order: int = 0
    continue_on_failure: bool = False

    @classmethod
    def from_dict(cls, raw, position):
        if not isinstance(raw, dict):
            raise ValueError(f"action #{position} is not an object")
        kind = raw.get("type") or raw.get("kind")
        if not kind:
            raise ValueError(f"action #{position} has no type")
        config = raw.get("config") or {}
        if not isinstance(config, dict):
            raise ValueError(f"action #{position} config is not an object")
        try:
            order = int(raw.get("order", position))
        except (TypeError, ValueError):
            order = position
        return cls(
            id=str(raw.get("id") or f"step-{position}"),
            kind=kind,
            config=dict(config),
            order=order,
            continue_on_failure=bool(raw.get("continueOnFailure", raw.get("continue_on_failure", False))),
        )


@dataclass(frozen=True)
class Rule:
    id: str
    workspace_id: str
    board_id: str
    name: str
    trigger_type: str
    trigger_config: Dict[str, Any]
    actions: Tuple[ActionSpec, ...]
    conditions: Tuple[Dict[str, Any], ...] = ()
    enabled: bool = True
    run_count: int = 0
    created_by: Optional[str] = None

    @classmethod
    def from_model(cls, row) -> "Rule":
        raw_actions = row.actions or []
        if not isinstance(raw_actions, list):
            raise ValueError("actions is not a list")
        specs = [ActionSpec.from_dict(a, i) for i, a in enumerate(raw_actions)]
        # Stable sort keeps declared position for equal order values
        specs.sort(key=lambda action: action.order)
        conditions = row.conditions or []
        if not isinstance(conditions, list):
            raise ValueError("conditions is not a list")
        return cls(
            id=row.id,
            workspace_id=row.workspace_id,
            board_id=row.board_id,
            name=row.name,
            trigger_type=row.trigger_type,
            trigger_config=dict(row.trigger_config or {}),
            actions=tuple(specs),
            conditions=tuple(conditions),
            enabled=bool(row.is_active),
            run_count=row.run_count or 0,
            created_by=row.created_by,
        )


class RuleStore:
    """Loads enabled rules for a board from the flow_rules table."""

    def load_rules_for_board(self, board_id: str) -> List[Rule]:
        """
        Return the enabled rules of ``board_id`` in creation order.

        Raises:
            StoreUnavailable: the underlying read failed.
        """
        from flowauto.models import FlowRule

        try:
            rows = (
                FlowRule.query
                .filter(FlowRule.board_id == board_id, FlowRule.is_active.is_(True))
                .order_by(FlowRule.created_at.asc(), FlowRule.id.asc())
                .all()
            )
        except SQLAlchemyError as e:
            raise StoreUnavailable(f"Could not load rules for board {board_id}: {e}") from e

        rules = []
        for row in rows:
            try:
                rules.append(Rule.from_model(row))
            except ValueError as e:
                logger.warning("Skipping unreadable rule", rule_id=row.id, board_id=board_id, error=str(e))
        return rules


default_store = RuleStore()
