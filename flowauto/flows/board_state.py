"""
Fresh card and board snapshots for rule execution.

The event payload can be stale by the time a rule runs (the card may have
moved again), so the executor reads current state here before acting.
"""
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, List, Optional

from flowauto.logging_config import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class Person:
    id: str
    name: str
    email: Optional[str] = None


@dataclass(frozen=True)
class BoardSnapshot:
    id: str
    workspace_id: str
    name: str
    columns: List[Dict[str, str]] = field(default_factory=list)

    def column_label(self, column_id) -> str:
        for column in self.columns:
            if column.get("id") == column_id or column.get("label") == column_id:
                return column.get("label") or column_id
        return column_id

    def has_column(self, column_id) -> bool:
        return any(c.get("id") == column_id for c in self.columns)


@dataclass(frozen=True)
class CardSnapshot:
    id: str
    board_id: str
    title: str
    column: str
    priority: str
    description: Optional[str] = None
    due_date: Optional[date] = None
    assignees: List[Person] = field(default_factory=list)
    tags: List[str] = field(default_factory=list)
    custom_fields: Dict[str, Any] = field(default_factory=dict)
    client_email: Optional[str] = None
    creator: Optional[Person] = None
    column_entered_at: Optional[datetime] = None

    @property
    def primary_assignee(self) -> Optional[Person]:
        return self.assignees[0] if self.assignees else None

    def field_value(self, name):
        """Value of a card filter field; unknown or unset fields read as None."""
        if name == "title":
            return self.title
        if name == "description":
            return self.description
        if name == "priority":
            return self.priority
        if name in ("status", "column"):
            return self.column
        if name == "assignee":
            return self.primary_assignee.id if self.primary_assignee else None
        if name == "assignee_name":
            return self.primary_assignee.name if self.primary_assignee else None
        if name == "due_date":
            return self.due_date.isoformat() if self.due_date else None
        if name == "tags":
            return list(self.tags)
        if name == "creator":
            return self.creator.id if self.creator else None
        if name.startswith("custom."):
            name = name[len("custom."):]
        return self.custom_fields.get(name)


def _person(user_id) -> Optional[Person]:
    from flowauto.models import User

    if user_id is None:
        return None
    user = None
    if str(user_id).isdigit():
        user = User.query.get(int(user_id))
    if user is None:
        return Person(id=str(user_id), name=str(user_id))
    return Person(id=str(user.id), name=user.display_name or user.username, email=user.email)


def fetch_card(card_id, board_id=None) -> Optional[CardSnapshot]:
    """Load the current state of a card; None if it no longer exists."""
    from flowauto.models import Card

    card = Card.query.get(card_id)
    if card is None:
        return None
    if board_id is not None and card.board_id != board_id:
        logger.warning("Card does not belong to event board", card_id=card_id, board_id=board_id)
        return None

    assignees = [p for p in (_person(uid) for uid in (card.assignee_ids or [])) if p]
    return CardSnapshot(
        id=card.id,
        board_id=card.board_id,
        title=card.title,
        column=card.column,
        priority=card.priority,
        description=card.description,
        due_date=card.due_date,
        assignees=assignees,
        tags=list(card.tags or []),
        custom_fields=dict(card.custom_fields or {}),
        client_email=card.client_email,
        creator=_person(card.created_by),
        column_entered_at=card.column_entered_at,
    )


def fetch_board(board_id) -> Optional[BoardSnapshot]:
    from flowauto.models import Board

    board = Board.query.get(board_id)
    if board is None:
        return None
    return BoardSnapshot(
        id=board.id,
        workspace_id=board.workspace_id,
        name=board.name,
        columns=list(board.columns or []),
    )
