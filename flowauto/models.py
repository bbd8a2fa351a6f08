from flask_sqlalchemy import SQLAlchemy
from datetime import datetime
from enum import Enum
import uuid

db = SQLAlchemy()


def generate_uuid():
    return str(uuid.uuid4())


def _iso(value):
    return value.isoformat() if value else None


class RunStatus(Enum):
    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"
    SKIPPED = "skipped"


class User(db.Model):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(80), unique=True, nullable=False)
    email = db.Column(db.String(255), nullable=True)
    display_name = db.Column(db.String(128), nullable=True)
    workspace_id = db.Column(db.String(36), nullable=True, index=True)
    password_hash = db.Column(db.String(255), nullable=False)
    is_admin = db.Column(db.Boolean, default=False, nullable=False)
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    last_login = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    def __repr__(self):
        return f"<User {self.username}>"

    def to_dict(self):
        return {
            'id': self.id,
            'username': self.username,
            'email': self.email,
            'display_name': self.display_name,
            'is_admin': self.is_admin,
            'is_active': self.is_active,
        }


class Board(db.Model):
    """A workspace board; columns are stored in display order."""
    __tablename__ = "boards"

    id = db.Column(db.String(36), primary_key=True, default=generate_uuid)
    workspace_id = db.Column(db.String(36), nullable=False, index=True)
    name = db.Column(db.String(255), nullable=False)
    columns = db.Column(db.JSON, nullable=False, default=list)  # [{'id': 'done', 'label': 'Done'}]
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    cards = db.relationship("Card", back_populates="board", lazy="dynamic")

    def __repr__(self):
        return f"<Board {self.id} - {self.name}>"


class Card(db.Model):
    """A task card on a board. The column is the card's status."""
    __tablename__ = "cards"

    id = db.Column(db.String(36), primary_key=True, default=generate_uuid)
    board_id = db.Column(db.String(36), db.ForeignKey("boards.id"), nullable=False, index=True)
    title = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    column = db.Column(db.String(64), nullable=False, default="todo")
    column_entered_at = db.Column(db.DateTime, nullable=True)
    priority = db.Column(db.String(16), nullable=False, default="medium")
    due_date = db.Column(db.Date, nullable=True)
    assignee_ids = db.Column(db.JSON, nullable=False, default=list)
    tags = db.Column(db.JSON, nullable=False, default=list)
    custom_fields = db.Column(db.JSON, nullable=False, default=dict)
    client_email = db.Column(db.String(255), nullable=True)
    created_by = db.Column(db.String(64), nullable=True)
    archived_at = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    board = db.relationship("Board", back_populates="cards")

    def __repr__(self):
        return f"<Card {self.id} - {self.title} ({self.column})>"

    def to_dict(self):
        return {
            'id': self.id,
            'board_id': self.board_id,
            'title': self.title,
            'description': self.description,
            'column': self.column,
            'priority': self.priority,
            'due_date': _iso(self.due_date),
            'assignee_ids': list(self.assignee_ids or []),
            'tags': list(self.tags or []),
            'custom_fields': dict(self.custom_fields or {}),
            'archived_at': _iso(self.archived_at),
        }


class CardComment(db.Model):
    __tablename__ = "card_comments"

    id = db.Column(db.Integer, primary_key=True)
    card_id = db.Column(db.String(36), db.ForeignKey("cards.id"), nullable=False, index=True)
    author_id = db.Column(db.String(64), nullable=True)  # None for automation comments
    content = db.Column(db.Text, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)


class Notification(db.Model):
    """In-app activity feed entry."""
    __tablename__ = "notifications"

    id = db.Column(db.Integer, primary_key=True)
    workspace_id = db.Column(db.String(36), nullable=False, index=True)
    user_id = db.Column(db.String(64), nullable=False, index=True)
    activity_type = db.Column(db.String(50), nullable=False)
    message = db.Column(db.Text, nullable=False)
    entity_type = db.Column(db.String(50), nullable=True)
    entity_id = db.Column(db.String(36), nullable=True)
    extra_data = db.Column(db.JSON, nullable=True)
    is_read = db.Column(db.Boolean, default=False, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    def to_dict(self):
        return {
            'id': self.id,
            'user_id': self.user_id,
            'activity_type': self.activity_type,
            'message': self.message,
            'entity_type': self.entity_type,
            'entity_id': self.entity_id,
            'metadata': self.extra_data,
            'is_read': self.is_read,
            'created_at': _iso(self.created_at),
        }


class FlowRule(db.Model):
    """User-defined automation: a trigger, optional card filters and an ordered action list."""
    __tablename__ = "flow_rules"

    id = db.Column(db.String(36), primary_key=True, default=generate_uuid)
    workspace_id = db.Column(db.String(36), nullable=False, index=True)
    board_id = db.Column(db.String(36), nullable=False, index=True)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    trigger_type = db.Column(db.String(64), nullable=False)
    trigger_config = db.Column(db.JSON, nullable=False, default=dict)
    conditions = db.Column(db.JSON, nullable=False, default=list)
    actions = db.Column(db.JSON, nullable=False, default=list)

    # Run bookkeeping
    run_count = db.Column(db.Integer, nullable=False, default=0)
    last_run_at = db.Column(db.DateTime, nullable=True)
    last_run_status = db.Column(db.String(16), nullable=True)

    created_by = db.Column(db.String(64), nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        db.Index('idx_flow_rules_board_active', 'board_id', 'is_active'),
    )

    def __repr__(self):
        return f"<FlowRule {self.id} - {self.name} ({'on' if self.is_active else 'off'})>"

    def to_dict(self):
        return {
            'id': self.id,
            'workspaceId': self.workspace_id,
            'boardId': self.board_id,
            'name': self.name,
            'description': self.description,
            'isActive': self.is_active,
            'trigger': {'type': self.trigger_type, 'config': self.trigger_config or {}},
            'conditions': self.conditions or [],
            'actions': self.actions or [],
            'runCount': self.run_count,
            'lastRunAt': _iso(self.last_run_at),
            'lastRunStatus': self.last_run_status,
            'createdBy': self.created_by,
            'createdAt': _iso(self.created_at),
            'updatedAt': _iso(self.updated_at),
        }


class FlowRunLog(db.Model):
    """Execution history for a single rule run."""
    __tablename__ = "flow_run_log"

    id = db.Column(db.String(36), primary_key=True, default=generate_uuid)
    rule_id = db.Column(db.String(36), nullable=False, index=True)
    board_id = db.Column(db.String(36), nullable=False)
    card_id = db.Column(db.String(36), nullable=True)
    event_type = db.Column(db.String(64), nullable=False)
    triggered_by = db.Column(db.String(64), nullable=True)
    triggered_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, index=True)
    status = db.Column(db.Enum(RunStatus), nullable=False)
    actions_total = db.Column(db.Integer, nullable=False, default=0)
    actions_succeeded = db.Column(db.Integer, nullable=False, default=0)
    actions_failed = db.Column(db.Integer, nullable=False, default=0)
    action_results = db.Column(db.JSON, nullable=True)
    error_type = db.Column(db.String(64), nullable=True)
    error_message = db.Column(db.Text, nullable=True)
    duration_ms = db.Column(db.Integer, nullable=False, default=0)

    def __repr__(self):
        return f"<FlowRunLog {self.id} - rule {self.rule_id} - {self.status}>"

    def to_dict(self):
        return {
            'id': self.id,
            'ruleId': self.rule_id,
            'boardId': self.board_id,
            'cardId': self.card_id,
            'eventType': self.event_type,
            'triggeredBy': self.triggered_by,
            'triggeredAt': _iso(self.triggered_at),
            'status': self.status.value,
            'actionsTotal': self.actions_total,
            'actionsSucceeded': self.actions_succeeded,
            'actionsFailed': self.actions_failed,
            'actionResults': self.action_results or [],
            'errorType': self.error_type,
            'errorMessage': self.error_message,
            'durationMs': self.duration_ms,
        }
