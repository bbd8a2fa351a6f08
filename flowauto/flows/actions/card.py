"""
Card mutation actions.

Each handler re-reads the Card row it changes; the snapshot in the context
is only used for reading. JSON columns are reassigned rather than mutated in
place so SQLAlchemy sees the change. The executor commits after each
successful action.
"""
import random
from datetime import date, datetime, timedelta

from flowauto.flows.actions.base import ActionHandler, ActionResult, register_action
from flowauto.flows.errors import ActionFailure
from flowauto.logging_config import get_logger
from flowauto.models import db, Card, CardComment, generate_uuid
from flowauto.services.notification_service import NotificationService

logger = get_logger(__name__)

PRIORITIES = ("low", "medium", "high", "urgent")


def load_card_row(context, kind=None) -> Card:
    card = Card.query.get(context.card.id)
    if card is None:
        raise ActionFailure(f"Card {context.card.id} no longer exists", action_kind=kind)
    return card


def _parse_date(value):
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        return None


@register_action
class MoveCard(ActionHandler):
    kind = "move_card"
    label = "Move card to column"

    def validate(self, config):
        if not (config.get("targetColumnId") or config.get("columnId")):
            return ["Target column is required"]
        return []

    def execute(self, config, context):
        target = config.get("targetColumnId") or config.get("columnId")
        if context.board.columns and not context.board.has_column(target):
            return ActionResult.failed(f"Column {target} does not exist on board {context.board.name}")

        card = load_card_row(context, self.kind)
        previous = card.column
        if previous == target:
            return ActionResult.ok(details="Card already in column", movedTo=target)
        card.column = target
        card.column_entered_at = datetime.utcnow()
        logger.info("Card moved by automation", card_id=card.id, from_column=previous, to_column=target)
        return ActionResult.ok(movedTo=target, movedFrom=previous)


@register_action
class AssignUser(ActionHandler):
    kind = "assign_user"
    label = "Assign user"
    required_config = {"userId": "User ID is required"}

    def execute(self, config, context):
        user_id = str(config["userId"])
        card = load_card_row(context, self.kind)
        assignees = list(card.assignee_ids or [])
        if user_id in assignees:
            return ActionResult.ok(details="User already assigned", assignedUserId=user_id)
        card.assignee_ids = assignees + [user_id]
        return ActionResult.ok(assignedUserId=user_id)


@register_action
class AssignRandomFromGroup(ActionHandler):
    """
    Assign one member picked at random. The pool is ``userIds`` when given,
    otherwise every active member of the board's workspace.
    """
    kind = "assign_random_from_group"
    label = "Assign random user from team"

    def validate(self, config):
        user_ids = (config or {}).get("userIds")
        if user_ids is not None and not isinstance(user_ids, (list, tuple)):
            return ["userIds must be a list"]
        return []

    def execute(self, config, context):
        pool = [str(uid) for uid in (config.get("userIds") or [])]
        if not pool:
            pool = NotificationService.workspace_member_ids(context.board.workspace_id)
        if not pool:
            return ActionResult.failed("No team members found")

        user_id = random.choice(pool)
        card = load_card_row(context, self.kind)
        assignees = list(card.assignee_ids or [])
        if user_id not in assignees:
            card.assignee_ids = assignees + [user_id]
        logger.info("Random assignee picked", card_id=card.id, user_id=user_id, pool_size=len(pool))
        return ActionResult.ok(assignedUserId=user_id)


@register_action
class UnassignUser(ActionHandler):
    kind = "unassign_user"
    label = "Unassign user"
    required_config = {"userId": "User ID is required"}

    def execute(self, config, context):
        user_id = str(config["userId"])
        card = load_card_row(context, self.kind)
        assignees = list(card.assignee_ids or [])
        if user_id not in assignees:
            return ActionResult.ok(details="User was not assigned", unassignedUserId=user_id)
        card.assignee_ids = [uid for uid in assignees if uid != user_id]
        return ActionResult.ok(unassignedUserId=user_id)


@register_action
class SetPriority(ActionHandler):
    kind = "set_priority"
    label = "Set priority"
    required_config = {"priority": "Priority is required"}

    def validate(self, config):
        errors = super().validate(config)
        priority = config.get("priority")
        if priority and priority not in PRIORITIES:
            errors.append(f"Priority must be one of: {', '.join(PRIORITIES)}")
        return errors

    def execute(self, config, context):
        card = load_card_row(context, self.kind)
        card.priority = config["priority"]
        return ActionResult.ok(priority=card.priority)


@register_action
class AddTag(ActionHandler):
    kind = "add_tag"
    label = "Add tag"
    required_config = {"tag": "Tag is required"}
    text_config = ("tag",)

    def execute(self, config, context):
        tag = config["tag"].strip()
        card = load_card_row(context, self.kind)
        tags = list(card.tags or [])
        if tag not in tags:
            card.tags = tags + [tag]
        return ActionResult.ok(tag=tag)


@register_action
class RemoveTag(ActionHandler):
    kind = "remove_tag"
    label = "Remove tag"
    required_config = {"tag": "Tag is required"}
    text_config = ("tag",)

    def execute(self, config, context):
        tag = config["tag"].strip()
        card = load_card_row(context, self.kind)
        card.tags = [t for t in (card.tags or []) if t != tag]
        return ActionResult.ok(tag=tag)


@register_action
class RemoveAllTags(ActionHandler):
    kind = "remove_all_tags"
    label = "Remove all tags"

    def execute(self, config, context):
        card = load_card_row(context, self.kind)
        removed = len(card.tags or [])
        card.tags = []
        return ActionResult.ok(removedCount=removed)


@register_action
class SetDueDate(ActionHandler):
    """Absolute date, or an offset in days from today or the current due date."""
    kind = "set_due_date"
    label = "Set due date"

    def validate(self, config):
        errors = []
        if config.get("mode") == "absolute":
            if not config.get("date"):
                errors.append("Date is required for absolute mode")
            elif _parse_date(config["date"]) is None:
                errors.append(f"Invalid date: {config['date']}")
        else:
            try:
                int(config.get("offsetDays", 7))
            except (TypeError, ValueError):
                errors.append("offsetDays must be a whole number")
        return errors

    def execute(self, config, context):
        if config.get("mode") == "absolute":
            due = _parse_date(config["date"])
        else:
            offset = int(config.get("offsetDays", 7))
            if config.get("relativeTo") == "current_due_date":
                if context.card.due_date is None:
                    return ActionResult.failed("Card has no current due date")
                base = context.card.due_date
            else:
                base = datetime.utcnow().date()
            due = base + timedelta(days=offset)

        card = load_card_row(context, self.kind)
        card.due_date = due
        return ActionResult.ok(dueDate=due.isoformat())


@register_action
class ClearDueDate(ActionHandler):
    kind = "clear_due_date"
    label = "Clear due date"

    def execute(self, config, context):
        card = load_card_row(context, self.kind)
        card.due_date = None
        return ActionResult.ok()


@register_action
class SetCustomField(ActionHandler):
    kind = "set_custom_field"
    label = "Set custom field"
    required_config = {"fieldId": "Field is required", "value": "Value is required"}

    def execute(self, config, context):
        field_id, value = config["fieldId"], config["value"]
        card = load_card_row(context, self.kind)
        fields = dict(card.custom_fields or {})
        fields[field_id] = value
        card.custom_fields = fields
        return ActionResult.ok(fieldId=field_id, value=value)


@register_action
class ClearCustomField(ActionHandler):
    kind = "clear_custom_field"
    label = "Clear custom field"
    required_config = {"fieldId": "Field is required"}

    def execute(self, config, context):
        field_id = config["fieldId"]
        card = load_card_row(context, self.kind)
        fields = dict(card.custom_fields or {})
        fields.pop(field_id, None)
        card.custom_fields = fields
        return ActionResult.ok(fieldId=field_id)


@register_action
class AddAutomatedComment(ActionHandler):
    kind = "add_automated_comment"
    label = "Add automated comment"
    required_config = {"text": "Comment text is required"}
    text_config = ("text",)

    def execute(self, config, context):
        load_card_row(context, self.kind)
        comment = CardComment(
            card_id=context.card.id,
            author_id=None,
            content=f"[Automation: {context.rule.name}] {config['text']}",
        )
        db.session.add(comment)
        db.session.flush()
        return ActionResult.ok(commentId=comment.id)


@register_action
class ArchiveCard(ActionHandler):
    kind = "archive_card"
    label = "Archive card"

    def execute(self, config, context):
        card = load_card_row(context, self.kind)
        if card.archived_at is None:
            card.archived_at = datetime.utcnow()
        return ActionResult.ok(archivedAt=card.archived_at.isoformat())


@register_action
class CopyCard(ActionHandler):
    """Copy the card into a column of the same board, titled "<title> (Copy)"."""
    kind = "copy_card"
    label = "Copy card"
    required_config = {"targetColumnId": "Destination column is required"}
    text_config = ("targetColumnId",)

    def execute(self, config, context):
        target = config["targetColumnId"]
        if context.board.columns and not context.board.has_column(target):
            return ActionResult.failed(f"Column {target} does not exist on board {context.board.name}")

        source = load_card_row(context, self.kind)
        copy = Card(
            id=generate_uuid(),
            board_id=source.board_id,
            title=f"{source.title} (Copy)",
            description=source.description,
            column=target,
            column_entered_at=datetime.utcnow(),
            priority=source.priority,
            due_date=source.due_date,
            client_email=source.client_email,
            created_by=context.rule.created_by,
        )
        db.session.add(copy)
        db.session.flush()
        logger.info("Card copied by automation", card_id=source.id, new_card_id=copy.id, column=target)
        return ActionResult.ok(newCardId=copy.id)
