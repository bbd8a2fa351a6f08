"""In-app notification actions. Messages are prefixed with the rule name."""
from flowauto.flows.actions.base import ActionHandler, ActionResult, register_action
from flowauto.logging_config import get_logger
from flowauto.services.notification_service import NotificationService

logger = get_logger(__name__)

MESSAGE_REQUIRED = {"message": "Message is required"}


@register_action
class NotifyUser(ActionHandler):
    kind = "notify_user"
    label = "Notify users"
    category = "notification"
    required_config = {"userIds": "At least one user is required", **MESSAGE_REQUIRED}

    def validate(self, config):
        errors = super().validate(config)
        user_ids = config.get("userIds")
        if user_ids and not isinstance(user_ids, (list, tuple)):
            errors.append("userIds must be a list")
        return errors

    def execute(self, config, context):
        rows = NotificationService.notify(
            context.board.workspace_id, config["userIds"], config["message"],
            rule=context.rule, card=context.card,
        )
        return ActionResult.ok(notifiedCount=len(rows))


@register_action
class NotifyCardAssignee(ActionHandler):
    kind = "notify_card_assignee"
    label = "Notify card assignee"
    category = "notification"
    required_config = MESSAGE_REQUIRED

    def execute(self, config, context):
        assignee = context.card.primary_assignee
        if assignee is None:
            logger.warning("Card has no assignee, skipping notification", card_id=context.card.id)
            return ActionResult.ok(details="No assignee on card, skipped")
        NotificationService.notify(
            context.board.workspace_id, [assignee.id], config["message"],
            rule=context.rule, card=context.card,
        )
        return ActionResult.ok(notifiedUserId=assignee.id)


@register_action
class NotifyCardCreator(ActionHandler):
    kind = "notify_card_creator"
    label = "Notify card creator"
    category = "notification"
    required_config = MESSAGE_REQUIRED

    def execute(self, config, context):
        creator = context.card.creator
        if creator is None:
            logger.warning("Card has no creator, skipping notification", card_id=context.card.id)
            return ActionResult.ok(details="No creator on card, skipped")
        NotificationService.notify(
            context.board.workspace_id, [creator.id], config["message"],
            rule=context.rule, card=context.card,
        )
        return ActionResult.ok(notifiedUserId=creator.id)


@register_action
class NotifyTeam(ActionHandler):
    kind = "notify_team"
    label = "Notify entire team"
    category = "notification"
    required_config = MESSAGE_REQUIRED

    def execute(self, config, context):
        member_ids = NotificationService.workspace_member_ids(context.board.workspace_id)
        if not member_ids:
            return ActionResult.failed("No team members found")
        rows = NotificationService.notify(
            context.board.workspace_id, member_ids, config["message"],
            rule=context.rule, card=context.card,
        )
        return ActionResult.ok(notifiedCount=len(rows))
