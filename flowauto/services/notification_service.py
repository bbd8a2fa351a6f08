from flowauto.logging_config import get_logger

logger = get_logger(__name__)

ACTIVITY_TYPE = "flow_automation"


class NotificationService:
    """Writes in-app activity feed entries on behalf of automation rules."""

    @staticmethod
    def notify(workspace_id, user_ids, message, rule=None, card=None):
        """
        Add one Notification row per user. Rows are flushed, not committed;
        the caller owns the transaction.

        Args:
            workspace_id: Workspace the activity belongs to
            user_ids: Iterable of recipient user ids
            message: Text shown in the feed (prefixed with the rule name when a rule is given)
            rule: Rule that produced the activity, if any
            card: CardSnapshot the activity refers to, if any

        Returns:
            list: The created Notification rows
        """
        from flowauto.models import Notification, db

        text = f"[{rule.name}] {message}" if rule is not None else message
        extra = {}
        if rule is not None:
            extra.update({'ruleId': rule.id, 'ruleName': rule.name})
        if card is not None:
            extra['cardTitle'] = card.title

        rows = []
        for user_id in dict.fromkeys(str(uid) for uid in user_ids):
            row = Notification(
                workspace_id=workspace_id,
                user_id=user_id,
                activity_type=ACTIVITY_TYPE,
                message=text,
                entity_type='card' if card is not None else None,
                entity_id=card.id if card is not None else None,
                extra_data=extra or None,
            )
            db.session.add(row)
            rows.append(row)

        db.session.flush()
        logger.info("Notifications created", workspace_id=workspace_id, count=len(rows),
                    rule_id=getattr(rule, 'id', None))
        return rows

    @staticmethod
    def workspace_member_ids(workspace_id):
        from flowauto.models import User

        users = User.query.filter(
            User.workspace_id == workspace_id,
            User.is_active.is_(True),
        ).order_by(User.id).all()
        return [str(user.id) for user in users]

    @staticmethod
    def list_for_user(user_id, unread_only=False, limit=50):
        from flowauto.models import Notification

        query = Notification.query.filter(Notification.user_id == str(user_id))
        if unread_only:
            query = query.filter(Notification.is_read.is_(False))
        return query.order_by(Notification.created_at.desc(), Notification.id.desc()).limit(limit).all()
