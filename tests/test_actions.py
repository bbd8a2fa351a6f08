"""
Tests for the built-in action handlers against the database.
"""
from datetime import date, datetime, timedelta
from unittest.mock import Mock, patch

import pytest
import requests

from flowauto.flows.actions import ActionHandler, ActionRegistry, ActionResult, action_registry
from flowauto.flows.errors import ActionFailure
from flowauto.models import Card, CardComment, Notification, db


def run(kind, config, context):
    return action_registry.get(kind).run(config, context)


def reload_card():
    db.session.expire_all()
    return Card.query.get("C1")


# ==============================================================================
# Registry
# ==============================================================================

class TestActionRegistry:
    def test_builtins_registered(self):
        for kind in ("move_card", "assign_user", "unassign_user", "set_priority", "add_tag",
                     "remove_tag", "remove_all_tags", "set_due_date", "clear_due_date",
                     "set_custom_field", "clear_custom_field", "add_automated_comment",
                     "archive_card", "notify_user", "notify_card_assignee",
                     "notify_card_creator", "notify_team", "send_email",
                     "assign_random_from_group", "copy_card"):
            assert kind in action_registry

    def test_by_category_groups_handlers(self):
        grouped = action_registry.by_category()
        assert "notify_team" in [h.kind for h in grouped["notification"]]
        assert "send_email" in [h.kind for h in grouped["integration"]]

    def test_new_kinds_register_without_touching_the_engine(self):
        registry = ActionRegistry()

        class Ping(ActionHandler):
            kind = "ping"

            def execute(self, config, context):
                return ActionResult.ok(pong=True)

        registry.register(Ping())
        assert registry.get("ping").run({}, None).output == {'pong': True}

    def test_run_raises_action_failure_on_invalid_config(self, flow_context):
        with pytest.raises(ActionFailure, match="Tag is required"):
            run("add_tag", {}, flow_context())


# ==============================================================================
# Card actions
# ==============================================================================

class TestCardActions:
    def test_move_card(self, flow_context):
        result = run("move_card", {'targetColumnId': 'done'}, flow_context())
        db.session.commit()

        card = reload_card()
        assert result.success
        assert result.output == {'movedTo': 'done', 'movedFrom': 'todo'}
        assert card.column == 'done'
        assert card.column_entered_at > datetime(2026, 1, 1, 9, 0)

    def test_move_card_to_unknown_column_fails(self, flow_context):
        result = run("move_card", {'targetColumnId': 'archive'}, flow_context())
        assert not result.success
        assert "does not exist" in result.error

    def test_assign_and_unassign(self, flow_context, teammate):
        run("assign_user", {'userId': str(teammate.id)}, flow_context())
        db.session.commit()
        assert str(teammate.id) in reload_card().assignee_ids

        run("unassign_user", {'userId': str(teammate.id)}, flow_context())
        db.session.commit()
        assert str(teammate.id) not in reload_card().assignee_ids

    def test_set_priority_validates_value(self, flow_context):
        with pytest.raises(ActionFailure, match="Priority must be one of"):
            run("set_priority", {'priority': 'whenever'}, flow_context())

        run("set_priority", {'priority': 'urgent'}, flow_context())
        db.session.commit()
        assert reload_card().priority == 'urgent'

    def test_tags(self, flow_context):
        run("add_tag", {'tag': 'urgent'}, flow_context())
        run("add_tag", {'tag': 'urgent'}, flow_context())
        db.session.commit()
        assert reload_card().tags == ['residential', 'urgent']

        run("remove_tag", {'tag': 'residential'}, flow_context())
        db.session.commit()
        assert reload_card().tags == ['urgent']

        result = run("remove_all_tags", {}, flow_context())
        db.session.commit()
        assert result.output == {'removedCount': 1}
        assert reload_card().tags == []

    def test_set_due_date_absolute(self, flow_context):
        result = run("set_due_date", {'mode': 'absolute', 'date': '2026-05-01'}, flow_context())
        db.session.commit()
        assert result.output == {'dueDate': '2026-05-01'}
        assert reload_card().due_date == date(2026, 5, 1)

    def test_set_due_date_relative_to_today(self, flow_context):
        run("set_due_date", {'mode': 'relative', 'offsetDays': 3}, flow_context())
        db.session.commit()
        assert reload_card().due_date == datetime.utcnow().date() + timedelta(days=3)

    def test_set_due_date_relative_to_current_due_date(self, flow_context, card):
        card.due_date = date(2026, 2, 1)
        db.session.commit()

        run("set_due_date", {'mode': 'relative', 'offsetDays': -2, 'relativeTo': 'current_due_date'},
            flow_context())
        db.session.commit()
        assert reload_card().due_date == date(2026, 1, 30)

    def test_set_due_date_relative_to_missing_due_date_fails(self, flow_context):
        result = run("set_due_date", {'relativeTo': 'current_due_date'}, flow_context())
        assert not result.success
        assert result.error == "Card has no current due date"

    def test_clear_due_date(self, flow_context, card):
        card.due_date = date(2026, 2, 1)
        db.session.commit()
        run("clear_due_date", {}, flow_context())
        db.session.commit()
        assert reload_card().due_date is None

    def test_custom_fields(self, flow_context):
        run("set_custom_field", {'fieldId': 'phase', 'value': 'Permits'}, flow_context())
        db.session.commit()
        assert reload_card().custom_fields == {'phase': 'Permits'}

        run("clear_custom_field", {'fieldId': 'phase'}, flow_context())
        db.session.commit()
        assert reload_card().custom_fields == {}

    def test_add_automated_comment_is_prefixed_with_rule_name(self, flow_context):
        result = run("add_automated_comment", {'text': 'Ready for invoicing'}, flow_context())
        db.session.commit()

        comment = CardComment.query.get(result.output['commentId'])
        assert comment.author_id is None
        assert comment.content == "[Automation: Close out] Ready for invoicing"

    def test_archive_card(self, flow_context):
        run("archive_card", {}, flow_context())
        db.session.commit()
        assert reload_card().archived_at is not None

    def test_non_text_tag_is_rejected_by_validation(self, flow_context):
        assert action_registry.get("add_tag").validate({'tag': 42}) == ["tag must be text"]
        with pytest.raises(ActionFailure, match="tag must be text"):
            run("remove_tag", {'tag': ['a']}, flow_context())

    def test_assign_random_from_workspace(self, flow_context, user, teammate):
        with patch("flowauto.flows.actions.card.random.choice", side_effect=lambda pool: pool[-1]) as choice:
            result = run("assign_random_from_group", {}, flow_context())
        db.session.commit()

        assert choice.call_args.args[0] == [str(user.id), str(teammate.id)]
        assert result.output == {'assignedUserId': str(teammate.id)}
        assert reload_card().assignee_ids == [str(user.id), str(teammate.id)]

    def test_assign_random_from_explicit_pool(self, flow_context, user):
        result = run("assign_random_from_group", {'userIds': [str(user.id)]}, flow_context())
        db.session.commit()

        assert result.output == {'assignedUserId': str(user.id)}
        assert reload_card().assignee_ids == [str(user.id)]

    def test_assign_random_without_members_fails(self, flow_context, user):
        user.workspace_id = "elsewhere"
        db.session.commit()

        result = run("assign_random_from_group", {}, flow_context())
        assert not result.success
        assert result.error == "No team members found"

    def test_copy_card(self, flow_context, card):
        card.due_date = date(2026, 3, 1)
        db.session.commit()

        result = run("copy_card", {'targetColumnId': 'doing'}, flow_context())
        db.session.commit()

        copy = Card.query.get(result.output['newCardId'])
        assert copy.title == "Smith Residence (Copy)"
        assert copy.column == "doing"
        assert copy.board_id == "B1"
        assert copy.priority == "medium"
        assert copy.due_date == date(2026, 3, 1)
        assert copy.client_email == "client@example.com"
        assert Card.query.count() == 2

    def test_copy_card_to_unknown_column_fails(self, flow_context):
        result = run("copy_card", {'targetColumnId': 'nowhere'}, flow_context())
        assert not result.success
        assert Card.query.count() == 1

    def test_action_on_deleted_card_fails(self, flow_context, card):
        context = flow_context()
        db.session.delete(card)
        db.session.commit()

        with pytest.raises(ActionFailure, match="no longer exists"):
            run("archive_card", {}, context)


# ==============================================================================
# Notification actions
# ==============================================================================

class TestNotifyActions:
    def test_notify_user(self, flow_context, user, teammate):
        result = run("notify_user", {'userIds': [str(user.id), str(teammate.id)], 'message': 'Card done'},
                     flow_context())
        db.session.commit()

        rows = Notification.query.order_by(Notification.id).all()
        assert result.output == {'notifiedCount': 2}
        assert [r.message for r in rows] == ["[Close out] Card done"] * 2
        assert rows[0].entity_id == "C1"
        assert rows[0].extra_data['ruleId'] == "R1"

    def test_notify_card_assignee(self, flow_context, user):
        result = run("notify_card_assignee", {'message': 'Over to you'}, flow_context())
        db.session.commit()
        assert result.output == {'notifiedUserId': str(user.id)}
        assert Notification.query.filter_by(user_id=str(user.id)).count() == 1

    def test_notify_card_assignee_without_assignee_is_a_no_op(self, flow_context, card):
        card.assignee_ids = []
        db.session.commit()

        result = run("notify_card_assignee", {'message': 'Over to you'}, flow_context())

        assert result.success
        assert "No assignee" in result.details
        assert Notification.query.count() == 0

    def test_notify_card_creator_without_creator_is_a_no_op(self, flow_context, card):
        card.created_by = None
        db.session.commit()

        result = run("notify_card_creator", {'message': 'Done'}, flow_context())
        assert result.success
        assert Notification.query.count() == 0

    def test_notify_team_notifies_every_active_member(self, flow_context, user, teammate):
        result = run("notify_team", {'message': 'Shipped'}, flow_context())
        db.session.commit()
        assert result.output == {'notifiedCount': 2}

    def test_notify_team_with_no_members_fails(self, flow_context, user):
        user.workspace_id = "elsewhere"
        db.session.commit()

        result = run("notify_team", {'message': 'Shipped'}, flow_context())
        assert not result.success
        assert result.error == "No team members found"


# ==============================================================================
# Email
# ==============================================================================

class TestSendEmail:
    CONFIG = {'subject': 'Your project', 'body': 'Hello\nIt is done'}

    def test_missing_api_key_fails(self, flow_context):
        result = run("send_email", self.CONFIG, flow_context())
        assert not result.success
        assert result.error == "EMAIL_API_KEY not configured"

    def test_posts_to_email_api_with_bearer_key(self, app, flow_context):
        app.config['EMAIL_API_KEY'] = 'key-123'
        response = Mock()
        response.raise_for_status.return_value = None

        with patch('flowauto.flows.actions.email.requests.post', return_value=response) as mock_post:
            result = run("send_email", self.CONFIG, flow_context())

        assert result.success
        assert result.output == {'sentTo': 'client@example.com'}
        kwargs = mock_post.call_args.kwargs
        assert kwargs['headers'] == {'Authorization': 'Bearer key-123'}
        assert kwargs['json']['to'] == 'client@example.com'
        assert 'Hello<br />It is done' in kwargs['json']['html']

    def test_custom_mode_requires_address(self, flow_context):
        with pytest.raises(ActionFailure, match="Email address is required"):
            run("send_email", dict(self.CONFIG, mode='custom'), flow_context())

    def test_card_without_contact_email_fails(self, flow_context, card):
        card.client_email = None
        db.session.commit()

        result = run("send_email", self.CONFIG, flow_context())
        assert result.error == "Card has no contact email"

    def test_http_error_becomes_failed_result(self, app, flow_context):
        app.config['EMAIL_API_KEY'] = 'key-123'
        error_response = Mock(status_code=422, reason="Unprocessable Entity")
        error_response.json.return_value = {'message': 'Invalid from address'}
        response = Mock()
        response.raise_for_status.side_effect = requests.exceptions.HTTPError(response=error_response)

        with patch('flowauto.flows.actions.email.requests.post', return_value=response):
            result = run("send_email", self.CONFIG, flow_context())

        assert not result.success
        assert result.error == "Email send failed: Invalid from address"

    def test_connection_error_becomes_failed_result(self, app, flow_context):
        app.config['EMAIL_API_KEY'] = 'key-123'
        with patch('flowauto.flows.actions.email.requests.post',
                   side_effect=requests.exceptions.ConnectionError("refused")):
            result = run("send_email", self.CONFIG, flow_context())

        assert result.error.startswith("Email service error")
