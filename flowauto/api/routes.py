"""
API routes for rule administration, run history and the activity feed.
"""
from flask import jsonify, request
from flowauto.api import api_bp
from flowauto.auth.utils import can_access_workspace, get_current_user, login_required
from flowauto.flows.actions import action_registry
from flowauto.flows.errors import ValidationError
from flowauto.flows.triggers import trigger_registry
from flowauto.flows.variables import AVAILABLE_VARIABLES
from flowauto.models import Board, FlowRule, Notification, db
from flowauto.services.notification_service import NotificationService
from flowauto.services.rule_service import RuleService
from flowauto.services.run_log_service import RunLogService
from flowauto.logging_config import get_logger

logger = get_logger(__name__)


def _limit_arg(default=50, maximum=200):
    try:
        return max(1, min(int(request.args.get("limit", default)), maximum))
    except ValueError:
        return default


def _visible_board(board_id):
    """The board, or None when it is missing or outside the user's workspace."""
    board = db.session.get(Board, board_id)
    if board is None or not can_access_workspace(get_current_user(), board.workspace_id):
        return None
    return board


def _visible_rule(rule_id):
    rule = db.session.get(FlowRule, rule_id)
    if rule is None or not can_access_workspace(get_current_user(), rule.workspace_id):
        return None
    return rule


@api_bp.route("/flows/boards/<board_id>/rules", methods=["GET"])
@login_required
def list_rules(board_id):
    """All rules on a board, enabled or not, oldest first."""
    if _visible_board(board_id) is None:
        return jsonify({'error': f'Board {board_id} not found'}), 404

    try:
        rules = FlowRule.query.filter_by(board_id=board_id).order_by(FlowRule.created_at, FlowRule.id).all()
        return jsonify({
            "rules": [rule.to_dict() for rule in rules],
            "total_count": len(rules),
        }), 200
    except Exception as e:
        logger.error("Error listing flow rules", board_id=board_id, error=str(e), exc_info=True)
        return jsonify({'error': str(e)}), 500


@api_bp.route("/flows/boards/<board_id>/rules", methods=["POST"])
@login_required
def create_rule(board_id):
    board = _visible_board(board_id)
    if board is None:
        return jsonify({'error': f'Board {board_id} not found'}), 404

    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return jsonify({'error': 'No JSON data provided'}), 400

    try:
        rule = RuleService.create_rule(board, data, created_by=str(get_current_user().id))
        return jsonify(rule.to_dict()), 201
    except ValidationError as e:
        return jsonify({'error': str(e)}), 400
    except Exception as e:
        db.session.rollback()
        logger.error("Error creating flow rule", board_id=board_id, error=str(e), exc_info=True)
        return jsonify({'error': str(e)}), 500


@api_bp.route("/flows/rules/<rule_id>", methods=["PATCH"])
@login_required
def update_rule(rule_id):
    rule = _visible_rule(rule_id)
    if rule is None:
        return jsonify({'error': f'Rule {rule_id} not found'}), 404

    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return jsonify({'error': 'No JSON data provided'}), 400

    try:
        rule = RuleService.update_rule(rule, data)
        return jsonify(rule.to_dict()), 200
    except ValidationError as e:
        db.session.rollback()
        return jsonify({'error': str(e)}), 400
    except Exception as e:
        db.session.rollback()
        logger.error("Error updating flow rule", rule_id=rule_id, error=str(e), exc_info=True)
        return jsonify({'error': str(e)}), 500


@api_bp.route("/flows/rules/<rule_id>", methods=["DELETE"])
@login_required
def delete_rule(rule_id):
    rule = _visible_rule(rule_id)
    if rule is None:
        return jsonify({'error': f'Rule {rule_id} not found'}), 404
    try:
        RuleService.delete_rule(rule)
        return jsonify({'status': 'success'}), 200
    except Exception as e:
        db.session.rollback()
        logger.error("Error deleting flow rule", rule_id=rule_id, error=str(e), exc_info=True)
        return jsonify({'error': str(e)}), 500


@api_bp.route("/flows/rules/<rule_id>/runs", methods=["GET"])
@login_required
def list_rule_runs(rule_id):
    """Most recent runs of a rule, newest first."""
    if _visible_rule(rule_id) is None:
        return jsonify({'error': f'Rule {rule_id} not found'}), 404
    runs = RunLogService.list_runs(rule_id, limit=_limit_arg())
    return jsonify({
        "runs": [run.to_dict() for run in runs],
        "total_count": len(runs),
    }), 200


@api_bp.route("/flows/catalog", methods=["GET"])
@login_required
def catalog():
    """Trigger kinds, action kinds and template variables for the rule builder."""
    return jsonify({
        "triggers": [kind.describe() for kind in trigger_registry.all()],
        "actions": {
            category: [handler.describe() for handler in handlers]
            for category, handlers in action_registry.by_category().items()
        },
        "variables": AVAILABLE_VARIABLES,
    }), 200


@api_bp.route("/notifications", methods=["GET"])
@login_required
def list_notifications():
    user = get_current_user()
    unread_only = request.args.get("unread", "").lower() in ("1", "true", "yes")
    rows = NotificationService.list_for_user(user.id, unread_only=unread_only, limit=_limit_arg())
    return jsonify({
        "notifications": [row.to_dict() for row in rows],
        "total_count": len(rows),
    }), 200


@api_bp.route("/notifications/<int:notification_id>/read", methods=["POST"])
@login_required
def mark_notification_read(notification_id):
    user = get_current_user()
    row = db.session.get(Notification, notification_id)
    if row is None or row.user_id != str(user.id):
        return jsonify({'error': 'Notification not found'}), 404
    row.is_read = True
    db.session.commit()
    return jsonify(row.to_dict()), 200
