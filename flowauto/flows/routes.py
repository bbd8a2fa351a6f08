from flask import current_app, jsonify, request
from sqlalchemy.exc import SQLAlchemyError

from flowauto.auth.utils import actor_name, can_access_workspace, get_current_user, login_required
from flowauto.flows import flows_bp, get_executor
from flowauto.flows.errors import ValidationError
from flowauto.flows.events import construct_event
from flowauto.flows.matcher import find_matching_rules
from flowauto.logging_config import get_logger
from flowauto.models import Board, db

logger = get_logger(__name__)


def _with_user_name(raw, user):
    """Fill payload.userName from the session user when the caller omits it."""
    if not isinstance(raw, dict):
        return raw
    payload = raw.get("payload")
    if payload is None:
        payload = {}
    if isinstance(payload, dict) and "userName" not in payload:
        raw = dict(raw, payload=dict(payload, userName=actor_name(user)))
    return raw


@flows_bp.route("/evaluate", methods=["POST"])
@login_required
def evaluate_event():
    """
    Accept a board event, report which rules it triggers and hand execution
    off to the background executor. Returns 202 before any action runs.
    """
    user = get_current_user()
    raw = request.get_json(silent=True)

    try:
        event = construct_event(_with_user_name(raw, user), triggered_by=str(user.id))
    except ValidationError as e:
        logger.warning("Rejected flow event", error=str(e), user_id=user.id)
        return jsonify({'error': str(e)}), 400

    countdown = current_app.config.get("FLOW_COUNTDOWN_SECONDS", 10)

    try:
        board = db.session.get(Board, event.board_id)
    except SQLAlchemyError as e:
        # Unreadable board: report no matches rather than fail the caller
        db.session.rollback()
        logger.error("Board lookup failed; treating as no matches", board_id=event.board_id, error=str(e))
        return jsonify({'ok': True, 'matchedRules': [], 'countdownSeconds': countdown}), 202

    if board is None or not can_access_workspace(user, board.workspace_id):
        logger.warning("Flow event for inaccessible board", board_id=event.board_id, user_id=user.id)
        return jsonify({'error': f'Board {event.board_id} not found'}), 404

    try:
        matches = find_matching_rules(event)
        if matches:
            get_executor().dispatch(event)

        logger.info(
            "Flow event evaluated",
            board_id=event.board_id,
            card_id=event.card_id,
            event_type=event.type.value,
            matched=len(matches),
        )
        return jsonify({
            'ok': True,
            'matchedRules': [m.rule_name for m in matches],
            'countdownSeconds': countdown,
        }), 202
    except Exception as e:
        logger.error("Error evaluating flow event", error=str(e), exc_info=True)
        return jsonify({'error': 'Internal server error'}), 500


@flows_bp.route("/stats", methods=["GET"])
@login_required
def executor_stats():
    """Dispatch counters for the running executor."""
    return jsonify(get_executor().stats())
