from datetime import datetime

from flask import Blueprint, jsonify, request, session
from sqlalchemy import or_

from flowauto.auth.utils import get_current_user, verify_password
from flowauto.logging_config import get_logger
from flowauto.models import User, db

logger = get_logger(__name__)

auth_bp = Blueprint('auth', __name__, url_prefix='/api/auth')


def _session_payload(user):
    data = user.to_dict()
    data['workspace_id'] = user.workspace_id
    data['last_login'] = user.last_login.isoformat() if user.last_login else None
    return data


@auth_bp.route('/login', methods=['POST'])
def login():
    """Start a session. ``username`` may also be the account's email."""
    data = request.get_json(silent=True) or {}
    login_name = (data.get('username') or '').strip()
    password = data.get('password')

    if not login_name or not password:
        return jsonify({'error': 'Username and password are required'}), 400

    try:
        user = User.query.filter(or_(User.username == login_name, User.email == login_name)).first()

        if user is None or not verify_password(user.password_hash, password):
            logger.warning("Failed login attempt", login=login_name)
            return jsonify({'error': 'Invalid username or password'}), 401

        if not user.is_active:
            logger.warning("Login attempt for inactive user", user_id=user.id)
            return jsonify({'error': 'Account is inactive'}), 403

        user.last_login = datetime.utcnow()
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        logger.error("Error during login", error=str(e), exc_info=True)
        return jsonify({'error': 'An error occurred during login'}), 500

    session.clear()
    session['user_id'] = user.id
    session.permanent = True

    logger.info("User logged in", user_id=user.id, workspace_id=user.workspace_id)
    return jsonify({'status': 'success', 'user': _session_payload(user)}), 200


@auth_bp.route('/logout', methods=['POST'])
def logout():
    user_id = session.pop('user_id', None)
    session.clear()
    logger.info("User logged out", user_id=user_id)
    return jsonify({'status': 'success'}), 200


@auth_bp.route('/me', methods=['GET'])
def me():
    user = get_current_user()
    if user is None:
        return jsonify({'error': 'Not authenticated'}), 401
    return jsonify(_session_payload(user)), 200
