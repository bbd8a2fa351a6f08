"""Session auth for the API: password hashing and the logged-in user."""
from functools import wraps

from flask import g, has_request_context, jsonify, session
from werkzeug.security import check_password_hash, generate_password_hash

from flowauto.models import User, db

_UNSET = object()


def hash_password(password: str) -> str:
    return generate_password_hash(password, method='pbkdf2:sha256')


def verify_password(password_hash: str, password: str) -> bool:
    return check_password_hash(password_hash, password)


def get_current_user():
    """
    The active user behind this request's session, or None.

    Always None outside a request (scheduler jobs, executor threads). The
    lookup is cached on ``flask.g`` for the rest of the request.
    """
    if not has_request_context():
        return None

    cached = g.get('current_user', _UNSET)
    if cached is not _UNSET:
        return cached

    user = None
    user_id = session.get('user_id')
    if user_id:
        user = db.session.get(User, user_id)
        if user is not None and not user.is_active:
            user = None
    g.current_user = user
    return user


def actor_name(user) -> str:
    """Name shown for ``user`` in automation output ({{trigger.user.name}})."""
    return user.display_name or user.username


def can_access_workspace(user, workspace_id) -> bool:
    """Users only see boards and rules of their own workspace."""
    return user is not None and user.workspace_id is not None and user.workspace_id == workspace_id


def login_required(f):
    """Reject the request with 401 unless an active user is logged in."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if get_current_user() is None:
            return jsonify({'error': 'Authentication required'}), 401
        return f(*args, **kwargs)
    return decorated_function
