"""
Shared fixtures: an app on a throwaway SQLite file (the executor's worker
threads need to see the same database as the test), a seeded workspace and
helpers for building rules and events.
"""
import pytest
from datetime import datetime

from flowauto import create_app
from flowauto.auth.utils import hash_password
from flowauto.flows import EXECUTOR_EXTENSION
from flowauto.flows.board_state import fetch_board, fetch_card
from flowauto.flows.context import FlowContext
from flowauto.flows.events import Event, EventKind
from flowauto.flows.store import Rule
from flowauto.models import Board, Card, FlowRule, User, db


@pytest.fixture
def app(tmp_path, monkeypatch):
    """Create Flask application for testing."""
    monkeypatch.setenv("FLASK_ENV", "testing")
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': f"sqlite:///{tmp_path / 'flows.sqlite'}",
        'SITE_URL': 'https://app.example.com',
    })

    with app.app_context():
        db.create_all()
        yield app
        app.extensions[EXECUTOR_EXTENSION].shutdown(wait=True)
        db.session.remove()
        db.drop_all()


@pytest.fixture
def executor(app):
    return app.extensions[EXECUTOR_EXTENSION]


@pytest.fixture
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture
def user(app):
    user = User(
        username="alice",
        display_name="Alice Architect",
        email="alice@example.com",
        workspace_id="W1",
        password_hash=hash_password("password123"),
    )
    db.session.add(user)
    db.session.commit()
    return user


@pytest.fixture
def teammate(app):
    user = User(
        username="bob",
        display_name="Bob Builder",
        email="bob@example.com",
        workspace_id="W1",
        password_hash=hash_password("password123"),
    )
    db.session.add(user)
    db.session.commit()
    return user


@pytest.fixture
def outsider(app):
    """A user from another workspace."""
    user = User(
        username="eve",
        email="eve@example.com",
        workspace_id="W2",
        password_hash=hash_password("password123"),
    )
    db.session.add(user)
    db.session.commit()
    return user


@pytest.fixture
def auth_client(client, user):
    """Test client with a logged-in session."""
    with client.session_transaction() as sess:
        sess['user_id'] = user.id
    return client


@pytest.fixture
def board(app):
    board = Board(
        id="B1",
        workspace_id="W1",
        name="Residential Projects",
        columns=[
            {'id': 'todo', 'label': 'To Do'},
            {'id': 'doing', 'label': 'In Progress'},
            {'id': 'done', 'label': 'Done'},
        ],
    )
    db.session.add(board)
    db.session.commit()
    return board


@pytest.fixture
def card(board, user):
    card = Card(
        id="C1",
        board_id=board.id,
        title="Smith Residence",
        description="Two storey extension",
        column="todo",
        column_entered_at=datetime(2026, 1, 1, 9, 0),
        priority="medium",
        assignee_ids=[str(user.id)],
        tags=["residential"],
        custom_fields={},
        client_email="client@example.com",
        created_by=str(user.id),
    )
    db.session.add(card)
    db.session.commit()
    return card


@pytest.fixture
def make_rule(board):
    """Factory for persisted FlowRule rows on the seeded board."""
    def _make(name="Rule", trigger_type="card_moved_to", trigger_config=None, actions=None,
              conditions=None, is_active=True, board_id=None):
        rule = FlowRule(
            workspace_id=board.workspace_id,
            board_id=board_id or board.id,
            name=name,
            trigger_type=trigger_type,
            trigger_config=trigger_config if trigger_config is not None else {'targetColumnId': 'done'},
            conditions=conditions or [],
            actions=actions or [],
            is_active=is_active,
        )
        db.session.add(rule)
        db.session.commit()
        return rule
    return _make


@pytest.fixture
def moved_to_done():
    return Event(
        type=EventKind.CARD_MOVED,
        board_id="B1",
        card_id="C1",
        triggered_by="1",
        payload={'fromColumnId': 'todo', 'toColumnId': 'done', 'userName': 'Alice Architect'},
    )


@pytest.fixture
def flow_context(card, board, moved_to_done):
    """Execution context for the seeded card, as the executor would build it."""
    def _make(rule=None):
        rule = rule or Rule(
            id="R1", workspace_id="W1", board_id="B1", name="Close out",
            trigger_type="card_moved_to", trigger_config={'targetColumnId': 'done'}, actions=(),
        )
        return FlowContext(
            rule=rule,
            card=fetch_card("C1"),
            board=fetch_board("B1"),
            event=moved_to_done,
            run_id="run-1",
            site_url="https://app.example.com",
        )
    return _make
