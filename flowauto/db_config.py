"""Database URI and engine options per environment.

Rule workers each hold a session of their own, so the connection pool is
sized from the executor's worker counts rather than from request traffic.
"""
import os

# environment alias -> (env vars checked in order, required)
DATABASE_URL_SOURCES = {
    "production": (("PRODUCTION_DATABASE_URL", "DATABASE_URL"), True),
    "sandbox": (("SANDBOX_DATABASE_URL",), True),
    "local": (("LOCAL_DATABASE_URL",), False),
}

ENVIRONMENT_ALIASES = {
    "prod": "production",
    "staging": "sandbox",
    "stage": "sandbox",
    "development": "local",
    "testing": "local",
}

DEFAULT_SQLITE_URL = "sqlite:///flowauto.sqlite"


def current_environment():
    name = (os.environ.get("FLASK_ENV") or os.environ.get("ENVIRONMENT") or "local").lower()
    name = ENVIRONMENT_ALIASES.get(name, name)
    return name if name in DATABASE_URL_SOURCES else "local"


def resolve_database_url(environment):
    """
    Look up the database URL for ``environment``.

    Raises:
        ValueError: if a hosted environment has no URL configured
    """
    names, required = DATABASE_URL_SOURCES[environment]
    for name in names:
        url = os.environ.get(name)
        if url:
            # Heroku-style URLs use the scheme SQLAlchemy 2 no longer accepts
            if url.startswith("postgres://"):
                url = url.replace("postgres://", "postgresql://", 1)
            return url
    if required:
        raise ValueError(f"{' or '.join(names)} must be set for the {environment} environment")
    return DEFAULT_SQLITE_URL


def engine_options_for(database_uri, worker_count):
    """
    Engine options for ``database_uri``.

    SQLite gets a busy timeout so concurrent rule runs wait on the file lock
    instead of failing; PostgreSQL gets a pool with one connection per flow
    worker plus headroom for request threads.
    """
    if database_uri.startswith("sqlite"):
        return {"connect_args": {"timeout": 15, "check_same_thread": False}}

    return {
        "pool_pre_ping": True,
        "pool_recycle": 280,
        "pool_size": max(5, worker_count),
        "max_overflow": 10,
        "pool_timeout": 30,
        "connect_args": {
            "sslmode": "require",
            "connect_timeout": 10,
            "application_name": "flowauto",
            "options": "-c statement_timeout=30000",
        },
    }


def configure_database(app, overrides=None):
    """Set SQLALCHEMY_* keys on ``app.config``.

    A ``SQLALCHEMY_DATABASE_URI`` in ``overrides`` replaces the environment
    lookup; the test suite uses it to point at a throwaway database.
    """
    overrides = overrides or {}
    database_uri = overrides.get("SQLALCHEMY_DATABASE_URI") or resolve_database_url(current_environment())

    worker_count = (
        int(app.config.get("FLOW_DISPATCH_WORKERS", 4)) + int(app.config.get("FLOW_RULE_WORKERS", 8))
    )

    app.config["SQLALCHEMY_DATABASE_URI"] = database_uri
    app.config["SQLALCHEMY_TRACK_MODIFICATIONS"] = False
    app.config["SQLALCHEMY_ECHO"] = False
    app.config["SQLALCHEMY_ENGINE_OPTIONS"] = engine_options_for(database_uri, worker_count)
