# Package
from flask import Blueprint, current_app

from flowauto.logging_config import get_logger

logger = get_logger(__name__)

flows_bp = Blueprint("flows", __name__)

EXECUTOR_EXTENSION = "flowauto.executor"


def init_executor(app, store=None):
    """Create the app's FlowExecutor and register it under app.extensions."""
    from flowauto.flows.executor import FlowExecutor

    executor = FlowExecutor.from_app(app, store=store)
    app.extensions[EXECUTOR_EXTENSION] = executor
    logger.info(
        "Flow executor initialised",
        dispatch_workers=app.config.get("FLOW_DISPATCH_WORKERS"),
        rule_workers=app.config.get("FLOW_RULE_WORKERS"),
        rule_timeout_seconds=app.config.get("FLOW_RULE_TIMEOUT_SECONDS"),
    )
    return executor


def get_executor():
    return current_app.extensions[EXECUTOR_EXTENSION]


from flowauto.flows import routes  # noqa: E402,F401
