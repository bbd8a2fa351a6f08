import atexit
import os

from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.schedulers.background import BackgroundScheduler
from flask import Flask, jsonify
from flask_cors import CORS
from sqlalchemy.engine import make_url
from werkzeug.exceptions import HTTPException

from flowauto.logging_config import configure_logging, get_logger
from flowauto.models import db

logger = configure_logging(
    log_level=os.environ.get("LOG_LEVEL", "INFO"),
    log_file=os.environ.get("LOG_FILE"),
)


def _run_scheduled_scan(app):
    from flowauto.flows.scanner import scan_scheduled_triggers

    with app.app_context():
        try:
            dispatched = scan_scheduled_triggers()
        except Exception as e:
            logger.error("Scheduled trigger scan failed", error=str(e), exc_info=True)
            return
        if dispatched:
            logger.info("Scheduled triggers dispatched", events=len(dispatched))


def init_scheduler(app):
    """
    Start the APScheduler job that fires due-date and stuck-in-column
    triggers. Returns the scheduler, or None when it is disabled.
    """
    if not app.config.get("FLOW_SCHEDULER_ENABLED"):
        logger.info("Flow scheduler disabled")
        return None

    # With the debug reloader on, only the child process should schedule
    if app.debug and os.environ.get("WERKZEUG_RUN_MAIN") != "true":
        logger.info("Skipping scheduler startup in reloader parent")
        return None

    from flowauto.flows import EXECUTOR_EXTENSION

    interval = app.config.get("FLOW_SCAN_INTERVAL_MINUTES", 60)
    executor = app.extensions[EXECUTOR_EXTENSION]
    scheduler = BackgroundScheduler(executors={"default": ThreadPoolExecutor(2)})
    scheduler.add_job(
        func=_run_scheduled_scan,
        args=[app],
        trigger="interval",
        minutes=interval,
        id="flow_scheduled_scan",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )
    scheduler.add_job(
        func=lambda: logger.info("Scheduler heartbeat", executor=executor.stats()),
        trigger="interval",
        minutes=30,
        id="heartbeat",
        replace_existing=True,
    )
    scheduler.start()
    atexit.register(lambda: scheduler.shutdown(wait=False))

    logger.info("Scheduler started", scan_interval_minutes=interval)
    return scheduler


def _cors_origins(value):
    if not value or value == "*":
        return "*"
    return [origin.strip() for origin in value.split(",") if origin.strip()]


def register_error_handlers(app):
    """API clients get JSON for every error, never an HTML page."""

    @app.errorhandler(HTTPException)
    def handle_http_exception(e):
        return jsonify({"error": e.description}), e.code

    @app.errorhandler(Exception)
    def handle_exception(e):
        logger.error("Unhandled exception", error=str(e), exc_info=True)
        return jsonify({"error": "Internal server error"}), 500


def create_app(test_config=None):
    from flowauto.api import api_bp
    from flowauto.auth.routes import auth_bp
    from flowauto.config import get_config
    from flowauto.db_config import configure_database
    from flowauto.flows import flows_bp, init_executor

    config_class = get_config()
    app = Flask(__name__)
    app.config.from_object(config_class)

    configure_database(app, overrides=test_config)
    if test_config:
        app.config.update(test_config)

    logger.info(
        "Starting flowauto",
        environment=config_class.ENV,
        database=make_url(app.config["SQLALCHEMY_DATABASE_URI"]).render_as_string(hide_password=True),
    )

    CORS(app,
         resources={r"/api/*": {"origins": _cors_origins(app.config.get("CORS_ORIGINS"))}},
         supports_credentials=True,
         allow_headers=["Content-Type", "Authorization"],
         methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"])

    db.init_app(app)

    executor = init_executor(app)
    atexit.register(lambda: executor.shutdown(wait=False))

    app.register_blueprint(auth_bp)
    app.register_blueprint(flows_bp, url_prefix="/api/flows")
    app.register_blueprint(api_bp, url_prefix="/api")

    @app.route("/health")
    def health():
        return jsonify({"status": "ok"}), 200

    register_error_handlers(app)

    try:
        init_scheduler(app)
    except Exception as e:
        logger.error("Failed to start scheduler", error=str(e), exc_info=True)

    return app
