import logging
import logging.config
import sys
import time
import uuid
from typing import Optional

import structlog

# Third-party loggers that drown out flow run output at INFO
NOISY_LOGGERS = ("apscheduler", "urllib3", "werkzeug")

RUN_CONTEXT_KEYS = ("run_id", "rule_id", "board_id", "card_id", "event_type")


def _handler_config(log_level: str, log_file: Optional[str]):
    handlers = {
        "console": {
            "class": "logging.StreamHandler",
            "level": log_level,
            "formatter": "plain",
            "stream": sys.stdout,
        }
    }
    if log_file:
        handlers["file"] = {
            "class": "logging.handlers.RotatingFileHandler",
            "level": log_level,
            "formatter": "json",
            "filename": log_file,
            "maxBytes": 10 * 1024 * 1024,
            "backupCount": 5,
        }
    return handlers


def configure_logging(log_level: str = "INFO", log_file: Optional[str] = None):
    """
    Route structlog through stdlib logging.

    Every record carries whatever run context is bound in the current
    thread (see FlowRunContext), so lines emitted by actions can be tied
    back to the rule run that produced them.

    Args:
        log_level: DEBUG, INFO, WARNING or ERROR
        log_file: Optional path for a rotating JSON log next to stdout
    """
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer(),
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handlers = _handler_config(log_level, log_file)
    logging.config.dictConfig({
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "plain": {"format": "%(asctime)s %(levelname)s [%(threadName)s] %(name)s: %(message)s"},
            "json": {
                "()": "structlog.stdlib.ProcessorFormatter",
                "processor": structlog.processors.JSONRenderer(),
            },
        },
        "handlers": handlers,
        "root": {"level": log_level, "handlers": list(handlers)},
    })

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logger = structlog.get_logger("flowauto")
    logger.info("Logging configured", level=log_level, file=log_file)
    return logger


def get_logger(name: str) -> structlog.BoundLogger:
    return structlog.get_logger(name)


class FlowRunContext:
    """
    Scope of one rule run.

    Binds the run's identifiers into the thread's structlog context for the
    duration of the block and measures how long the run took.
    """

    def __init__(self, rule_id, event, run_id: Optional[str] = None):
        self.rule_id = rule_id
        self.event = event
        self.run_id = run_id or str(uuid.uuid4())
        self.logger = get_logger("flowauto.flows.run")
        self._started = None

    @property
    def elapsed_ms(self) -> int:
        if self._started is None:
            return 0
        return int((time.monotonic() - self._started) * 1000)

    def __enter__(self):
        self._started = time.monotonic()
        structlog.contextvars.bind_contextvars(
            run_id=self.run_id,
            rule_id=self.rule_id,
            board_id=self.event.board_id,
            card_id=self.event.card_id,
            event_type=self.event.type.value,
        )
        self.logger.debug("Flow run started")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if exc_type is None:
            self.logger.debug("Flow run finished", duration_ms=self.elapsed_ms)
        else:
            self.logger.error(
                "Flow run crashed",
                duration_ms=self.elapsed_ms,
                error_type=exc_type.__name__,
                error_message=str(exc_val),
            )
        structlog.contextvars.unbind_contextvars(*RUN_CONTEXT_KEYS)
        return False
