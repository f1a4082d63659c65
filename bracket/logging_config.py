"""Structured logging configuration using structlog.

The API and the Celery worker share one setup:
- JSON lines in production, colored console output elsewhere
- every record carries the environment it came from
- records emitted inside a Celery task carry the task id and name
- job context (tournament_id) is bound through contextvars
"""

import logging
import sys
from typing import Any

import structlog
from celery import current_task
from structlog.types import EventDict, Processor, WrappedLogger

# Third-party loggers that are too chatty at INFO
QUIET_LOGGERS = {
    "uvicorn.access": logging.WARNING,
    "sqlalchemy.engine": logging.WARNING,
    "celery.app.trace": logging.INFO,
    "celery.worker.strategy": logging.WARNING,
}


def add_task_context(
    logger: WrappedLogger,
    method_name: str,
    event_dict: EventDict,
) -> EventDict:
    """Stamp the running Celery task onto the record, if there is one."""
    task = current_task
    if task and task.request.id:
        event_dict.setdefault("task_id", task.request.id)
        event_dict.setdefault("task_name", task.name)
    return event_dict


def environment_stamper(app_env: str) -> Processor:
    def add_environment(
        logger: WrappedLogger,
        method_name: str,
        event_dict: EventDict,
    ) -> EventDict:
        event_dict.setdefault("env", app_env)
        return event_dict

    return add_environment


def configure_logging(
    log_level: str = "INFO",
    json_logs: bool = False,
    app_env: str = "development",
) -> None:
    """Configure structured logging for the current process.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        json_logs: Force JSON output outside production
        app_env: Application environment, stamped on every record
    """
    use_json = json_logs or app_env == "production"

    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        add_task_context,
        environment_stamper(app_env),
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
    ]

    if use_json:
        shared_processors.append(structlog.processors.format_exc_info)
        renderer: Processor = structlog.processors.JSONRenderer()
    else:
        shared_processors.append(structlog.dev.set_exc_info)
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())

    structlog.configure(
        processors=shared_processors + [
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=shared_processors,
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                renderer,
            ],
        )
    )

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, log_level.upper()))

    for name, level in QUIET_LOGGERS.items():
        logging.getLogger(name).setLevel(level)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Get a structured logger instance.

    Usage:
        logger = get_logger(__name__)
        logger.info("round_created", tournament_id=12, round=2)
    """
    return structlog.get_logger(name)


def bind_context(**kwargs: Any) -> None:
    """Bind values to every log call in the current context.

    Usage:
        bind_context(tournament_id=12)
        logger.info("round_advancement_started")  # includes tournament_id
    """
    structlog.contextvars.bind_contextvars(**kwargs)


def clear_context() -> None:
    """Clear all bound context variables."""
    structlog.contextvars.clear_contextvars()
