"""
Structured Logging Configuration with structlog

Every log entry carries the app version and, while a job task is running,
the job_id and current pipeline stage.
"""

import sys
import time
import inspect
import logging
import structlog
from typing import Optional, Any, Dict
from datetime import datetime
from contextvars import ContextVar
from functools import wraps

# Context variables for job-scoped logging
job_id_var: ContextVar[Optional[str]] = ContextVar("job_id", default=None)
stage_var: ContextVar[Optional[str]] = ContextVar("stage", default=None)

APP_VERSION = "1.0.0"


def add_app_context(
    logger: logging.Logger,
    method_name: str,
    event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    """Add application and job context to every log entry."""
    event_dict["version"] = APP_VERSION

    job_id = job_id_var.get()
    if job_id and "job_id" not in event_dict:
        event_dict["job_id"] = job_id

    stage = stage_var.get()
    if stage and "stage" not in event_dict:
        event_dict["stage"] = stage

    return event_dict


def add_timestamp(
    logger: logging.Logger,
    method_name: str,
    event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    """Add ISO format timestamp."""
    event_dict["timestamp"] = datetime.utcnow().isoformat() + "Z"
    return event_dict


def setup_logging(
    log_level: str = "INFO",
    json_format: bool = True,
    app_version: Optional[str] = None
):
    """
    Configure structured logging for the application.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        json_format: If True, output JSON; if False, output colored console logs
        app_version: Version stamped on every entry
    """
    global APP_VERSION
    if app_version:
        APP_VERSION = app_version

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper()),
    )

    # Silence noisy loggers
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("PIL").setLevel(logging.WARNING)
    logging.getLogger("asyncio").setLevel(logging.WARNING)

    if json_format:
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=True)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            add_timestamp,
            add_app_context,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.UnicodeDecoder(),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str = __name__) -> structlog.stdlib.BoundLogger:
    """Get a structured logger instance."""
    return structlog.get_logger(name)


class LogContext:
    """
    Context manager for setting logging context.

    Usage:
        with LogContext(job_id="abc123", stage="generation"):
            logger.info("generation_started")
    """

    def __init__(self, job_id: Optional[str] = None, stage: Optional[str] = None):
        self.job_id = job_id
        self.stage = stage
        self._job_id_token = None
        self._stage_token = None

    def __enter__(self):
        if self.job_id:
            self._job_id_token = job_id_var.set(self.job_id)
        if self.stage:
            self._stage_token = stage_var.set(self.stage)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self._stage_token:
            stage_var.reset(self._stage_token)
        if self._job_id_token:
            job_id_var.reset(self._job_id_token)
        return False


def with_logging(stage: str):
    """
    Decorator that logs start, completion and failure of a pipeline stage.

    Only coroutine functions are supported; every stage of the executor is async.

    Usage:
        @with_logging("fallback")
        async def apply_fallback(self, ...):
            ...
    """
    def decorator(func):
        if not inspect.iscoroutinefunction(func):
            raise TypeError(f"with_logging expects a coroutine function, got {func!r}")

        @wraps(func)
        async def wrapper(*args, **kwargs):
            logger = get_logger(func.__module__)
            token = stage_var.set(stage)
            logger.debug("stage_started")
            start = time.perf_counter()

            try:
                result = await func(*args, **kwargs)
            except Exception as e:
                logger.warning(
                    "stage_failed",
                    duration_ms=int((time.perf_counter() - start) * 1000),
                    error=str(e),
                    error_type=type(e).__name__
                )
                raise
            else:
                logger.debug(
                    "stage_completed",
                    duration_ms=int((time.perf_counter() - start) * 1000)
                )
                return result
            finally:
                stage_var.reset(token)

        return wrapper

    return decorator
