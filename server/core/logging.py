"""Structured logging configuration."""

import logging
import sys
from pathlib import Path
from typing import List

import structlog

from core.config import Settings


def _handlers(settings: Settings, level: int) -> List[logging.Handler]:
    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if settings.log_file:
        log_path = Path(settings.log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_path))
    for handler in handlers:
        handler.setLevel(level)
    return handlers


def configure_logging(settings: Settings) -> None:
    """Route structlog through stdlib logging with a JSON or console renderer."""
    level = getattr(logging, settings.log_level.upper(), logging.INFO)
    logging.basicConfig(level=level, handlers=_handlers(settings, level), format="%(message)s")

    # Outbound calls are logged by log_http_call
    for noisy in ("httpx", "httpcore", "uvicorn.access"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    if settings.log_format == "json":
        head = [structlog.stdlib.add_logger_name, structlog.processors.TimeStamper(fmt="iso")]
        renderer = structlog.processors.JSONRenderer()
    else:
        head = [structlog.processors.TimeStamper(fmt="%H:%M:%S")]
        renderer = structlog.dev.ConsoleRenderer(
            colors=False,
            pad_event=35,
            exception_formatter=structlog.dev.plain_traceback
        )

    structlog.configure(
        processors=[
            *head,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            renderer,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.BoundLogger:
    """Get a structured logger instance."""
    return structlog.get_logger(name)


def log_http_call(logger: structlog.BoundLogger, service: str, operation: str,
                  status_code: int, elapsed: float, **kwargs) -> None:
    """Log an outbound HTTP call with standardized fields."""
    logger.info(
        "HTTP call completed",
        service=service,
        operation=operation,
        status_code=status_code,
        elapsed_seconds=round(elapsed, 4),
        **kwargs
    )


def log_cache_operation(logger: structlog.BoundLogger, operation: str,
                        key: str, hit: bool = None, **kwargs) -> None:
    """Log cache operations."""
    log_data = {
        "operation": operation,
        "cache_key": key,
        **kwargs
    }

    if hit is not None:
        log_data["cache_hit"] = hit

    logger.debug("Cache operation", **log_data)


def log_job_transition(logger: structlog.BoundLogger, job_id: str,
                       status: str, **kwargs) -> None:
    """Log a queue job lifecycle transition."""
    logger.info(
        "Job transition",
        job_id=job_id,
        status=status,
        **kwargs
    )
