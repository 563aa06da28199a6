"""
Structured logging configuration
"""
import asyncio
import functools
import logging
import os
import sys
from datetime import datetime

import structlog


def configure_logging(level: str = None, json_output: bool = None):
    """Configure structlog on top of stdlib logging.

    LOG_LEVEL and LOG_FORMAT ("json" or "console") are read from the
    environment when not given.
    """
    level = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    if json_output is None:
        json_output = os.getenv("LOG_FORMAT", "json").lower() != "console"
    renderer = structlog.processors.JSONRenderer() if json_output else structlog.dev.ConsoleRenderer()

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
            renderer,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=getattr(logging, level, logging.INFO))

    # noisy third-party loggers
    for name, lib_level in (("uvicorn", logging.INFO), ("sqlalchemy", logging.WARNING),
                            ("httpx", logging.WARNING), ("openai", logging.WARNING)):
        logging.getLogger(name).setLevel(lib_level)


def get_logger(name: str = None):
    """Get a structured logger"""
    return structlog.get_logger(name)


# -------------------- STAGE TIMING --------------------

def _log_outcome(stage: str, started: datetime, error: Exception = None):
    logger = get_logger("performance")
    duration = (datetime.now() - started).total_seconds()
    if error is None:
        logger.info("stage_completed", stage=stage, duration_seconds=duration, status="success")
        return
    logger.error(
        "stage_failed",
        stage=stage,
        duration_seconds=duration,
        error=str(error),
        error_type=type(error).__name__,
        failed_stage=getattr(error, "stage", None),
        status="error",
    )


def log_performance(stage: str):
    """Decorator that logs the duration and outcome of a pipeline stage (sync or async)"""
    def decorator(func):
        if asyncio.iscoroutinefunction(func):
            @functools.wraps(func)
            async def async_wrapper(*args, **kwargs):
                started = datetime.now()
                try:
                    result = await func(*args, **kwargs)
                except Exception as e:
                    _log_outcome(stage, started, e)
                    raise
                _log_outcome(stage, started)
                return result
            return async_wrapper

        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            started = datetime.now()
            try:
                result = func(*args, **kwargs)
            except Exception as e:
                _log_outcome(stage, started, e)
                raise
            _log_outcome(stage, started)
            return result
        return wrapper
    return decorator


# -------------------- API REQUESTS --------------------

def log_api_request(request, status_code: int = None, duration: float = None):
    """Log the start (no status) or the completion of an API request"""
    logger = get_logger("api")
    fields = {
        "method": request.method,
        "path": request.url.path,
        "client_ip": request.client.host if request.client else "unknown",
    }
    if status_code is None:
        logger.info("api_request_started", **fields)
    elif status_code >= 500:
        logger.error("api_request_completed", status_code=status_code, duration_seconds=duration, **fields)
    else:
        logger.info("api_request_completed", status_code=status_code, duration_seconds=duration, **fields)
