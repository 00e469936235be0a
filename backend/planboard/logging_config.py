"""
Logging configuration for the Planboard scheduling backend.

Features:
- Structured JSON logging for production
- Human-readable console logging for development
- Request correlation IDs carried through scheduling passes
- Log rotation with size limits
- Timing decorator for recomputation passes (layout, commit)
"""

import inspect
import json
import logging
import logging.handlers
import sys
import time
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone
from functools import wraps
from pathlib import Path
from typing import Callable, Optional

from .config import get_settings

# Context variable for request correlation ID
correlation_id_var: ContextVar[str] = ContextVar('correlation_id', default='no-correlation-id')


def get_correlation_id() -> str:
    """Get the current correlation ID from context."""
    return correlation_id_var.get()


def set_correlation_id(correlation_id: Optional[str] = None) -> str:
    """Set a correlation ID in the current context. Generates one if not provided."""
    cid = correlation_id or str(uuid.uuid4())[:8]
    correlation_id_var.set(cid)
    return cid


class JSONFormatter(logging.Formatter):
    """
    JSON formatter for structured logging in production.
    One object per line so log shippers can ingest it without parsing rules.
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "correlation_id": get_correlation_id(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        if hasattr(record, 'extra_data'):
            log_data["data"] = record.extra_data

        if record.exc_info:
            log_data["exception"] = {
                "type": record.exc_info[0].__name__ if record.exc_info[0] else None,
                "message": str(record.exc_info[1]) if record.exc_info[1] else None,
                "traceback": self.formatException(record.exc_info)
            }

        if hasattr(record, 'duration_ms'):
            log_data["duration_ms"] = record.duration_ms

        return json.dumps(log_data, default=str)


class ColoredConsoleFormatter(logging.Formatter):
    """
    Human-readable colored formatter for development console output.
    """

    COLORS = {
        'DEBUG': '\033[36m',     # Cyan
        'INFO': '\033[32m',      # Green
        'WARNING': '\033[33m',   # Yellow
        'ERROR': '\033[31m',     # Red
        'CRITICAL': '\033[41m',  # Red background
    }
    RESET = '\033[0m'
    BOLD = '\033[1m'
    DIM = '\033[2m'

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, '')
        timestamp = datetime.now().strftime('%H:%M:%S.%f')[:-3]

        message = " ".join([
            f"{self.DIM}{timestamp}{self.RESET}",
            f"{color}{record.levelname:8}{self.RESET}",
            f"{self.DIM}[{get_correlation_id()}]{self.RESET}",
            f"{self.BOLD}{record.name}{self.RESET}",
            f"→ {record.getMessage()}"
        ])

        if hasattr(record, 'extra_data') and record.extra_data:
            pairs = " ".join(f"{k}={v}" for k, v in record.extra_data.items())
            message += f" {self.DIM}{pairs}{self.RESET}"

        if hasattr(record, 'duration_ms'):
            message += f" {self.DIM}({record.duration_ms:.2f}ms){self.RESET}"

        if record.exc_info:
            message += f"\n{self.formatException(record.exc_info)}"

        return message


class ContextLogger(logging.LoggerAdapter):
    """
    Logger adapter that automatically includes correlation ID and extra context.
    """

    def process(self, msg: str, kwargs: dict) -> tuple:
        extra = kwargs.get('extra', {})
        extra['correlation_id'] = get_correlation_id()
        if self.extra:
            data = {**self.extra, **extra.get('extra_data', {})}
            extra['extra_data'] = data
        kwargs['extra'] = extra
        return msg, kwargs

    def with_context(self, **context) -> 'ContextLogger':
        """Create a new logger with additional context, e.g. a session or project id."""
        return ContextLogger(self.logger, {**self.extra, **context})


def setup_logging() -> None:
    """
    Configure logging for the application.
    Call this once during application startup.
    """
    settings = get_settings()

    log_level_str = settings.log_level.upper()
    log_level = getattr(logging, log_level_str, logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(log_level)
    if settings.is_production:
        console_handler.setFormatter(JSONFormatter())
    else:
        console_handler.setFormatter(ColoredConsoleFormatter())
    root_logger.addHandler(console_handler)

    if settings.enable_file_logging:
        log_dir = Path('logs')
        log_dir.mkdir(exist_ok=True)

        for filename, level in (('planboard.log', log_level), ('planboard-errors.log', logging.ERROR)):
            handler = logging.handlers.RotatingFileHandler(
                log_dir / filename,
                maxBytes=settings.log_max_bytes,
                backupCount=settings.log_backup_count,
                encoding='utf-8'
            )
            handler.setLevel(level)
            handler.setFormatter(JSONFormatter())
            root_logger.addHandler(handler)

    # Third-party loggers are noisy at DEBUG
    logging.getLogger('httpx').setLevel(logging.WARNING)
    logging.getLogger('httpcore').setLevel(logging.WARNING)
    logging.getLogger('uvicorn.access').setLevel(logging.WARNING)

    get_logger(__name__).info(
        "Logging initialized",
        extra={'extra_data': {
            'level': log_level_str,
            'environment': settings.environment,
            'production_mode': settings.is_production,
            'file_logging': settings.enable_file_logging
        }}
    )


def get_logger(name: str) -> ContextLogger:
    """
    Get a context-aware logger for the given module name.

    Usage:
        logger = get_logger(__name__)
        logger.info("Something happened", extra={'extra_data': {'key': 'value'}})
    """
    return ContextLogger(logging.getLogger(name), {})


def log_execution_time(logger: Optional[ContextLogger] = None, level: int = logging.DEBUG):
    """
    Decorator to log function execution time.

    Usage:
        @log_execution_time()
        def build_layout(...):
            ...
    """
    def decorator(func: Callable) -> Callable:
        log = logger or get_logger(func.__module__)

        def emit(duration_ms: float) -> None:
            if not log.logger.isEnabledFor(level):
                return
            record = log.logger.makeRecord(
                log.logger.name, level, "", 0, f"{func.__name__} completed", (), None,
                func=func.__name__,
            )
            record.duration_ms = duration_ms
            log.logger.handle(record)

        def fail(start: float, exc: Exception) -> None:
            duration_ms = (time.perf_counter() - start) * 1000
            log.error(f"{func.__name__} failed after {duration_ms:.2f}ms: {exc}", exc_info=True)

        @wraps(func)
        def sync_wrapper(*args, **kwargs):
            start = time.perf_counter()
            try:
                result = func(*args, **kwargs)
            except Exception as e:
                fail(start, e)
                raise
            emit((time.perf_counter() - start) * 1000)
            return result

        @wraps(func)
        async def async_wrapper(*args, **kwargs):
            start = time.perf_counter()
            try:
                result = await func(*args, **kwargs)
            except Exception as e:
                fail(start, e)
                raise
            emit((time.perf_counter() - start) * 1000)
            return result

        if inspect.iscoroutinefunction(func):
            return async_wrapper
        return sync_wrapper

    return decorator
