"""
Structured Logging Configuration for Prompt Forge
Features:
- JSON formatted logs for production, colored single-line logs for development
- Request correlation IDs carried through a context variable
- Completion call timing
- Credential scrubbing so bearer tokens never reach a log sink
"""
import logging
import inspect
import json
import re
import sys
import time
import uuid
from typing import Optional
from datetime import datetime, timezone
from functools import wraps
from contextvars import ContextVar

request_id_var: ContextVar[str] = ContextVar('request_id', default='')

# OpenRouter keys and generic bearer headers
_CREDENTIAL_PATTERN = re.compile(r'(sk-or-v1-|Bearer\s+)[A-Za-z0-9_\-]{4,}')

NOISY_LOGGERS = ("httpx", "httpcore", "asyncio", "uvicorn.access")


def scrub_credentials(text: str) -> str:
    """Replace anything that looks like a credential with a masked marker"""
    return _CREDENTIAL_PATTERN.sub(lambda m: f"{m.group(1)}***", text)


class CredentialFilter(logging.Filter):
    """Masks credentials in the rendered log message"""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        scrubbed = scrub_credentials(message)
        if scrubbed != message:
            record.msg = scrubbed
            record.args = ()
        return True


class StructuredFormatter(logging.Formatter):
    """One JSON object per line"""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "location": f"{record.module}.{record.funcName}:{record.lineno}",
        }

        request_id = request_id_var.get()
        if request_id:
            entry["request_id"] = request_id

        context = getattr(record, "context", None)
        if context:
            entry.update(context)

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=str)


class DevFormatter(logging.Formatter):
    """Colored single-line output for local runs"""

    LEVEL_COLORS = {
        logging.DEBUG: '\033[36m',
        logging.INFO: '\033[32m',
        logging.WARNING: '\033[33m',
        logging.ERROR: '\033[31m',
        logging.CRITICAL: '\033[35m',
    }
    RESET = '\033[0m'

    def format(self, record: logging.LogRecord) -> str:
        color = self.LEVEL_COLORS.get(record.levelno, self.RESET)
        request_id = request_id_var.get()

        parts = [datetime.now().strftime("%H:%M:%S.%f")[:-3]]
        if request_id:
            parts.append(f"[{request_id[:8]}]")
        parts.append(f"{color}{record.levelname:<8}{self.RESET}")
        parts.append(f"{record.name}: {record.getMessage()}")

        line = " ".join(parts)
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


def _configure_handler(handler: logging.Handler, level: int, formatter: logging.Formatter) -> logging.Handler:
    handler.setLevel(level)
    handler.addFilter(CredentialFilter())
    handler.setFormatter(formatter)
    return handler


def setup_logging(
    level: str = "INFO",
    json_format: bool = False,
    log_file: Optional[str] = None
):
    """
    Configure the root logger.

    Args:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_format: JSON lines on stdout instead of the colored dev format
        log_file: Optional file that always receives JSON lines
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)
    root_logger.handlers = []

    console_formatter = StructuredFormatter() if json_format else DevFormatter()
    root_logger.addHandler(
        _configure_handler(logging.StreamHandler(sys.stdout), numeric_level, console_formatter)
    )

    if log_file:
        root_logger.addHandler(
            _configure_handler(logging.FileHandler(log_file), numeric_level, StructuredFormatter())
        )

    # httpx logs every request line at INFO
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def generate_request_id() -> str:
    """Generate a unique request ID"""
    return str(uuid.uuid4())


def set_request_id(request_id: str):
    """Set the request ID for the current context"""
    request_id_var.set(request_id)


def get_request_id() -> str:
    """Get the request ID for the current context"""
    return request_id_var.get()


def log_event(logger: logging.Logger, level: int, message: str, **context):
    """Log a message with structured context fields (emitted by StructuredFormatter)"""
    logger.log(level, message, extra={"context": context})


def log_performance(logger: logging.Logger, operation: str):
    """Decorator for coroutine functions: logs duration and outcome of each call"""
    def decorator(func):
        if not inspect.iscoroutinefunction(func):
            raise TypeError(f"log_performance expects a coroutine function, got {func!r}")

        @wraps(func)
        async def wrapper(*args, **kwargs):
            started = time.perf_counter()
            try:
                result = await func(*args, **kwargs)
            except Exception as e:
                log_event(
                    logger, logging.WARNING,
                    f"{operation} failed: {scrub_credentials(str(e))}",
                    operation=operation,
                    duration_ms=int((time.perf_counter() - started) * 1000),
                    status="error",
                )
                raise

            log_event(
                logger, logging.DEBUG,
                f"{operation} completed",
                operation=operation,
                duration_ms=int((time.perf_counter() - started) * 1000),
                status="success",
            )
            return result

        return wrapper

    return decorator
