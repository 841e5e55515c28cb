import logging
import sys
import json
from datetime import datetime
from typing import Dict, Any, Optional
from pathlib import Path
import re

from concierge.core.config import settings


class JsonFormatter(logging.Formatter):
    """
    Formatter that writes log records as one JSON object per line.
    Credentials are masked and long strings are truncated.
    """
    SENSITIVE_FIELDS = ['authorization', 'token', 'secret', 'password']
    BEARER_PATTERN = re.compile(r'Bearer\s+[A-Za-z0-9\-_.=]+')
    MAX_STRING_LENGTH = 1000

    RESERVED_ATTRS = {
        "args", "asctime", "created", "exc_info", "exc_text",
        "filename", "funcName", "id", "levelname", "levelno",
        "lineno", "module", "msecs", "message", "msg",
        "name", "pathname", "process", "processName",
        "relativeCreated", "stack_info", "thread", "threadName",
        "taskName", "extra",
    }

    def format(self, record: logging.LogRecord) -> str:
        log_entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": self.sanitize_string(record.getMessage()),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno
        }
        if record.exc_info and record.exc_info[0]:
            log_entry["exception"] = {
                "type": record.exc_info[0].__name__,
                "message": str(record.exc_info[1]) if record.exc_info[1] else "",
                "traceback": self.formatException(record.exc_info)
            }

        for key, value in record.__dict__.items():
            if key in self.RESERVED_ATTRS:
                continue
            try:
                if isinstance(value, dict):
                    value = self.sanitize_dict(value)
                elif isinstance(value, str):
                    value = self.sanitize_string(value)
                json.dumps({key: value})
                log_entry[key] = value
            except (TypeError, OverflowError):
                log_entry[key] = str(value)

        return json.dumps(log_entry)

    def sanitize_dict(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """
        Mask credential fields and sanitize nested values.
        """
        result = {}
        for key, value in data.items():
            if any(field in str(key).lower() for field in self.SENSITIVE_FIELDS):
                result[key] = "[REDACTED]"
            elif isinstance(value, dict):
                result[key] = self.sanitize_dict(value)
            elif isinstance(value, str):
                result[key] = self.sanitize_string(value)
            else:
                result[key] = value
        return result

    def sanitize_string(self, value: str) -> str:
        if not isinstance(value, str):
            return value

        sanitized = self.BEARER_PATTERN.sub("Bearer [REDACTED]", value)

        if len(sanitized) > self.MAX_STRING_LENGTH:
            return sanitized[:self.MAX_STRING_LENGTH] + f"... [TRUNCATED, total length: {len(value)} chars]"

        return sanitized


def setup_logging() -> logging.Logger:
    """
    Set up application-wide logging configuration.
    Returns the configured "concierge" logger.
    """
    log_level_name = getattr(settings, "LOG_LEVEL", "INFO").upper()
    log_level = getattr(logging, log_level_name, logging.INFO)

    app_logger = logging.getLogger("concierge")
    app_logger.setLevel(log_level)
    app_logger.propagate = False

    if app_logger.handlers:
        app_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(log_level)
    console_handler.setFormatter(logging.Formatter(
        "%(asctime)s - %(levelname)s - %(name)s - %(message)s"
    ))
    app_logger.addHandler(console_handler)

    if getattr(settings, "LOG_TO_FILE", False):
        log_dir = Path("logs")
        log_dir.mkdir(exist_ok=True)
        log_file = log_dir / f"{datetime.now().strftime('%Y-%m-%d')}.log"
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(log_level)
        file_handler.setFormatter(JsonFormatter())
        app_logger.addHandler(file_handler)

    setup_module_loggers(log_level)

    return app_logger


def setup_module_loggers(default_level: int) -> None:
    """
    Route third-party loggers that matter for this service through the app handlers.
    """
    module_levels = {
        "uvicorn.error": default_level,
        "httpx": logging.WARNING,
    }

    for module, level in module_levels.items():
        module_logger = logging.getLogger(module)
        module_logger.setLevel(level)

        for handler in logging.getLogger("concierge").handlers:
            if handler not in module_logger.handlers:
                module_logger.addHandler(handler)


class ContextLogger(logging.LoggerAdapter):
    """
    Logger adapter that adds context information to log records.
    """
    def __init__(self, logger, extra=None):
        super().__init__(logger, extra or {})

    def process(self, msg, kwargs):
        merged_extra = dict(self.extra) if self.extra is not None else {}
        merged_extra.update(kwargs.get("extra", {}))
        kwargs["extra"] = merged_extra
        return msg, kwargs

    def bind(self, **kwargs) -> "ContextLogger":
        """
        Create a new logger with additional context data.
        """
        new_extra = dict(self.extra) if self.extra is not None else {}
        new_extra.update(kwargs)
        return ContextLogger(self.logger, new_extra)


base_logger = setup_logging()
logger = ContextLogger(base_logger)


def get_logger(name: Optional[str] = None, **context) -> ContextLogger:
    """
    Get a logger with additional context information.

    Args:
        name: Optional name recorded as ``logger_name`` on each record
        **context: Additional context data to add to log records

    Returns:
        A logger instance with the specified context
    """
    if name:
        context["logger_name"] = name

    return logger.bind(**context)
