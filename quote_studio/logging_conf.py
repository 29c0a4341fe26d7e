"""
Logging configuration for structured logging with quote context.

Provides structured logging setup, file rotation, and debug/production modes.
Log events carry quote-specific context when bound.
"""

import logging
import logging.handlers
import structlog
import sys
import re
from pathlib import Path
from typing import Optional, Dict, Any


def setup_logging(
    log_dir: Optional[Path] = None,
    debug: bool = False,
    log_to_file: bool = True,
    enable_rotation: bool = True,
    enable_masking: bool = True,
    production_mode: bool = False
) -> None:
    """
    Configure structured logging for the application.

    Args:
        log_dir: Directory for log files (defaults to the application home)
        debug: Enable debug-level logging
        log_to_file: Whether to log to file in addition to console
        enable_rotation: Enable log rotation
        enable_masking: Enable sensitive data masking
        production_mode: Use production logging configuration
    """

    log_level = logging.DEBUG if debug else logging.INFO
    if production_mode and not debug:
        log_level = logging.WARNING

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=log_level,
    )

    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
    ]

    if enable_masking:
        processors.append(_mask_sensitive_data)

    processors.extend([
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        structlog.processors.TimeStamper(fmt="ISO"),
    ])

    if production_mode:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        logger_factory=structlog.WriteLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    if log_to_file:
        _setup_file_logging(log_dir, log_level, enable_rotation, production_mode)


def _setup_file_logging(
    log_dir: Optional[Path],
    log_level: int,
    enable_rotation: bool,
    production_mode: bool
) -> None:
    """Set up file logging with optional rotation."""

    if log_dir is None:
        from .settings import app_home
        log_dir = app_home() / "logs"

    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / "app.log"

    if enable_rotation:
        file_handler = logging.handlers.RotatingFileHandler(
            log_file,
            maxBytes=10 * 1024 * 1024,  # 10MB
            backupCount=5,
            encoding='utf-8'
        )
    else:
        file_handler = logging.FileHandler(log_file, encoding='utf-8')

    file_handler.setLevel(log_level)

    if production_mode:
        file_formatter = logging.Formatter(
            '{"timestamp": "%(asctime)s", "level": "%(levelname)s", "logger": "%(name)s", "message": "%(message)s"}'
        )
    else:
        file_formatter = logging.Formatter(
            "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
        )

    file_handler.setFormatter(file_formatter)
    logging.getLogger().addHandler(file_handler)


# Client contact details end up in quotes and structuring prompts
_SENSITIVE_PATTERNS = [
    (r'api[_-]?key["\s]*[:=]["\s]*([a-zA-Z0-9_-]{20,})', r'api_key=***'),
    (r'token["\s]*[:=]["\s]*([a-zA-Z0-9_.-]{20,})', r'token=***'),
    (r'([a-zA-Z0-9._%+-]+)@([a-zA-Z0-9.-]+\.[a-zA-Z]{2,})', r'\1***@\2'),
    (r'\b01[0-9][-\s]?\d{3,4}[-\s]?\d{4}\b', r'010-****-****'),
]


def mask_string(text: str) -> str:
    """Mask API keys, email addresses and mobile numbers in a string."""
    if not isinstance(text, str):
        return text
    for pattern, replacement in _SENSITIVE_PATTERNS:
        text = re.sub(pattern, replacement, text, flags=re.IGNORECASE)
    return text


def _mask_sensitive_data(logger, method_name, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Processor to mask sensitive data in log messages."""

    def mask_dict(d: Dict[str, Any]) -> Dict[str, Any]:
        masked = {}
        for key, value in d.items():
            if isinstance(value, str):
                masked[key] = mask_string(value)
            elif isinstance(value, dict):
                masked[key] = mask_dict(value)
            elif isinstance(value, list):
                masked[key] = [mask_string(item) if isinstance(item, str) else item for item in value]
            else:
                masked[key] = value
        return masked

    return mask_dict(event_dict)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """
    Get a structured logger instance.

    Args:
        name: Logger name (typically __name__)

    Returns:
        Configured structlog logger
    """
    return structlog.get_logger(name)


def bind_quote_context(
    logger: structlog.stdlib.BoundLogger,
    quote_id: str,
    quote_no: Optional[str] = None
) -> structlog.stdlib.BoundLogger:
    """Bind quote id and human-facing quote number to a logger."""
    return logger.bind(quote_id=quote_id, quote_no=quote_no)
