"""Logging for the capture core.

structlog is the front end and the stdlib ``logging`` tree is the transport.
Events from ``get_logger`` and plain ``logging`` records (uvicorn, asyncio)
are rendered by the same ``ProcessorFormatter``, so stdout and the rotating
log file carry identical lines.
"""

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from typing import Optional

import structlog

LOG_FILE_NAME = "stealthdetect.log"

# Applied to structlog events and to foreign stdlib records alike
_SHARED_PROCESSORS = [
    structlog.contextvars.merge_contextvars,
    structlog.stdlib.add_logger_name,
    structlog.stdlib.add_log_level,
    structlog.processors.TimeStamper(fmt="iso"),
    structlog.processors.StackInfoRenderer(),
    structlog.dev.set_exc_info,
]


def _build_formatter(debug: bool) -> structlog.stdlib.ProcessorFormatter:
    if debug:
        render = [structlog.dev.ConsoleRenderer()]
    else:
        render = [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    return structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=_SHARED_PROCESSORS,
        processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, *render],
    )


def _open_log_file(log_dir: str, max_bytes: int, backup_count: int) -> Optional[RotatingFileHandler]:
    try:
        os.makedirs(log_dir, exist_ok=True)
        return RotatingFileHandler(
            os.path.join(log_dir, LOG_FILE_NAME),
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
        )
    except OSError:
        return None


def setup_logging(
    debug: bool = False,
    log_dir: str = "logs",
    log_max_bytes: int = 10_000_000,
    log_backup_count: int = 5,
) -> Optional[str]:
    """Route structlog through stdlib logging to stdout and a rotating file.

    Debug mode renders console lines, otherwise one JSON object per line.
    Returns the log file path, or None when ``log_dir`` is not writable and
    only stdout is in use. Calling it again replaces the root handlers.
    """
    level = logging.DEBUG if debug else logging.INFO

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            *_SHARED_PROCESSORS,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    formatter = _build_formatter(debug)
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    file_handler = _open_log_file(log_dir, log_max_bytes, log_backup_count)
    if file_handler is not None:
        handlers.append(file_handler)

    root = logging.getLogger()
    for old in list(root.handlers):
        root.removeHandler(old)
        if isinstance(old, RotatingFileHandler):
            old.close()
    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
        root.addHandler(handler)
    root.setLevel(level)

    return file_handler.baseFilename if file_handler is not None else None


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Named structured logger; its stdlib logger carries the same name."""
    return structlog.get_logger(name)
