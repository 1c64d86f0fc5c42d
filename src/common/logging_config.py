"""
Logging configuration for the Hyper-V manager.

Console output is colored on a terminal; file output is plain text or one
JSON object per line. Fields attached with LogContext (VM name, operation)
appear in both.
"""

from __future__ import annotations

import contextvars
import json
import logging
import logging.handlers
import sys
from pathlib import Path
from typing import Any, Dict, Optional, Union

LOG_FILE_NAME = "hyperv-manager.log"
LOG_FILE_MAX_BYTES = 10 * 1024 * 1024
LOG_FILE_BACKUPS = 5

CONSOLE_FORMAT = "%(levelname)s %(name)s: %(message)s%(context_suffix)s"
FILE_FORMAT = (
    "%(asctime)s %(levelname)s %(name)s [%(filename)s:%(lineno)d] "
    "%(message)s%(context_suffix)s"
)

_context: contextvars.ContextVar[Dict[str, Any]] = contextvars.ContextVar(
    "hyperv_log_context", default={}
)


def current_context() -> Dict[str, Any]:
    """Fields of the innermost active LogContext."""
    return dict(_context.get())


class ContextFilter(logging.Filter):
    """Copy the active LogContext fields onto each record a handler sees."""

    def filter(self, record: logging.LogRecord) -> bool:
        fields = _context.get()
        if fields and not hasattr(record, "context"):
            record.context = dict(fields)
        context = getattr(record, "context", None) or {}
        record.context_suffix = (
            " [" + " ".join(f"{k}={v}" for k, v in context.items()) + "]" if context else ""
        )
        return True


class JSONFormatter(logging.Formatter):
    """One JSON object per record."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "function": record.funcName,
            "line": record.lineno,
        }
        context = getattr(record, "context", None)
        if context:
            log_data["context"] = context
        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


class ColoredFormatter(logging.Formatter):
    """Colors the level name on terminals."""

    COLORS = {
        logging.DEBUG: "\033[36m",
        logging.INFO: "\033[32m",
        logging.WARNING: "\033[33m",
        logging.ERROR: "\033[31m",
        logging.CRITICAL: "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        levelname = record.levelname
        record.levelname = f"{self.COLORS.get(record.levelno, '')}{levelname}{self.RESET}"
        try:
            return super().format(record)
        finally:
            # Other handlers share the record
            record.levelname = levelname


def _resolve_level(level: Union[int, str]) -> int:
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(level.upper())
    if not isinstance(resolved, int):
        raise ValueError(f"Unknown log level: {level}")
    return resolved


def _file_handler(log_file: Path, json_logs: bool) -> logging.Handler:
    log_file.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.handlers.RotatingFileHandler(
        log_file,
        maxBytes=LOG_FILE_MAX_BYTES,
        backupCount=LOG_FILE_BACKUPS,
        encoding="utf-8",
    )
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(JSONFormatter() if json_logs else logging.Formatter(FILE_FORMAT))
    return handler


def setup_logging(
    level: Union[int, str] = logging.INFO,
    log_file: Optional[Path] = None,
    json_logs: bool = False,
    log_dir: Optional[Path] = None,
) -> None:
    """
    Configure root logging for the Hyper-V manager.

    Args:
        level: Console level, as a number or a name such as "DEBUG"
        log_file: Rotating log file (optional)
        json_logs: Write the log file as JSON lines
        log_dir: Directory for hyperv-manager.log; overrides log_file

    Raises:
        ValueError: ``level`` is not a known level name
    """
    level = _resolve_level(level)
    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(level)
    formatter_class = ColoredFormatter if sys.stderr.isatty() else logging.Formatter
    console_handler.setFormatter(formatter_class(CONSOLE_FORMAT))
    handlers = [console_handler]

    if log_dir:
        log_file = Path(log_dir) / LOG_FILE_NAME
    if log_file:
        handlers.append(_file_handler(Path(log_file), json_logs))

    for handler in handlers:
        handler.addFilter(ContextFilter())
        root_logger.addHandler(handler)

    # COM bridge chatter
    logging.getLogger("win32com").setLevel(logging.WARNING)
    logging.getLogger("pythoncom").setLevel(logging.WARNING)


class LogContext:
    """
    Attach fields to every record logged inside the block.

    Fields follow the current thread (and asyncio task), so operations on
    different VMs running in parallel keep their own context. Nested
    contexts merge, inner values winning.

    Example:
        with LogContext(vm_name="web01", operation="start"):
            logger.info("Starting VM")  # ... [vm_name=web01 operation=start]
    """

    def __init__(self, **fields):
        self.fields = fields
        self._token: Optional[contextvars.Token] = None

    def __enter__(self) -> "LogContext":
        merged = dict(_context.get())
        merged.update(self.fields)
        self._token = _context.set(merged)
        return self

    def __exit__(self, *args):
        _context.reset(self._token)
