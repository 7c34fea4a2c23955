"""
Core logging module with stream loggers and source correlation.

Architecture:
- One logger per stream (system, bootstrap, config, lifecycle, supervisor, service)
- Human-readable console output, optional JSON file stream
- Correlation ID = config source identifier, so lines from concurrent
  instances can be told apart
- Per-instance console or file handler that only receives that instance's
  records, at that instance's log_level
"""

import logging
import logging.handlers
import sys
import threading
from contextvars import ContextVar
from pathlib import Path
from typing import Dict, Optional, Union

ROOT_LOGGER = "tunnelctl"

# Context variable for correlation ID (per thread / per context)
_correlation_id: ContextVar[Optional[str]] = ContextVar('correlation_id', default=None)


# ============================================================================
# LOG STREAM DEFINITIONS
# ============================================================================

class LogStream:
    """Log stream identifiers."""
    SYSTEM = "system"           # Process startup, CLI, exit codes
    BOOTSTRAP = "bootstrap"     # Address-override payload
    CONFIG = "config"           # Parsing, resolution, validation
    LIFECYCLE = "lifecycle"     # Per-instance state transitions
    SUPERVISOR = "supervisor"   # Single/directory orchestration
    SERVICE = "service"         # Tunnel client service


_LEVELS = {
    "trace": logging.DEBUG,
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "critical": logging.CRITICAL,
}


def level_from_name(name: Union[str, object]) -> int:
    """Map client level names (trace/debug/info/warn/error) to logging levels."""
    key = str(getattr(name, "value", name)).strip().lower()
    return _LEVELS.get(key, logging.INFO)


# ============================================================================
# CORRELATION ID MANAGEMENT
# ============================================================================

def set_correlation_id(correlation_id: Optional[str]) -> None:
    _correlation_id.set(correlation_id)


def get_correlation_id() -> Optional[str]:
    """Get correlation ID for current context."""
    return _correlation_id.get()


class LogContext:
    """
    Context manager that tags every record with a config source.

    Usage:
        with LogContext("conf.d/a.ini"):
            logger.info("starting")  # record.correlation_id == "conf.d/a.ini"
    """

    def __init__(self, correlation_id: Optional[str]):
        self.correlation_id = correlation_id
        self._token = None

    def __enter__(self):
        self._token = _correlation_id.set(self.correlation_id)
        return self.correlation_id

    def __exit__(self, exc_type, exc_val, exc_tb):
        _correlation_id.reset(self._token)


_original_factory = logging.getLogRecordFactory()


def _correlation_id_factory(*args, **kwargs):
    record = _original_factory(*args, **kwargs)
    record.correlation_id = get_correlation_id()
    return record


logging.setLogRecordFactory(_correlation_id_factory)


# ============================================================================
# LOGGER SETUP
# ============================================================================

_loggers_initialized = False
_console_colors = sys.stderr.isatty()


def setup_logging(
    console_level: str = "info",
    use_colors: bool = True,
    json_log_file: Optional[Path] = None,
    max_bytes: int = 10_000_000,  # 10MB
    backup_count: int = 5,
    force: bool = False,
) -> None:
    """
    Initialize process-wide logging.

    Args:
        console_level: Console level (trace/debug/info/warn/error) for records
            not routed to an instance handler
        use_colors: Colored console output
        json_log_file: If set, also write every record as JSON to this file
        max_bytes: Max bytes per JSON log file before rotation
        backup_count: Number of rotated JSON files to keep
        force: Re-initialize even if already set up
    """
    global _loggers_initialized, _console_colors

    if _loggers_initialized and not force:
        return

    from .formatters import ConsoleFormatter, JSONFormatter

    root = logging.getLogger(ROOT_LOGGER)
    root.setLevel(logging.DEBUG)  # Capture everything, filter at handler level
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()
    root.propagate = False

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(level_from_name(console_level))
    console_handler.setFormatter(ConsoleFormatter(use_colors=use_colors))
    console_handler.addFilter(UnclaimedFilter())
    _console_colors = use_colors
    root.addHandler(console_handler)

    if json_log_file is not None:
        json_log_file = Path(json_log_file)
        json_log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            json_log_file,
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding='utf-8',
        )
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(JSONFormatter())
        root.addHandler(file_handler)

    _loggers_initialized = True

    get_logger(LogStream.SYSTEM).debug(
        "Logging system initialized",
        extra={"console_level": console_level, "json_log_file": str(json_log_file or "")},
    )


def get_logger(stream: str) -> logging.Logger:
    """
    Get logger for specific stream.

    Example:
        logger = get_logger(LogStream.LIFECYCLE)
        logger.info("instance started", extra={"protocol": "kcp"})
    """
    return logging.getLogger(f"{ROOT_LOGGER}.{stream}")


# ============================================================================
# PER-INSTANCE OUTPUT
# ============================================================================

class CorrelationFilter(logging.Filter):
    """Pass only records tagged with one correlation ID."""

    def __init__(self, correlation_id: Optional[str]):
        super().__init__()
        self.correlation_id = correlation_id

    def filter(self, record):
        return getattr(record, "correlation_id", None) == self.correlation_id


# Sources whose records go to their own instance handler instead of the
# process console. Values count attached handlers per source.
_claimed_sources: Dict[Optional[str], int] = {}
_claimed_lock = threading.Lock()


class UnclaimedFilter(logging.Filter):
    """Drop records of sources that have an instance handler attached."""

    def filter(self, record):
        return getattr(record, "correlation_id", None) not in _claimed_sources


def _claim(correlation_id: Optional[str]) -> None:
    with _claimed_lock:
        _claimed_sources[correlation_id] = _claimed_sources.get(correlation_id, 0) + 1


def _unclaim(correlation_id: Optional[str]) -> None:
    with _claimed_lock:
        remaining = _claimed_sources.get(correlation_id, 0) - 1
        if remaining > 0:
            _claimed_sources[correlation_id] = remaining
        else:
            _claimed_sources.pop(correlation_id, None)


def attach_instance_log(common, correlation_id: Optional[str]) -> logging.Handler:
    """
    Route one client instance's records to its own handler.

    `common` is the instance's ClientCommonConfig. log_file == "console"
    gives a stderr handler honoring log_level and disable_log_color;
    anything else gives a daily-rotating file honoring log_max_days. While
    attached, the instance's records no longer reach the process console.
    """
    from .formatters import ConsoleFormatter

    level = level_from_name(common.log_level)

    if common.log_way == "console":
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(ConsoleFormatter(
            use_colors=_console_colors and not common.disable_log_color,
        ))
    else:
        path = Path(common.log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        handler = logging.handlers.TimedRotatingFileHandler(
            path,
            when="midnight",
            backupCount=max(0, int(common.log_max_days)),
            encoding="utf-8",
            delay=True,
        )
        handler.setFormatter(logging.Formatter(
            '%(asctime)s [%(levelname)s] [%(name)s] %(message)s'
        ))
    handler.setLevel(level)
    handler.addFilter(CorrelationFilter(correlation_id))

    root = logging.getLogger(ROOT_LOGGER)
    if root.getEffectiveLevel() > level:
        root.setLevel(level)
    root.addHandler(handler)
    _claim(correlation_id)
    return handler


def detach_instance_log(handler: Optional[logging.Handler]) -> None:
    if handler is None:
        return
    logging.getLogger(ROOT_LOGGER).removeHandler(handler)
    handler.close()
    for f in handler.filters:
        if isinstance(f, CorrelationFilter):
            _unclaim(f.correlation_id)
