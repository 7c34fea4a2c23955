"""
Logging infrastructure for tunnelctl.

Features:
- Stream loggers (system, bootstrap, config, lifecycle, supervisor, service)
- Source correlation: each record carries the config source it belongs to
- Human-readable console output, optional JSON file stream
- Per-instance console output or daily-rotating log file, at the
  instance's log_level
"""

from .logger import (
    get_logger,
    setup_logging,
    LogContext,
    set_correlation_id,
    get_correlation_id,
    level_from_name,
    attach_instance_log,
    detach_instance_log,
    LogStream,
)

from .formatters import (
    JSONFormatter,
    ConsoleFormatter,
)

__all__ = [
    "get_logger",
    "setup_logging",
    "LogContext",
    "set_correlation_id",
    "get_correlation_id",
    "level_from_name",
    "attach_instance_log",
    "detach_instance_log",
    "LogStream",
    "JSONFormatter",
    "ConsoleFormatter",
]
