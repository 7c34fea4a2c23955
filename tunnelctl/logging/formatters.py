"""
Record formatters.

- ConsoleFormatter: tunnel-client style single line,
      2026/01/19 10:30:45 [I] [lifecycle] [conf.d/a.ini] start tunnel client ...
- JSONFormatter: one object per line for the optional JSON stream
"""

import json
import logging
import traceback
from datetime import datetime, timezone

# Attributes every LogRecord has; anything else came in through `extra`.
_RECORD_FIELDS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", None, None))) | {
    "message", "asctime", "correlation_id", "taskName",
}

_LEVEL_TAGS = {
    logging.DEBUG: ("D", "\033[36m"),
    logging.INFO: ("I", "\033[32m"),
    logging.WARNING: ("W", "\033[33m"),
    logging.ERROR: ("E", "\033[31m"),
    logging.CRITICAL: ("C", "\033[35m"),
}
_RESET = "\033[0m"


def _source_label(record: logging.LogRecord):
    corr = getattr(record, "correlation_id", None)
    if corr is None:
        return None
    return corr or "default"


def _stream_name(record: logging.LogRecord) -> str:
    return record.name.rsplit(".", 1)[-1]


def _extra_fields(record: logging.LogRecord) -> dict:
    return {
        k: v for k, v in record.__dict__.items()
        if k not in _RECORD_FIELDS and not k.startswith("_")
    }


class JSONFormatter(logging.Formatter):
    """
    {"ts": ..., "level": "INFO", "logger": "tunnelctl.lifecycle",
     "stream": "lifecycle", "source": "conf.d/a.ini", "thread": ...,
     "message": ..., "extra": {...}, "exception": {...}}
    """

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "stream": _stream_name(record),
            "source": _source_label(record),
            "thread": record.threadName,
            "message": record.getMessage(),
        }

        extra = _extra_fields(record)
        if extra:
            entry["extra"] = extra

        if record.exc_info and record.exc_info[0] is not None:
            exc_type, exc, tb = record.exc_info
            entry["exception"] = {
                "type": exc_type.__name__,
                "message": str(exc),
                "traceback": "".join(traceback.format_exception(exc_type, exc, tb)),
            }

        return json.dumps(entry, default=str)


class ConsoleFormatter(logging.Formatter):
    """One line per record; the level tag is colored when use_colors is set."""

    def __init__(self, use_colors: bool = True):
        super().__init__()
        self.use_colors = use_colors

    def _level_tag(self, levelno: int) -> str:
        tag, color = _LEVEL_TAGS.get(levelno, ("?", _RESET))
        if self.use_colors:
            return f"{color}[{tag}]{_RESET}"
        return f"[{tag}]"

    def format(self, record: logging.LogRecord) -> str:
        when = datetime.fromtimestamp(record.created).strftime("%Y/%m/%d %H:%M:%S")
        parts = [when, self._level_tag(record.levelno), f"[{_stream_name(record)}]"]

        source = _source_label(record)
        if source:
            parts.append(f"[{source}]")
        parts.append(record.getMessage())

        line = " ".join(parts)
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line
