"""
JorEl Logging — colorized dev output, JSON lines for production.

Features:
- Color formatter for dev mode (auto-detects TTY)
- JSON structured formatter for log aggregation (JOREL_LOG_FORMAT=json)
- Suppresses noisy third-party loggers (httpx, httpcore, openai)
- Configurable via JOREL_LOG_LEVEL, JOREL_LOG_COLOR, JOREL_LOG_FORMAT
- GenerationTimer for measuring provider round trips

Structured log extra fields (pass via logger.info(..., extra={...})):
    task_id, thread_id, agent, model, provider, duration_ms, stop_reason
"""

from __future__ import annotations

import json
import logging
import os
import sys
import time
from datetime import datetime, timezone


# --- Color codes ---
COLORS = {
    "DEBUG": "\033[36m",  # Cyan
    "INFO": "\033[32m",  # Green
    "WARNING": "\033[33m",  # Yellow
    "ERROR": "\033[31m",  # Red
    "CRITICAL": "\033[1;31m",  # Bold red
    "RESET": "\033[0m",
    "DIM": "\033[2m",
}

_NOISY_LOGGERS = (
    "httpx",
    "httpcore",
    "httpcore.http11",
    "httpcore.connection",
    "openai",
    "openai._base_client",
)


class ColorFormatter(logging.Formatter):
    """Colorized log formatter for terminal output."""

    def __init__(self, use_color: bool = True):
        super().__init__(
            fmt="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
            datefmt="%H:%M:%S",
        )
        self.use_color = use_color

    def format(self, record: logging.LogRecord) -> str:
        if not self.use_color:
            return super().format(record)

        level_color = COLORS.get(record.levelname, "")
        reset = COLORS["RESET"]
        dim = COLORS["DIM"]

        orig_levelname = record.levelname
        orig_name = record.name

        record.levelname = f"{level_color}{record.levelname}{reset}"
        record.name = f"{dim}{record.name}{reset}"
        try:
            return super().format(record)
        finally:
            record.levelname = orig_levelname
            record.name = orig_name


# Structured log fields forwarded from logger.info(..., extra={...})
_STRUCTURED_FIELDS = (
    "task_id",
    "thread_id",
    "agent",
    "model",
    "provider",
    "duration_ms",
    "stop_reason",
)


class StructuredFormatter(logging.Formatter):
    """JSON log formatter: one object per line.

    Extra fields passed via
    logger.info("msg", extra={"task_id": "...", "duration_ms": 42})
    are included at the top level for easy querying.

    Enable with: JOREL_LOG_FORMAT=json
    """

    def format(self, record: logging.LogRecord) -> str:
        entry: dict = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }

        for key in _STRUCTURED_FIELDS:
            if hasattr(record, key):
                entry[key] = getattr(record, key)

        if record.exc_info:
            entry["exc"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=str)


class GenerationTimer:
    """Measures one provider round trip in milliseconds.

    Usage:
        timer = GenerationTimer()
        response = await provider.generate_response(...)
        meta.duration_ms = timer.elapsed_ms()
    """

    def __init__(self):
        self._start = time.monotonic()

    def elapsed_ms(self) -> int:
        return int((time.monotonic() - self._start) * 1000)


def _should_use_color() -> bool:
    """Auto-detect color support."""
    env_val = os.getenv("JOREL_LOG_COLOR", "auto").lower()
    if env_val == "true":
        return True
    if env_val == "false":
        return False
    return hasattr(sys.stdout, "isatty") and sys.stdout.isatty()


def setup_logging(level: str | None = None) -> None:
    """Configure the root logger for an application embedding JorEl.

    The library itself never calls this; it only emits through
    logging.getLogger(__name__).

    Env vars:
        JOREL_LOG_LEVEL  — DEBUG / INFO / WARNING / ERROR (default: INFO)
        JOREL_LOG_COLOR  — true / false / auto (default: auto, TTY detection)
        JOREL_LOG_FORMAT — text / json (default: text)
    """
    level_name = (level or os.getenv("JOREL_LOG_LEVEL", "INFO")).upper()
    log_level = getattr(logging, level_name, logging.INFO)
    log_format = os.getenv("JOREL_LOG_FORMAT", "text").lower()

    root = logging.getLogger()
    root.setLevel(log_level)
    root.handlers.clear()

    if log_format == "json":
        formatter: logging.Formatter = StructuredFormatter()
    else:
        formatter = ColorFormatter(use_color=_should_use_color())

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(log_level)
    handler.setFormatter(formatter)
    root.addHandler(handler)

    # HTTP request/response chatter from the vendor SDKs
    for noisy_logger in _NOISY_LOGGERS:
        logging.getLogger(noisy_logger).setLevel(logging.WARNING)

    logging.getLogger("jorel").debug(
        "Logging configured (level=%s, format=%s)", level_name, log_format
    )
