from __future__ import annotations

import logging
import sys
from typing import Any, Optional

import structlog

from ..config import LoggingSettings

RESET = "\033[0m"
BOLD = "\033[1m"
DIM = "\033[2m"
GRAY = "\033[90m"
EVENT = "\033[96m"
KEY = "\033[94m"
NUMBER = "\033[93m"
STRING = "\033[92m"
PLAIN = "\033[37m"

LEVEL_COLORS = {
    "DEBUG": "\033[36m",
    "INFO": "\033[32m",
    "WARNING": "\033[33m",
    "ERROR": "\033[31m",
    "CRITICAL": "\033[35m",
}

NOISY_LOGGERS = {
    "httpx": logging.WARNING,
    "httpcore": logging.WARNING,
    "aiosqlite": logging.WARNING,
    "PIL": logging.WARNING,
    "aiogram": logging.INFO,
}


def _paint(value: Any) -> str:
    if value is None:
        return f"{DIM}None{RESET}"
    if isinstance(value, (bool, int, float)):
        return f"{NUMBER}{value}{RESET}"
    if isinstance(value, str):
        return f"{STRING}{value}{RESET}"
    return f"{PLAIN}{value}{RESET}"


class ColoredConsoleRenderer:
    """
    Human-readable structlog renderer:
    ``[12:00:01] INFO     escalation_decision | chat_id=7 | action=warn``.

    Falls back to JSON lines when stdout is not a terminal.
    """

    def __init__(self, colored: bool = True) -> None:
        self.colored = colored and sys.stdout.isatty()
        self._json = structlog.processors.JSONRenderer()

    def __call__(self, logger: Any, name: str, event_dict: dict) -> str:
        if not self.colored:
            return self._json(logger, name, event_dict)
        timestamp = event_dict.pop("timestamp", "")
        level = str(event_dict.pop("level", "info")).upper()
        event = event_dict.pop("event", "")
        parts = [f"{GRAY}[{timestamp}]{RESET}"] if timestamp else []
        parts.append(f"{LEVEL_COLORS.get(level, LEVEL_COLORS['INFO'])}{BOLD}{level:8}{RESET}")
        parts.append(f"{EVENT}{event}{RESET}")
        if event_dict:
            separator = f" {DIM}|{RESET} "
            parts.append(
                f"{DIM}|{RESET} " + separator.join(f"{KEY}{k}{RESET}={_paint(v)}" for k, v in event_dict.items())
            )
        return " ".join(parts)


class StdlibColoredFormatter(logging.Formatter):
    """Same look as ColoredConsoleRenderer for aiogram and other stdlib loggers."""

    def format(self, record: logging.LogRecord) -> str:
        if not sys.stdout.isatty():
            return super().format(record)
        color = LEVEL_COLORS.get(record.levelname, LEVEL_COLORS["INFO"])
        return (
            f"{GRAY}[{self.formatTime(record, '%H:%M:%S')}]{RESET} "
            f"{color}{BOLD}{record.levelname:8}{RESET} "
            f"{DIM}{record.name}{RESET} {PLAIN}{record.getMessage()}{RESET}"
        )


def setup_logging(settings: Optional[LoggingSettings] = None) -> None:
    """
    Configure structlog and the stdlib root logger once per process.

    Args:
        settings: level name and output format; defaults to INFO with colors
    """
    settings = settings or LoggingSettings()
    level = getattr(logging, settings.level.upper(), logging.INFO)
    renderer = structlog.processors.JSONRenderer() if settings.use_json else ColoredConsoleRenderer()

    structlog.configure(
        processors=[
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="%H:%M:%S", utc=False),
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler()
    handler.setFormatter(StdlibColoredFormatter())
    logging.basicConfig(level=level, handlers=[handler], force=True)

    for name, noisy_level in NOISY_LOGGERS.items():
        logging.getLogger(name).setLevel(max(level, noisy_level))
