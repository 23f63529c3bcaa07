"""
Logging set-up for the desktop client.

Everything goes to a rotating file under ~/.duo_desk/logs and to stdout.
The realtime and auth areas can be turned up on their own, e.g.
DUO_DESK_LOG_REALTIME_LEVEL=DEBUG to trace cable frames without the
GraphQL noise. Bearer tokens and OAuth secrets are masked before any
record is written.
"""

from __future__ import annotations

import logging
import logging.config
import os
import re
import sys
from pathlib import Path
from typing import Optional

from core.constants import APP_DATA_DIRNAME

LOG_FILENAME = "duo_desk.log"

# Logger prefixes that can be given their own level, and the variable for each
AREA_LOGGERS = {
    "realtime": ("core.realtime",),
    "auth": ("core.auth", "core.services.auth_session"),
}

# Third-party loggers that echo request URLs or frames at DEBUG
_THIRD_PARTY = ("httpx", "httpcore", "websockets")

_SECRET_PATTERNS = (
    re.compile(r"(Bearer\s+)[A-Za-z0-9\-._~+/]+=*", re.IGNORECASE),
    re.compile(r"((?:access|refresh)_token[\"']?\s*[:=]\s*[\"']?)[^\s\"'&,}]+"),
    re.compile(r"((?:code_verifier|client_secret|code)=)[^\s&]+"),
)


class RedactSecretsFilter(logging.Filter):
    """Rewrites a record's message with tokens replaced by a marker."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        redacted = message
        for pattern in _SECRET_PATTERNS:
            redacted = pattern.sub(r"\1[redacted]", redacted)
        if redacted != message:
            record.msg = redacted
            record.args = None
        return True


def level_from(value: Optional[str], default: int = logging.INFO) -> int:
    """Named level (any case) or the default for unknown names."""
    if not value:
        return default
    level = logging.getLevelName(value.strip().upper())
    return level if isinstance(level, int) else default


def _area_levels(overrides: Optional[dict[str, str]]) -> dict[str, int]:
    levels = {}
    for area, names in AREA_LOGGERS.items():
        value = (overrides or {}).get(area) or os.getenv(f"DUO_DESK_LOG_{area.upper()}_LEVEL")
        if value:
            for name in names:
                levels[name] = level_from(value)
    return levels


def build_logging_config(
    log_file: Optional[Path],
    file_level: int,
    console_level: int,
    area_levels: dict[str, int],
) -> dict:
    """dictConfig schema for the given sinks."""
    handlers = {
        "console": {
            "class": "logging.StreamHandler",
            "stream": "ext://sys.stdout",
            "level": console_level,
            "formatter": "plain",
            "filters": ["redact"],
        },
    }
    if log_file is not None:
        handlers["file"] = {
            "class": "logging.handlers.RotatingFileHandler",
            "filename": str(log_file),
            "maxBytes": 2 * 1024 * 1024,
            "backupCount": 5,
            "encoding": "utf-8",
            "level": file_level,
            "formatter": "plain",
            "filters": ["redact"],
        }

    loggers = {
        name: {"level": max(logging.INFO, file_level)} for name in _THIRD_PARTY
    }
    for name, level in area_levels.items():
        loggers[name] = {"level": level}

    root_level = min([file_level, console_level, *area_levels.values()])
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "filters": {"redact": {"()": RedactSecretsFilter}},
        "formatters": {
            "plain": {"format": "%(asctime)s %(levelname)s [%(name)s] %(message)s"},
        },
        "handlers": handlers,
        "loggers": loggers,
        "root": {"level": root_level, "handlers": list(handlers)},
    }


def _log_uncaught(exc_type, exc, tb) -> None:
    if not issubclass(exc_type, KeyboardInterrupt):
        logging.getLogger("duo_desk.uncaught").critical(
            "Unhandled exception", exc_info=(exc_type, exc, tb)
        )
    sys.__excepthook__(exc_type, exc, tb)


def configure_logging(
    log_dir: Optional[Path] = None,
    file_level: Optional[str] = None,
    console_level: Optional[str] = None,
    area_levels: Optional[dict[str, str]] = None,
) -> Path:
    """
    Install the application's handlers and return the log file path.

    Args:
        log_dir: Directory for the rotating log file
        file_level: Level name for the file (DUO_DESK_LOG_FILE_LEVEL)
        console_level: Level name for stdout (DUO_DESK_LOG_CONSOLE_LEVEL)
        area_levels: Per-area level names keyed by "realtime" or "auth"
    """
    log_dir = log_dir or (Path.home() / APP_DATA_DIRNAME / "logs")
    log_file = log_dir / LOG_FILENAME
    file_value = level_from(file_level or os.getenv("DUO_DESK_LOG_FILE_LEVEL"))
    console_value = level_from(console_level or os.getenv("DUO_DESK_LOG_CONSOLE_LEVEL"))
    areas = _area_levels(area_levels)

    file_error = None
    try:
        log_dir.mkdir(parents=True, exist_ok=True)
        logging.config.dictConfig(build_logging_config(log_file, file_value, console_value, areas))
    except (OSError, ValueError) as exc:
        file_error = exc
        logging.config.dictConfig(build_logging_config(None, file_value, console_value, areas))

    logging.captureWarnings(True)
    sys.excepthook = _log_uncaught

    logger = logging.getLogger(__name__)
    if file_error is not None:
        logger.warning("File logging disabled: %s", file_error)
    logger.debug("Logging initialized at %s", log_file)
    return log_file
