"""Logging setup for the aimailman daemon and CLI."""

from __future__ import annotations

import logging
import sys
import zlib
from logging.handlers import RotatingFileHandler
from pathlib import Path

from .config import ConfigError, LoggingConfig

FILE_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
MAIN_LOG_NAME = "aimailman.log"
DEBUG_LOG_NAME = "debug.log"
MAX_LOG_BYTES = 5_000_000
LOG_BACKUPS = 5

_LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "WARN": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}


class ConsoleFormatter(logging.Formatter):
    """Prefix console lines with a single-character, optionally coloured level marker."""

    SYMBOLS: dict[int, tuple[str, str]] = {
        logging.DEBUG: ("·", "\x1b[2;37m"),
        logging.INFO: ("+", "\x1b[32m"),
        logging.WARNING: ("!", "\x1b[33m"),
        logging.ERROR: ("X", "\x1b[31m"),
        logging.CRITICAL: ("X", "\x1b[1;31m"),
    }
    RESET = "\x1b[0m"

    def __init__(self, use_color: bool) -> None:
        super().__init__("%(message)s")
        self.use_color = use_color

    def format(self, record: logging.LogRecord) -> str:
        symbol, color = self.SYMBOLS.get(record.levelno, ("?", ""))
        message = super().format(record)
        if not self.use_color or not color:
            return f"{symbol} {message}"
        return f"{color}{symbol}{self.RESET} {message}"


def configure_logging(logging_config: LoggingConfig, root_dir: Path) -> Path:
    """Install file and console handlers on the root logger; return the log directory."""

    level = level_from_string(logging_config.level)
    log_dir = (root_dir / "logs").expanduser()
    log_dir.mkdir(parents=True, exist_ok=True)

    handlers: list[logging.Handler] = [
        _file_handler(log_dir / MAIN_LOG_NAME, logging.INFO),
        _console_handler(),
    ]
    if logging_config.debug_file:
        handlers.append(_file_handler(log_dir / DEBUG_LOG_NAME, logging.DEBUG))

    root_level = logging.DEBUG if logging_config.debug_file else level
    logging.basicConfig(level=root_level, handlers=handlers, force=True)
    # The console follows the configured level even when debug.log needs DEBUG records.
    handlers[1].setLevel(level)
    for noisy in ("httpx", "httpcore", "openai"):
        logging.getLogger(noisy).setLevel(max(level, logging.WARNING))
    return log_dir


def level_from_string(level: str) -> int:
    try:
        return _LEVELS[level.strip().upper()]
    except KeyError as exc:
        raise ConfigError(f"Unknown log level: {level}") from exc


def short_id(message_id: str | None) -> str:
    """Return a stable 8-digit hex digest of a long message id for log lines."""

    if not message_id:
        return "00000000"
    return f"{zlib.crc32(message_id.encode('utf-8')) & 0xFFFFFFFF:08X}"


def _file_handler(path: Path, level: int) -> logging.Handler:
    handler = RotatingFileHandler(
        path, maxBytes=MAX_LOG_BYTES, backupCount=LOG_BACKUPS, encoding="utf-8"
    )
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(FILE_FORMAT))
    return handler


def _console_handler() -> logging.Handler:
    handler = logging.StreamHandler(sys.stderr)
    stream = getattr(handler, "stream", None)
    use_color = bool(getattr(stream, "isatty", lambda: False)())
    handler.setFormatter(ConsoleFormatter(use_color))
    return handler


__all__ = ["ConsoleFormatter", "configure_logging", "level_from_string", "short_id"]
