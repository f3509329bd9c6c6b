from __future__ import annotations

import logging
import zlib
from pathlib import Path

import pytest

from aimailman.config import ConfigError, LoggingConfig
from aimailman.logging import ConsoleFormatter, configure_logging, level_from_string, short_id


@pytest.fixture(autouse=True)
def _restore_root_logger():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    for handler in root.handlers:
        handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)


def test_short_id_is_crc32_hex() -> None:
    message_id = "AAMkAGI2TG93AAA="

    assert short_id(message_id) == f"{zlib.crc32(message_id.encode()):08X}"
    assert len(short_id(message_id)) == 8
    assert short_id(message_id) == short_id(message_id).upper()


def test_short_id_of_empty_id() -> None:
    assert short_id("") == "00000000"
    assert short_id(None) == "00000000"


def test_configure_logging_creates_log_files(tmp_path: Path) -> None:
    log_dir = configure_logging(LoggingConfig(level="info", debug_file=True), tmp_path)

    logging.getLogger("aimailman.test").debug("debug line")
    logging.getLogger("aimailman.test").info("info line")
    for handler in logging.getLogger().handlers:
        handler.flush()

    assert log_dir == tmp_path / "logs"
    main_log = (log_dir / "aimailman.log").read_text(encoding="utf-8")
    debug_log = (log_dir / "debug.log").read_text(encoding="utf-8")
    assert "info line" in main_log
    assert "debug line" not in main_log
    assert "debug line" in debug_log


def test_unknown_level_is_rejected() -> None:
    with pytest.raises(ConfigError):
        level_from_string("chatty")


def test_console_formatter_symbols() -> None:
    record = logging.LogRecord("x", logging.WARNING, __file__, 1, "careful", None, None)

    assert ConsoleFormatter(use_color=False).format(record) == "! careful"
    assert "\x1b[" in ConsoleFormatter(use_color=True).format(record)
