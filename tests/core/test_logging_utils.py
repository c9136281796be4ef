from __future__ import annotations

import json
import logging
from pathlib import Path

from slashbot.core.logging_utils import log_event, setup_rotating_logger


def test_log_event_serializes_fields_and_drops_none(caplog) -> None:
    logger = logging.getLogger("test.log_event")
    with caplog.at_level(logging.INFO, logger="test.log_event"):
        log_event(logger, logging.INFO, "discord.test.event", count=2, skipped=None)

    record = caplog.records[-1]
    event, _, payload = record.getMessage().partition(" ")
    assert event == "discord.test.event"
    assert json.loads(payload) == {"count": 2}


def test_log_event_expands_exceptions(caplog) -> None:
    logger = logging.getLogger("test.log_event.exc")
    try:
        raise ValueError("bad value")
    except ValueError as exc:
        with caplog.at_level(logging.WARNING, logger="test.log_event.exc"):
            log_event(logger, logging.WARNING, "handler.failed", exc=exc)
            log_event(logger, logging.ERROR, "handler.crashed", exc=exc)

    warning, error = caplog.records[-2:]
    assert json.loads(warning.getMessage().partition(" ")[2]) == {
        "exc": "bad value",
        "exc_type": "ValueError",
    }
    assert warning.exc_info is None
    assert error.exc_info is not None


def test_log_event_without_fields_is_bare_event(caplog) -> None:
    logger = logging.getLogger("test.log_event.bare")
    with caplog.at_level(logging.INFO, logger="test.log_event.bare"):
        log_event(logger, logging.INFO, "discord.bot.stopped")
    assert caplog.records[-1].getMessage() == "discord.bot.stopped"


def test_disabled_level_is_skipped(caplog) -> None:
    logger = logging.getLogger("test.log_event.quiet")
    logger.setLevel(logging.WARNING)
    try:
        with caplog.at_level(logging.WARNING, logger="test.log_event.quiet"):
            log_event(logger, logging.DEBUG, "noise", value=1)
        assert not [r for r in caplog.records if r.name == "test.log_event.quiet"]
    finally:
        logger.setLevel(logging.NOTSET)


def test_setup_rotating_logger_writes_file(tmp_path: Path) -> None:
    path = tmp_path / "logs" / "bot.log"
    logger = setup_rotating_logger("test.rotating", path, level="debug")
    try:
        log_event(logger, logging.DEBUG, "discord.test.file", ok=True)
        for handler in logger.handlers:
            handler.flush()
        assert logger.level == logging.DEBUG
        assert logger.propagate is False
        assert "discord.test.file" in path.read_text(encoding="utf-8")
    finally:
        for handler in list(logger.handlers):
            logger.removeHandler(handler)
            handler.close()
