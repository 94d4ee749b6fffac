"""Tests for logger setup."""

import sys

from loguru import logger

from frameproof.core.loggingx import init_logger, log_duration


def test_init_logger_writes_file(tmp_path):
    log_file = tmp_path / "logs" / "frameproof.log"
    try:
        init_logger(level="DEBUG", log_file=log_file)
        logger.debug("fingerprint run started")
        with log_duration("unit"):
            pass
    finally:
        logger.remove()
        logger.add(sys.stderr)

    content = log_file.read_text(encoding="utf-8")
    assert "Logger initialized with level: DEBUG" in content
    assert "fingerprint run started" in content
    assert "Operation 'unit' took" in content


def test_log_duration_logs_on_error():
    messages = []
    sink_id = logger.add(messages.append, level="DEBUG")
    try:
        try:
            with log_duration("failing"):
                raise KeyError("boom")
        except KeyError:
            pass
    finally:
        logger.remove(sink_id)

    assert any("Operation 'failing' took" in str(m) for m in messages)
