"""Tests for structlog setup."""

import json
import logging

import pytest
import structlog

from tasktree import get_logger, setup_logging
from tasktree.core.config import LoggingConfig


@pytest.fixture(autouse=True)
def reset_logging():
    yield
    structlog.reset_defaults()
    root_logger = logging.getLogger("tasktree")
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)
        handler.close()
    root_logger.setLevel(logging.NOTSET)


def test_json_events_written_to_file(tmp_path):
    log_file = tmp_path / "logs" / "tasktree.log"
    setup_logging(
        LoggingConfig(
            json_logs=True,
            log_to_console=False,
            log_to_file=True,
            log_file_path=str(log_file),
        )
    )

    get_logger("tests").info("Task created", task_number="1.0")
    get_logger().debug("Below threshold")

    for handler in logging.getLogger("tasktree").handlers:
        handler.flush()

    lines = log_file.read_text(encoding="utf-8").splitlines()
    assert len(lines) == 1
    event = json.loads(lines[0])
    assert event["event"] == "Task created"
    assert event["task_number"] == "1.0"
    assert event["component"] == "tests"
    assert event["level"] == "info"


def test_level_applies_to_handlers(tmp_path):
    setup_logging(LoggingConfig(log_level="warning", log_to_console=True))
    root_logger = logging.getLogger("tasktree")
    assert root_logger.level == logging.WARNING
    assert len(root_logger.handlers) == 1

    setup_logging(LoggingConfig(log_level="debug", log_to_console=True))
    assert len(root_logger.handlers) == 1
