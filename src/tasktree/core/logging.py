"""Structured logging setup built on structlog and the stdlib logging module."""

from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import Optional

import structlog

from tasktree.core.config import LoggingConfig

_LOGGER_NAME = "tasktree"


def setup_logging(config: Optional[LoggingConfig] = None) -> None:
    """
    Configure structlog and the stdlib handlers it renders through.

    Call once, early, from the process that owns the store.
    """
    config = config or LoggingConfig()
    level = getattr(logging, config.log_level)

    renderer = (
        structlog.processors.JSONRenderer()
        if config.json_logs
        else structlog.dev.ConsoleRenderer(colors=False)
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    root_logger = logging.getLogger(_LOGGER_NAME)
    root_logger.setLevel(level)
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)

    formatter = logging.Formatter("%(message)s")

    if config.log_to_console:
        console = logging.StreamHandler(sys.stderr)
        console.setLevel(level)
        console.setFormatter(formatter)
        root_logger.addHandler(console)

    if config.log_to_file:
        log_path = Path(config.log_file_path)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(str(log_path), encoding="utf-8")
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)


def get_logger(component: Optional[str] = None) -> "structlog.stdlib.BoundLogger":
    """Return a structlog logger bound to the tasktree namespace."""
    logger = structlog.get_logger(_LOGGER_NAME)
    if component:
        logger = logger.bind(component=component)
    return logger


__all__ = ["setup_logging", "get_logger"]
