"""Logging setup for the taskgraph command line and long-running tailer.

Library modules only call ``logging.getLogger(__name__)``; handlers are
attached here, once, by whichever entry point runs.
"""

from __future__ import annotations

import logging
from typing import Union

LOGGER_NAME = "taskgraph"
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(level: Union[int, str] = logging.INFO) -> logging.Logger:
    """Attach a stderr handler to the package logger and set its level.

    Safe to call more than once: the handler is only added the first time,
    later calls just change the level.
    """
    logger = logging.getLogger(LOGGER_NAME)
    if isinstance(level, str):
        level = level.upper()
    logger.setLevel(level)

    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(handler)
    return logger
