import logging
import os
import sys

LOGGER_NAME = "layerpatch"
LOG_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%dT%H:%M:%S"


def level_from_env(default: int = logging.WARNING) -> int:
    """Level named by LAYERPATCH_LOG_LEVEL, or ``default`` when unset or unknown."""
    name = os.getenv("LAYERPATCH_LOG_LEVEL", "").strip().upper()
    if not name:
        return default
    level = logging.getLevelName(name)
    return level if isinstance(level, int) else default


def setup_logging(level: int | None = None, stream=None) -> logging.Logger:
    """
    Attach a stderr handler to the ``layerpatch`` logger.

    A handler installed by an earlier call is replaced, so repeated CLI
    invocations in one process do not print every line twice. Propagation
    is turned off for the same reason when a host build tool configures the
    root logger.
    """

    if level is None:
        level = level_from_env()

    logger = logging.getLogger(LOGGER_NAME)
    for handler in list(logger.handlers):
        if getattr(handler, "_layerpatch", False):
            logger.removeHandler(handler)

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
    handler._layerpatch = True
    logger.addHandler(handler)
    logger.setLevel(level)
    logger.propagate = False
    return logger
