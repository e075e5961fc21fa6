"""Logging configuration for bibshelf.

Modules log through ``logging.getLogger(__name__)``; everything below the
``bibshelf`` package logger goes to stderr once ``configure_logging`` ran.

BIBSHELF_LOG_LEVEL selects the level (DEBUG, INFO, WARNING, ERROR), WARNING
by default. Rename audit lines are not log records and are printed
regardless of the level.
"""

import logging
import os
import sys

_PACKAGE_LOGGER = "bibshelf"
_LEVEL_ENV = "BIBSHELF_LOG_LEVEL"
_FORMAT = "[%(levelname)s] %(name)s: %(message)s"


def _level_from_env() -> int:
    name = os.environ.get(_LEVEL_ENV, "").strip().upper()
    level = logging.getLevelName(name) if name else logging.WARNING
    # getLevelName returns a "Level x" string for unknown names.
    return level if isinstance(level, int) else logging.WARNING


def _apply_level(logger: logging.Logger, level: int) -> None:
    logger.setLevel(level)
    for handler in logger.handlers:
        handler.setLevel(level)


def configure_logging() -> None:
    """Attach a stderr handler to the package logger.

    Called once by the CLI in ``main``; later calls are no-ops.
    """
    logger = logging.getLogger(_PACKAGE_LOGGER)
    if logger.handlers:
        return

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(_FORMAT))
    logger.addHandler(handler)
    _apply_level(logger, _level_from_env())

    # Records stop here so an application embedding bibshelf sees them once.
    logger.propagate = False


def set_quiet_mode(quiet: bool) -> None:
    """Only show errors while ``quiet``; otherwise restore the configured level."""
    level = logging.ERROR if quiet else _level_from_env()
    _apply_level(logging.getLogger(_PACKAGE_LOGGER), level)
