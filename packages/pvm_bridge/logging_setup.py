"""Logger wiring for ``pvm_bridge``.

Every engine module logs under ``pvm_bridge.*``. Nothing is printed when the
package is used as a library; the ``pvm-bridge`` CLI turns output on by
calling :func:`configure_logging`.
"""

from __future__ import annotations

import logging
import os
import sys
from typing import IO

PACKAGE_LOGGER_NAME = "pvm_bridge"
LEVEL_ENV_VAR = "PVM_BRIDGE_LOG_LEVEL"
DEFAULT_FORMAT = "%(asctime)s %(name)s %(levelname)s %(message)s"

_configured = False


def resolve_level(level: int | str | None) -> int:
    """Translate ``level`` into a numeric logging level.

    Accepts ints, digit strings, and level names (case-insensitive). ``None``
    or an unrecognised name falls back to ``PVM_BRIDGE_LOG_LEVEL`` and then to
    ``logging.INFO``.
    """

    if isinstance(level, int):
        return level
    if isinstance(level, str):
        name = level.strip().upper()
        if name.isdigit():
            return int(name)
        numeric = logging.getLevelName(name)
        if isinstance(numeric, int):
            return numeric
    env_val = os.getenv(LEVEL_ENV_VAR)
    if env_val and env_val != level:
        return resolve_level(env_val)
    return logging.INFO


def configure_logging(
    level: int | str | None = None,
    *,
    fmt: str | None = None,
    stream: IO[str] | None = None,
) -> logging.Logger:
    """Send ``pvm_bridge.*`` records to ``stream`` (stderr by default).

    Only the first call has an effect. ``level=None`` reads
    ``PVM_BRIDGE_LOG_LEVEL`` and otherwise uses ``INFO``.
    """

    global _configured
    logger = logging.getLogger(PACKAGE_LOGGER_NAME)
    if _configured:
        return logger

    for handler in list(logger.handlers):
        if isinstance(handler, logging.NullHandler):
            logger.removeHandler(handler)

    numeric = resolve_level(level)
    handler = logging.StreamHandler(stream if stream is not None else sys.stderr)
    handler.setLevel(numeric)
    handler.setFormatter(logging.Formatter(fmt or DEFAULT_FORMAT))

    logger.setLevel(numeric)
    logger.addHandler(handler)
    logger.propagate = False

    _configured = True
    return logger


def get_logger(name: str) -> logging.Logger:
    """Logger for ``name``; a ``NullHandler`` keeps it quiet until configured."""

    package_logger = logging.getLogger(PACKAGE_LOGGER_NAME)
    if not _configured and not package_logger.handlers:
        package_logger.addHandler(logging.NullHandler())
    return logging.getLogger(name)
