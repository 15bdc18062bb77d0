"""Logging helpers.

The library never configures handlers on its own; applications (or the
``ohttpc`` command with ``--debug``) decide where records go.
"""

import logging
import sys
from typing import TextIO

PACKAGE_LOGGER = "ohttp_client"

logging.getLogger(PACKAGE_LOGGER).addHandler(logging.NullHandler())


def get_logger(name: str) -> logging.Logger:
    """Return a logger namespaced under the package logger."""
    if name != PACKAGE_LOGGER and not name.startswith(PACKAGE_LOGGER + "."):
        name = f"{PACKAGE_LOGGER}.{name}"
    return logging.getLogger(name)


def enable_debug_logging(stream: TextIO | None = None) -> logging.Handler:
    """Send package debug records to ``stream`` (stderr by default)."""
    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(logging.Formatter("%(name)s: %(message)s"))
    logger = logging.getLogger(PACKAGE_LOGGER)
    logger.addHandler(handler)
    logger.setLevel(logging.DEBUG)
    return handler
