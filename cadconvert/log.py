"""Logging setup for the cadconvert package."""

from __future__ import annotations

import logging

_LOG_CONFIGURED = False


def configure_logging(level: int = logging.WARNING) -> logging.Logger:
    """Attach a console handler to the ``cadconvert`` logger once.

    Later calls only adjust the level.
    """
    global _LOG_CONFIGURED
    root_logger = logging.getLogger("cadconvert")
    root_logger.setLevel(level)
    if _LOG_CONFIGURED:
        return root_logger

    formatter = logging.Formatter(
        fmt="%(asctime)s [%(levelname)s] %(name)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)

    root_logger.addHandler(console_handler)
    root_logger.propagate = False

    _LOG_CONFIGURED = True
    return root_logger
