"""Logging for chutor: one named logger writing timestamped lines to stderr."""

from __future__ import annotations

import logging
import sys


def setup_logging(verbose: bool = False) -> logging.Logger:
    """Attach the stderr handler to the chutor logger on first use.

    Later calls keep the existing handler and only ever lower the
    threshold (to DEBUG when verbose).
    """
    logger = logging.getLogger("chutor")
    if logger.handlers:
        if verbose:
            logger.setLevel(logging.DEBUG)
            for handler in logger.handlers:
                handler.setLevel(logging.DEBUG)
        return logger

    level = logging.DEBUG if verbose else logging.INFO
    logger.setLevel(level)

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)

    fmt = logging.Formatter(
        "[%(asctime)s] %(levelname)-7s %(message)s",
        datefmt="%H:%M:%S",
    )
    handler.setFormatter(fmt)
    logger.addHandler(handler)
    return logger


def get_logger() -> logging.Logger:
    """The shared chutor logger. It has no handler until setup_logging runs."""
    return logging.getLogger("chutor")
