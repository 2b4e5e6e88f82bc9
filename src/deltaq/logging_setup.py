"""Stdlib logging configuration for the CLI and workers."""

from __future__ import annotations

import logging

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def configure_logging(*, verbose: bool = False, quiet: bool = False) -> None:
    """Install one stream handler on the ``deltaq`` logger.

    ``quiet`` wins over ``verbose``: only errors are shown.
    Calling this twice replaces the previous handler.
    """
    if quiet:
        level = logging.ERROR
    elif verbose:
        level = logging.DEBUG
    else:
        level = logging.INFO

    root = logging.getLogger("deltaq")
    for handler in list(root.handlers):
        if getattr(handler, "_deltaq_handler", False):
            root.removeHandler(handler)

    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
    handler._deltaq_handler = True  # type: ignore[attr-defined]
    root.addHandler(handler)
    root.setLevel(level)
