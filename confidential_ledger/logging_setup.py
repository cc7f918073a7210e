"""Logging configuration for applications embedding the ledger."""
from __future__ import annotations

import logging

LOG_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"


def configure_logging(level: str = "INFO") -> None:
    """Set the root log level and install one stream handler.

    Unknown level names fall back to INFO. Calling this again replaces the
    handler it installed earlier instead of adding a second one.
    """
    numeric = getattr(logging, str(level).upper(), None)
    if not isinstance(numeric, int):
        numeric = logging.INFO

    root = logging.getLogger()
    root.setLevel(numeric)

    for handler in list(root.handlers):
        if getattr(handler, "_confidential_ledger", False):
            root.removeHandler(handler)

    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    handler._confidential_ledger = True
    root.addHandler(handler)
