"""Logging setup shared by every Blanket Watch module."""

import logging
import os

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def app_logger(name: str) -> logging.Logger:
    """
    Return a module logger under the 'blanket_watch' hierarchy.

    The root handler is attached once; the level comes from the
    BLANKET_WATCH_LOG_LEVEL environment variable (default WARNING).
    """
    root = logging.getLogger("blanket_watch")
    if not root.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        root.addHandler(handler)
        root.setLevel(os.environ.get("BLANKET_WATCH_LOG_LEVEL", "WARNING").upper())
        root.propagate = False

    if name == "blanket_watch" or name.startswith("blanket_watch."):
        return logging.getLogger(name)
    return root.getChild(name)
