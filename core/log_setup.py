"""Logging configuration helpers.

Library modules only create module-level loggers; applications (scripts,
tests) decide where records go by calling configure_logging().
"""
from __future__ import annotations
import logging
from typing import Union

LOG_FORMAT = "[%(asctime)s] %(levelname)s %(name)s: %(message)s"
DATE_FORMAT = "%H:%M:%S"


def configure_logging(level: Union[int, str] = logging.INFO) -> logging.Handler:
    """Install a stream handler on the root logger.

    Calling it again replaces the handler installed by a previous call instead
    of stacking a second one.

    Args:
        level: Logging level (e.g. logging.INFO or "DEBUG").

    Returns:
        The installed handler.
    """
    root = logging.getLogger()
    for handler in list(root.handlers):
        if getattr(handler, "_installed_by_configure_logging", False):
            root.removeHandler(handler)

    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(LOG_FORMAT, DATE_FORMAT))
    handler._installed_by_configure_logging = True  # type: ignore[attr-defined]
    root.addHandler(handler)
    root.setLevel(level)
    return handler
