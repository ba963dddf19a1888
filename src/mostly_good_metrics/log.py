"""
Package logger setup.

Modules log through logging.getLogger(__name__). The package logger carries a
NullHandler; enable_debug_logging attaches a stream handler at DEBUG.
"""

import logging
from typing import Optional

LOGGER_NAME = "mostly_good_metrics"
LOG_FORMAT = "[MostlyGoodMetrics] %(levelname)s %(name)s: %(message)s"

logger = logging.getLogger(LOGGER_NAME)
logger.addHandler(logging.NullHandler())

_debug_handler: Optional[logging.Handler] = None


def set_debug_logging(enabled: bool, handler: Optional[logging.Handler] = None) -> None:
    """Turn SDK debug output on or off.

    Enabling without a handler keeps a previously installed one (the CLI
    installs a RichHandler before configuring the SDK).
    """
    global _debug_handler
    if enabled and handler is None and _debug_handler is not None:
        logger.setLevel(logging.DEBUG)
        return

    if _debug_handler is not None:
        logger.removeHandler(_debug_handler)
        _debug_handler = None

    if not enabled:
        logger.setLevel(logging.WARNING)
        return

    if handler is None:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
    _debug_handler = handler
    logger.addHandler(handler)
    logger.setLevel(logging.DEBUG)


def debug_logging_enabled() -> bool:
    return logger.level == logging.DEBUG
