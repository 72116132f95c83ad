"""
Logging setup for scripts and notebooks.

Library modules only ever create `logging.getLogger(__name__)` and never
configure handlers themselves; whoever runs a backtest decides how much to
see. `configure_logging` is the one-line setup for that caller.
"""

import logging
from typing import Union

LOG_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"

PACKAGE_LOGGER = "kline_backtester"


def configure_logging(level: Union[int, str] = logging.INFO) -> logging.Logger:
    """
    Attach a single stream handler to the package logger.

    Calling it again only changes the level; handlers are never duplicated.

    Args:
        level: Logging level, as an int or a name such as "DEBUG".

    Returns:
        The package logger.
    """
    if isinstance(level, str):
        name = level.upper()
        level = logging.getLevelName(name)
        if not isinstance(level, int):
            raise ValueError(f"Unknown log level: {name}")

    logger = logging.getLogger(PACKAGE_LOGGER)
    logger.setLevel(level)
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(handler)
    return logger
