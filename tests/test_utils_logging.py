"""
Tests for kline_backtester/utils/logging.py
"""

import logging

import pytest

from kline_backtester.utils.logging import PACKAGE_LOGGER, configure_logging


@pytest.fixture
def clean_logger():
    logger = logging.getLogger(PACKAGE_LOGGER)
    saved_handlers, saved_level = list(logger.handlers), logger.level
    logger.handlers = []
    yield logger
    logger.handlers = saved_handlers
    logger.setLevel(saved_level)


def test_configure_logging_attaches_one_handler(clean_logger):
    logger = configure_logging()
    configure_logging("debug")

    assert logger is clean_logger
    assert len(logger.handlers) == 1
    assert logger.level == logging.DEBUG


def test_module_loggers_inherit_package_level(clean_logger):
    configure_logging(logging.WARNING)
    child = logging.getLogger("kline_backtester.backtesting.engine")

    assert child.getEffectiveLevel() == logging.WARNING


def test_unknown_level_name_rejected(clean_logger):
    with pytest.raises(ValueError, match="Unknown log level"):
        configure_logging("chatty")
