"""Shared pytest fixtures."""

import logging

import pytest

from numa_placement import get_settings
from numa_placement.config import PACKAGE_LOGGER


@pytest.fixture(autouse=True)
def fresh_settings_and_logging():
    """Re-read settings per test and detach handlers added by configure_logging."""
    get_settings.cache_clear()
    package_logger = logging.getLogger(PACKAGE_LOGGER)
    handlers = list(package_logger.handlers)
    level = package_logger.level
    yield
    for handler in list(package_logger.handlers):
        if handler not in handlers:
            package_logger.removeHandler(handler)
            handler.close()
    package_logger.setLevel(level)
    get_settings.cache_clear()
