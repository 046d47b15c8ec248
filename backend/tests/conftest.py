"""Pytest configuration and fixtures."""

import logging

import pytest


@pytest.fixture(autouse=True)
def _market_debug_logging(caplog):
    """Capture market subsystem logs at DEBUG so tests can assert on them."""
    caplog.set_level(logging.DEBUG, logger="tickerdesk.market")
    return caplog
