"""Fixtures for market data tests."""

import httpx
import pytest
from fakes import FakeClock, FakeConnector, FakeSleep, RecordingHandler


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def fake_sleep(clock):
    return FakeSleep(clock)


@pytest.fixture
def connector():
    return FakeConnector()


@pytest.fixture
def handler():
    return RecordingHandler()


@pytest.fixture
def mock_client(handler):
    return httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="http://proxy.test")
