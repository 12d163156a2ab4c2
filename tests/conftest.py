"""Shared pytest fixtures for the notifier tests."""

import pytest

from config import PolicyConfig
from dispatcher import NotificationDispatcher
from ledger import NotificationLedger
from logger import DispatchMetrics
from helpers import FakeClock, FakeTransport


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def policy():
    return PolicyConfig()


@pytest.fixture
def ledger_path(tmp_path):
    return str(tmp_path / "ledger.db")


@pytest.fixture
def ledger(ledger_path):
    led = NotificationLedger(ledger_path)
    yield led
    led.close()


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def dispatcher(ledger, transport, policy, clock):
    return NotificationDispatcher(
        ledger, transport, policy, metrics=DispatchMetrics(),
        send_interval=0, now=clock,
    )
