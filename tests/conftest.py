"""
Shared test fixtures

- fixed reference day and product factory
- in-memory SQLite state store
- fake channels and timer tasks (no threads, no sleeping)
"""

from datetime import date, datetime, time, timedelta, timezone

import pytest

from expiry_notifier.channels import NotificationChannel
from expiry_notifier.classifier import ExpiryClassifier
from expiry_notifier.db import SqliteKeyValueStore, init_db
from expiry_notifier.models import Product
from expiry_notifier.state import NotificationStateStore

UTC = timezone.utc

# Thursday
TODAY = date(2024, 3, 14)


@pytest.fixture
def today():
    return TODAY


@pytest.fixture
def classifier():
    """Classifier whose calendar days are UTC days."""
    return ExpiryClassifier(UTC)


@pytest.fixture
def make_product():
    """Factory: product expiring ``days`` after TODAY (noon UTC)."""
    def _make(name, days, brand="", product_id=None):
        expiry = datetime.combine(TODAY + timedelta(days=days), time(12, 0), tzinfo=UTC)
        return Product(id=product_id or name.lower(), name=name, expiry=expiry, brand=brand)
    return _make


@pytest.fixture
def kv_store():
    store = SqliteKeyValueStore(init_db(":memory:"))
    yield store
    store.close()


@pytest.fixture
def state_store(kv_store):
    return NotificationStateStore(kv_store)


class FakeChannel(NotificationChannel):
    """Channel recording what it was asked to send."""

    def __init__(self, name="fake", available=True, results=None, requires_permission=True):
        self.name = name
        self.available = available
        self.results = list(results or [])   # bools or exceptions, consumed in order
        self.requires_permission = requires_permission
        self.sent = []

    def is_available(self):
        return self.available

    def send(self, message):
        self.sent.append(message)
        result = self.results.pop(0) if self.results else True
        if isinstance(result, Exception):
            raise result
        return result


class FakeTask:
    """Stand-in for PeriodicTask: never starts a thread."""

    instances = []

    def __init__(self, interval, callback, first_delay=None, name="", next_delay=None):
        self.interval = interval
        self.callback = callback
        self.first_delay = first_delay
        self.next_delay = next_delay
        self.started = False
        self.cancelled = False
        FakeTask.instances.append(self)

    def start(self):
        self.started = True
        return self

    def cancel(self):
        self.cancelled = True

    def join(self, timeout=None):
        pass

    def fire(self):
        """Simulate the timer elapsing."""
        self.callback(self)


@pytest.fixture
def fake_channel():
    return FakeChannel


@pytest.fixture
def fake_task():
    FakeTask.instances = []
    return FakeTask
