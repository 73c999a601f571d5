"""
Shared test fixtures for the SafeGuard core.

This module provides reusable fixtures for:
- A controllable clock (frozen, advanced explicitly by tests)
- Location sample factories
- Contact registries with verified contacts
- A fully wired AppState backed by in-memory collaborators
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Dict

import pytest

from common.storage import InMemoryStore
from libs.audit_logger import AuditTrail
from libs.config import SafetySettings
from models.location import LocationSample
from services.notification.senders import LoggingSender
from services.sos.dispatcher import AppState
from services.user_management.contacts import ContactRegistry

# Trinity College Dublin, front gate
BASE_LAT = 53.3438
BASE_LNG = -6.2546


class FakeClock:
    """Callable clock that only moves when a test advances it."""

    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta: Any) -> datetime:
        self.now = self.now + timedelta(**delta)
        return self.now


@pytest.fixture
def clock():
    """Clock frozen at 14:00 UTC (daytime)."""
    return FakeClock(datetime(2024, 5, 1, 14, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
def make_sample():
    """
    Factory fixture to create LocationSample objects.

    Returns:
        Function building a sample at an offset (seconds) from a base time
    """
    base = datetime(2024, 5, 1, 14, 0, 0, tzinfo=timezone.utc)

    def _make(
        seconds: float = 0,
        lat: float = BASE_LAT,
        lng: float = BASE_LNG,
        accuracy: float = 10.0,
        start: datetime = base,
    ) -> LocationSample:
        return LocationSample(
            lat=lat,
            lng=lng,
            accuracy_meters=accuracy,
            captured_at=start + timedelta(seconds=seconds),
        )

    return _make


@pytest.fixture
def audit(clock):
    return AuditTrail(clock)


@pytest.fixture
def registry(clock, audit):
    return ContactRegistry(clock, audit=audit)


@pytest.fixture
def add_verified(registry):
    """
    Factory fixture adding a verified contact.

    Returns:
        Function (name, phone, **permissions) -> Contact
    """

    def _add(name: str = "Mom", phone: str = "+353800000111", relation: str = "Mother", **perms):
        contact = registry.add(name, phone, relation)
        registry.verify(contact.id)
        if perms:
            registry.set_permissions(contact.id, perms)
        return registry.get(contact.id)

    return _add


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def sender():
    return LoggingSender()


@pytest.fixture
def app_state(clock, store, sender):
    """AppState with in-memory storage, an outbox sender and the fake clock."""
    return AppState(
        settings=SafetySettings(),
        store=store,
        sender=sender,
        clock=clock,
        access_url_base="https://safeguard.test/emergency",
    )


@pytest.fixture
def sample_payload() -> Dict[str, Any]:
    return {
        "lat": BASE_LAT,
        "lng": BASE_LNG,
        "accuracy_meters": 12.5,
        "captured_at": "2024-05-01T14:00:00+00:00",
    }
