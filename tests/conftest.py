"""
Shared fixtures: in-memory store, a controllable clock, and fully wired
services. Environment is pinned before any standing module is imported.
"""
import os

os.environ.setdefault("SECRET_KEY", "test-secret-key-for-standing-engine-000000")
os.environ["STORE_BACKEND"] = "memory"
os.environ["HISTORY_ENABLED"] = "false"
os.environ["NOTIFICATION_WEBHOOK_URL"] = ""

from datetime import datetime, timedelta, timezone

import pytest

from standing.services import build_services
from standing.services.users import register_user
from standing.store.documents import MemoryDocumentStore


class FrozenClock:
    """Callable clock that only moves when a test says so."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


T0 = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def clock():
    return FrozenClock(T0)


@pytest.fixture
def store():
    return MemoryDocumentStore()


@pytest.fixture
def services(store, clock):
    svc = build_services(store, clock=clock)
    for user_id, role in (
        ("client-1", "client"),
        ("client-2", "client"),
        ("client-3", "client"),
        ("supplier-1", "supplier"),
        ("supplier-2", "supplier"),
        ("admin-1", "admin"),
    ):
        register_user(store, user_id, role)
    return svc


@pytest.fixture
def active_supplier(services):
    """supplier-1, approved and identity-verified."""
    services.onboarding.register_supplier("supplier-1", category="cleaning", service_count=3)
    services.onboarding.approve("supplier-1", "admin-1")
    services.onboarding.verify_identity("supplier-1", "admin-1")
    return "supplier-1"


def seed_counters(store, user_id, **counters):
    """Write raw behavior counters directly."""
    for field, value in counters.items():
        store.increment("metrics", user_id, field, value)


def drive_below_floor(services, user_id, reporter="client-1"):
    """
    Three reports (one violence, one harassment, one resolved 'other') plus
    poor behavior numbers. Score ends well below the suspension floor.
    """
    ledger = services.ledger
    critical = ledger.file_report(reporter, "client", user_id, "supplier", "violence", "hit me")
    high = ledger.file_report("client-2", "client", user_id, "supplier", "harassment", "rude messages")
    minor = ledger.file_report("client-3", "client", user_id, "supplier", "other", "late invoice")
    ledger.start_investigation(minor, "admin-1")
    ledger.resolve(minor, "resolved", "talked to supplier", admin_id="admin-1")

    seed_counters(
        services.store, user_id,
        total_reviews=10, rating_sum=20.0,
        total_bookings=10, completed_bookings=7, cancelled_bookings=3, on_time_bookings=7,
    )
    return critical, high, minor
