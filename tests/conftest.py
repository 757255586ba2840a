from datetime import datetime, timedelta, timezone

import pytest

from dealerwatch.core import SnapshotStore
from dealerwatch.models import DealerRecord
from dealerwatch.storage import MemoryStorage


class FakeClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class FakeSource:
    def __init__(self, active=None, expired=None):
        self.active = list(active or [])
        self.expired = list(expired or [])
        self.calls = 0

    def fetch_all(self):
        self.calls += 1
        return list(self.active), list(self.expired)


def active(dealer, count, service="TES", zone="Z1"):
    return DealerRecord(dealer=dealer, service=service, zone=zone, active_users=count)


def expired(dealer, count, service="TES", zone="Z1"):
    return DealerRecord(dealer=dealer, service=service, zone=zone, expired_users=count)


@pytest.fixture
def clock():
    return FakeClock(datetime(2024, 5, 14, 9, 30, 15, tzinfo=timezone.utc))


@pytest.fixture
def store(clock):
    return SnapshotStore(MemoryStorage(), clock=clock)
