import logging
import time

from conftest import FakeSource, active, expired

from dealerwatch.scheduler import ENABLED_KEY, LAST_RUN_KEY, AutoSnapshotScheduler
from dealerwatch.sources.sheets import SourceError


class FailingSource:
    def __init__(self):
        self.calls = 0

    def fetch_all(self):
        self.calls += 1
        raise SourceError("Failed to fetch active users data from Google Sheets")


def test_runs_once_per_day(store, clock):
    source = FakeSource([active("X", 5)], [expired("X", 1)])
    scheduler = AutoSnapshotScheduler(store, source, interval=60)

    assert scheduler.should_run()
    filename = scheduler.run_if_due()
    assert filename == "2024-05-14_09-30.json"
    assert store.storage.get(LAST_RUN_KEY) == "2024-05-14"

    clock.advance(hours=5)
    assert not scheduler.should_run()
    assert scheduler.run_if_due() is None
    assert source.calls == 1
    assert len(store.get_metadata()) == 1

    clock.advance(days=1)
    assert scheduler.run_if_due() == "2024-05-15_14-30.json"
    assert len(store.get_metadata()) == 2


def test_failure_leaves_marker_untouched(store, caplog):
    scheduler = AutoSnapshotScheduler(store, FailingSource())

    with caplog.at_level(logging.ERROR, logger="dealerwatch"):
        assert scheduler.run_if_due() is None

    assert scheduler.last_run_date() is None
    assert store.get_metadata() == []
    assert "Auto-snapshot failed" in caplog.text
    assert scheduler.should_run()


def test_start_and_stop(store):
    source = FakeSource([active("X", 5)], [])
    scheduler = AutoSnapshotScheduler(store, source, interval=30)

    thread = scheduler.start()
    assert scheduler.start() is thread
    assert scheduler.enabled
    assert store.storage.get(ENABLED_KEY) == "true"

    deadline = time.monotonic() + 5
    while store.storage.get(LAST_RUN_KEY) is None and time.monotonic() < deadline:
        time.sleep(0.01)

    scheduler.stop(timeout=5)
    assert not thread.is_alive()
    assert not scheduler.enabled
    assert source.calls == 1
    assert store.storage.get(LAST_RUN_KEY) == "2024-05-14"
