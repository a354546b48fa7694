"""
Integration tests for SyncStatusTracker.

Key behaviours:
  - After k consecutive failures the next retry is RETRY_DELAYS[k] away
  - Once the delay table is exhausted no retry is scheduled (given up)
  - Success resets the retry count and clears the schedule
  - Stale selection: missing/old syncs only, retry-pending and given-up
    entities excluded, highest volume first
"""
from datetime import timedelta

import pytest

from screener.sync.status import RETRY_DELAYS, SyncStatusTracker


@pytest.fixture(name="tracker")
def tracker_fixture(engine, wall_clock):
    return SyncStatusTracker(engine, clock=wall_clock)


def fail(tracker, entity="AAA", data_type="ratios"):
    tracker.record_outcome(entity, data_type, success=False, error="boom")
    return tracker.schedule_retry(entity, data_type)


class TestRetrySchedule:
    @pytest.mark.parametrize("k", range(1, len(RETRY_DELAYS)))
    def test_delay_after_k_failures(self, tracker, wall_clock, k):
        for _ in range(k - 1):
            fail(tracker)
        scheduled = fail(tracker)

        assert scheduled - wall_clock.now == RETRY_DELAYS[k]
        status = tracker.get("AAA", "ratios")
        assert status.retry_count == k
        assert status.next_retry_at == scheduled
        assert status.last_status == "failed"
        assert status.error_message == "boom"

    def test_gives_up_when_table_exhausted(self, tracker):
        for _ in range(len(RETRY_DELAYS) - 1):
            assert fail(tracker) is not None
        assert fail(tracker) is None
        assert tracker.get("AAA", "ratios").next_retry_at is None

    def test_success_resets(self, tracker, wall_clock):
        fail(tracker)
        fail(tracker)
        tracker.record_outcome("AAA", "ratios", success=True)

        status = tracker.get("AAA", "ratios")
        assert status.retry_count == 0
        assert status.next_retry_at is None
        assert status.error_message is None
        assert status.last_synced_at == wall_clock.now

    def test_no_row_no_retry(self, tracker):
        assert tracker.schedule_retry("ZZZ", "ratios") is None

    def test_data_types_are_independent(self, tracker):
        fail(tracker, data_type="ratios")
        tracker.record_outcome("AAA", "dividends", success=True)
        assert tracker.get("AAA", "ratios").retry_count == 1
        assert tracker.get("AAA", "dividends").retry_count == 0


class TestSelectStale:
    def test_orders_by_volume_and_skips_fresh(self, tracker, seed_snapshots, wall_clock):
        seed_snapshots(
            {"symbol": "LOW", "volume": 100},
            {"symbol": "HIGH", "volume": 10_000},
            {"symbol": "MID", "volume": 1_000},
            {"symbol": "FRESH", "volume": 50_000},
        )
        tracker.record_outcome("FRESH", "ratios", success=True)

        assert tracker.select_stale_entities("ratios", timedelta(hours=24)) == ["HIGH", "MID", "LOW"]

    def test_old_success_is_stale_again(self, tracker, seed_snapshots, wall_clock):
        seed_snapshots({"symbol": "AAA"})
        tracker.record_outcome("AAA", "ratios", success=True)
        wall_clock.now += timedelta(hours=25)
        assert tracker.select_stale_entities("ratios", timedelta(hours=24)) == ["AAA"]

    def test_retry_pending_excluded_until_due(self, tracker, seed_snapshots, wall_clock):
        seed_snapshots({"symbol": "AAA"})
        scheduled = fail(tracker)

        assert tracker.select_stale_entities("ratios", timedelta(hours=24)) == []
        wall_clock.now = scheduled
        assert tracker.select_stale_entities("ratios", timedelta(hours=24)) == ["AAA"]

    def test_given_up_excluded(self, tracker, seed_snapshots, wall_clock):
        seed_snapshots({"symbol": "AAA"})
        for _ in range(len(RETRY_DELAYS)):
            fail(tracker)
        wall_clock.now += timedelta(days=30)
        assert tracker.select_stale_entities("ratios", timedelta(hours=24)) == []

    def test_other_data_type_status_ignored(self, tracker, seed_snapshots):
        seed_snapshots({"symbol": "AAA"})
        tracker.record_outcome("AAA", "dividends", success=True)
        assert tracker.select_stale_entities("ratios", timedelta(hours=24)) == ["AAA"]

    def test_limit(self, tracker, seed_snapshots):
        seed_snapshots(*({"symbol": f"S{i:02d}", "volume": i} for i in range(10)))
        assert len(tracker.select_stale_entities("ratios", timedelta(hours=24), limit=3)) == 3
