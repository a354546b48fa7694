"""Integration tests for CheckpointStore and resume slicing."""
from screener.sync.checkpoints import CheckpointStore, resume_after


class TestCheckpointStore:
    def test_save_load_clear(self, engine):
        store = CheckpointStore(engine)
        assert store.load("ratios") is None

        store.save("ratios", "MSFT", 40, 100)
        cp = store.load("ratios")
        assert (cp.last_key, cp.processed_count, cp.total_count) == ("MSFT", 40, 100)

        store.clear("ratios")
        assert store.load("ratios") is None

    def test_save_overwrites(self, engine):
        store = CheckpointStore(engine)
        store.save("ratios", "AAPL", 10, 100)
        store.save("ratios", "MSFT", 20, 100)
        assert store.load("ratios").last_key == "MSFT"

    def test_job_types_are_independent(self, engine):
        store = CheckpointStore(engine)
        store.save("ratios", "AAPL", 10, 100)
        store.save("dividends", "TSLA", 5, 50)
        store.clear("ratios")
        assert store.load("dividends").last_key == "TSLA"


class TestResumeAfter:
    def test_slices_strictly_after_key(self):
        assert resume_after(["A", "B", "C", "D"], "B") == ["C", "D"]

    def test_last_item_leaves_nothing(self):
        assert resume_after(["A", "B"], "B") == []

    def test_missing_key_restarts(self):
        assert resume_after(["A", "B"], "Z") == ["A", "B"]
        assert resume_after(["A", "B"], None) == ["A", "B"]

    def test_custom_key(self):
        rows = [{"id": "x"}, {"id": "y"}]
        assert resume_after(rows, "x", key=lambda r: r["id"]) == [{"id": "y"}]
