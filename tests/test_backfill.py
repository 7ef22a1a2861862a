"""
Backfill of missing message vectors: completeness, idempotence, partial
failure handling and the background worker.
"""

import threading
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock, patch

import numpy as np
import pytest

from recall.core.backfill import BackfillCoordinator
from recall.vector.cache import EmbeddingCache
from recall.vector.embeddings import EmbeddingComputer, InMemoryWordVectors
from recall.vector.store import VectorStoreAdapter

BASE_TIME = datetime(2024, 1, 1, tzinfo=timezone.utc)


class ExplodingWordVectors(InMemoryWordVectors):
    """Raises for the token "boom" to simulate a failing provider."""

    def vector_for(self, token):
        if token == "boom":
            raise RuntimeError("provider failure")
        return super().vector_for(token)


@pytest.fixture
def store(dao):
    return VectorStoreAdapter(dao)


def make_coordinator(store, provider, batch_size=3):
    computer = EmbeddingComputer(provider, EmbeddingCache(100), store)
    return BackfillCoordinator(computer, store, batch_size=batch_size)


def add_messages(dao, texts):
    return [dao.create_message(text, True, created_at=BASE_TIME + timedelta(seconds=i))
            for i, text in enumerate(texts)]


def test_backfill_fills_every_missing_vector(dao, store, scenario_provider):
    messages = add_messages(dao, ["hello", "world", "hello world", "moon", "there", "goodnight"])
    coordinator = make_coordinator(store, scenario_provider)

    report = coordinator.backfill()

    assert report.scanned == 6
    assert report.written == 6
    assert report.batches == 2
    assert report.failed == []
    assert store.all_missing_vectors(limit=100) == []
    for message in messages:
        assert store.load(message.id) is not None


def test_second_run_writes_nothing(dao, store, scenario_provider):
    add_messages(dao, ["hello", "world", "moon"])
    coordinator = make_coordinator(store, scenario_provider)
    coordinator.backfill()

    report = coordinator.backfill()

    assert report.scanned == 0
    assert report.written == 0


def test_existing_vectors_are_left_alone(dao, store, scenario_provider):
    first, second = add_messages(dao, ["hello", "world"])
    store.save(first.id, np.array([0.6, 0.8]))

    report = make_coordinator(store, scenario_provider).backfill()

    assert report.written == 1
    np.testing.assert_array_equal(store.load(first.id), [0.6, 0.8])


def test_concurrent_runs_write_each_vector_once(dao, store, scenario_provider):
    """Two overlapping runs together write exactly one vector per message."""
    add_messages(dao, ["hello"] * 10)
    coordinators = [make_coordinator(store, scenario_provider, batch_size=2) for _ in range(2)]
    reports = []
    barrier = threading.Barrier(2)

    def run(coordinator):
        barrier.wait()
        reports.append(coordinator.backfill())

    threads = [threading.Thread(target=run, args=(c,)) for c in coordinators]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert sum(report.written for report in reports) == 10
    assert all(report.failed == [] for report in reports)
    assert store.count_vectors() == 10


def test_failed_message_does_not_stop_the_run(dao, store):
    """One message failing leaves it unvectorized and the rest written."""
    provider = ExplodingWordVectors({"hello": [1.0, 0.0], "world": [0.0, 1.0]})
    ok_before, bad, ok_after = add_messages(dao, ["hello", "boom", "world"])

    report = make_coordinator(store, provider).backfill()

    assert report.failed == [str(bad.id)]
    assert report.written == 2
    assert store.load(ok_before.id) is not None
    assert store.load(ok_after.id) is not None
    assert [m.id for m in store.all_missing_vectors(limit=10)] == [bad.id]


def test_message_without_known_tokens_is_not_retried(dao, store, scenario_provider):
    message, = add_messages(dao, ["zebra quokka"])
    coordinator = make_coordinator(store, scenario_provider)

    report = coordinator.backfill()

    assert report.empty == 1
    assert report.written == 1
    np.testing.assert_array_equal(store.load(message.id), np.zeros(2))
    assert coordinator.backfill().scanned == 0


def test_cancelled_run_stops_early(dao, store, scenario_provider):
    add_messages(dao, ["hello"] * 5)
    cancel_event = threading.Event()
    cancel_event.set()

    report = make_coordinator(store, scenario_provider).backfill(cancel_event=cancel_event)

    assert report.cancelled is True
    assert report.written == 0
    assert store.count_vectors() == 0


def test_batch_size_override(dao, store, scenario_provider):
    add_messages(dao, ["hello"] * 5)

    report = make_coordinator(store, scenario_provider, batch_size=100).backfill(batch_size=2)

    assert report.batches == 3
    assert report.written == 5


def test_store_failure_while_listing_propagates(scenario_provider):
    from recall.core.errors import StoreIOError

    store = MagicMock()
    store.all_missing_vectors.side_effect = StoreIOError("database is locked")

    with pytest.raises(StoreIOError):
        make_coordinator(store, scenario_provider).backfill()


def test_report_to_dict(dao, store, scenario_provider):
    add_messages(dao, ["hello"])

    data = make_coordinator(store, scenario_provider).backfill().to_dict()

    assert data["written"] == 1
    assert data["failed"] == []
    assert "started_at" in data
    assert "completed_at" in data


def test_invalid_batch_size(store, scenario_provider):
    with pytest.raises(ValueError):
        make_coordinator(store, scenario_provider, batch_size=0)


def test_message_deleted_during_backfill_is_skipped(dao, store):
    """A message removed between listing and writing is skipped, not failed."""
    victim, survivor = add_messages(dao, ["vanish", "hello"])

    class DeletingWordVectors(InMemoryWordVectors):
        def vector_for(self, token):
            if token == "vanish":
                dao.delete_message(victim.id)
            return super().vector_for(token)

    provider = DeletingWordVectors({"vanish": [0.0, 1.0], "hello": [1.0, 0.0]})

    report = make_coordinator(store, provider).backfill()

    assert report.failed == []
    assert report.skipped == 1
    assert report.written == 1
    assert store.load(survivor.id) is not None
    assert store.count_vectors() == 1


def test_report_times_are_utc(dao, store, scenario_provider):
    add_messages(dao, ["hello"])

    report = make_coordinator(store, scenario_provider).backfill()

    assert report.started_at.tzinfo is timezone.utc
    assert report.completed_at.tzinfo is timezone.utc
    assert report.to_dict()["started_at"].endswith("+00:00")


class TestBackgroundWorker:
    """Backfill runs queued onto the worker thread."""

    def test_trigger_runs_in_background(self, dao, store, scenario_provider):
        add_messages(dao, ["hello", "world", "moon", "there"])
        coordinator = make_coordinator(store, scenario_provider)
        try:
            coordinator.trigger()
            assert coordinator.wait_idle(timeout=10)
        finally:
            coordinator.stop()

        assert coordinator.last_report.written == 4
        assert store.count_vectors() == 4

    def test_worker_survives_failed_run(self, dao, store, scenario_provider):
        from recall.core.errors import StoreIOError

        failing_store = MagicMock(wraps=store)
        failing_store.all_missing_vectors.side_effect = [StoreIOError("database is locked"), []]
        coordinator = make_coordinator(failing_store, scenario_provider)
        try:
            coordinator.trigger()
            assert coordinator.wait_idle(timeout=10)
            coordinator.trigger()
            assert coordinator.wait_idle(timeout=10)
        finally:
            coordinator.stop()

        assert coordinator.last_report.scanned == 0

    def test_worker_survives_unexpected_exception(self, store, scenario_provider):
        coordinator = make_coordinator(store, scenario_provider)
        with patch.object(coordinator, "backfill", side_effect=[RuntimeError("unexpected"), None]) as mock_backfill:
            try:
                coordinator.trigger()
                assert coordinator.wait_idle(timeout=10)
                assert coordinator._worker.is_alive()

                coordinator.trigger()
                assert coordinator.wait_idle(timeout=10)
            finally:
                coordinator.stop()

        assert mock_backfill.call_count == 2

    def test_stop_without_start_is_noop(self, store, scenario_provider):
        make_coordinator(store, scenario_provider).stop()
