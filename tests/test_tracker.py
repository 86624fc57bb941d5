import pytest

from sfr.tracker import DeliveryTracker


def test_record_evicts_exactly_one_after_overflow(sqlite_store) -> None:  # noqa: ANN001
    tracker = DeliveryTracker(store=sqlite_store, max_entries=3)

    evicted = [tracker.record(f"m{i}") for i in range(1, 5)]

    assert evicted == [None, None, None, "m1"]
    assert len(tracker) == 3
    assert sqlite_store.list_deliveries() == ["m4", "m3", "m2"]


def test_length_never_exceeds_max(sqlite_store) -> None:  # noqa: ANN001
    tracker = DeliveryTracker(store=sqlite_store, max_entries=2)
    for i in range(10):
        tracker.record(f"m{i}")
        assert len(tracker) <= 2


def test_peek_oldest_does_not_mutate(sqlite_store) -> None:  # noqa: ANN001
    tracker = DeliveryTracker(store=sqlite_store, max_entries=5)
    assert tracker.peek_oldest() is None
    tracker.record("a")
    tracker.record("b")
    assert tracker.peek_oldest() == "a"
    assert tracker.peek_oldest() == "a"
    assert len(tracker) == 2


def test_max_entries_must_be_positive(sqlite_store) -> None:  # noqa: ANN001
    with pytest.raises(ValueError):
        DeliveryTracker(store=sqlite_store, max_entries=0)
