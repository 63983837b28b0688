"""
Unit tests for BatchAccumulator (threshold, idle sealing, hand-off races).
"""

import threading

import pytest

from pgcopy_sink import Batch, BatchAccumulator, BatchState


class Clock:
    """Manually advanced monotonic clock."""

    def __init__(self, t: float = 100.0):
        self.t = t

    def __call__(self) -> float:
        return self.t


def test_threshold_seals_exactly_once():
    acc = BatchAccumulator(batch_size=3)
    assert acc.add("k", "a") is None
    assert acc.add("k", "b") is None
    batch = acc.add("k", "c")

    assert isinstance(batch, Batch)
    assert batch.state is BatchState.SEALED
    assert batch.records == ("a", "b", "c")
    assert len(acc) == 0
    assert acc.pending() == 0


def test_fresh_batch_after_hand_off():
    acc = BatchAccumulator(batch_size=2)
    first = [acc.add("k", r) for r in ("a", "b")][-1]
    assert acc.add("k", "c") is None
    assert acc.pending() == 1
    second = acc.add("k", "d")
    assert second is not first
    assert second.records == ("c", "d")


@pytest.mark.parametrize("n", [1, 5, 100])
def test_batch_of_n(n):
    acc = BatchAccumulator(batch_size=n)
    sealed = [b for b in (acc.add("k", str(i)) for i in range(n)) if b is not None]
    assert len(sealed) == 1
    assert sealed[0].size == n


def test_keys_are_never_mixed():
    acc = BatchAccumulator(batch_size=2)
    assert acc.add("str", "a") is None
    assert acc.add("bytes", b"x") is None
    batch = acc.add("str", "b")
    assert batch.key == "str"
    assert batch.records == ("a", "b")
    assert acc.pending() == 1


def test_sealed_batch_rejects_appends():
    acc = BatchAccumulator(batch_size=1)
    batch = acc.add("k", "a")
    with pytest.raises(RuntimeError):
        batch._append("b", 0.0)


def test_sweep_idle_seals_only_idle_batches():
    clock = Clock()
    acc = BatchAccumulator(batch_size=10, clock=clock)
    acc.add("old", "a")
    clock.t += 5
    acc.add("new", "b")
    clock.t += 1

    swept = acc.sweep_idle(5.0)
    assert [b.key for b in swept] == ["old"]
    assert swept[0].state is BatchState.SEALED
    assert acc.pending() == 1


def test_idle_measured_from_last_append():
    clock = Clock()
    acc = BatchAccumulator(batch_size=10, clock=clock)
    acc.add("k", "a")
    clock.t += 4
    acc.add("k", "b")
    clock.t += 4
    assert acc.sweep_idle(5.0) == []
    clock.t += 1
    assert [b.records for b in acc.sweep_idle(5.0)] == [("a", "b")]


def test_sweep_idle_disabled():
    clock = Clock()
    acc = BatchAccumulator(batch_size=10, clock=clock)
    acc.add("k", "a")
    clock.t += 1_000
    assert acc.sweep_idle(None) == []
    assert acc.sweep_idle(-1) == []
    assert acc.pending() == 1


def test_swept_batch_never_appended_again():
    clock = Clock()
    acc = BatchAccumulator(batch_size=10, clock=clock)
    acc.add("k", "a")
    clock.t += 2
    (swept,) = acc.sweep_idle(1.0)
    acc.add("k", "b")
    assert swept.records == ("a",)
    assert acc.pending() == 1


def test_drain_seals_everything():
    acc = BatchAccumulator(batch_size=10)
    acc.add("a", "1")
    acc.add("b", "2")
    acc.add("b", "3")
    drained = acc.drain()
    assert sorted((b.key, b.size) for b in drained) == [("a", 1), ("b", 2)]
    assert len(acc) == 0
    assert acc.drain() == []


def test_mark_drained_only_after_seal():
    batch = Batch("k", 0.0)
    with pytest.raises(RuntimeError):
        batch.mark_drained()
    sealed = Batch.sealed_from("k", ["a"])
    sealed.mark_drained()
    assert sealed.state is BatchState.DRAINED


def test_invalid_batch_size():
    with pytest.raises(ValueError):
        BatchAccumulator(batch_size=0)


def test_concurrent_add_and_sweep_hand_off_at_most_once():
    """Producers and a zero-timeout sweeper race; every record is handed off once."""
    acc = BatchAccumulator(batch_size=7)
    producers, per_producer = 8, 500
    handed: list[Batch] = []
    handed_lock = threading.Lock()
    done = threading.Event()

    def produce(pid: int):
        for i in range(per_producer):
            b = acc.add("k", f"{pid}:{i}")
            if b is not None:
                with handed_lock:
                    handed.append(b)

    def sweep():
        while not done.is_set():
            for b in acc.sweep_idle(0.0):
                with handed_lock:
                    handed.append(b)

    sweeper = threading.Thread(target=sweep)
    sweeper.start()
    threads = [threading.Thread(target=produce, args=(p,)) for p in range(producers)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    done.set()
    sweeper.join()
    handed.extend(acc.drain())

    assert len({id(b) for b in handed}) == len(handed)
    assert all(0 < b.size <= 7 for b in handed)
    records = [r for b in handed for r in b.records]
    assert len(records) == producers * per_producer
    assert len(set(records)) == producers * per_producer


def test_per_producer_order_preserved_within_batches():
    acc = BatchAccumulator(batch_size=4)
    out = []
    for i in range(10):
        b = acc.add("k", str(i))
        if b:
            out.extend(b.records)
    for b in acc.drain():
        out.extend(b.records)
    assert out == [str(i) for i in range(10)]
