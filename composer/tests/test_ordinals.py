"""Tests for ordinal allocation and curriculum locks."""

from __future__ import annotations

import threading

from composer.src.models import CurriculumElement, ElementKind
from composer.src.ordinals import CurriculumLocks, OrdinalAllocator


def _insert(store, element_id: str, ord: int) -> None:
    store.insert(
        CurriculumElement(
            id=element_id,
            curriculum_id="curr_test001",
            kind=ElementKind.TEXT,
            ord=ord,
            title=element_id,
        )
    )


class TestOrdinalAllocator:
    """Tail ordinal computation."""

    def test_empty_curriculum_starts_at_zero(self, populated_store):
        assert OrdinalAllocator(populated_store).next("curr_test001") == 0

    def test_next_is_max_plus_one(self, populated_store):
        _insert(populated_store, "elem_a", 0)
        _insert(populated_store, "elem_b", 1)
        assert OrdinalAllocator(populated_store).next("curr_test001") == 2

    def test_gaps_are_not_reused(self, populated_store):
        _insert(populated_store, "elem_a", 0)
        _insert(populated_store, "elem_b", 7)
        assert OrdinalAllocator(populated_store).next("curr_test001") == 8


class TestCurriculumLocks:
    """Per-curriculum lock registry."""

    def test_same_id_same_lock(self):
        locks = CurriculumLocks()
        assert locks.get("curr_1") is locks.get("curr_1")

    def test_different_ids_different_locks(self):
        locks = CurriculumLocks()
        assert locks.get("curr_1") is not locks.get("curr_2")
        assert len(locks) == 2

    def test_hold_acquires_and_releases(self):
        locks = CurriculumLocks()
        with locks.hold("curr_1"):
            assert locks.get("curr_1").locked()
        assert not locks.get("curr_1").locked()

    def test_discard(self):
        locks = CurriculumLocks()
        locks.get("curr_1")
        locks.discard("curr_1")
        locks.discard("curr_missing")
        assert len(locks) == 0

    def test_concurrent_get_returns_single_lock(self):
        locks = CurriculumLocks()
        seen: list[threading.Lock] = []
        barrier = threading.Barrier(8)

        def grab() -> None:
            barrier.wait()
            seen.append(locks.get("curr_1"))

        threads = [threading.Thread(target=grab) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert len({id(lock) for lock in seen}) == 1
