"""Ordinal allocation and per-curriculum serialization.

Every write that touches a curriculum's ordinal space (appending an
element, reordering) runs inside that curriculum's lock, so two handlers
can never both read the same maximum ordinal and append at the same slot.
"""

from __future__ import annotations

import threading
from collections.abc import Iterator
from contextlib import contextmanager

from composer.src.storage import ElementStore


class OrdinalAllocator:
    """Compute the tail ordinal for a curriculum.

    Args:
        store: Element store to read the current maximum from.
    """

    def __init__(self, store: ElementStore) -> None:
        self._store = store

    def next(self, curriculum_id: str) -> int:
        """Return ``max(ord) + 1`` for the curriculum, or 0 when it is empty.

        Gaps left by deletions are never reused; only the maximum matters.
        """
        current = self._store.max_ordinal(curriculum_id)
        return 0 if current is None else current + 1


class CurriculumLocks:
    """Registry of one lock per curriculum ID.

    Locks are created lazily and kept for the lifetime of the registry;
    the registry itself is guarded so two threads asking for the same ID
    always receive the same lock.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[str, threading.Lock] = {}

    def get(self, curriculum_id: str) -> threading.Lock:
        """Return the lock for *curriculum_id*, creating it on first use."""
        with self._guard:
            lock = self._locks.get(curriculum_id)
            if lock is None:
                lock = threading.Lock()
                self._locks[curriculum_id] = lock
            return lock

    @contextmanager
    def hold(self, curriculum_id: str) -> Iterator[None]:
        """Hold the curriculum's lock for the duration of the block."""
        with self.get(curriculum_id):
            yield

    def discard(self, curriculum_id: str) -> None:
        """Forget the lock of a deleted curriculum."""
        with self._guard:
            self._locks.pop(curriculum_id, None)

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)
