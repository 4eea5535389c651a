"""SQLite-backed storage for Composer data models.

Provides the ``ElementStore`` contract used by the composition engine,
its SQLite implementation, and CRUD for the curriculum registry and the
reference catalog (techniques and reference assets) that back the
engine's collaborator lookups.
"""

from __future__ import annotations

import functools
import sqlite3
import threading
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterable, Sequence
from datetime import datetime
from pathlib import Path
from typing import Any, TypeVar

from composer.src.errors import ComposerStorageError, OrdinalConflictError
from composer.src.models import (
    AssetType,
    Curriculum,
    CurriculumElement,
    ElementKind,
    ReferenceAsset,
    Technique,
)

_SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS curricula (
    id TEXT PRIMARY KEY,
    title TEXT NOT NULL,
    description TEXT,
    created_by TEXT NOT NULL,
    is_public INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS techniques (
    id TEXT PRIMARY KEY,
    discipline_id TEXT NOT NULL,
    name TEXT NOT NULL,
    slug TEXT NOT NULL,
    description TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS reference_assets (
    id TEXT PRIMARY KEY,
    technique_id TEXT,
    asset_type TEXT NOT NULL DEFAULT 'video',
    url TEXT NOT NULL,
    title TEXT,
    description TEXT,
    thumbnail_url TEXT,
    duration_seconds INTEGER,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    FOREIGN KEY (technique_id) REFERENCES techniques(id) ON DELETE SET NULL
);

CREATE TABLE IF NOT EXISTS curriculum_elements (
    id TEXT PRIMARY KEY,
    curriculum_id TEXT NOT NULL,
    kind TEXT NOT NULL CHECK (kind IN ('technique', 'asset', 'text')),
    ord INTEGER NOT NULL,
    technique_id TEXT,
    asset_id TEXT,
    title TEXT,
    details TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    FOREIGN KEY (curriculum_id) REFERENCES curricula(id) ON DELETE CASCADE
);

CREATE UNIQUE INDEX IF NOT EXISTS idx_elements_curriculum_ord
    ON curriculum_elements(curriculum_id, ord);
CREATE INDEX IF NOT EXISTS idx_curricula_created_by
    ON curricula(created_by);
CREATE INDEX IF NOT EXISTS idx_techniques_discipline
    ON techniques(discipline_id);
CREATE INDEX IF NOT EXISTS idx_reference_assets_technique
    ON reference_assets(technique_id);
"""

_F = TypeVar("_F", bound=Callable[..., Any])


def _synchronized(method: _F) -> _F:
    """Run *method* while holding the storage's connection lock."""

    @functools.wraps(method)
    def wrapper(self: ComposerStorage, *args: Any, **kwargs: Any) -> Any:
        with self._lock:
            return method(self, *args, **kwargs)

    return wrapper  # type: ignore[return-value]


def _placeholders(count: int) -> str:
    return ", ".join("?" for _ in range(count))


class ElementStore(ABC):
    """Persistence contract for curriculum elements keyed by curriculum."""

    @abstractmethod
    def find_by_curriculum(self, curriculum_id: str) -> list[CurriculumElement]:
        """Return the curriculum's elements in ascending ``ord``."""

    @abstractmethod
    def find_scoped(self, curriculum_id: str, element_id: str) -> CurriculumElement | None:
        """Return the element only if it belongs to *curriculum_id*."""

    @abstractmethod
    def count_elements(self, curriculum_id: str) -> int:
        """Return how many elements the curriculum holds."""

    @abstractmethod
    def max_ordinal(self, curriculum_id: str) -> int | None:
        """Return the highest ``ord`` in the curriculum, or None when empty."""

    @abstractmethod
    def insert(self, element: CurriculumElement) -> CurriculumElement:
        """Persist a new element.

        Raises:
            OrdinalConflictError: If ``(curriculum_id, ord)`` is taken.
        """

    @abstractmethod
    def update(self, element: CurriculumElement) -> CurriculumElement:
        """Persist the mutable fields of an existing element."""

    @abstractmethod
    def delete(self, curriculum_id: str, element_id: str) -> bool:
        """Delete a scoped element. Returns False when nothing matched."""

    @abstractmethod
    def batch_update_ordinals(
        self,
        curriculum_id: str,
        assignments: Sequence[tuple[str, int]],
    ) -> list[CurriculumElement]:
        """Apply all ``(element_id, ord)`` assignments in one transaction.

        Returns:
            The curriculum's elements in ascending ``ord`` after the commit.
        """


class ComposerStorage(ElementStore):
    """SQLite-backed storage for Composer domain models.

    A single connection is shared between request threads; every public
    method holds ``self._lock`` so transactions never interleave.

    Args:
        db_path: Path to SQLite database file, or ':memory:' for in-memory.

    Example::

        with ComposerStorage("composer.db") as store:
            store.initialize_schema()
            store.create_curriculum(curriculum)
    """

    def __init__(self, db_path: str | Path = ":memory:") -> None:
        self._db_path = str(db_path)
        self._lock = threading.RLock()
        self._conn = sqlite3.connect(self._db_path, check_same_thread=False)
        self._conn.execute("PRAGMA foreign_keys = ON")
        self._conn.row_factory = sqlite3.Row

    def __enter__(self) -> ComposerStorage:
        """Enter context manager."""
        return self

    def __exit__(self, *args: Any) -> None:
        """Close the database connection."""
        self.close()

    @_synchronized
    def close(self) -> None:
        """Close the database connection."""
        self._conn.close()

    @_synchronized
    def initialize_schema(self) -> None:
        """Create all tables and indexes if they don't exist."""
        self._conn.executescript(_SCHEMA_SQL)
        self._conn.commit()

    # ---------------------------------------------------------------
    # Curricula
    # ---------------------------------------------------------------

    @_synchronized
    def create_curriculum(self, curriculum: Curriculum) -> Curriculum:
        """Insert a new curriculum.

        Args:
            curriculum: Curriculum to insert.

        Returns:
            The inserted curriculum.

        Raises:
            ComposerStorageError: If a curriculum with the same ID exists.
        """
        try:
            with self._conn:
                self._conn.execute(
                    "INSERT INTO curricula "
                    "(id, title, description, created_by, is_public, created_at, updated_at) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?)",
                    (
                        curriculum.id,
                        curriculum.title,
                        curriculum.description,
                        curriculum.created_by,
                        int(curriculum.is_public),
                        curriculum.created_at.isoformat(),
                        curriculum.updated_at.isoformat(),
                    ),
                )
        except sqlite3.IntegrityError as exc:
            raise ComposerStorageError(f"Curriculum already exists: {curriculum.id}") from exc
        return curriculum

    @_synchronized
    def get_curriculum(self, curriculum_id: str) -> Curriculum | None:
        """Fetch a curriculum by ID.

        Args:
            curriculum_id: The curriculum's unique ID.

        Returns:
            Curriculum or None if not found.
        """
        row = self._conn.execute(
            "SELECT * FROM curricula WHERE id = ?", (curriculum_id,)
        ).fetchone()
        if row is None:
            return None
        return self._row_to_curriculum(row)

    @_synchronized
    def exists(self, curriculum_id: str) -> bool:
        """Return True when the curriculum exists."""
        row = self._conn.execute(
            "SELECT 1 FROM curricula WHERE id = ?", (curriculum_id,)
        ).fetchone()
        return row is not None

    @_synchronized
    def list_curricula(
        self,
        created_by: str | None = None,
        is_public: bool | None = None,
    ) -> list[Curriculum]:
        """List curricula, most recently updated first.

        When both filters are given the result is the owner's curricula
        together with every curriculum matching the visibility filter.

        Args:
            created_by: Restrict to curricula owned by this user.
            is_public: Restrict by visibility.

        Returns:
            Matching curricula.
        """
        clauses: list[str] = []
        params: list[Any] = []
        if created_by is not None:
            clauses.append("created_by = ?")
            params.append(created_by)
        if is_public is not None:
            clauses.append("is_public = ?")
            params.append(int(is_public))
        sql = "SELECT * FROM curricula"
        if clauses:
            sql += " WHERE " + " OR ".join(clauses)
        sql += " ORDER BY updated_at DESC"
        rows = self._conn.execute(sql, params).fetchall()
        return [self._row_to_curriculum(r) for r in rows]

    @_synchronized
    def update_curriculum(self, curriculum: Curriculum) -> Curriculum:
        """Update an existing curriculum.

        Args:
            curriculum: Curriculum with updated fields.

        Returns:
            The updated curriculum with refreshed updated_at.

        Raises:
            ComposerStorageError: If curriculum does not exist.
        """
        curriculum.updated_at = datetime.now()
        with self._conn:
            cursor = self._conn.execute(
                "UPDATE curricula SET title = ?, description = ?, is_public = ?, "
                "updated_at = ? WHERE id = ?",
                (
                    curriculum.title,
                    curriculum.description,
                    int(curriculum.is_public),
                    curriculum.updated_at.isoformat(),
                    curriculum.id,
                ),
            )
        if cursor.rowcount == 0:
            raise ComposerStorageError(f"Curriculum not found: {curriculum.id}")
        return curriculum

    @_synchronized
    def delete_curriculum(self, curriculum_id: str) -> bool:
        """Delete a curriculum by ID (cascades to its elements).

        Args:
            curriculum_id: ID of the curriculum to delete.

        Returns:
            True if deleted, False if not found.
        """
        with self._conn:
            cursor = self._conn.execute("DELETE FROM curricula WHERE id = ?", (curriculum_id,))
        return cursor.rowcount > 0

    # ---------------------------------------------------------------
    # Techniques
    # ---------------------------------------------------------------

    @_synchronized
    def create_technique(self, technique: Technique) -> Technique:
        """Insert a new technique.

        Raises:
            ComposerStorageError: If a technique with the same ID exists.
        """
        try:
            with self._conn:
                self._conn.execute(
                    "INSERT INTO techniques "
                    "(id, discipline_id, name, slug, description, created_at, updated_at) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?)",
                    (
                        technique.id,
                        technique.discipline_id,
                        technique.name,
                        technique.slug,
                        technique.description,
                        technique.created_at.isoformat(),
                        technique.updated_at.isoformat(),
                    ),
                )
        except sqlite3.IntegrityError as exc:
            raise ComposerStorageError(f"Technique already exists: {technique.id}") from exc
        return technique

    @_synchronized
    def get_technique(self, technique_id: str) -> Technique | None:
        """Fetch a technique by ID."""
        row = self._conn.execute(
            "SELECT * FROM techniques WHERE id = ?", (technique_id,)
        ).fetchone()
        if row is None:
            return None
        return self._row_to_technique(row)

    @_synchronized
    def get_techniques(self, technique_ids: Iterable[str]) -> list[Technique]:
        """Fetch every technique whose ID is in *technique_ids*.

        Unknown IDs are skipped silently.
        """
        ids = list(dict.fromkeys(technique_ids))
        if not ids:
            return []
        rows = self._conn.execute(
            f"SELECT * FROM techniques WHERE id IN ({_placeholders(len(ids))})",  # noqa: S608
            ids,
        ).fetchall()
        return [self._row_to_technique(r) for r in rows]

    @_synchronized
    def delete_technique(self, technique_id: str) -> bool:
        """Delete a technique. Elements referencing it keep the dangling ID."""
        with self._conn:
            cursor = self._conn.execute("DELETE FROM techniques WHERE id = ?", (technique_id,))
        return cursor.rowcount > 0

    # ---------------------------------------------------------------
    # Reference assets
    # ---------------------------------------------------------------

    @_synchronized
    def create_reference_asset(self, asset: ReferenceAsset) -> ReferenceAsset:
        """Insert a new reference asset.

        Raises:
            ComposerStorageError: On duplicate ID or unknown technique.
        """
        try:
            with self._conn:
                self._conn.execute(
                    "INSERT INTO reference_assets "
                    "(id, technique_id, asset_type, url, title, description, "
                    "thumbnail_url, duration_seconds, created_at, updated_at) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                    (
                        asset.id,
                        asset.technique_id,
                        asset.asset_type.value,
                        asset.url,
                        asset.title,
                        asset.description,
                        asset.thumbnail_url,
                        asset.duration_seconds,
                        asset.created_at.isoformat(),
                        asset.updated_at.isoformat(),
                    ),
                )
        except sqlite3.IntegrityError as exc:
            raise ComposerStorageError(f"Reference asset creation failed: {asset.id}") from exc
        return asset

    @_synchronized
    def get_reference_asset(self, asset_id: str) -> ReferenceAsset | None:
        """Fetch a reference asset by ID."""
        row = self._conn.execute(
            "SELECT * FROM reference_assets WHERE id = ?", (asset_id,)
        ).fetchone()
        if row is None:
            return None
        return self._row_to_reference_asset(row)

    @_synchronized
    def get_reference_assets(self, asset_ids: Iterable[str]) -> list[ReferenceAsset]:
        """Fetch every reference asset whose ID is in *asset_ids*."""
        ids = list(dict.fromkeys(asset_ids))
        if not ids:
            return []
        rows = self._conn.execute(
            f"SELECT * FROM reference_assets WHERE id IN ({_placeholders(len(ids))})",  # noqa: S608
            ids,
        ).fetchall()
        return [self._row_to_reference_asset(r) for r in rows]

    @_synchronized
    def delete_reference_asset(self, asset_id: str) -> bool:
        """Delete a reference asset. Elements referencing it keep the dangling ID."""
        with self._conn:
            cursor = self._conn.execute("DELETE FROM reference_assets WHERE id = ?", (asset_id,))
        return cursor.rowcount > 0

    # ---------------------------------------------------------------
    # Curriculum elements
    # ---------------------------------------------------------------

    @_synchronized
    def find_by_curriculum(self, curriculum_id: str) -> list[CurriculumElement]:
        """Fetch a curriculum's elements ordered by ascending ``ord``."""
        rows = self._conn.execute(
            "SELECT * FROM curriculum_elements WHERE curriculum_id = ? ORDER BY ord ASC",
            (curriculum_id,),
        ).fetchall()
        return [self._row_to_element(r) for r in rows]

    @_synchronized
    def find_scoped(self, curriculum_id: str, element_id: str) -> CurriculumElement | None:
        """Fetch an element by ID, only if it belongs to *curriculum_id*."""
        row = self._conn.execute(
            "SELECT * FROM curriculum_elements WHERE id = ? AND curriculum_id = ?",
            (element_id, curriculum_id),
        ).fetchone()
        if row is None:
            return None
        return self._row_to_element(row)

    @_synchronized
    def count_elements(self, curriculum_id: str) -> int:
        """Return how many elements the curriculum holds."""
        row = self._conn.execute(
            "SELECT COUNT(*) FROM curriculum_elements WHERE curriculum_id = ?",
            (curriculum_id,),
        ).fetchone()
        return int(row[0])

    @_synchronized
    def max_ordinal(self, curriculum_id: str) -> int | None:
        """Return the highest ``ord`` in the curriculum, or None when empty."""
        row = self._conn.execute(
            "SELECT MAX(ord) FROM curriculum_elements WHERE curriculum_id = ?",
            (curriculum_id,),
        ).fetchone()
        return None if row[0] is None else int(row[0])

    @_synchronized
    def insert(self, element: CurriculumElement) -> CurriculumElement:
        """Insert a new element.

        Args:
            element: Element to insert.

        Returns:
            The inserted element.

        Raises:
            OrdinalConflictError: If another element already holds its ``ord``.
            ComposerStorageError: On duplicate ID or unknown curriculum.
        """
        try:
            with self._conn:
                self._conn.execute(
                    "INSERT INTO curriculum_elements "
                    "(id, curriculum_id, kind, ord, technique_id, asset_id, "
                    "title, details, created_at, updated_at) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                    (
                        element.id,
                        element.curriculum_id,
                        element.kind.value,
                        element.ord,
                        element.technique_id,
                        element.asset_id,
                        element.title,
                        element.details,
                        element.created_at.isoformat(),
                        element.updated_at.isoformat(),
                    ),
                )
        except sqlite3.IntegrityError as exc:
            if "curriculum_elements.ord" in str(exc):
                raise OrdinalConflictError(
                    f"Ordinal {element.ord} already taken in curriculum {element.curriculum_id}"
                ) from exc
            raise ComposerStorageError(f"Element creation failed: {element.id}") from exc
        return element

    @_synchronized
    def update(self, element: CurriculumElement) -> CurriculumElement:
        """Persist the mutable fields of an element.

        ``kind``, ``ord`` and ``curriculum_id`` are never written here.

        Raises:
            ComposerStorageError: If the element does not exist in its curriculum.
        """
        element.updated_at = datetime.now()
        with self._conn:
            cursor = self._conn.execute(
                "UPDATE curriculum_elements SET technique_id = ?, asset_id = ?, "
                "title = ?, details = ?, updated_at = ? "
                "WHERE id = ? AND curriculum_id = ?",
                (
                    element.technique_id,
                    element.asset_id,
                    element.title,
                    element.details,
                    element.updated_at.isoformat(),
                    element.id,
                    element.curriculum_id,
                ),
            )
        if cursor.rowcount == 0:
            raise ComposerStorageError(f"Element not found: {element.id}")
        return element

    @_synchronized
    def delete(self, curriculum_id: str, element_id: str) -> bool:
        """Delete an element scoped to its curriculum. Siblings keep their ``ord``."""
        with self._conn:
            cursor = self._conn.execute(
                "DELETE FROM curriculum_elements WHERE id = ? AND curriculum_id = ?",
                (element_id, curriculum_id),
            )
        return cursor.rowcount > 0

    @_synchronized
    def batch_update_ordinals(
        self,
        curriculum_id: str,
        assignments: Sequence[tuple[str, int]],
    ) -> list[CurriculumElement]:
        """Reassign ordinals for several elements atomically.

        The affected rows are first moved to a negative staging range so
        that the unique ``(curriculum_id, ord)`` index holds after every
        statement, then each receives its final ``ord``. Any failure rolls
        the whole batch back.

        Args:
            curriculum_id: Curriculum owning every element in the batch.
            assignments: ``(element_id, ord)`` pairs.

        Returns:
            The curriculum's elements in ascending ``ord``.

        Raises:
            ComposerStorageError: If an element is not in the curriculum.
            OrdinalConflictError: If a target ``ord`` is held by an element
                outside the batch.
        """
        ids = [element_id for element_id, _ in assignments]
        now = datetime.now().isoformat()
        try:
            with self._conn:
                if ids:
                    self._conn.execute(
                        "UPDATE curriculum_elements SET ord = -1 - ord "  # noqa: S608
                        f"WHERE curriculum_id = ? AND id IN ({_placeholders(len(ids))})",
                        [curriculum_id, *ids],
                    )
                for element_id, ord in assignments:
                    cursor = self._conn.execute(
                        "UPDATE curriculum_elements SET ord = ?, updated_at = ? "
                        "WHERE id = ? AND curriculum_id = ?",
                        (ord, now, element_id, curriculum_id),
                    )
                    if cursor.rowcount == 0:
                        raise ComposerStorageError(
                            f"Element {element_id} not found in curriculum {curriculum_id}"
                        )
        except sqlite3.IntegrityError as exc:
            raise OrdinalConflictError(
                f"Ordinal batch conflicts with existing elements in {curriculum_id}"
            ) from exc
        return self.find_by_curriculum(curriculum_id)

    # ---------------------------------------------------------------
    # Row mappers
    # ---------------------------------------------------------------

    @staticmethod
    def _row_to_curriculum(row: sqlite3.Row) -> Curriculum:
        return Curriculum(
            id=row["id"],
            title=row["title"],
            description=row["description"],
            created_by=row["created_by"],
            is_public=bool(row["is_public"]),
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )

    @staticmethod
    def _row_to_technique(row: sqlite3.Row) -> Technique:
        return Technique(
            id=row["id"],
            discipline_id=row["discipline_id"],
            name=row["name"],
            slug=row["slug"],
            description=row["description"],
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )

    @staticmethod
    def _row_to_reference_asset(row: sqlite3.Row) -> ReferenceAsset:
        return ReferenceAsset(
            id=row["id"],
            url=row["url"],
            asset_type=AssetType(row["asset_type"]),
            technique_id=row["technique_id"],
            title=row["title"],
            description=row["description"],
            thumbnail_url=row["thumbnail_url"],
            duration_seconds=row["duration_seconds"],
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )

    @staticmethod
    def _row_to_element(row: sqlite3.Row) -> CurriculumElement:
        return CurriculumElement(
            id=row["id"],
            curriculum_id=row["curriculum_id"],
            kind=ElementKind(row["kind"]),
            ord=int(row["ord"]),
            technique_id=row["technique_id"],
            asset_id=row["asset_id"],
            title=row["title"],
            details=row["details"],
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )
