"""Curriculum composition engine.

Manages the ordered, heterogeneous element list of a curriculum:
appending technique, asset and text elements, listing them with their
references resolved, patching, removing, and reordering the whole list
in one atomic step.

Ordering guarantees:
    * ``ord`` values are unique within a curriculum at every commit.
    * Appends take ``max(ord) + 1`` (0 for an empty curriculum).
    * Deletes never renumber the remaining elements.
    * A reorder assigns ``0..n-1`` to every element in one transaction.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from typing import Any, Protocol, runtime_checkable

from composer.src.catalog import AssetCatalog, TechniqueCatalog
from composer.src.config import ComposerConfig
from composer.src.errors import (
    ComposerStorageError,
    ConflictError,
    InvalidArgumentError,
    NotFoundError,
    OrdinalConflictError,
)
from composer.src.models import (
    CurriculumElement,
    ElementDraft,
    ElementPatch,
    EnrichedElement,
)
from composer.src.ordinals import CurriculumLocks, OrdinalAllocator
from composer.src.resolver import ReferenceResolver
from composer.src.storage import ComposerStorage, ElementStore
from composer.src.validation import KindValidator, ReorderValidator
from shared.hardening import RetriesExhaustedError, RetryConfig, retry_with_backoff

logger = logging.getLogger(__name__)


@runtime_checkable
class CurriculumDirectory(Protocol):
    """Answers whether a curriculum exists."""

    def exists(self, curriculum_id: str) -> bool:
        """Return True when the curriculum exists."""
        ...


class CompositionService:
    """Public entry point for curriculum element operations.

    Args:
        store: Element persistence.
        curricula: Curriculum existence check.
        resolver: Reference resolver used by ``list_elements``.
        locks: Per-curriculum lock registry. A private one is created
            when omitted; share one between services that use the same
            store.
        retry: Retry policy for ordinal allocation races.

    Example::

        service = CompositionService.from_storage(storage)
        intro = service.add_element(curriculum_id, {"kind": "text", "title": "Intro"})
        service.reorder_elements(curriculum_id, [other.id, intro.id])
    """

    def __init__(
        self,
        store: ElementStore,
        curricula: CurriculumDirectory,
        resolver: ReferenceResolver,
        *,
        locks: CurriculumLocks | None = None,
        retry: RetryConfig | None = None,
    ) -> None:
        self._store = store
        self._curricula = curricula
        self._resolver = resolver
        self._locks = locks if locks is not None else CurriculumLocks()
        self._retry = retry or ComposerConfig().allocation_retry
        self._allocator = OrdinalAllocator(store)
        self._kind_validator = KindValidator()
        self._reorder_validator = ReorderValidator()

    @classmethod
    def from_storage(
        cls,
        storage: ComposerStorage,
        config: ComposerConfig | None = None,
    ) -> CompositionService:
        """Wire a service whose collaborators are all backed by *storage*."""
        cfg = config or ComposerConfig()
        resolver = ReferenceResolver(TechniqueCatalog(storage), AssetCatalog(storage))
        return cls(storage, storage, resolver, retry=cfg.allocation_retry)

    # ---------------------------------------------------------------
    # Operations
    # ---------------------------------------------------------------

    def add_element(
        self,
        curriculum_id: str,
        payload: Mapping[str, Any] | ElementDraft,
        *,
        max_elements: int | None = None,
    ) -> CurriculumElement:
        """Append a new element at the tail of the curriculum.

        Args:
            curriculum_id: Owning curriculum.
            payload: ``kind`` plus kind-specific fields, or a typed draft.
            max_elements: Optional cap on the curriculum's element count,
                checked under the curriculum lock. No cap when None.

        Returns:
            The persisted element, including its ``id`` and ``ord``.

        Raises:
            NotFoundError: If the curriculum does not exist.
            InvalidArgumentError: If the payload lacks its kind's field, or
                the curriculum already holds ``max_elements`` elements.
            ConflictError: If allocation kept losing races to other writers.
        """
        self._require_curriculum(curriculum_id)
        draft = self._kind_validator.validate(payload)
        try:
            element = retry_with_backoff(
                self._append, self._retry, curriculum_id, draft, max_elements
            )
        except RetriesExhaustedError as exc:
            raise ConflictError(
                f"Could not allocate an ordinal in curriculum {curriculum_id}; retry the request"
            ) from exc.last_error
        logger.info(
            "Added %s element %s to %s at ord %d",
            element.kind.value,
            element.id,
            curriculum_id,
            element.ord,
        )
        return element

    def list_elements(self, curriculum_id: str) -> list[EnrichedElement]:
        """Return the curriculum's elements in ascending ``ord``, enriched.

        Technique and asset references are resolved with a single batched
        call per source. References that no longer resolve yield None
        rather than failing the listing.

        Raises:
            NotFoundError: If the curriculum does not exist.
        """
        self._require_curriculum(curriculum_id)
        elements = self._store.find_by_curriculum(curriculum_id)
        resolved = self._resolver.resolve(
            (e.technique_id for e in elements),
            (e.asset_id for e in elements),
        )
        return [
            EnrichedElement(
                element=e,
                technique=resolved.technique(e.technique_id),
                asset=resolved.asset(e.asset_id),
            )
            for e in elements
        ]

    def update_element(
        self,
        curriculum_id: str,
        element_id: str,
        patch: ElementPatch | Mapping[str, Any],
    ) -> CurriculumElement:
        """Merge *patch* onto an element of the curriculum.

        Only ``technique_id``, ``asset_id``, ``title`` and ``details`` can
        change. The kind rules are not re-checked, so a placeholder element
        can receive its reference later.

        Raises:
            NotFoundError: If the element does not exist in this curriculum.
        """
        if not isinstance(patch, ElementPatch):
            patch = ElementPatch.from_dict(dict(patch))
        element = self._require_element(curriculum_id, element_id)
        patch.apply_to(element)
        try:
            return self._store.update(element)
        except ComposerStorageError as exc:
            raise NotFoundError(f"Element {element_id} not found in curriculum {curriculum_id}") from exc

    def remove_element(self, curriculum_id: str, element_id: str) -> None:
        """Delete an element. The remaining elements keep their ``ord``.

        Raises:
            NotFoundError: If the element does not exist in this curriculum.
        """
        self._require_element(curriculum_id, element_id)
        if not self._store.delete(curriculum_id, element_id):
            raise NotFoundError(f"Element {element_id} not found in curriculum {curriculum_id}")
        logger.info("Removed element %s from %s", element_id, curriculum_id)

    def reorder_elements(
        self,
        curriculum_id: str,
        ordered_element_ids: Sequence[str],
    ) -> list[CurriculumElement]:
        """Assign ``ord = i`` to the element at position ``i``.

        ``ordered_element_ids`` must list every element of the curriculum
        exactly once. All assignments commit together or not at all.

        Returns:
            The curriculum's elements in their new order.

        Raises:
            NotFoundError: If the curriculum does not exist.
            InvalidArgumentError: If the IDs are not a permutation of the
                curriculum's elements. No ordinal changes in that case.
            ConflictError: If the batch collided with a concurrent writer.
        """
        self._require_curriculum(curriculum_id)
        ordered = list(ordered_element_ids)
        with self._locks.hold(curriculum_id):
            current = self._store.find_by_curriculum(curriculum_id)
            try:
                assignments = self._reorder_validator.validate(current, ordered)
            except InvalidArgumentError as exc:
                logger.warning("Rejected reorder of %s: %s", curriculum_id, exc)
                raise
            try:
                elements = self._store.batch_update_ordinals(curriculum_id, assignments)
            except OrdinalConflictError as exc:
                raise ConflictError(
                    f"Reorder of curriculum {curriculum_id} conflicted with a concurrent write"
                ) from exc
        logger.info("Reordered %d element(s) in %s", len(elements), curriculum_id)
        return elements

    def forget_curriculum(self, curriculum_id: str) -> None:
        """Drop per-curriculum state after the curriculum has been deleted."""
        self._locks.discard(curriculum_id)

    # ---------------------------------------------------------------
    # Helpers
    # ---------------------------------------------------------------

    def _append(
        self,
        curriculum_id: str,
        draft: ElementDraft,
        max_elements: int | None = None,
    ) -> CurriculumElement:
        with self._locks.hold(curriculum_id):
            if max_elements is not None and self._store.count_elements(curriculum_id) >= max_elements:
                raise InvalidArgumentError(
                    f"Curriculum cannot have more than {max_elements} elements"
                )
            ord = self._allocator.next(curriculum_id)
            element = CurriculumElement.from_draft(curriculum_id, draft, ord)
            return self._store.insert(element)

    def _require_curriculum(self, curriculum_id: str) -> None:
        if not self._curricula.exists(curriculum_id):
            raise NotFoundError(f"Curriculum not found: {curriculum_id}")

    def _require_element(self, curriculum_id: str, element_id: str) -> CurriculumElement:
        element = self._store.find_scoped(curriculum_id, element_id)
        if element is None:
            raise NotFoundError(f"Element {element_id} not found in curriculum {curriculum_id}")
        return element
