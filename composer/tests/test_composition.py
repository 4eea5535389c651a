"""Tests for the curriculum composition service."""

from __future__ import annotations

import threading

import pytest

from composer.src.catalog import AssetCatalog, TechniqueCatalog
from composer.src.composition import CompositionService, CurriculumDirectory
from composer.src.errors import (
    ConflictError,
    InvalidArgumentError,
    NotFoundError,
    OrdinalConflictError,
)
from composer.src.models import Curriculum, ElementKind, ElementPatch, TextDraft
from composer.src.ordinals import CurriculumLocks
from composer.src.resolver import ReferenceResolver
from shared.hardening import RetryConfig

CID = "curr_test001"


def _ords(service: CompositionService) -> list[tuple[str, int]]:
    return [(e.id, e.ord) for e in service.list_elements(CID)]


# ===================================================================
# add_element
# ===================================================================


class TestAddElement:
    """Appending elements."""

    def test_first_element_gets_ord_zero(self, service):
        element = service.add_element(CID, {"kind": "technique", "technique_id": "tech_42"})
        assert element.ord == 0
        assert element.kind is ElementKind.TECHNIQUE
        assert element.id.startswith("elem_")

    def test_appends_are_strictly_increasing(self, service):
        first = service.add_element(CID, {"kind": "text", "title": "Warm-up"})
        second = service.add_element(CID, {"kind": "asset", "asset_id": "asset_vid001"})
        third = service.add_element(CID, TextDraft(title="Cool-down"))
        assert [first.ord, second.ord, third.ord] == [0, 1, 2]

    def test_append_after_delete_does_not_reuse_gap(self, service):
        a = service.add_element(CID, {"kind": "text", "title": "A"})
        b = service.add_element(CID, {"kind": "text", "title": "B"})
        service.remove_element(CID, a.id)
        c = service.add_element(CID, {"kind": "text", "title": "C"})
        assert c.ord == b.ord + 1

    def test_unknown_curriculum(self, service):
        with pytest.raises(NotFoundError):
            service.add_element("curr_ghost", {"kind": "text", "title": "A"})

    def test_missing_kind_field_persists_nothing(self, service):
        with pytest.raises(InvalidArgumentError) as excinfo:
            service.add_element(CID, {"kind": "technique"})
        assert excinfo.value.field == "technique_id"
        assert service.list_elements(CID) == []

    def test_reference_not_checked_on_add(self, service):
        element = service.add_element(CID, {"kind": "technique", "technique_id": "tech_missing"})
        listed = service.list_elements(CID)
        assert listed[0].id == element.id
        assert listed[0].technique is None

    def test_concurrent_appends_get_distinct_ordinals(self, service):
        results = []
        errors = []
        barrier = threading.Barrier(10)

        def append(n: int) -> None:
            barrier.wait()
            try:
                results.append(service.add_element(CID, {"kind": "text", "title": f"T{n}"}))
            except Exception as exc:  # pragma: no cover - surfaced by assertion
                errors.append(exc)

        threads = [threading.Thread(target=append, args=(n,)) for n in range(10)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        assert sorted(e.ord for e in results) == list(range(10))

    def test_max_elements_rejects_append_at_cap(self, service):
        for n in range(3):
            service.add_element(CID, {"kind": "text", "title": f"T{n}"}, max_elements=3)
        with pytest.raises(InvalidArgumentError, match="more than 3 elements"):
            service.add_element(CID, {"kind": "text", "title": "T3"}, max_elements=3)
        assert len(service.list_elements(CID)) == 3

    def test_concurrent_appends_respect_cap(self, service):
        accepted = []
        rejected = []
        barrier = threading.Barrier(8)

        def append(n: int) -> None:
            barrier.wait()
            try:
                accepted.append(
                    service.add_element(CID, {"kind": "text", "title": f"T{n}"}, max_elements=5)
                )
            except InvalidArgumentError as exc:
                rejected.append(exc)

        threads = [threading.Thread(target=append, args=(n,)) for n in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(accepted) == 5
        assert len(rejected) == 3
        assert len(service.list_elements(CID)) == 5


class AlwaysConflictingStore:
    """Store wrapper whose inserts always lose the ordinal race."""

    def __init__(self, inner) -> None:
        self._inner = inner
        self.attempts = 0

    def __getattr__(self, name):
        return getattr(self._inner, name)

    def insert(self, element):
        self.attempts += 1
        raise OrdinalConflictError(f"ord {element.ord} taken")


class TestAllocationRetry:
    """Allocation races surface as Conflict after bounded retries."""

    def test_exhausted_retries_raise_conflict(self, populated_store):
        store = AlwaysConflictingStore(populated_store)
        resolver = ReferenceResolver(
            TechniqueCatalog(populated_store), AssetCatalog(populated_store)
        )
        retry = RetryConfig(
            max_attempts=3,
            base_delay=0.0,
            exponential_backoff=False,
            retryable_exceptions=(OrdinalConflictError,),
        )
        service = CompositionService(store, populated_store, resolver, retry=retry)

        with pytest.raises(ConflictError):
            service.add_element(CID, {"kind": "text", "title": "A"})
        assert store.attempts == 3

    def test_storage_satisfies_directory_protocol(self, populated_store):
        assert isinstance(populated_store, CurriculumDirectory)


# ===================================================================
# list_elements
# ===================================================================


class TestListElements:
    """Listing with enrichment."""

    def test_empty_curriculum(self, service):
        assert service.list_elements(CID) == []

    def test_unknown_curriculum(self, service):
        with pytest.raises(NotFoundError):
            service.list_elements("curr_ghost")

    def test_enriches_references(self, service):
        service.add_element(CID, {"kind": "technique", "technique_id": "tech_42"})
        service.add_element(CID, {"kind": "asset", "asset_id": "asset_vid001"})
        service.add_element(CID, {"kind": "text", "title": "Notes"})

        technique, asset, text = service.list_elements(CID)
        assert technique.technique.name == "Scissor Sweep"
        assert technique.asset is None
        assert asset.asset.title == "Scissor Sweep Breakdown"
        assert asset.asset.duration_seconds == 312
        assert text.technique is None and text.asset is None

    def test_resolves_once_per_source(self, populated_store):
        calls = {"techniques": 0, "assets": 0}
        techniques = TechniqueCatalog(populated_store)
        assets = AssetCatalog(populated_store)

        class CountingTechniques:
            def batch_get(self, ids):
                calls["techniques"] += 1
                return techniques.batch_get(ids)

        class CountingAssets:
            def batch_get(self, ids):
                calls["assets"] += 1
                return assets.batch_get(ids)

        service = CompositionService(
            populated_store,
            populated_store,
            ReferenceResolver(CountingTechniques(), CountingAssets()),
        )
        for _ in range(5):
            service.add_element(CID, {"kind": "technique", "technique_id": "tech_42"})
            service.add_element(CID, {"kind": "asset", "asset_id": "asset_vid001"})

        service.list_elements(CID)
        assert calls == {"techniques": 1, "assets": 1}

    def test_dangling_reference_yields_none(self, service, populated_store):
        service.add_element(CID, {"kind": "asset", "asset_id": "asset_vid001"})
        populated_store.delete_reference_asset("asset_vid001")
        listed = service.list_elements(CID)
        assert listed[0].element.asset_id == "asset_vid001"
        assert listed[0].asset is None


# ===================================================================
# update_element / remove_element
# ===================================================================


class TestUpdateElement:
    """Patching elements."""

    def test_patch_changes_only_supplied_fields(self, service):
        element = service.add_element(
            CID, {"kind": "technique", "technique_id": "tech_42", "details": "Slow reps"}
        )
        updated = service.update_element(CID, element.id, {"title": "Sweep drill"})
        assert updated.title == "Sweep drill"
        assert updated.details == "Slow reps"
        assert updated.technique_id == "tech_42"
        assert updated.ord == element.ord

    def test_kind_and_ord_are_immutable(self, service):
        element = service.add_element(CID, {"kind": "text", "title": "A"})
        updated = service.update_element(CID, element.id, {"kind": "asset", "ord": 5})
        assert updated.kind is ElementKind.TEXT
        assert updated.ord == 0

    def test_placeholder_can_receive_reference(self, service):
        element = service.add_element(CID, {"kind": "text", "title": "Video TBD"})
        updated = service.update_element(CID, element.id, ElementPatch(asset_id="asset_vid001"))
        assert updated.asset_id == "asset_vid001"
        assert updated.kind is ElementKind.TEXT

    def test_explicit_null_clears_details(self, service):
        element = service.add_element(CID, {"kind": "text", "title": "A", "details": "x"})
        updated = service.update_element(CID, element.id, {"details": None})
        assert updated.details is None

    def test_wrong_curriculum_is_not_found(self, service, populated_store):
        populated_store.create_curriculum(Curriculum(id="curr_other", title="O", created_by="u"))
        element = service.add_element(CID, {"kind": "text", "title": "A"})
        with pytest.raises(NotFoundError):
            service.update_element("curr_other", element.id, {"title": "B"})

    def test_unknown_element(self, service):
        with pytest.raises(NotFoundError):
            service.update_element(CID, "elem_ghost", {"title": "B"})

    def test_reference_ids_stored_as_text(self, service):
        element = service.add_element(CID, {"kind": "asset", "asset_id": "asset_vid001"})
        updated = service.update_element(CID, element.id, {"asset_id": 7, "technique_id": 42})
        assert updated.asset_id == "7"
        assert updated.technique_id == "42"
        listed = service.list_elements(CID)[0].element
        assert (listed.asset_id, listed.technique_id) == (updated.asset_id, updated.technique_id)


class TestRemoveElement:
    """Removing elements."""

    def test_remove_keeps_other_ordinals(self, service):
        a = service.add_element(CID, {"kind": "text", "title": "A"})
        b = service.add_element(CID, {"kind": "text", "title": "B"})
        c = service.add_element(CID, {"kind": "text", "title": "C"})
        service.remove_element(CID, b.id)
        assert _ords(service) == [(a.id, 0), (c.id, 2)]

    def test_remove_twice_is_not_found(self, service):
        a = service.add_element(CID, {"kind": "text", "title": "A"})
        service.remove_element(CID, a.id)
        with pytest.raises(NotFoundError):
            service.remove_element(CID, a.id)


# ===================================================================
# reorder_elements
# ===================================================================


class TestReorderElements:
    """Atomic whole-list reorder."""

    @pytest.fixture
    def abc(self, service):
        return [service.add_element(CID, {"kind": "text", "title": t}) for t in "ABC"]

    def test_reorder_assigns_positions(self, service, abc):
        a, b, c = abc
        result = service.reorder_elements(CID, [c.id, a.id, b.id])
        assert [(e.id, e.ord) for e in result] == [(c.id, 0), (a.id, 1), (b.id, 2)]
        assert _ords(service) == [(c.id, 0), (a.id, 1), (b.id, 2)]

    def test_reorder_compacts_gaps(self, service, abc):
        a, b, c = abc
        service.remove_element(CID, b.id)
        service.reorder_elements(CID, [a.id, c.id])
        assert _ords(service) == [(a.id, 0), (c.id, 1)]

    def test_subset_rejected_without_changes(self, service, abc):
        a, b, c = abc
        with pytest.raises(InvalidArgumentError) as excinfo:
            service.reorder_elements(CID, [c.id, a.id])
        assert excinfo.value.ids == [b.id]
        assert _ords(service) == [(a.id, 0), (b.id, 1), (c.id, 2)]

    def test_foreign_id_rejected(self, service, abc):
        a, b, c = abc
        with pytest.raises(InvalidArgumentError) as excinfo:
            service.reorder_elements(CID, [a.id, b.id, c.id, "elem_foreign"])
        assert excinfo.value.ids == ["elem_foreign"]

    def test_unknown_curriculum(self, service):
        with pytest.raises(NotFoundError):
            service.reorder_elements("curr_ghost", [])

    def test_append_after_reorder(self, service, abc):
        a, b, c = abc
        service.reorder_elements(CID, [b.id, c.id, a.id])
        d = service.add_element(CID, {"kind": "text", "title": "D"})
        assert d.ord == 3

    def test_forget_curriculum_drops_lock(self, populated_store):
        locks = CurriculumLocks()
        resolver = ReferenceResolver(
            TechniqueCatalog(populated_store), AssetCatalog(populated_store)
        )
        service = CompositionService(populated_store, populated_store, resolver, locks=locks)
        service.add_element(CID, {"kind": "text", "title": "A"})
        assert len(locks) == 1
        service.forget_curriculum(CID)
        assert len(locks) == 0


# ===================================================================
# Full scenario
# ===================================================================


class TestScenario:
    """Build, reorder, edit and trim a curriculum."""

    def test_compose_session(self, service):
        tech = service.add_element(CID, {"kind": "technique", "technique_id": "tech_42"})
        video = service.add_element(
            CID, {"kind": "asset", "asset_id": "asset_vid001", "details": "Watch 0:45 to 2:10"}
        )
        intro = service.add_element(CID, {"kind": "text", "title": "Intro"})
        assert [tech.ord, video.ord, intro.ord] == [0, 1, 2]

        service.reorder_elements(CID, [intro.id, tech.id, video.id])
        service.update_element(CID, tech.id, {"details": "Focus on the knee shield"})
        service.remove_element(CID, video.id)

        listed = service.list_elements(CID)
        assert [(e.id, e.ord) for e in listed] == [(intro.id, 0), (tech.id, 1)]
        assert listed[1].element.details == "Focus on the knee shield"
        assert listed[1].technique.name == "Scissor Sweep"

    def test_intro_then_technique_swapped(self, service):
        e1 = service.add_element(CID, {"kind": "text", "title": "Intro"})
        e2 = service.add_element(CID, {"kind": "technique", "technique_id": "tech_42"})
        assert (e1.ord, e2.ord) == (0, 1)

        service.reorder_elements(CID, [e2.id, e1.id])

        listed = service.list_elements(CID)
        assert [e.id for e in listed] == [e2.id, e1.id]
        assert listed[0].technique.name == "Scissor Sweep"


# ===================================================================
# Shared locks and concurrency
# ===================================================================


def _service(store, locks: CurriculumLocks | None = None) -> CompositionService:
    resolver = ReferenceResolver(TechniqueCatalog(store), AssetCatalog(store))
    return CompositionService(store, store, resolver, locks=locks)


class TestSharedLocks:
    """Services built over one store share a lock registry when given one."""

    def test_empty_registry_is_kept(self, populated_store):
        shared = CurriculumLocks()
        first = _service(populated_store, shared)
        second = _service(populated_store, shared)

        first.add_element(CID, {"kind": "text", "title": "A"})
        second.add_element(CID, {"kind": "text", "title": "B"})

        assert len(shared) == 1

    def test_forget_through_one_service_clears_shared_lock(self, populated_store):
        shared = CurriculumLocks()
        first = _service(populated_store, shared)
        second = _service(populated_store, shared)
        first.add_element(CID, {"kind": "text", "title": "A"})

        second.forget_curriculum(CID)

        assert len(shared) == 0


class TestInterleavedWrites:
    """Appends, reorders and listings running together keep ordinals sound."""

    def test_reorders_appends_and_listings(self, populated_store):
        shared = CurriculumLocks()
        writers = [_service(populated_store, shared) for _ in range(2)]
        reorderer = _service(populated_store, shared)
        reader = _service(populated_store, shared)
        for n in range(4):
            writers[0].add_element(CID, {"kind": "text", "title": f"Seed {n}"})

        appends_done = threading.Event()
        unexpected: list[BaseException] = []
        bad_reads: list[list[int]] = []

        def append(service: CompositionService, prefix: str) -> None:
            try:
                for n in range(20):
                    service.add_element(CID, {"kind": "text", "title": f"{prefix}{n}"})
            except Exception as exc:  # pragma: no cover - surfaced by assertion
                unexpected.append(exc)

        def rotate() -> None:
            while not appends_done.is_set():
                ids = [e.id for e in reorderer.list_elements(CID)]
                try:
                    reorderer.reorder_elements(CID, ids[1:] + ids[:1])
                except InvalidArgumentError:
                    # an append landed between the read and the reorder
                    continue
                except Exception as exc:  # pragma: no cover - surfaced by assertion
                    unexpected.append(exc)
                    return

        def watch() -> None:
            while not appends_done.is_set():
                ords = [e.ord for e in reader.list_elements(CID)]
                if any(a >= b for a, b in zip(ords, ords[1:])):
                    bad_reads.append(ords)

        appenders = [
            threading.Thread(target=append, args=(svc, f"W{i}-"))
            for i, svc in enumerate(writers)
        ]
        background = [threading.Thread(target=rotate)] + [
            threading.Thread(target=watch) for _ in range(2)
        ]
        for t in background + appenders:
            t.start()
        for t in appenders:
            t.join()
        appends_done.set()
        for t in background:
            t.join()

        assert unexpected == []
        assert bad_reads == []
        final = [e.ord for e in reader.list_elements(CID)]
        assert len(final) == 44
        assert len(set(final)) == 44
        assert final == sorted(final)
