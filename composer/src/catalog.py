"""Storage-backed implementations of the reference lookup protocols."""

from __future__ import annotations

from composer.src.models import AssetSummary, ReferenceAsset, TechniqueSummary
from composer.src.storage import ComposerStorage


class TechniqueCatalog:
    """``TechniqueLookup`` backed by the techniques table."""

    def __init__(self, storage: ComposerStorage) -> None:
        self._storage = storage

    def batch_get(self, ids: set[str]) -> dict[str, TechniqueSummary]:
        return {
            t.id: TechniqueSummary(id=t.id, name=t.name, description=t.description)
            for t in self._storage.get_techniques(ids)
        }


class AssetCatalog:
    """``AssetLookup`` backed by the reference_assets table.

    Assets without a title fall back to their URL for display.
    """

    def __init__(self, storage: ComposerStorage) -> None:
        self._storage = storage

    def batch_get(self, ids: set[str]) -> dict[str, AssetSummary]:
        return {a.id: self._summarize(a) for a in self._storage.get_reference_assets(ids)}

    @staticmethod
    def _summarize(asset: ReferenceAsset) -> AssetSummary:
        return AssetSummary(
            id=asset.id,
            title=asset.title or asset.url,
            thumbnail_url=asset.thumbnail_url,
            duration_seconds=asset.duration_seconds,
        )
