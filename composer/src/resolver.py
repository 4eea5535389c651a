"""Batch resolution of technique and asset references into summaries."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable

from composer.src.models import AssetSummary, TechniqueSummary

logger = logging.getLogger(__name__)


# ===================================================================
# Lookup protocols
# ===================================================================


@runtime_checkable
class TechniqueLookup(Protocol):
    """Source of technique summaries.

    Unknown IDs are omitted from the result rather than raising.
    """

    def batch_get(self, ids: set[str]) -> dict[str, TechniqueSummary]:
        """Return summaries keyed by technique ID."""
        ...


@runtime_checkable
class AssetLookup(Protocol):
    """Source of reference-asset summaries.

    Unknown IDs are omitted from the result rather than raising.
    """

    def batch_get(self, ids: set[str]) -> dict[str, AssetSummary]:
        """Return summaries keyed by asset ID."""
        ...


# ===================================================================
# Resolver
# ===================================================================


@dataclass
class ResolvedReferences:
    """ID-to-summary maps produced by one resolution pass."""

    techniques: dict[str, TechniqueSummary] = field(default_factory=dict)
    assets: dict[str, AssetSummary] = field(default_factory=dict)

    def technique(self, technique_id: str | None) -> TechniqueSummary | None:
        """Return the summary for *technique_id*, or None if unresolved."""
        if technique_id is None:
            return None
        return self.techniques.get(technique_id)

    def asset(self, asset_id: str | None) -> AssetSummary | None:
        """Return the summary for *asset_id*, or None if unresolved."""
        if asset_id is None:
            return None
        return self.assets.get(asset_id)


class ReferenceResolver:
    """Resolve technique and asset IDs with one lookup call per source.

    Args:
        techniques: Technique summary source.
        assets: Asset summary source.
    """

    def __init__(self, techniques: TechniqueLookup, assets: AssetLookup) -> None:
        self._techniques = techniques
        self._assets = assets

    def resolve(
        self,
        technique_ids: Iterable[str | None],
        asset_ids: Iterable[str | None],
    ) -> ResolvedReferences:
        """Fetch summaries for the distinct non-null IDs given.

        A source is not called at all when it has no IDs to resolve.

        Args:
            technique_ids: Technique IDs; None entries are ignored.
            asset_ids: Asset IDs; None entries are ignored.

        Returns:
            Maps from ID to summary. IDs the sources could not resolve are
            absent from the maps.
        """
        wanted_techniques = {tid for tid in technique_ids if tid is not None}
        wanted_assets = {aid for aid in asset_ids if aid is not None}

        resolved = ResolvedReferences()
        if wanted_techniques:
            resolved.techniques = dict(self._techniques.batch_get(wanted_techniques))
        if wanted_assets:
            resolved.assets = dict(self._assets.batch_get(wanted_assets))

        unresolved = (len(wanted_techniques) - len(resolved.techniques)) + (
            len(wanted_assets) - len(resolved.assets)
        )
        if unresolved:
            logger.debug("%d element reference(s) did not resolve", unresolved)
        return resolved
