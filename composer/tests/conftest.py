"""Shared fixtures for Composer tests."""

from __future__ import annotations

import pytest

from composer.src.composition import CompositionService
from composer.src.models import (
    AssetType,
    Curriculum,
    ReferenceAsset,
    Technique,
)
from composer.src.storage import ComposerStorage


@pytest.fixture
def memory_store() -> ComposerStorage:
    """In-memory ComposerStorage with schema initialized."""
    store = ComposerStorage(":memory:")
    store.initialize_schema()
    return store


@pytest.fixture
def sample_curriculum() -> Curriculum:
    """A sample curriculum for testing."""
    return Curriculum(
        id="curr_test001",
        title="BJJ Fundamentals",
        created_by="user_001",
        description="Core techniques for BJJ beginners",
    )


@pytest.fixture
def sample_technique() -> Technique:
    """A sample technique for testing."""
    return Technique(
        id="tech_42",
        discipline_id="disc_bjj",
        name="Scissor Sweep",
        description="Sweep from closed guard using a scissoring leg action",
    )


@pytest.fixture
def sample_asset(sample_technique: Technique) -> ReferenceAsset:
    """A sample reference video for testing."""
    return ReferenceAsset(
        id="asset_vid001",
        url="https://videos.example.com/scissor-sweep",
        asset_type=AssetType.VIDEO,
        technique_id=sample_technique.id,
        title="Scissor Sweep Breakdown",
        thumbnail_url="https://videos.example.com/scissor-sweep.jpg",
        duration_seconds=312,
    )


@pytest.fixture
def populated_store(
    memory_store: ComposerStorage,
    sample_curriculum: Curriculum,
    sample_technique: Technique,
    sample_asset: ReferenceAsset,
) -> ComposerStorage:
    """Memory store with one empty curriculum, one technique and one asset."""
    memory_store.create_curriculum(sample_curriculum)
    memory_store.create_technique(sample_technique)
    memory_store.create_reference_asset(sample_asset)
    return memory_store


@pytest.fixture
def service(populated_store: ComposerStorage) -> CompositionService:
    """CompositionService wired to the populated store."""
    return CompositionService.from_storage(populated_store)
