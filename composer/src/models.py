"""Composer data models for curriculum composition.

Defines curricula, the reference catalog (techniques and reference assets),
curriculum elements, the kind-typed creation drafts and the element patch.
All models use dataclasses with serialization support and UUID-based ID
generation.
"""

from __future__ import annotations

import re
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Union


class ElementKind(str, Enum):
    """Discriminator for the content an element points at."""

    TECHNIQUE = "technique"
    ASSET = "asset"
    TEXT = "text"


class AssetType(str, Enum):
    """Kind of reference asset."""

    VIDEO = "video"
    WEB = "web"
    IMAGE = "image"


class _Unset:
    """Marker for patch fields that were not supplied."""

    def __repr__(self) -> str:
        return "UNSET"

    def __bool__(self) -> bool:
        return False


UNSET: Any = _Unset()


def slugify(text: str) -> str:
    """Lowercase *text* and collapse non-alphanumeric runs into hyphens."""
    return re.sub(r"[^a-z0-9]+", "-", text.lower()).strip("-")


def _iso(value: datetime) -> str:
    return value.isoformat()


# ---------------------------------------------------------------------------
# Curricula
# ---------------------------------------------------------------------------


@dataclass
class Curriculum:
    """A named, ordered collection of elements owned by a user.

    Attributes:
        id: Unique identifier (prefixed with 'curr_').
        title: Display title.
        created_by: Owner identifier.
        description: Optional longer description.
        is_public: Whether other users may view the curriculum.
        created_at: Creation timestamp.
        updated_at: Last modification timestamp.
    """

    id: str
    title: str
    created_by: str
    description: str | None = None
    is_public: bool = False
    created_at: datetime = field(default_factory=datetime.now)
    updated_at: datetime = field(default_factory=datetime.now)

    @staticmethod
    def generate_id() -> str:
        """Generate a unique curriculum ID."""
        return f"curr_{uuid.uuid4().hex[:12]}"

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "created_by": self.created_by,
            "is_public": self.is_public,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Curriculum:
        """Deserialize from dictionary."""
        return cls(
            id=data["id"],
            title=data["title"],
            created_by=data["created_by"],
            description=data.get("description"),
            is_public=bool(data.get("is_public", False)),
            created_at=datetime.fromisoformat(data["created_at"]),
            updated_at=datetime.fromisoformat(data["updated_at"]),
        )


# ---------------------------------------------------------------------------
# Reference catalog
# ---------------------------------------------------------------------------


@dataclass
class Technique:
    """A technique within a discipline (e.g., a specific sweep or pass).

    Attributes:
        id: Unique identifier (prefixed with 'tech_').
        discipline_id: Discipline the technique belongs to.
        name: Human-readable name.
        slug: URL-safe name, derived from ``name`` when empty.
        description: Optional description.
    """

    id: str
    discipline_id: str
    name: str
    slug: str = ""
    description: str | None = None
    created_at: datetime = field(default_factory=datetime.now)
    updated_at: datetime = field(default_factory=datetime.now)

    def __post_init__(self) -> None:
        if not self.slug:
            self.slug = slugify(self.name)

    @staticmethod
    def generate_id() -> str:
        """Generate a unique technique ID."""
        return f"tech_{uuid.uuid4().hex[:12]}"

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "id": self.id,
            "discipline_id": self.discipline_id,
            "name": self.name,
            "slug": self.slug,
            "description": self.description,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


@dataclass
class ReferenceAsset:
    """An external reference (usually a video) attached to a technique.

    Attributes:
        id: Unique identifier (prefixed with 'asset_').
        url: Location of the asset.
        asset_type: What kind of resource the URL points at.
        technique_id: Technique this asset illustrates, if any.
        title: Display title.
        description: Optional description.
        thumbnail_url: Preview image URL.
        duration_seconds: Playback length for videos.
    """

    id: str
    url: str
    asset_type: AssetType = AssetType.VIDEO
    technique_id: str | None = None
    title: str | None = None
    description: str | None = None
    thumbnail_url: str | None = None
    duration_seconds: int | None = None
    created_at: datetime = field(default_factory=datetime.now)
    updated_at: datetime = field(default_factory=datetime.now)

    @staticmethod
    def generate_id() -> str:
        """Generate a unique reference asset ID."""
        return f"asset_{uuid.uuid4().hex[:12]}"

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "id": self.id,
            "url": self.url,
            "asset_type": self.asset_type.value,
            "technique_id": self.technique_id,
            "title": self.title,
            "description": self.description,
            "thumbnail_url": self.thumbnail_url,
            "duration_seconds": self.duration_seconds,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


@dataclass(frozen=True)
class TechniqueSummary:
    """Display summary of a technique used for element enrichment."""

    id: str
    name: str
    description: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {"id": self.id, "name": self.name, "description": self.description}


@dataclass(frozen=True)
class AssetSummary:
    """Display summary of a reference asset used for element enrichment."""

    id: str
    title: str
    thumbnail_url: str | None = None
    duration_seconds: int | None = None

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "id": self.id,
            "title": self.title,
            "thumbnail_url": self.thumbnail_url,
            "duration_seconds": self.duration_seconds,
        }


# ---------------------------------------------------------------------------
# Curriculum elements
# ---------------------------------------------------------------------------


@dataclass
class CurriculumElement:
    """One entry in a curriculum's ordered element list.

    ``technique_id`` is populated for technique elements, ``asset_id`` for
    asset elements and ``title`` carries the content of text elements.
    ``details`` holds optional notes for any kind.

    Attributes:
        id: Unique identifier (prefixed with 'elem_').
        curriculum_id: Owning curriculum. Never changes.
        kind: Element kind. Never changes.
        ord: Position among siblings; unique per curriculum.
        technique_id: Referenced technique.
        asset_id: Referenced reference asset.
        title: Title, the primary content of text elements.
        details: Free-form notes.
        created_at: Creation timestamp.
        updated_at: Last modification timestamp.
    """

    id: str
    curriculum_id: str
    kind: ElementKind
    ord: int
    technique_id: str | None = None
    asset_id: str | None = None
    title: str | None = None
    details: str | None = None
    created_at: datetime = field(default_factory=datetime.now)
    updated_at: datetime = field(default_factory=datetime.now)

    @staticmethod
    def generate_id() -> str:
        """Generate a unique element ID."""
        return f"elem_{uuid.uuid4().hex[:12]}"

    @classmethod
    def from_draft(
        cls,
        curriculum_id: str,
        draft: ElementDraft,
        ord: int,
        element_id: str | None = None,
    ) -> CurriculumElement:
        """Build a new element from a validated draft at ordinal *ord*."""
        return cls(
            id=element_id or cls.generate_id(),
            curriculum_id=curriculum_id,
            kind=draft.kind,
            ord=ord,
            technique_id=getattr(draft, "technique_id", None),
            asset_id=getattr(draft, "asset_id", None),
            title=getattr(draft, "title", None),
            details=draft.details,
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "id": self.id,
            "curriculum_id": self.curriculum_id,
            "kind": self.kind.value,
            "ord": self.ord,
            "technique_id": self.technique_id,
            "asset_id": self.asset_id,
            "title": self.title,
            "details": self.details,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CurriculumElement:
        """Deserialize from dictionary."""
        return cls(
            id=data["id"],
            curriculum_id=data["curriculum_id"],
            kind=ElementKind(data["kind"]),
            ord=int(data["ord"]),
            technique_id=data.get("technique_id"),
            asset_id=data.get("asset_id"),
            title=data.get("title"),
            details=data.get("details"),
            created_at=datetime.fromisoformat(data["created_at"]),
            updated_at=datetime.fromisoformat(data["updated_at"]),
        )


@dataclass
class EnrichedElement:
    """An element together with the summaries its references resolve to."""

    element: CurriculumElement
    technique: TechniqueSummary | None = None
    asset: AssetSummary | None = None

    @property
    def id(self) -> str:
        return self.element.id

    @property
    def ord(self) -> int:
        return self.element.ord

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary, summaries nested under their kind."""
        data = self.element.to_dict()
        data["technique"] = self.technique.to_dict() if self.technique else None
        data["asset"] = self.asset.to_dict() if self.asset else None
        return data


# ---------------------------------------------------------------------------
# Creation drafts and patches
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TechniqueDraft:
    """Creation payload for a technique element."""

    technique_id: str
    details: str | None = None

    @property
    def kind(self) -> ElementKind:
        return ElementKind.TECHNIQUE


@dataclass(frozen=True)
class AssetDraft:
    """Creation payload for an asset element."""

    asset_id: str
    details: str | None = None

    @property
    def kind(self) -> ElementKind:
        return ElementKind.ASSET


@dataclass(frozen=True)
class TextDraft:
    """Creation payload for a free-text element."""

    title: str
    details: str | None = None

    @property
    def kind(self) -> ElementKind:
        return ElementKind.TEXT


ElementDraft = Union[TechniqueDraft, AssetDraft, TextDraft]


@dataclass(frozen=True)
class ElementPatch:
    """The mutable fields of an element.

    Fields left as ``UNSET`` are not touched; an explicit ``None`` clears
    the stored value.
    """

    technique_id: Any = UNSET
    asset_id: Any = UNSET
    title: Any = UNSET
    details: Any = UNSET

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ElementPatch:
        """Build a patch from the keys present in *data*.

        Unknown keys are ignored, so ``kind``, ``ord`` and ``curriculum_id``
        can never reach an element through a patch. Reference IDs are
        stored as text, so non-null ``technique_id``/``asset_id`` values
        are converted with ``str``.
        """
        known = {k: data[k] for k in ("technique_id", "asset_id", "title", "details") if k in data}
        for ref in ("technique_id", "asset_id"):
            if known.get(ref) is not None:
                known[ref] = str(known[ref])
        return cls(**known)

    def changes(self) -> dict[str, Any]:
        """Return the supplied fields as a dict."""
        return {
            name: value
            for name, value in (
                ("technique_id", self.technique_id),
                ("asset_id", self.asset_id),
                ("title", self.title),
                ("details", self.details),
            )
            if value is not UNSET
        }

    def apply_to(self, element: CurriculumElement) -> CurriculumElement:
        """Merge the supplied fields onto *element* in place and return it."""
        for name, value in self.changes().items():
            setattr(element, name, value)
        return element
