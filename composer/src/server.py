"""FastAPI router for the Composer curriculum service.

Exposes REST endpoints for curricula, the technique/asset reference
catalog, and curriculum element composition (append, list, patch,
delete, reorder). Designed to be mounted at /api/composer/ by the
parent application.

All endpoint functions are synchronous (not async) because the
underlying ComposerStorage uses synchronous SQLite calls. FastAPI runs
sync handlers in a thread pool automatically; storage and the
composition engine serialize access internally.
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field

from composer.src.composition import CompositionService
from composer.src.config import ComposerConfig
from composer.src.errors import (
    ComposerStorageError,
    ConflictError,
    InvalidArgumentError,
    NotFoundError,
)
from composer.src.models import AssetType, Curriculum, ReferenceAsset, Technique
from composer.src.storage import ComposerStorage
from shared.hardening import ErrorFormatter, InputValidator, ValidationError

logger = logging.getLogger(__name__)

router = APIRouter()

# ---------------------------------------------------------------------------
# Module-level service instances (initialized by init_composer)
# ---------------------------------------------------------------------------

_storage: ComposerStorage | None = None
_service: CompositionService | None = None
_config: ComposerConfig = ComposerConfig()
_validator = InputValidator()
_formatter = ErrorFormatter()


def init_composer(config: ComposerConfig | None = None) -> ComposerStorage:
    """Initialize Composer storage and the composition service.

    Call this once at application startup before any requests are served.

    Args:
        config: Service configuration. Defaults to ``ComposerConfig()``.

    Returns:
        The initialized ComposerStorage instance.
    """
    global _storage, _service, _config

    _config = config or ComposerConfig()
    _storage = ComposerStorage(_config.db_path)
    _storage.initialize_schema()
    _service = CompositionService.from_storage(_storage, _config)
    return _storage


def get_storage() -> ComposerStorage:
    """Return the initialized ComposerStorage or raise.

    Raises:
        HTTPException: If storage has not been initialized.
    """
    if _storage is None:
        raise HTTPException(status_code=500, detail="Composer storage not initialized")
    return _storage


def get_service() -> CompositionService:
    """Return the initialized CompositionService or raise.

    Raises:
        HTTPException: If the service has not been initialized.
    """
    if _service is None:
        raise HTTPException(status_code=500, detail="Composer service not initialized")
    return _service


def _http_error(exc: Exception) -> HTTPException:
    """Translate a composition-engine error into its HTTP status."""
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, InvalidArgumentError):
        detail: dict[str, Any] = {"message": str(exc)}
        if exc.field is not None:
            detail["field"] = exc.field
        if exc.ids:
            detail["ids"] = exc.ids
        return HTTPException(status_code=400, detail=detail)
    if isinstance(exc, ConflictError):
        return HTTPException(status_code=409, detail=str(exc))
    return _internal_error(exc, "Unexpected composition failure")


def _internal_error(exc: Exception, context: str) -> HTTPException:
    """Log *exc* and build a 500 that carries no internals."""
    friendly = _formatter.format_storage_error(exc)
    logger.error("%s: %s", context, friendly.technical_detail)
    return HTTPException(status_code=500, detail={"error": context, **friendly.to_dict()})


def _clean(value: str | None, field_name: str, max_length: int | None = None) -> str | None:
    try:
        return _validator.clean_text(value, field_name=field_name, max_length=max_length)
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


def _require_title(value: str) -> str:
    cleaned = _clean(value, "title", _config.max_title_length)
    if not cleaned:
        raise HTTPException(status_code=400, detail="'title' must not be blank.")
    return cleaned


# ---------------------------------------------------------------------------
# Pydantic request models
# ---------------------------------------------------------------------------


class CurriculumCreate(BaseModel):
    """Request body for creating a curriculum."""

    title: str = Field(..., min_length=1, max_length=255)
    created_by: str = Field(..., min_length=1)
    description: str | None = None
    is_public: bool = False


class CurriculumUpdate(BaseModel):
    """Request body for updating a curriculum."""

    title: str | None = Field(default=None, min_length=1, max_length=255)
    description: str | None = None
    is_public: bool | None = None


class TechniqueCreate(BaseModel):
    """Request body for registering a technique."""

    discipline_id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1, max_length=255)
    description: str | None = None


class AssetCreate(BaseModel):
    """Request body for registering a reference asset."""

    url: str = Field(..., min_length=1, max_length=2000)
    asset_type: str = AssetType.VIDEO.value
    technique_id: str | None = None
    title: str | None = Field(default=None, max_length=255)
    description: str | None = None
    thumbnail_url: str | None = None
    duration_seconds: int | None = Field(default=None, ge=0)


class ElementCreate(BaseModel):
    """Request body for appending a curriculum element."""

    kind: str
    technique_id: str | None = None
    asset_id: str | None = None
    title: str | None = None
    details: str | None = None


class ElementUpdate(BaseModel):
    """Request body for patching a curriculum element.

    Only keys present in the request are applied; an explicit null
    clears the field.
    """

    technique_id: str | None = None
    asset_id: str | None = None
    title: str | None = None
    details: str | None = None


class ReorderRequest(BaseModel):
    """Request body for reordering a curriculum's elements."""

    element_ids: list[str] = Field(..., min_length=1)


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------


@router.get("/health")
def health_check() -> dict[str, Any]:
    """Return Composer service health status."""
    return {
        "status": "ok",
        "service": "composer",
        "version": "0.1.0",
        "storage_initialized": _storage is not None,
    }


# ---------------------------------------------------------------------------
# Curricula
# ---------------------------------------------------------------------------


@router.get("/curricula")
def list_curricula(
    created_by: str | None = None,
    is_public: bool | None = None,
) -> dict[str, Any]:
    """List curricula, optionally filtered by owner and visibility."""
    try:
        storage = get_storage()
        curricula = storage.list_curricula(created_by=created_by, is_public=is_public)
        return {"curricula": [c.to_dict() for c in curricula]}
    except HTTPException:
        raise
    except Exception as exc:
        raise _internal_error(exc, "Failed to list curricula") from exc


@router.get("/curricula/{curriculum_id}")
def get_curriculum(curriculum_id: str) -> dict[str, Any]:
    """Get a curriculum by ID."""
    try:
        storage = get_storage()
        curriculum = storage.get_curriculum(curriculum_id)
        if curriculum is None:
            raise HTTPException(status_code=404, detail="Curriculum not found")
        return curriculum.to_dict()
    except HTTPException:
        raise
    except Exception as exc:
        raise _internal_error(exc, "Failed to get curriculum") from exc


@router.post("/curricula", status_code=201)
def create_curriculum(body: CurriculumCreate) -> dict[str, Any]:
    """Create a new, empty curriculum."""
    try:
        storage = get_storage()
        curriculum = Curriculum(
            id=Curriculum.generate_id(),
            title=_require_title(body.title),
            created_by=body.created_by,
            description=_clean(body.description, "description"),
            is_public=body.is_public,
        )
        storage.create_curriculum(curriculum)
        logger.info("Created curriculum %s", curriculum.id)
        return curriculum.to_dict()
    except ComposerStorageError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    except HTTPException:
        raise
    except Exception as exc:
        raise _internal_error(exc, "Failed to create curriculum") from exc


@router.put("/curricula/{curriculum_id}")
def update_curriculum(curriculum_id: str, body: CurriculumUpdate) -> dict[str, Any]:
    """Update a curriculum's title, description or visibility."""
    try:
        storage = get_storage()
        curriculum = storage.get_curriculum(curriculum_id)
        if curriculum is None:
            raise HTTPException(status_code=404, detail="Curriculum not found")
        if body.title is not None:
            curriculum.title = _require_title(body.title)
        if body.description is not None:
            curriculum.description = _clean(body.description, "description")
        if body.is_public is not None:
            curriculum.is_public = body.is_public
        storage.update_curriculum(curriculum)
        return curriculum.to_dict()
    except HTTPException:
        raise
    except ComposerStorageError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except Exception as exc:
        raise _internal_error(exc, "Failed to update curriculum") from exc


@router.delete("/curricula/{curriculum_id}")
def delete_curriculum(curriculum_id: str) -> dict[str, Any]:
    """Delete a curriculum and all of its elements."""
    try:
        storage = get_storage()
        if not storage.delete_curriculum(curriculum_id):
            raise HTTPException(status_code=404, detail="Curriculum not found")
        get_service().forget_curriculum(curriculum_id)
        logger.info("Deleted curriculum %s", curriculum_id)
        return {"deleted": curriculum_id}
    except HTTPException:
        raise
    except Exception as exc:
        raise _internal_error(exc, "Failed to delete curriculum") from exc


# ---------------------------------------------------------------------------
# Reference catalog
# ---------------------------------------------------------------------------


@router.post("/techniques", status_code=201)
def create_technique(body: TechniqueCreate) -> dict[str, Any]:
    """Register a technique that elements can reference."""
    try:
        storage = get_storage()
        technique = Technique(
            id=Technique.generate_id(),
            discipline_id=body.discipline_id,
            name=body.name,
            description=body.description,
        )
        storage.create_technique(technique)
        return technique.to_dict()
    except ComposerStorageError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    except HTTPException:
        raise
    except Exception as exc:
        raise _internal_error(exc, "Failed to create technique") from exc


@router.get("/techniques/{technique_id}")
def get_technique(technique_id: str) -> dict[str, Any]:
    """Get a technique by ID."""
    try:
        technique = get_storage().get_technique(technique_id)
        if technique is None:
            raise HTTPException(status_code=404, detail="Technique not found")
        return technique.to_dict()
    except HTTPException:
        raise
    except Exception as exc:
        raise _internal_error(exc, "Failed to get technique") from exc


@router.post("/assets", status_code=201)
def create_asset(body: AssetCreate) -> dict[str, Any]:
    """Register a reference asset that elements can reference."""
    try:
        storage = get_storage()
        asset = ReferenceAsset(
            id=ReferenceAsset.generate_id(),
            url=body.url,
            asset_type=AssetType(body.asset_type),
            technique_id=body.technique_id,
            title=body.title,
            description=body.description,
            thumbnail_url=body.thumbnail_url,
            duration_seconds=body.duration_seconds,
        )
        storage.create_reference_asset(asset)
        return asset.to_dict()
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=f"Invalid asset_type: {body.asset_type}") from exc
    except ComposerStorageError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    except HTTPException:
        raise
    except Exception as exc:
        raise _internal_error(exc, "Failed to create asset") from exc


@router.get("/assets/{asset_id}")
def get_asset(asset_id: str) -> dict[str, Any]:
    """Get a reference asset by ID."""
    try:
        asset = get_storage().get_reference_asset(asset_id)
        if asset is None:
            raise HTTPException(status_code=404, detail="Asset not found")
        return asset.to_dict()
    except HTTPException:
        raise
    except Exception as exc:
        raise _internal_error(exc, "Failed to get asset") from exc


# ---------------------------------------------------------------------------
# Curriculum elements
# ---------------------------------------------------------------------------


@router.get("/curricula/{curriculum_id}/elements")
def list_elements(curriculum_id: str) -> dict[str, Any]:
    """List a curriculum's elements in order, with references resolved."""
    try:
        elements = get_service().list_elements(curriculum_id)
        return {"elements": [e.to_dict() for e in elements]}
    except HTTPException:
        raise
    except Exception as exc:
        raise _http_error(exc) from exc


@router.post("/curricula/{curriculum_id}/elements", status_code=201)
def add_element(curriculum_id: str, body: ElementCreate) -> dict[str, Any]:
    """Append an element to the end of a curriculum.

    Rejects the request once the curriculum holds the configured maximum
    number of elements.
    """
    try:
        service = get_service()
        payload = body.model_dump()
        payload["title"] = _clean(body.title, "title", _config.max_title_length)
        payload["details"] = _clean(body.details, "details")
        element = service.add_element(
            curriculum_id,
            payload,
            max_elements=_config.max_elements_per_curriculum,
        )
        return {"element": element.to_dict()}
    except HTTPException:
        raise
    except Exception as exc:
        raise _http_error(exc) from exc


@router.put("/curricula/{curriculum_id}/elements/reorder")
def reorder_elements(curriculum_id: str, body: ReorderRequest) -> dict[str, Any]:
    """Reorder every element of a curriculum in one step."""
    try:
        elements = get_service().reorder_elements(curriculum_id, body.element_ids)
        return {"elements": [e.to_dict() for e in elements]}
    except HTTPException:
        raise
    except Exception as exc:
        raise _http_error(exc) from exc


@router.put("/curricula/{curriculum_id}/elements/{element_id}")
def update_element(
    curriculum_id: str,
    element_id: str,
    body: ElementUpdate,
) -> dict[str, Any]:
    """Patch an element's references, title or details."""
    try:
        changes = body.model_dump(exclude_unset=True)
        if "title" in changes:
            changes["title"] = _clean(changes["title"], "title", _config.max_title_length)
        if "details" in changes:
            changes["details"] = _clean(changes["details"], "details")
        element = get_service().update_element(curriculum_id, element_id, changes)
        return {"element": element.to_dict()}
    except HTTPException:
        raise
    except Exception as exc:
        raise _http_error(exc) from exc


@router.delete("/curricula/{curriculum_id}/elements/{element_id}")
def remove_element(curriculum_id: str, element_id: str) -> dict[str, Any]:
    """Delete an element; the rest keep their positions."""
    try:
        get_service().remove_element(curriculum_id, element_id)
        return {"deleted": element_id}
    except HTTPException:
        raise
    except Exception as exc:
        raise _http_error(exc) from exc
