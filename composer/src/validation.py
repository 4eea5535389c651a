"""Input validation for element creation and reordering.

``KindValidator`` turns a loosely-typed creation payload into one of the
kind-typed drafts, so a draft can never lack the field its kind needs.
``ReorderValidator`` checks a proposed ordering against the curriculum's
current elements.
"""

from __future__ import annotations

from collections import Counter
from collections.abc import Mapping, Sequence
from typing import Any

from composer.src.errors import InvalidArgumentError
from composer.src.models import (
    AssetDraft,
    CurriculumElement,
    ElementDraft,
    ElementKind,
    TechniqueDraft,
    TextDraft,
)

_REQUIRED_FIELD: dict[ElementKind, str] = {
    ElementKind.TECHNIQUE: "technique_id",
    ElementKind.ASSET: "asset_id",
    ElementKind.TEXT: "title",
}


def _present(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, str):
        return bool(value.strip())
    return True


class KindValidator:
    """Validate creation payloads against their declared kind."""

    @staticmethod
    def required_field(kind: ElementKind) -> str:
        """Return the payload field that *kind* requires."""
        return _REQUIRED_FIELD[kind]

    def validate(self, payload: Mapping[str, Any] | ElementDraft) -> ElementDraft:
        """Build a draft from *payload*.

        Args:
            payload: Either an already-typed draft, or a mapping with
                ``kind`` plus optional ``technique_id``, ``asset_id``,
                ``title`` and ``details``.

        Returns:
            The draft matching the payload's kind.

        Raises:
            InvalidArgumentError: If ``kind`` is unknown or the field the
                kind requires is missing or blank.
        """
        if isinstance(payload, (TechniqueDraft, AssetDraft, TextDraft)):
            self._check_draft(payload)
            return payload

        raw_kind = payload.get("kind")
        try:
            kind = ElementKind(raw_kind)
        except ValueError as exc:
            allowed = ", ".join(k.value for k in ElementKind)
            raise InvalidArgumentError(
                f"Unknown element kind {raw_kind!r}; expected one of: {allowed}",
                field="kind",
            ) from exc

        required = _REQUIRED_FIELD[kind]
        value = payload.get(required)
        if not _present(value):
            raise InvalidArgumentError(
                f"{kind.value} elements require '{required}'",
                field=required,
            )

        details = payload.get("details")
        if kind is ElementKind.TECHNIQUE:
            return TechniqueDraft(technique_id=str(value), details=details)
        if kind is ElementKind.ASSET:
            return AssetDraft(asset_id=str(value), details=details)
        return TextDraft(title=str(value).strip(), details=details)

    def _check_draft(self, draft: ElementDraft) -> None:
        required = _REQUIRED_FIELD[draft.kind]
        if not _present(getattr(draft, required)):
            raise InvalidArgumentError(
                f"{draft.kind.value} elements require '{required}'",
                field=required,
            )


class ReorderValidator:
    """Check that a proposed ordering is a permutation of the current elements."""

    def validate(
        self,
        current: Sequence[CurriculumElement],
        ordered_ids: Sequence[str],
    ) -> list[tuple[str, int]]:
        """Validate *ordered_ids* and return the resulting assignments.

        Args:
            current: The curriculum's elements as currently stored.
            ordered_ids: Every element ID, in the desired order.

        Returns:
            ``(element_id, ord)`` pairs where ``ord`` is the 0-based position.

        Raises:
            InvalidArgumentError: If the input contains foreign IDs,
                repeats an ID, or omits one of the current elements.
        """
        current_ids = {element.id for element in current}

        foreign = [element_id for element_id in dict.fromkeys(ordered_ids) if element_id not in current_ids]
        if foreign:
            raise InvalidArgumentError(
                f"Elements do not belong to this curriculum: {', '.join(foreign)}",
                ids=foreign,
            )

        duplicated = [element_id for element_id, count in Counter(ordered_ids).items() if count > 1]
        if duplicated:
            raise InvalidArgumentError(
                f"Elements listed more than once: {', '.join(duplicated)}",
                ids=duplicated,
            )

        provided = set(ordered_ids)
        missing = [element.id for element in current if element.id not in provided]
        if missing:
            raise InvalidArgumentError(
                f"All elements must be included in a reorder; missing: {', '.join(missing)}",
                ids=missing,
            )

        return [(element_id, position) for position, element_id in enumerate(ordered_ids)]
