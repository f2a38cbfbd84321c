# =======================================================================================
# smartgrid/utils/validators.py - Validation Helpers
# =======================================================================================
import re
from typing import Iterable, Optional, Union
from .exceptions import FormatError, CompatibilityError, LayoutError
from ..models.schemas import GridPlacement, SlotTemplate, ReplacementResult
from ..services.identifier_codec import (
    Tag,
    decode,
    format_identifier,
    is_real_identifier,
    tag_identifier,
)

_WHITESPACE = re.compile(r"\s")


class FamilyValidator:
    """Decides whether a scanned pouch may take the place of another (or fill an empty slot)."""

    @staticmethod
    def normalize(identifier: str) -> str:
        return _WHITESPACE.sub("", identifier or "")

    @staticmethod
    def check(old: Union[Tag, str], new_identifier: str) -> str:
        """
        Run the family checks in order and return the approval message.
        Raises FormatError or CompatibilityError on the first failed check.
        """
        old_identifier = tag_identifier(old)
        normalized = FamilyValidator.normalize(new_identifier)

        if not is_real_identifier(normalized):
            raise FormatError(
                f'Invalid identifier format. Expected 8 digits, received: "{new_identifier}".',
                code="BAD_FORMAT",
            )

        old_parsed = decode(old_identifier)
        new_parsed = decode(normalized)

        if not old_parsed.is_placeholder and old_identifier == normalized:
            raise CompatibilityError(
                "A pouch cannot be replaced with itself.", code="SELF_REPLACEMENT"
            )

        if old_parsed.content_code != new_parsed.content_code:
            raise CompatibilityError(
                f"Content code mismatch. Expected: {old_parsed.content_code}, "
                f"scanned: {new_parsed.content_code}.",
                code="CONTENT_MISMATCH",
            )

        if old_parsed.color_type != new_parsed.color_type:
            raise CompatibilityError(
                f"Wrong color. Expected type: {old_parsed.color_type}, "
                f"scanned: {new_parsed.color_type}.",
                code="COLOR_MISMATCH",
            )

        if old_parsed.is_placeholder:
            return f"Placement approved. Pouch {format_identifier(normalized)} placed."
        return (
            f"Replacement approved. Pouch #{new_parsed.serial} "
            f"replaces pouch #{old_parsed.serial}."
        )


def validate_replacement(old: Union[Tag, str], new_identifier: str) -> ReplacementResult:
    """Structured form of FamilyValidator.check, identical for interactive and batch callers."""
    try:
        message = FamilyValidator.check(old, new_identifier)
    except (FormatError, CompatibilityError) as e:
        return ReplacementResult(success=False, message=e.message, code=e.code)
    return ReplacementResult(success=True, message=message)


def rectangles_overlap(a: GridPlacement, b: GridPlacement) -> bool:
    """Axis-aligned rectangle intersection on both dimensions."""
    return (
        a.pos_x < b.pos_x + b.width
        and a.pos_x + a.width > b.pos_x
        and a.pos_y < b.pos_y + b.height
        and a.pos_y + a.height > b.pos_y
    )


class LayoutPlacementValidator:
    """Validates edits to the master layout grid."""

    @staticmethod
    def check_bounds(candidate: GridPlacement, grid_cols: int, grid_rows: int) -> bool:
        if (
            candidate.pos_x < 0
            or candidate.pos_y < 0
            or candidate.pos_x + candidate.width > grid_cols
            or candidate.pos_y + candidate.height > grid_rows
        ):
            raise LayoutError(
                f"Slot at ({candidate.pos_x},{candidate.pos_y}) size "
                f"{candidate.width}x{candidate.height} does not fit a {grid_cols}x{grid_rows} grid",
                code="OUT_OF_BOUNDS",
            )
        return True

    @staticmethod
    def check_collision(
        candidate: GridPlacement,
        slots: Iterable[SlotTemplate],
        ignore_id: Optional[str] = None,
    ) -> bool:
        for slot in slots:
            if ignore_id is not None and slot.id == ignore_id:
                continue
            if rectangles_overlap(candidate, slot):
                raise LayoutError(
                    f"Slot overlaps existing slot at ({slot.pos_x},{slot.pos_y})",
                    code="OVERLAP",
                )
        return True

    @staticmethod
    def check_content_unique(
        slots: Iterable[SlotTemplate], slot_id: str, name: str, color: str
    ) -> bool:
        """A (name, color) content pair may be assigned to at most one slot."""
        for slot in slots:
            if slot.id != slot_id and slot.name == name and slot.color == color:
                raise LayoutError(
                    f"Content '{name}' ({color}) is already assigned to the slot at "
                    f"({slot.pos_x},{slot.pos_y})",
                    code="CONTENT_IN_USE",
                )
        return True
