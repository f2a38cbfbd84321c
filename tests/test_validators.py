import pytest

from smartgrid.models.schemas import GridPlacement, SlotTemplate
from smartgrid.services.identifier_codec import EmptySlot
from smartgrid.utils.exceptions import CompatibilityError, FormatError, LayoutError
from smartgrid.utils.validators import (
    FamilyValidator,
    LayoutPlacementValidator,
    rectangles_overlap,
    validate_replacement,
)


# ---- family compatibility ----

def test_non_digit_identifier_is_bad_format():
    result = validate_replacement("01010001", "0102000A")
    assert not result.success
    assert result.code == "BAD_FORMAT"


def test_different_color_is_rejected():
    result = validate_replacement("01010001", "02010001")
    assert not result.success
    assert result.code == "COLOR_MISMATCH"


def test_content_is_checked_before_color():
    result = validate_replacement("01010001", "02010002")
    assert result.code == "CONTENT_MISMATCH"


def test_same_tag_cannot_replace_itself():
    result = validate_replacement("01010001", "01010001")
    assert not result.success
    assert result.code == "SELF_REPLACEMENT"


def test_placeholder_slot_accepts_matching_pouch():
    result = validate_replacement("01XX0001", "01050001")
    assert result.success
    assert result.message == "Placement approved. Pouch 01 05 0001 placed."


def test_replacement_message_names_both_serials():
    result = validate_replacement("01010001", "01070001")
    assert result.success
    assert result.message == "Replacement approved. Pouch #07 replaces pouch #01."


def test_empty_slot_tag_and_whitespace_are_accepted():
    assert FamilyValidator.check(EmptySlot("02", "0003"), " 0204 0003 ").startswith("Placement approved")


def test_check_raises_typed_errors():
    with pytest.raises(FormatError):
        FamilyValidator.check("01010001", "1234")
    with pytest.raises(CompatibilityError) as excinfo:
        FamilyValidator.check("01010001", "03010001")
    assert excinfo.value.code == "COLOR_MISMATCH"


# ---- layout placement ----

def _rect(x, width, y=0, height=1):
    return GridPlacement(pos_x=x, pos_y=y, width=width, height=height)


def test_overlapping_columns_collide():
    assert rectangles_overlap(_rect(0, 2), _rect(1, 2))


def test_touching_columns_do_not_collide():
    assert not rectangles_overlap(_rect(0, 2), _rect(2, 2))


def test_different_rows_do_not_collide():
    assert not rectangles_overlap(_rect(0, 2, y=0), _rect(0, 2, y=1))


def test_check_bounds():
    assert LayoutPlacementValidator.check_bounds(_rect(2, 2), 4, 6)
    with pytest.raises(LayoutError) as excinfo:
        LayoutPlacementValidator.check_bounds(_rect(3, 2), 4, 6)
    assert excinfo.value.code == "OUT_OF_BOUNDS"


def test_check_collision_ignores_the_slot_being_moved():
    slots = [SlotTemplate(id="a", pos_x=0, pos_y=0, width=2)]
    with pytest.raises(LayoutError):
        LayoutPlacementValidator.check_collision(_rect(1, 1), slots)
    assert LayoutPlacementValidator.check_collision(_rect(1, 1), slots, ignore_id="a")


def test_content_pair_assigned_once():
    slots = [
        SlotTemplate(id="a", name="Airway", color="red"),
        SlotTemplate(id="b", pos_x=1, name="1x1", color="grey"),
    ]
    assert LayoutPlacementValidator.check_content_unique(slots, "a", "Airway", "red")
    assert LayoutPlacementValidator.check_content_unique(slots, "b", "Airway", "blue")
    with pytest.raises(LayoutError) as excinfo:
        LayoutPlacementValidator.check_content_unique(slots, "b", "Airway", "red")
    assert excinfo.value.code == "CONTENT_IN_USE"
