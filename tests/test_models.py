"""Tests for combo keys, need references and the fairness snapshot."""

from datetime import date

import pytest

from staffing.config import AFTERNOON, MORNING
from staffing.domain.models import (
    ADMIN,
    NEED_SURGICAL,
    Combo,
    ComboKey,
    DayPlacement,
    FairnessState,
    Need,
    NeedRef,
    SlotPlaceholder,
    slot_ref,
)

DAY = date(2024, 3, 5)


def test_combo_variable_name_round_trips():
    """A variable name decodes back to the staff, date and both half-day references."""
    location = Need("loc-1", DAY, MORNING, 2)
    surgical = Need("block", DAY, AFTERNOON, 1, kind=NEED_SURGICAL, session_id="s-9", role_id="nurse")
    combo = Combo("staff-1", DAY, location, surgical)

    key = ComboKey.from_variable_name(combo.variable_name)

    assert key == combo.key
    assert key.morning == NeedRef(kind="location", location_id="loc-1")
    assert key.afternoon.session_id == "s-9"


def test_admin_and_empty_halves_round_trip():
    combo = Combo("staff-1", DAY, ADMIN, None)
    key = ComboKey.from_variable_name(combo.variable_name)

    assert key.morning.is_admin
    assert key.afternoon is None


@pytest.mark.parametrize("staff_id", ["a__b", "a.b", ""])
def test_reserved_separators_are_rejected(staff_id):
    """Identifiers containing the key separators cannot be encoded."""
    with pytest.raises(ValueError):
        Combo(staff_id, DAY, ADMIN, ADMIN).variable_name


def test_malformed_variable_name_is_rejected():
    with pytest.raises(ValueError):
        ComboKey.from_variable_name("full_day__s1__loc__2024-03-05")


def test_need_rejects_negative_demand():
    with pytest.raises(ValueError):
        Need("loc-1", DAY, MORNING, -1)


def test_surgical_ref_ignores_block_location():
    """Surgical needs are identified by session and role only."""
    need = Need("block", DAY, MORNING, 1, kind=NEED_SURGICAL, session_id="s1", role_id="r1")
    slot = SlotPlaceholder("slot-1", "staff-1", DAY, MORNING, location_id="elsewhere", session_id="s1", role_id="r1")

    assert need.ref.matches(slot_ref(slot, "admin-loc"))


def test_slot_without_location_is_admin():
    slot = SlotPlaceholder("slot-1", "staff-1", DAY, MORNING)
    assert slot_ref(slot, "admin-loc").is_admin
    assert slot_ref(SlotPlaceholder("slot-2", "staff-1", DAY, MORNING, "admin-loc"), "admin-loc").is_admin


def test_fairness_advance_returns_new_snapshot():
    """Advancing never mutates the previous snapshot."""
    state = FairnessState(admin_half_days={"s1": 1})
    placement = DayPlacement("s1", DAY, admin_halves=1, location_ids=("loc", "loc"), primary_closer=True)

    advanced = state.advance([placement])

    assert state.admin_used("s1") == 1
    assert advanced.admin_used("s1") == 2
    assert advanced.days_at("s1", "loc") == frozenset({DAY})
    assert advanced.closing_counts("s1") == (1, 0)
    assert state.closing_counts("s1") == (0, 0)


def test_fairness_counts_distinct_days():
    state = FairnessState().advance(
        [DayPlacement("s1", DAY, location_ids=("loc",)), DayPlacement("s1", DAY, location_ids=("loc",))]
    )
    assert len(state.days_at("s1", "loc")) == 1
