"""Tests for demand computation.

Rules tested:
1. Coefficients are summed per location and half-day, then rounded up
2. Float noise never adds a phantom staff member
3. Inactive doctors and the surgical block are ignored
4. A missing coefficient falls back to the default or fails loudly
"""

from datetime import date

import pytest

from staffing.config import MORNING, AFTERNOON, ClinicRules
from staffing.domain.models import (
    DemandRow,
    Doctor,
    Location,
    RoleRequirement,
    SurgicalRole,
    SurgicalSession,
)
from staffing.engine.demand import (
    MissingCoefficientError,
    compute_location_needs,
    compute_surgical_needs,
    find_block_location,
    required_headcount,
)

DAY = date(2024, 3, 4)

LOCATIONS = {
    "clinic": Location("clinic", "Centre Ville"),
    "block": Location("block", "Bloc opératoire"),
}


def _rows(*doctor_ids, location_id="clinic", period=MORNING):
    return [DemandRow(location_id, DAY, period, doctor_id) for doctor_id in doctor_ids]


# ============================================================================
# Headcount rounding
# ============================================================================

def test_two_doctors_at_default_coefficient_need_three_staff():
    """1.2 + 1.2 = 2.4 rounds up to 3."""
    assert required_headcount([1.2, 1.2]) == 3


def test_float_noise_does_not_add_a_staff_member():
    """Five doctors at 1.2 sum to 6.000000000000001 in floating point but need 6."""
    assert required_headcount([1.2] * 5) == 6


def test_headcount_is_monotonic_in_doctor_count():
    """Adding a doctor never reduces the requirement."""
    previous = 0
    for count in range(1, 12):
        current = required_headcount([1.2] * count)
        assert current >= previous
        previous = current


def test_empty_headcount_is_zero():
    assert required_headcount([]) == 0


# ============================================================================
# Location needs
# ============================================================================

def test_location_need_aggregates_doctors():
    """Doctors at the same location and half-day share one need."""
    doctors = {"d1": Doctor("d1", "A", 1.2), "d2": Doctor("d2", "B", 1.2)}
    needs = compute_location_needs(_rows("d1", "d2"), doctors, LOCATIONS)

    assert len(needs) == 1
    assert needs[0].required_count == 3
    assert set(needs[0].doctor_ids) == {"d1", "d2"}


def test_periods_produce_separate_needs():
    doctors = {"d1": Doctor("d1", "A", 1.0)}
    rows = _rows("d1") + _rows("d1", period=AFTERNOON)
    needs = compute_location_needs(rows, doctors, LOCATIONS)

    assert sorted(need.period for need in needs) == [AFTERNOON, MORNING]


def test_inactive_doctor_is_skipped():
    """Rows whose doctor is missing from the active set contribute nothing."""
    doctors = {"d1": Doctor("d1", "A", 1.2)}
    needs = compute_location_needs(_rows("d1", "gone"), doctors, LOCATIONS)

    assert needs[0].required_count == 2
    assert needs[0].doctor_ids == ("d1",)


def test_surgical_block_location_is_excluded():
    """The block location is staffed through surgical roles only."""
    doctors = {"d1": Doctor("d1", "A", 1.2)}
    needs = compute_location_needs(_rows("d1", location_id="block"), doctors, LOCATIONS)

    assert needs == []


def test_missing_coefficient_uses_default():
    doctors = {"d1": Doctor("d1", "A", None)}
    needs = compute_location_needs(_rows("d1"), doctors, LOCATIONS, default_coefficient=2.5)

    assert needs[0].required_count == 3


def test_missing_coefficient_without_default_fails():
    doctors = {"d1": Doctor("d1", "A", None)}
    with pytest.raises(MissingCoefficientError):
        compute_location_needs(_rows("d1"), doctors, LOCATIONS, default_coefficient=None)


# ============================================================================
# Surgical needs
# ============================================================================

def test_block_location_found_by_name():
    assert find_block_location(LOCATIONS) == "block"


def test_block_location_falls_back_to_configured_id():
    rules = ClinicRules(fallback_block_location_id="theatre")
    locations = {"theatre": Location("theatre", "Salle 3")}
    assert find_block_location(locations, rules) == "theatre"


def test_surgical_needs_follow_active_role_requirements():
    """One need per (session, active role requirement); cancelled sessions are dropped."""
    sessions = [
        SurgicalSession("s1", DAY, MORNING, "knee", room_id="r1", doctor_id="d1"),
        SurgicalSession("s2", DAY, AFTERNOON, "knee", cancelled=True),
    ]
    requirements = [
        RoleRequirement("knee", "nurse", 2),
        RoleRequirement("knee", "instrumentist", 1),
        RoleRequirement("knee", "assistant", 1, active=False),
    ]
    roles = {"nurse": SurgicalRole("nurse", "Nurse"), "instrumentist": SurgicalRole("instrumentist", "Instr.")}

    needs = compute_surgical_needs(sessions, requirements, roles, LOCATIONS)

    assert {(need.session_id, need.role_id, need.required_count) for need in needs} == {
        ("s1", "nurse", 2),
        ("s1", "instrumentist", 1),
    }
    assert all(need.is_surgical and need.location_id == "block" for need in needs)
    assert all(need.room_id == "r1" and need.doctor_ids == ("d1",) for need in needs)
