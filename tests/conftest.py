"""Shared fixtures: a small clinic written out as CSV tables."""

from datetime import date

import pandas as pd
import pytest

from staffing.config import ClinicRules

MONDAY = date(2024, 3, 4)

TEST_RULES = ClinicRules(
    admin_location_id="admin-loc",
    overload_location_ids=frozenset(),
    cluster_location_ids=frozenset(),
    tertiary_doctor_ids=frozenset(),
    secondary_weekday_penalties={},
    doctor_affinities=(),
    fallback_block_location_id=None,
)


def write_csv(path, columns, rows):
    pd.DataFrame(rows, columns=columns).to_csv(path, index=False)


def slot_id(staff_id, day, period):
    """Monday keeps the short ``s1-morning`` form; later dates carry their ISO date."""
    if day == MONDAY:
        return f"{staff_id}-{period}"
    return f"{staff_id}-{day.isoformat()}-{period}"


def write_clinic(directory, staff_ids=("s1", "s2", "s3"), days=(MONDAY,)):
    """One closing site with a single doctor all day on each date; every staff member ranks it first."""
    write_csv(directory / "staff.csv", ["id", "name"], [[s, s.upper()] for s in staff_ids])
    write_csv(directory / "doctors.csv", ["id", "name", "staffing_coefficient"], [["d1", "Dr One", "1.2"]])
    write_csv(
        directory / "locations.csv",
        ["id", "name", "closing"],
        [["centre", "Centre", "true"], ["admin-loc", "Administration", "false"]],
    )
    write_csv(directory / "surgical_roles.csv", ["id", "name"], [])
    write_csv(directory / "staff_locations.csv", ["staff_id", "location_id", "rank"], [[s, "centre", 1] for s in staff_ids])
    write_csv(directory / "staff_doctors.csv", ["staff_id", "doctor_id", "rank"], [])
    write_csv(directory / "staff_roles.csv", ["staff_id", "role_id", "rank"], [])
    write_csv(
        directory / "demand.csv",
        ["location_id", "date", "period", "doctor_id"],
        [["centre", day.isoformat(), period, "d1"] for day in days for period in ("morning", "afternoon")],
    )
    write_csv(
        directory / "surgical_sessions.csv",
        ["id", "date", "period", "session_type_id", "room_id", "doctor_id"],
        [],
    )
    write_csv(directory / "role_requirements.csv", ["session_type_id", "role_id", "required_count"], [])
    write_csv(
        directory / "slots.csv",
        ["id", "staff_id", "date", "period", "location_id"],
        [
            [slot_id(s, day, period), s, day.isoformat(), period, ""]
            for day in days
            for s in staff_ids
            for period in ("morning", "afternoon")
        ],
    )
    return directory


@pytest.fixture
def clinic_dir(tmp_path):
    """Directory holding a three-person clinic for Monday 2024-03-04."""
    return write_clinic(tmp_path)
