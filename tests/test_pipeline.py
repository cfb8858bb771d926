"""End-to-end tests: load CSVs, solve with OR-Tools, write slots and drafts."""

from dataclasses import replace
from datetime import timedelta

import pandas as pd

from conftest import MONDAY, TEST_RULES, write_clinic, write_csv
from staffing.data_access.slot_writer import CsvSlotStore
from staffing.data_access.week_loader import SLOT_FLAG_COLUMNS, CsvDataSource, load_week
from staffing.engine import pipeline
from staffing.engine.pipeline import optimize_dates, preview_dates
from staffing.engine.solver import SOLVER_ERROR, solve_model

TIME_LIMIT = 20
TUESDAY = MONDAY + timedelta(days=1)
NEXT_MONDAY = MONDAY + timedelta(days=7)


def _slots(directory):
    df = pd.read_csv(directory / "slots.csv", dtype=str, keep_default_na=False)
    return {row["id"]: row for row in df.to_dict(orient="records")}


def _optimize(directory, rules=TEST_RULES, weekly=False, dates=(MONDAY,), max_workers=1):
    return optimize_dates(
        CsvDataSource(directory), CsvSlotStore(directory), list(dates), weekly=weekly, time_limit=TIME_LIMIT,
        rules=rules, max_workers=max_workers,
    )


# ============================================================================
# Standard runs
# ============================================================================

def test_closing_site_gets_two_full_day_closers(clinic_dir):
    """Two staff cover the centre all day; one is primary, the other secondary."""
    report = _optimize(clinic_dir)

    assert report.succeeded == [MONDAY]
    slots = _slots(clinic_dir)
    at_centre = {
        staff
        for staff in ("s1", "s2", "s3")
        if slots[f"{staff}-morning"]["location_id"] == "centre" and slots[f"{staff}-afternoon"]["location_id"] == "centre"
    }
    assert len(at_centre) == 2

    primary = {row["staff_id"] for row in slots.values() if row["is_primary_closer"] == "true"}
    secondary = {row["staff_id"] for row in slots.values() if row["is_secondary_closer"] == "true"}
    assert len(primary) == 1 and len(secondary) == 1
    assert primary | secondary == at_centre
    assert not primary & secondary


def test_unassigned_staff_is_written_as_admin(clinic_dir):
    _optimize(clinic_dir)
    slots = _slots(clinic_dir)
    locations = {row["location_id"] for row in slots.values()}

    assert locations == {"centre", "admin-loc"}


def test_tertiary_doctor_turns_secondary_into_tertiary(clinic_dir):
    rules = replace(TEST_RULES, tertiary_doctor_ids=frozenset({"d1"}))
    _optimize(clinic_dir, rules=rules)
    slots = _slots(clinic_dir)

    assert not any(row["is_secondary_closer"] == "true" for row in slots.values())
    assert sum(row["is_tertiary_closer"] == "true" for row in slots.values()) == 2  # both halves of one person


def test_weekly_mode_matches_daily_coverage(clinic_dir):
    report = _optimize(clinic_dir, weekly=True)

    assert report.mode == "weekly"
    assert report.succeeded == [MONDAY]
    slots = _slots(clinic_dir)
    assert sum(row["location_id"] == "centre" for row in slots.values()) == 4


def test_closing_site_with_one_candidate_leaves_other_sites_staffed(tmp_path):
    """A lone centre candidate skips the closing rule; the clinic next door is still staffed."""
    write_clinic(tmp_path)
    write_csv(tmp_path / "doctors.csv", ["id", "name", "staffing_coefficient"],
              [["d1", "Dr One", "1.2"], ["d2", "Dr Two", "1.2"]])
    write_csv(
        tmp_path / "locations.csv",
        ["id", "name", "closing"],
        [["centre", "Centre", "true"], ["clinic", "Clinic", "false"], ["admin-loc", "Administration", "false"]],
    )
    write_csv(tmp_path / "staff_locations.csv", ["staff_id", "location_id", "rank"],
              [["s1", "centre", 1], ["s2", "clinic", 1], ["s3", "clinic", 1]])
    write_csv(
        tmp_path / "demand.csv",
        ["location_id", "date", "period", "doctor_id"],
        [[location, MONDAY.isoformat(), period, doctor]
         for location, doctor in (("centre", "d1"), ("clinic", "d2"))
         for period in ("morning", "afternoon")],
    )

    report = _optimize(tmp_path)

    assert report.succeeded == [MONDAY]
    slots = _slots(tmp_path)
    for staff in ("s2", "s3"):
        assert slots[f"{staff}-morning"]["location_id"] == "clinic"
        assert slots[f"{staff}-afternoon"]["location_id"] == "clinic"
    assert slots["s1-morning"]["location_id"] == "centre"
    assert not any(row[flag] == "true" for row in slots.values() for flag in SLOT_FLAG_COLUMNS)


def test_surgical_need_writes_session_and_role(tmp_path):
    write_clinic(tmp_path)
    write_csv(
        tmp_path / "locations.csv",
        ["id", "name", "closing"],
        [["centre", "Centre", "true"], ["block", "Bloc opératoire", "false"], ["admin-loc", "Administration", "false"]],
    )
    write_csv(tmp_path / "surgical_roles.csv", ["id", "name"], [["r1", "Instrumentist"]])
    write_csv(tmp_path / "staff_locations.csv", ["staff_id", "location_id", "rank"], [["s1", "centre", 1], ["s2", "centre", 1]])
    write_csv(tmp_path / "staff_roles.csv", ["staff_id", "role_id", "rank"], [["s3", "r1", 1]])
    write_csv(
        tmp_path / "surgical_sessions.csv",
        ["id", "date", "period", "session_type_id", "room_id", "doctor_id"],
        [["op1", MONDAY.isoformat(), "morning", "t1", "", ""]],
    )
    write_csv(tmp_path / "role_requirements.csv", ["session_type_id", "role_id", "required_count"], [["t1", "r1", 1]])

    report = _optimize(tmp_path)

    assert report.succeeded == [MONDAY]
    slots = _slots(tmp_path)
    operating = slots["s3-morning"]
    assert (operating["location_id"], operating["session_id"], operating["role_id"]) == ("block", "op1", "r1")
    assert slots["s3-afternoon"]["location_id"] == "admin-loc"
    assert slots["s3-afternoon"]["session_id"] == ""


# ============================================================================
# Multi-day runs
# ============================================================================

def test_closing_roles_rotate_across_days(tmp_path):
    """Monday's secondary closer is penalized for repeating it, so Tuesday swaps the roles."""
    write_clinic(tmp_path, staff_ids=("s1", "s2"), days=(MONDAY, TUESDAY))

    report = _optimize(tmp_path, dates=[MONDAY, TUESDAY])

    assert report.succeeded == [MONDAY, TUESDAY]
    slots = _slots(tmp_path).values()

    def closers(day, flag):
        return {row["staff_id"] for row in slots if row["date"] == day.isoformat() and row[flag] == "true"}

    assert len(closers(MONDAY, "is_secondary_closer")) == 1
    assert closers(TUESDAY, "is_primary_closer") == closers(MONDAY, "is_secondary_closer")
    assert closers(TUESDAY, "is_secondary_closer") == closers(MONDAY, "is_primary_closer")


def test_solver_error_is_reported_and_the_batch_continues(tmp_path, monkeypatch):
    write_clinic(tmp_path, days=(MONDAY, TUESDAY))
    calls = []

    def failing_once(model, time_limit):
        calls.append(model.name)
        if len(calls) == 1:
            raise RuntimeError("backend crashed")
        return solve_model(model, time_limit)

    monkeypatch.setattr(pipeline, "solve_model", failing_once)
    report = _optimize(tmp_path, dates=[MONDAY, TUESDAY])

    assert report.dates[0].status == SOLVER_ERROR
    assert "backend crashed" in report.dates[0].message
    assert report.succeeded == [TUESDAY]
    slots = _slots(tmp_path)
    assert slots["s1-morning"]["location_id"] == ""
    assert slots[f"s1-{TUESDAY.isoformat()}-morning"]["location_id"] != ""


def test_parallel_weeks_are_all_written(tmp_path):
    write_clinic(tmp_path, days=(MONDAY, NEXT_MONDAY))

    report = _optimize(tmp_path, dates=[MONDAY, NEXT_MONDAY], max_workers=2)

    assert report.succeeded == [MONDAY, NEXT_MONDAY]
    slots = _slots(tmp_path).values()
    for day in (MONDAY, NEXT_MONDAY):
        rows = [row for row in slots if row["date"] == day.isoformat()]
        assert sum(row["location_id"] == "centre" for row in rows) == 4
        assert all(row["location_id"] for row in rows)


def test_week_loading_holds_the_store_lock(clinic_dir, monkeypatch):
    """Reads of the slot table never overlap a write from another week."""
    held = []
    real_load_week = pipeline.load_week

    def load_week_checked(*args, **kwargs):
        held.append(pipeline._store_lock.locked())
        return real_load_week(*args, **kwargs)

    monkeypatch.setattr(pipeline, "load_week", load_week_checked)
    _optimize(clinic_dir)
    preview_dates(CsvDataSource(clinic_dir), CsvSlotStore(clinic_dir), [MONDAY], time_limit=TIME_LIMIT,
                  rules=TEST_RULES)

    assert held == [True, True]


# ============================================================================
# Preview runs
# ============================================================================

def test_preview_stages_drafts_without_touching_slots(clinic_dir):
    before = _slots(clinic_dir)
    previews = preview_dates(CsvDataSource(clinic_dir), CsvSlotStore(clinic_dir), [MONDAY], time_limit=TIME_LIMIT,
                             rules=TEST_RULES)

    preview = previews[0]
    assert preview.feasible
    assert preview.summary.unmet_before == 2
    assert preview.summary.unmet_after == 0
    assert len(preview.drafts) == 4
    assert _slots(clinic_dir) == before

    drafts = pd.read_csv(clinic_dir / "slot_drafts.csv", dtype=str, keep_default_na=False)
    assert len(drafts) == 4
    assert set(drafts["date"]) == {MONDAY.isoformat()}


def test_preview_after_apply_proposes_nothing(clinic_dir):
    """Previewing an already optimized day keeps every assignment and closing role."""
    _optimize(clinic_dir)
    previews = preview_dates(CsvDataSource(clinic_dir), CsvSlotStore(clinic_dir), [MONDAY], time_limit=TIME_LIMIT,
                             rules=TEST_RULES)

    assert previews[0].feasible
    assert previews[0].changes == []
    assert previews[0].drafts == []


def test_rerunning_preview_replaces_drafts_for_the_date(clinic_dir):
    """Previewing an unapplied schedule twice replaces that date's drafts instead of appending.

    The same proposals are staged again because the slots were never changed; an
    applied schedule stages nothing, see test_preview_after_apply_proposes_nothing.
    """
    source, store = CsvDataSource(clinic_dir), CsvSlotStore(clinic_dir)
    preview_dates(source, store, [MONDAY], time_limit=TIME_LIMIT, rules=TEST_RULES)
    preview_dates(source, store, [MONDAY], time_limit=TIME_LIMIT, rules=TEST_RULES)

    drafts = pd.read_csv(clinic_dir / "slot_drafts.csv", dtype=str, keep_default_na=False)
    assert len(drafts) == 4


def test_loaded_week_has_current_state(clinic_dir):
    _optimize(clinic_dir)
    week = load_week(CsvDataSource(clinic_dir), [MONDAY], TEST_RULES)
    morning_refs = [week.current.get(staff, MONDAY).morning for staff in ("s1", "s2", "s3")]

    assert sum(ref.is_admin for ref in morning_refs) == 1
