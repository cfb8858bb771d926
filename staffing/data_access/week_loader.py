"""Assemble the week-scoped input of an optimization run from a directory of CSV tables.

Expected tables (headers are case-insensitive):

- ``staff.csv``: id, name, [active], [admin_target]
- ``doctors.csv``: id, name, [active], [staffing_coefficient]
- ``locations.csv``: id, name, [active], [closing]
- ``surgical_roles.csv``: id, name, [active]
- ``staff_locations.csv`` / ``staff_doctors.csv`` / ``staff_roles.csv``: staff_id, <target>_id, rank
- ``demand.csv``: location_id, date, period, doctor_id
- ``surgical_sessions.csv``: id, date, period, session_type_id, [location_id], [room_id], [doctor_id], [cancelled]
- ``role_requirements.csv``: session_type_id, role_id, required_count, [active]
- ``slots.csv``: id, staff_id, date, period, [location_id], [session_id], [role_id], closing flags, [active]
- ``fairness_history.csv`` (optional): staff_id, [overload_escalation], [closing_history], [cluster_history]
"""

from __future__ import annotations

import logging
from collections import defaultdict
from datetime import date, timedelta
from pathlib import Path
from typing import Dict, Iterable, List, Protocol, Sequence, Tuple

from staffing.config import AFTERNOON, CLINIC_RULES, MORNING, PERIODS, ClinicRules
from staffing.data_access.csv_tables import (
    _coerce_bool,
    _coerce_numeric,
    _optional_str,
    _parse_date,
    read_table,
    records,
)
from staffing.domain.models import (
    KEY_SEPARATOR,
    REF_SEPARATOR,
    CurrentState,
    DayPlacement,
    DemandRow,
    Doctor,
    FairnessState,
    HalfDayState,
    Location,
    Preferences,
    RoleRequirement,
    SlotPlaceholder,
    Staff,
    SurgicalRole,
    SurgicalSession,
    WeekData,
    slot_ref,
)

logger = logging.getLogger(__name__)

SLOT_FLAG_COLUMNS = ("is_primary_closer", "is_secondary_closer", "is_tertiary_closer")


def week_bounds(day: date) -> Tuple[date, date]:
    monday = day - timedelta(days=day.weekday())
    return monday, monday + timedelta(days=6)


def group_dates_by_week(dates: Iterable[date]) -> Dict[date, List[date]]:
    """Target dates grouped by the Monday of their week, each group sorted."""
    grouped: Dict[date, List[date]] = defaultdict(list)
    for day in sorted(set(dates)):
        grouped[week_bounds(day)[0]].append(day)
    return dict(grouped)


def _is_active(row: Dict[str, str], name: str) -> bool:
    raw = row.get("active", "")
    return True if raw == "" else _coerce_bool(raw, "active", name)


def _check_period(value: str, record_name: str) -> str:
    period = value.strip().lower()
    if period not in PERIODS:
        raise ValueError(f"Invalid period '{value}' on record '{record_name}'. Expected one of {PERIODS}")
    return period


def _in_range(day: date, start: date, end: date) -> bool:
    return start <= day <= end


def _identifier(value: str, label: str) -> str:
    """Strip an id and reject the separators reserved for solver variable names."""
    identifier = value.strip()
    if KEY_SEPARATOR in identifier or REF_SEPARATOR in identifier:
        raise ValueError(
            f"Invalid {label} '{identifier}': '{KEY_SEPARATOR}' and '{REF_SEPARATOR}' are reserved in variable names"
        )
    return identifier


class DataSource(Protocol):
    """Upstream queries an optimization run needs. Date-ranged loaders are inclusive."""

    def load_staff(self) -> List[Staff]: ...

    def load_doctors(self) -> Dict[str, Doctor]: ...

    def load_locations(self) -> Dict[str, Location]: ...

    def load_roles(self) -> Dict[str, SurgicalRole]: ...

    def load_preferences(self) -> Preferences: ...

    def load_requirements(self) -> List[RoleRequirement]: ...

    def load_demand(self, start: date, end: date) -> List[DemandRow]: ...

    def load_sessions(self, start: date, end: date) -> List[SurgicalSession]: ...

    def load_slots(self, start: date, end: date) -> List[SlotPlaceholder]: ...

    def load_fairness_history(self) -> Dict[str, Dict[str, float]]: ...


class CsvDataSource:
    """Upstream query collaborator backed by CSV files in one directory."""

    def __init__(self, directory: Path):
        self.directory = Path(directory)
        if not self.directory.is_dir():
            raise FileNotFoundError(f"Data directory not found: {self.directory}")

    def _path(self, name: str) -> Path:
        return self.directory / name

    # -- reference data ---------------------------------------------------
    def load_staff(self) -> List[Staff]:
        df = read_table(self._path("staff.csv"), ["id", "name"], ["active", "admin_target"])
        staff: List[Staff] = []
        seen = set()
        for row in records(df):
            staff_id = _identifier(row["id"], "staff id")
            if staff_id in seen:
                raise ValueError(f"Duplicate staff id detected: '{staff_id}'")
            seen.add(staff_id)
            if not _is_active(row, staff_id):
                continue
            target = row["admin_target"].strip()
            staff.append(
                Staff(
                    staff_id=staff_id,
                    name=row["name"].strip() or staff_id,
                    admin_target=int(_coerce_numeric(target, "admin_target", staff_id)) if target else None,
                )
            )
        return staff

    def load_doctors(self) -> Dict[str, Doctor]:
        df = read_table(self._path("doctors.csv"), ["id", "name"], ["active", "staffing_coefficient"])
        doctors: Dict[str, Doctor] = {}
        for row in records(df):
            doctor_id = row["id"].strip()
            if not _is_active(row, doctor_id):
                continue
            raw = row["staffing_coefficient"].strip()
            doctors[doctor_id] = Doctor(
                doctor_id=doctor_id,
                name=row["name"].strip(),
                staffing_coefficient=_coerce_numeric(raw, "staffing_coefficient", doctor_id) if raw else None,
            )
        return doctors

    def load_locations(self) -> Dict[str, Location]:
        df = read_table(self._path("locations.csv"), ["id", "name"], ["active", "closing"])
        locations: Dict[str, Location] = {}
        for row in records(df):
            location_id = _identifier(row["id"], "location id")
            if not _is_active(row, location_id):
                continue
            locations[location_id] = Location(
                location_id=location_id,
                name=row["name"].strip(),
                closing=_coerce_bool(row["closing"], "closing", location_id),
            )
        return locations

    def load_roles(self) -> Dict[str, SurgicalRole]:
        df = read_table(self._path("surgical_roles.csv"), ["id", "name"], ["active"])
        roles: Dict[str, SurgicalRole] = {}
        for row in records(df):
            role_id = _identifier(row["id"], "role id")
            if _is_active(row, role_id):
                roles[role_id] = SurgicalRole(role_id=role_id, name=row["name"].strip())
        return roles

    def _load_ranks(self, filename: str, target_column: str) -> Dict[str, Dict[str, int]]:
        df = read_table(self._path(filename), ["staff_id", target_column, "rank"])
        ranks: Dict[str, Dict[str, int]] = defaultdict(dict)
        for row in records(df):
            staff_id = row["staff_id"].strip()
            ranks[staff_id][row[target_column].strip()] = int(_coerce_numeric(row["rank"], "rank", staff_id))
        return dict(ranks)

    def load_preferences(self) -> Preferences:
        return Preferences(
            roles=self._load_ranks("staff_roles.csv", "role_id"),
            doctors=self._load_ranks("staff_doctors.csv", "doctor_id"),
            locations=self._load_ranks("staff_locations.csv", "location_id"),
        )

    def load_requirements(self) -> List[RoleRequirement]:
        df = read_table(
            self._path("role_requirements.csv"), ["session_type_id", "role_id", "required_count"], ["active"]
        )
        requirements = []
        for row in records(df):
            name = f"{row['session_type_id']}/{row['role_id']}"
            requirements.append(
                RoleRequirement(
                    session_type_id=row["session_type_id"].strip(),
                    role_id=_identifier(row["role_id"], "role id"),
                    required_count=int(_coerce_numeric(row["required_count"], "required_count", name)),
                    active=_is_active(row, name),
                )
            )
        return requirements

    # -- date-ranged data -------------------------------------------------
    def load_demand(self, start: date, end: date) -> List[DemandRow]:
        df = read_table(self._path("demand.csv"), ["location_id", "date", "period", "doctor_id"], ["active"])
        rows = []
        for index, row in enumerate(records(df)):
            name = f"demand row {index + 1}"
            day = _parse_date(row["date"], "date", name)
            if not _in_range(day, start, end) or not _is_active(row, name):
                continue
            rows.append(
                DemandRow(
                    location_id=_identifier(row["location_id"], "location id"),
                    date=day,
                    period=_check_period(row["period"], name),
                    doctor_id=row["doctor_id"].strip(),
                )
            )
        return rows

    def load_sessions(self, start: date, end: date) -> List[SurgicalSession]:
        df = read_table(
            self._path("surgical_sessions.csv"),
            ["id", "date", "period", "session_type_id"],
            ["location_id", "room_id", "doctor_id", "cancelled"],
        )
        sessions = []
        for row in records(df):
            session_id = _identifier(row["id"], "session id")
            day = _parse_date(row["date"], "date", session_id)
            if not _in_range(day, start, end):
                continue
            sessions.append(
                SurgicalSession(
                    session_id=session_id,
                    date=day,
                    period=_check_period(row["period"], session_id),
                    session_type_id=row["session_type_id"].strip(),
                    location_id=_optional_str(row["location_id"]),
                    room_id=_optional_str(row["room_id"]),
                    doctor_id=_optional_str(row["doctor_id"]),
                    cancelled=_coerce_bool(row["cancelled"], "cancelled", session_id),
                )
            )
        return sessions

    def load_slots(self, start: date, end: date) -> List[SlotPlaceholder]:
        df = read_table(
            self._path("slots.csv"),
            ["id", "staff_id", "date", "period"],
            ["location_id", "session_id", "role_id", "active", *SLOT_FLAG_COLUMNS],
        )
        slots = []
        for row in records(df):
            slot_id = row["id"].strip()
            day = _parse_date(row["date"], "date", slot_id)
            if not _in_range(day, start, end) or not _is_active(row, slot_id):
                continue
            flags = {column: _coerce_bool(row[column], column, slot_id) for column in SLOT_FLAG_COLUMNS}
            slots.append(
                SlotPlaceholder(
                    slot_id=slot_id,
                    staff_id=row["staff_id"].strip(),
                    date=day,
                    period=_check_period(row["period"], slot_id),
                    location_id=_optional_str(row["location_id"]),
                    session_id=_optional_str(row["session_id"]),
                    role_id=_optional_str(row["role_id"]),
                    **flags,
                )
            )
        return slots

    def load_fairness_history(self) -> Dict[str, Dict[str, float]]:
        path = self._path("fairness_history.csv")
        if not path.exists():
            return {}
        df = read_table(path, ["staff_id"], ["overload_escalation", "closing_history", "cluster_history"])
        history: Dict[str, Dict[str, float]] = {}
        for row in records(df):
            staff_id = row["staff_id"].strip()
            history[staff_id] = {
                column: _coerce_numeric(row[column], column, staff_id)
                for column in ("overload_escalation", "closing_history", "cluster_history")
                if row[column].strip()
            }
        return history


# ---------------------------------------------------------------------------
# Week assembly
# ---------------------------------------------------------------------------
def inject_synthetic_admin(
    placeholders: Sequence[SlotPlaceholder], target_dates: Iterable[date], rules: ClinicRules = CLINIC_RULES
) -> List[SlotPlaceholder]:
    """Give staff with a single bound half on a target date an administrative placeholder for the other half."""
    targets = set(target_dates)
    by_staff_day: Dict[Tuple[str, date], Dict[str, SlotPlaceholder]] = defaultdict(dict)
    for slot in placeholders:
        by_staff_day[(slot.staff_id, slot.date)][slot.period] = slot

    completed = list(placeholders)
    for (staff_id, day), halves in sorted(by_staff_day.items()):
        if day not in targets or len(halves) != 1:
            continue
        missing = AFTERNOON if MORNING in halves else MORNING
        completed.append(
            SlotPlaceholder(slot_id=None, staff_id=staff_id, date=day, period=missing,
                            location_id=rules.admin_location_id)
        )
        logger.debug("Injected synthetic admin placeholder for %s on %s (%s)", staff_id, day, missing)
    return completed


def history_placements(
    placeholders: Iterable[SlotPlaceholder], target_dates: Iterable[date], rules: ClinicRules = CLINIC_RULES
) -> List[DayPlacement]:
    """Fairness placements from the week's slots outside the optimization targets."""
    targets = set(target_dates)
    by_staff_day: Dict[Tuple[str, date], List[SlotPlaceholder]] = defaultdict(list)
    for slot in placeholders:
        if slot.date not in targets and not slot.synthetic:
            by_staff_day[(slot.staff_id, slot.date)].append(slot)

    placements = []
    for (staff_id, day), slots in sorted(by_staff_day.items()):
        refs = [slot_ref(slot, rules.admin_location_id) for slot in slots]
        placements.append(
            DayPlacement(
                staff_id=staff_id,
                date=day,
                admin_halves=sum(1 for ref in refs if ref.is_admin),
                location_ids=tuple(
                    slot.location_id for slot, ref in zip(slots, refs) if not ref.is_admin and slot.location_id
                ),
                primary_closer=any(slot.is_primary_closer for slot in slots),
                secondary_closer=any(slot.is_secondary_closer or slot.is_tertiary_closer for slot in slots),
            )
        )
    return placements


def current_state(
    placeholders: Iterable[SlotPlaceholder], target_dates: Iterable[date], rules: ClinicRules = CLINIC_RULES
) -> CurrentState:
    targets = set(target_dates)
    halves: Dict[Tuple[str, date], Dict[str, object]] = defaultdict(dict)
    for slot in placeholders:
        if slot.date in targets and not slot.synthetic:
            halves[(slot.staff_id, slot.date)][slot.period] = slot_ref(slot, rules.admin_location_id)
    return CurrentState(
        assignments={
            key: HalfDayState(morning=value.get(MORNING), afternoon=value.get(AFTERNOON))
            for key, value in halves.items()
        }
    )


def load_week(
    source: DataSource, target_dates: Sequence[date], rules: ClinicRules = CLINIC_RULES
) -> WeekData:
    """Load everything one week's optimization needs. All target dates must share a week."""
    if not target_dates:
        raise ValueError("At least one target date is required")
    weeks = group_dates_by_week(target_dates)
    if len(weeks) != 1:
        raise ValueError(f"Target dates span {len(weeks)} weeks; load them one week at a time")
    week_start, targets = next(iter(weeks.items()))
    start, end = week_bounds(week_start)

    staff = source.load_staff()
    active_staff = {member.staff_id for member in staff}
    slots = [slot for slot in source.load_slots(start, end) if slot.staff_id in active_staff]
    placeholders = inject_synthetic_admin(slots, targets, rules)

    history = source.load_fairness_history()
    fairness = FairnessState(
        overload_escalation={k: v["overload_escalation"] for k, v in history.items() if "overload_escalation" in v},
        closing_history={k: v["closing_history"] for k, v in history.items() if "closing_history" in v},
        cluster_history={k: int(v["cluster_history"]) for k, v in history.items() if "cluster_history" in v},
    ).advance(history_placements(placeholders, targets, rules))

    week = WeekData(
        week_start=week_start,
        target_dates=tuple(targets),
        staff=staff,
        doctors=source.load_doctors(),
        locations=source.load_locations(),
        roles=source.load_roles(),
        preferences=source.load_preferences(),
        demand_rows=source.load_demand(start, end),
        sessions=source.load_sessions(start, end),
        requirements=source.load_requirements(),
        placeholders=placeholders,
        fairness=fairness,
        current=current_state(placeholders, targets, rules),
    )
    logger.info(
        "Loaded week of %s: %d staff, %d slots, %d demand rows, %d sessions",
        week_start, len(staff), len(placeholders), len(week.demand_rows), len(week.sessions),
    )
    return week
