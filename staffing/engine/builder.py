"""Emit the per-day optimization model: combo variables, coupling, capacity and closing coverage."""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date
from typing import Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from staffing.config import (
    AFTERNOON,
    CLINIC_RULES,
    CLOSING_PENALTIES,
    MORNING,
    ClinicRules,
    ClosingPenalties,
)
from staffing.domain.models import Combo, FairnessState, Location, Need
from staffing.engine.model import EQUAL, MAX, MIN, LinearModel, add_equal_link, add_upper_link

logger = logging.getLogger(__name__)

PRIMARY = "primary"
SECONDARY = "secondary"
CLOSING_ROLES = (PRIMARY, SECONDARY)
FULL_DAY = "full_day"

RoleObjective = Callable[[str, str, "ClosingSite"], float]


@dataclass(frozen=True)
class ClosingSite:
    """A closing location on one day. ``mode`` is FULL_DAY or the single period with demand."""

    location_id: str
    date: date
    mode: str
    needs_tertiary: bool = False


@dataclass(frozen=True)
class ClosingRoleVar:
    name: str
    staff_id: str
    location_id: str
    date: date
    role: str
    tertiary: bool = False


@dataclass
class BuiltModel:
    model: LinearModel
    combos: Dict[str, Combo] = field(default_factory=dict)
    closing_roles: List[ClosingRoleVar] = field(default_factory=list)
    closing_sites: List[ClosingSite] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Combo variables + coupling + capacity
# ---------------------------------------------------------------------------
def add_combo_variables(model: LinearModel, combos: Sequence[Combo]) -> Dict[str, Combo]:
    by_name: Dict[str, Combo] = {}
    for combo in combos:
        name = combo.variable_name
        if name in by_name:
            raise ValueError(f"Duplicate combo variable '{name}'")
        model.add_binary(name, objective=combo.score)
        by_name[name] = combo
    return by_name


def add_coupling_constraints(model: LinearModel, combos: Sequence[Combo]) -> None:
    """Exactly one combo per staff-day."""
    grouped: Dict[Tuple[str, date], List[str]] = defaultdict(list)
    for combo in combos:
        grouped[(combo.staff_id, combo.date)].append(combo.variable_name)
    for (staff_id, day), names in grouped.items():
        model.add_constraint(f"one_combo__{staff_id}__{day.isoformat()}", EQUAL, 1, {name: 1.0 for name in names})


def add_capacity_constraints(model: LinearModel, combos: Sequence[Combo], needs: Sequence[Need]) -> None:
    """Location needs aggregate per (location, date, period); surgical needs stay per (session, role)."""
    location_totals: Dict[Tuple[str, date, str], int] = defaultdict(int)
    surgical: Dict[Tuple[str, str], Need] = {}
    for need in needs:
        if need.is_surgical:
            surgical[(need.session_id, need.role_id)] = need
        else:
            location_totals[(need.location_id, need.date, need.period)] += need.required_count

    location_names: Dict[Tuple[str, date, str], str] = {}
    for (location_id, day, period), total in location_totals.items():
        name = f"cap__{location_id}__{day.isoformat()}__{period}"
        model.add_constraint(name, MAX, total)
        location_names[(location_id, day, period)] = name
    surgical_names: Dict[Tuple[str, str], str] = {}
    for (session_id, role_id), need in surgical.items():
        name = f"cap_op__{session_id}__{role_id}"
        model.add_constraint(name, MAX, need.required_count)
        surgical_names[(session_id, role_id)] = name

    for combo in combos:
        for period, half in combo.halves():
            if not isinstance(half, Need):
                continue
            if half.is_surgical:
                model.add_term(surgical_names[(half.session_id, half.role_id)], combo.variable_name)
            else:
                model.add_term(location_names[(half.location_id, combo.date, period)], combo.variable_name)


# ---------------------------------------------------------------------------
# Closing coverage
# ---------------------------------------------------------------------------
def find_closing_sites(
    day: date,
    needs: Sequence[Need],
    locations: Mapping[str, Location],
    rules: ClinicRules = CLINIC_RULES,
) -> List[ClosingSite]:
    sites: List[ClosingSite] = []
    for location in locations.values():
        if not location.closing:
            continue
        site_needs = [
            need for need in needs
            if need.date == day and not need.is_surgical and need.location_id == location.location_id
        ]
        periods = {need.period for need in site_needs if need.doctor_ids and need.required_count > 0}
        if not periods:
            continue
        mode = FULL_DAY if periods == {MORNING, AFTERNOON} else periods.pop()
        tertiary = any(doctor in rules.tertiary_doctor_ids for need in site_needs for doctor in need.doctor_ids)
        sites.append(ClosingSite(location.location_id, day, mode, tertiary))
    return sites


def closing_role_penalty(
    staff_id: str,
    role: str,
    day: date,
    fairness: FairnessState,
    penalties: ClosingPenalties = CLOSING_PENALTIES,
    rules: ClinicRules = CLINIC_RULES,
) -> float:
    """Negative objective coefficient for a closing role, given the week's history so far."""
    primary, secondary = fairness.closing_counts(staff_id)
    total = primary + secondary
    penalty = 0.0
    if role == SECONDARY:
        if secondary >= 1:
            penalty += penalties.repeat_secondary
        penalty += rules.secondary_weekday_penalties.get((staff_id, day.weekday()), 0.0)
    if total >= 2:
        penalty += penalties.third_closing_duty
    for threshold in penalties.heavy_duty_thresholds:
        if total >= threshold:
            penalty += penalties.heavy_closing_duty
    return -penalty


def add_closing_constraints(
    model: LinearModel,
    combos: Sequence[Combo],
    site: ClosingSite,
    role_objective: Optional[RoleObjective] = None,
) -> List[ClosingRoleVar]:
    day = site.date.isoformat()
    suffix = "" if site.mode == FULL_DAY else f"_{site.mode}"
    presence: Dict[str, List[str]] = defaultdict(list)
    for combo in combos:
        if combo.date != site.date:
            continue
        if site.mode == FULL_DAY:
            present = combo.location_at(MORNING) == site.location_id and combo.location_at(AFTERNOON) == site.location_id
        else:
            present = combo.location_at(site.mode) == site.location_id
        if present:
            presence[combo.staff_id].append(combo.variable_name)

    if len(presence) < 2:
        logger.warning(
            "Closing site %s on %s has %d candidate(s); skipping closing coverage",
            site.location_id, day, len(presence),
        )
        return []

    # Per-staff gate the roles hang off: a full-day binary, or the presence combos themselves.
    gates: Dict[str, List[str]] = {}
    coverage = model.add_constraint(f"closing_min__{site.location_id}__{day}{suffix}", MIN, 2)
    for staff_id, names in presence.items():
        if site.mode == FULL_DAY:
            full_day = model.add_binary(f"full_day__{staff_id}__{site.location_id}__{day}")
            add_equal_link(model, f"link_{full_day}", full_day, names)
            model.add_term(coverage.name, full_day)
            gates[staff_id] = [full_day]
        else:
            for name in names:
                model.add_term(coverage.name, name)
            gates[staff_id] = names

    role_vars: List[ClosingRoleVar] = []
    one_per_role = {
        role: model.add_constraint(f"closing_{role}__{site.location_id}__{day}{suffix}", EQUAL, 1)
        for role in CLOSING_ROLES
    }
    for staff_id, gate in gates.items():
        names = []
        for role in CLOSING_ROLES:
            objective = role_objective(staff_id, role, site) if role_objective else 0.0
            name = model.add_binary(f"closer_{role}{suffix}__{staff_id}__{site.location_id}__{day}", objective)
            add_upper_link(model, f"link_{name}", name, gate)
            model.add_term(one_per_role[role].name, name)
            names.append(name)
            role_vars.append(
                ClosingRoleVar(
                    name=name,
                    staff_id=staff_id,
                    location_id=site.location_id,
                    date=site.date,
                    role=role,
                    tertiary=role == SECONDARY and site.needs_tertiary,
                )
            )
        model.add_constraint(
            f"one_closing_role__{staff_id}__{site.location_id}__{day}{suffix}", MAX, 1, {name: 1.0 for name in names}
        )
    return role_vars


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------
def build_daily_model(
    day: date,
    combos: Sequence[Combo],
    needs: Sequence[Need],
    locations: Mapping[str, Location],
    fairness: FairnessState,
    rules: ClinicRules = CLINIC_RULES,
    penalties: ClosingPenalties = CLOSING_PENALTIES,
    role_bonus: Optional[RoleObjective] = None,
) -> BuiltModel:
    day_combos = [combo for combo in combos if combo.date == day]
    day_needs = [need for need in needs if need.date == day]
    model = LinearModel(name=f"staffing_{day.isoformat()}")
    built = BuiltModel(model=model, combos=add_combo_variables(model, day_combos))
    add_coupling_constraints(model, day_combos)
    add_capacity_constraints(model, day_combos, day_needs)

    def role_objective(staff_id: str, role: str, site: ClosingSite) -> float:
        objective = closing_role_penalty(staff_id, role, site.date, fairness, penalties, rules)
        return objective + (role_bonus(staff_id, role, site) if role_bonus else 0.0)

    for site in find_closing_sites(day, day_needs, locations, rules):
        built.closing_sites.append(site)
        built.closing_roles.extend(add_closing_constraints(model, day_combos, site, role_objective))

    logger.info("Daily model for %s: %s", day, model.stats())
    return built
