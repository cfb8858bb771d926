"""Turn raw demand rows and surgical sessions into normalized ``Need`` records."""

from __future__ import annotations

import logging
import math
from collections import defaultdict
from datetime import date
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from staffing.config import (
    CLINIC_RULES,
    DEFAULT_STAFFING_COEFFICIENT,
    DEMAND_ROUNDING_DIGITS,
    PERIODS,
    SURGICAL_BLOCK_MARKERS,
    ClinicRules,
)
from staffing.domain.models import (
    NEED_SURGICAL,
    DemandRow,
    Doctor,
    Location,
    Need,
    RoleRequirement,
    SurgicalRole,
    SurgicalSession,
)

logger = logging.getLogger(__name__)


class MissingCoefficientError(ValueError):
    """Raised when a doctor has no staffing coefficient and no default is configured."""


def is_surgical_block(location: Location) -> bool:
    name = location.name.strip().lower()
    return any(marker in name for marker in SURGICAL_BLOCK_MARKERS)


def find_block_location(
    locations: Mapping[str, Location], rules: ClinicRules = CLINIC_RULES
) -> Optional[str]:
    """Return the surgical block location id, by name first, then the configured fallback."""
    for location in locations.values():
        if is_surgical_block(location):
            return location.location_id
    if rules.fallback_block_location_id in locations:
        return rules.fallback_block_location_id
    return None


def required_headcount(coefficients: Iterable[float]) -> int:
    """Sum first, then round up. Rounding the sum drops float noise such as 6.000000000000001."""
    total = round(sum(coefficients), DEMAND_ROUNDING_DIGITS)
    return max(0, math.ceil(total))


def compute_location_needs(
    rows: Iterable[DemandRow],
    doctors: Mapping[str, Doctor],
    locations: Mapping[str, Location],
    default_coefficient: Optional[float] = DEFAULT_STAFFING_COEFFICIENT,
) -> List[Need]:
    grouped: Dict[Tuple[str, date, str], List[Tuple[str, float]]] = defaultdict(list)
    for row in rows:
        location = locations.get(row.location_id)
        if location is None:
            logger.debug("Skipping demand row for unknown location %s", row.location_id)
            continue
        if is_surgical_block(location):
            continue
        if row.period not in PERIODS:
            raise ValueError(f"Unknown period '{row.period}' in demand row for {row.location_id}")
        doctor = doctors.get(row.doctor_id)
        if doctor is None:
            logger.debug("Skipping demand row for inactive doctor %s", row.doctor_id)
            continue
        coefficient = doctor.staffing_coefficient
        if coefficient is None:
            if default_coefficient is None:
                raise MissingCoefficientError(
                    f"Doctor '{doctor.doctor_id}' has no staffing coefficient and no default is configured"
                )
            coefficient = default_coefficient
        grouped[(row.location_id, row.date, row.period)].append((doctor.doctor_id, coefficient))

    needs: List[Need] = []
    for (location_id, day, period), entries in sorted(grouped.items()):
        needs.append(
            Need(
                location_id=location_id,
                date=day,
                period=period,
                required_count=required_headcount(coefficient for _, coefficient in entries),
                doctor_ids=tuple(doctor_id for doctor_id, _ in entries),
            )
        )
    return needs


def compute_surgical_needs(
    sessions: Iterable[SurgicalSession],
    requirements: Iterable[RoleRequirement],
    roles: Mapping[str, SurgicalRole],
    locations: Mapping[str, Location],
    rules: ClinicRules = CLINIC_RULES,
) -> List[Need]:
    by_type: Dict[str, List[RoleRequirement]] = defaultdict(list)
    for requirement in requirements:
        if requirement.active and requirement.role_id in roles:
            by_type[requirement.session_type_id].append(requirement)

    block_id = find_block_location(locations, rules)
    needs: List[Need] = []
    for session in sessions:
        if session.cancelled:
            continue
        location_id = block_id or session.location_id
        if not location_id:
            logger.warning("Surgical session %s has no block location; skipping", session.session_id)
            continue
        for requirement in by_type.get(session.session_type_id, []):
            needs.append(
                Need(
                    location_id=location_id,
                    date=session.date,
                    period=session.period,
                    required_count=requirement.required_count,
                    doctor_ids=(session.doctor_id,) if session.doctor_id else (),
                    kind=NEED_SURGICAL,
                    session_id=session.session_id,
                    role_id=requirement.role_id,
                    room_id=session.room_id,
                    intervention_type_id=session.session_type_id,
                )
            )
    return needs


def compute_needs(week, day: Optional[date] = None, rules: ClinicRules = CLINIC_RULES,
                  default_coefficient: Optional[float] = DEFAULT_STAFFING_COEFFICIENT) -> List[Need]:
    """All needs of a loaded week, optionally restricted to one date."""
    rows = [row for row in week.demand_rows if day is None or row.date == day]
    sessions = [session for session in week.sessions if day is None or session.date == day]
    needs = compute_location_needs(rows, week.doctors, week.locations, default_coefficient)
    needs += compute_surgical_needs(sessions, week.requirements, week.roles, week.locations, rules)
    logger.debug("Computed %d needs for %s", len(needs), day or "the week")
    return needs
