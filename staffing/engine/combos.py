"""Enumerate admissible (morning, afternoon) day plans per staff member."""

from __future__ import annotations

import itertools
import logging
from collections import defaultdict
from datetime import date
from typing import Callable, Dict, FrozenSet, Iterable, List, Optional, Sequence, Tuple

from staffing.config import (
    AFTERNOON,
    CLINIC_RULES,
    MORNING,
    TAG_ADMIN,
    TAG_ALTERNATE_SITE,
    TAG_FORBIDDEN_SITE,
    TAG_LOCATION,
    TAG_SPECIALTY_ROOM,
    TAG_STANDARD_ROOM,
    TAG_SURGICAL,
    ClinicRules,
)
from staffing.domain.models import (
    ADMIN,
    AdminAssignment,
    Combo,
    HalfAssignment,
    Need,
    Preferences,
    SlotPlaceholder,
)

logger = logging.getLogger(__name__)

Scorer = Callable[[str, date, HalfAssignment, HalfAssignment], float]


def half_capacity(placeholders: Iterable[SlotPlaceholder], staff_id: str, day: date) -> Tuple[bool, bool]:
    """A half has capacity when a real (non-synthetic) placeholder exists for it."""
    morning = afternoon = False
    for slot in placeholders:
        if slot.staff_id != staff_id or slot.date != day or slot.synthetic:
            continue
        if slot.period == MORNING:
            morning = True
        elif slot.period == AFTERNOON:
            afternoon = True
    return morning, afternoon


def is_eligible(staff_id: str, need: Need, preferences: Preferences) -> bool:
    if need.is_surgical:
        return preferences.role_rank(staff_id, need.role_id) is not None
    return preferences.location_rank(staff_id, need.location_id) is not None


def eligible_halves(
    staff_id: str, day: date, period: str, needs: Sequence[Need], preferences: Preferences
) -> List[HalfAssignment]:
    options: List[HalfAssignment] = [ADMIN]
    options.extend(
        need
        for need in needs
        if need.date == day and need.period == period and is_eligible(staff_id, need, preferences)
    )
    return options


def half_tags(half: HalfAssignment, rules: ClinicRules = CLINIC_RULES) -> FrozenSet[str]:
    """Category tags of a half-day, fed to the declarative exclusion rules."""
    if half is None:
        return frozenset()
    if isinstance(half, AdminAssignment):
        return frozenset({TAG_ADMIN})
    tags = set()
    if half.is_surgical:
        tags.add(TAG_SURGICAL)
        if is_specialty_room(half, rules):
            tags.add(TAG_SPECIALTY_ROOM)
        elif half.room_id is None or half.room_id in rules.standard_room_ids:
            tags.add(TAG_STANDARD_ROOM)
    else:
        tags.add(TAG_LOCATION)
        if half.location_id in rules.forbidden_location_ids:
            tags.add(TAG_FORBIDDEN_SITE)
        if half.location_id == rules.alternate_location_id:
            tags.add(TAG_ALTERNATE_SITE)
    return frozenset(tags)


def is_specialty_room(need: Need, rules: ClinicRules = CLINIC_RULES) -> bool:
    if not need.is_surgical:
        return False
    if need.room_id is not None:
        return need.room_id == rules.specialty_room_id
    return rules.specialty_intervention_type_id is not None and (
        need.intervention_type_id == rules.specialty_intervention_type_id
    )


def is_excluded(morning: HalfAssignment, afternoon: HalfAssignment, rules: ClinicRules = CLINIC_RULES) -> bool:
    if morning is None or afternoon is None:
        return False
    return rules.exclusions.excludes(half_tags(morning, rules), half_tags(afternoon, rules))


def combos_for_staff_day(
    staff_id: str,
    day: date,
    needs: Sequence[Need],
    placeholders: Iterable[SlotPlaceholder],
    preferences: Preferences,
    scorer: Optional[Scorer] = None,
    rules: ClinicRules = CLINIC_RULES,
) -> List[Combo]:
    has_morning, has_afternoon = half_capacity(placeholders, staff_id, day)
    if not has_morning and not has_afternoon:
        return []

    mornings = eligible_halves(staff_id, day, MORNING, needs, preferences) if has_morning else [ADMIN]
    afternoons = eligible_halves(staff_id, day, AFTERNOON, needs, preferences) if has_afternoon else [ADMIN]

    combos: List[Combo] = []
    excluded = 0
    for morning, afternoon in itertools.product(mornings, afternoons):
        if is_excluded(morning, afternoon, rules):
            excluded += 1
            continue
        score = scorer(staff_id, day, morning, afternoon) if scorer else 0.0
        combos.append(Combo(staff_id=staff_id, date=day, morning=morning, afternoon=afternoon, score=score))
    if excluded:
        logger.debug("Excluded %d combos for %s on %s", excluded, staff_id, day)
    return combos


def generate_combos(
    staff_ids: Iterable[str],
    days: Iterable[date],
    needs: Sequence[Need],
    placeholders: Sequence[SlotPlaceholder],
    preferences: Preferences,
    scorer: Optional[Scorer] = None,
    rules: ClinicRules = CLINIC_RULES,
) -> List[Combo]:
    by_day: Dict[date, List[Need]] = defaultdict(list)
    for need in needs:
        by_day[need.date].append(need)
    staff_list = list(staff_ids)

    combos: List[Combo] = []
    for day in days:
        day_slots = [slot for slot in placeholders if slot.date == day]
        for staff_id in staff_list:
            combos.extend(
                combos_for_staff_day(staff_id, day, by_day[day], day_slots, preferences, scorer, rules)
            )
    logger.info("Generated %d combos", len(combos))
    return combos
