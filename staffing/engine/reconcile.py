"""Map a solved model back onto slot records."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from datetime import date
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from staffing.config import CLINIC_RULES, SELECTION_THRESHOLD, ClinicRules
from staffing.domain.models import (
    AdminAssignment,
    Combo,
    DayPlacement,
    Need,
    SlotPlaceholder,
    SlotUpdate,
)
from staffing.engine.builder import PRIMARY, BuiltModel, ClosingRoleVar

logger = logging.getLogger(__name__)

SlotKey = Tuple[str, date, str]


@dataclass
class Reconciliation:
    combos: List[Combo] = field(default_factory=list)
    closing_roles: List[ClosingRoleVar] = field(default_factory=list)
    updates: List[SlotUpdate] = field(default_factory=list)
    skipped: List[SlotKey] = field(default_factory=list)


def select_combos(built: BuiltModel, values: Mapping[str, float]) -> List[Combo]:
    """Combos above the selection threshold, at most one per staff-day (highest score wins)."""
    chosen: Dict[Tuple[str, date], Combo] = {}
    for name, combo in built.combos.items():
        if values.get(name, 0.0) <= SELECTION_THRESHOLD:
            continue
        key = (combo.staff_id, combo.date)
        previous = chosen.get(key)
        if previous is not None:
            logger.warning("Several combos selected for %s on %s; keeping the best scored", *key)
            if previous.score >= combo.score:
                continue
        chosen[key] = combo
    return sorted(chosen.values(), key=lambda combo: (combo.date, combo.staff_id))


def select_closing_roles(built: BuiltModel, values: Mapping[str, float]) -> List[ClosingRoleVar]:
    return [role for role in built.closing_roles if values.get(role.name, 0.0) > SELECTION_THRESHOLD]


def index_placeholders(placeholders: Iterable[SlotPlaceholder]) -> Dict[SlotKey, SlotPlaceholder]:
    return {(slot.staff_id, slot.date, slot.period): slot for slot in placeholders}


def _update_for(slot_id: str, half, rules: ClinicRules) -> SlotUpdate:
    if isinstance(half, AdminAssignment):
        return SlotUpdate(slot_id=slot_id, location_id=rules.admin_location_id)
    return SlotUpdate(
        slot_id=slot_id,
        location_id=half.location_id,
        session_id=half.session_id,
        role_id=half.role_id,
    )


def _with_flags(update: SlotUpdate, role: ClosingRoleVar) -> SlotUpdate:
    if role.role == PRIMARY:
        return replace(update, is_primary_closer=True)
    if role.tertiary:
        return replace(update, is_tertiary_closer=True)
    return replace(update, is_secondary_closer=True)


def reconcile(
    built: BuiltModel,
    values: Mapping[str, float],
    placeholders: Iterable[SlotPlaceholder],
    rules: ClinicRules = CLINIC_RULES,
) -> Reconciliation:
    result = Reconciliation(combos=select_combos(built, values), closing_roles=select_closing_roles(built, values))
    slots = index_placeholders(placeholders)

    roles_by_day: Dict[Tuple[str, date], List[ClosingRoleVar]] = {}
    for role in result.closing_roles:
        roles_by_day.setdefault((role.staff_id, role.date), []).append(role)

    for combo in result.combos:
        for period, half in combo.halves():
            if half is None:
                continue
            key = (combo.staff_id, combo.date, period)
            slot = slots.get(key)
            if slot is None or slot.synthetic:
                if slot is None:
                    logger.warning("No slot placeholder for %s on %s (%s); skipping", *key)
                else:
                    logger.debug("Synthetic placeholder for %s on %s (%s); nothing to write", *key)
                result.skipped.append(key)
                continue
            update = _update_for(slot.slot_id, half, rules)
            for role in roles_by_day.get((combo.staff_id, combo.date), []):
                if isinstance(half, Need) and half.location_id == role.location_id:
                    update = _with_flags(update, role)
            result.updates.append(update)

    logger.info(
        "Reconciled %d combos into %d slot updates (%d skipped)",
        len(result.combos), len(result.updates), len(result.skipped),
    )
    return result


def _is_real(slot: Optional[SlotPlaceholder]) -> bool:
    return slot is not None and not slot.synthetic


def placements_from(
    combos: Iterable[Combo],
    closing_roles: Iterable[ClosingRoleVar],
    placeholders: Iterable[SlotPlaceholder],
) -> List[DayPlacement]:
    """Fairness placements for one solved day, used to advance the snapshot.

    Administrative halves only count where a real slot backs them, the same way
    history days are counted when the week is loaded.
    """
    slots = index_placeholders(placeholders)
    roles: Dict[Tuple[str, date], List[ClosingRoleVar]] = {}
    for role in closing_roles:
        roles.setdefault((role.staff_id, role.date), []).append(role)
    placements = []
    for combo in combos:
        held = roles.get((combo.staff_id, combo.date), [])
        placements.append(
            DayPlacement(
                staff_id=combo.staff_id,
                date=combo.date,
                admin_halves=sum(
                    1
                    for period, half in combo.halves()
                    if isinstance(half, AdminAssignment) and _is_real(slots.get((combo.staff_id, combo.date, period)))
                ),
                location_ids=tuple(
                    half.location_id for _, half in combo.halves() if isinstance(half, Need)
                ),
                primary_closer=any(role.role == PRIMARY for role in held),
                secondary_closer=any(role.role != PRIMARY for role in held),
            )
        )
    return placements


def describe_update(update: SlotUpdate, names: Optional[Mapping[str, str]] = None) -> str:
    location = (names or {}).get(update.location_id, update.location_id)
    flags = [
        label
        for label, flag in (
            ("1R", update.is_primary_closer),
            ("2F", update.is_secondary_closer),
            ("3F", update.is_tertiary_closer),
        )
        if flag
    ]
    suffix = f" [{' '.join(flags)}]" if flags else ""
    return f"{update.slot_id} -> {location}{suffix}"
