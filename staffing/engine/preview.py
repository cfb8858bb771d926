"""Dry-run comparison: satisfaction before/after, per-need diff and staged draft rows."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from staffing.config import CLINIC_RULES, ClinicRules
from staffing.domain.models import (
    NEED_LOCATION,
    Combo,
    DraftRow,
    Need,
    NeedRef,
    SlotPlaceholder,
    SlotUpdate,
    slot_ref,
)
from staffing.engine.reconcile import Reconciliation

SATISFIED = "satisfied"
PARTIAL = "partial"
UNSATISFIED = "unsatisfied"

NeedKey = Tuple[str, str, Optional[str], Optional[str]]  # period, location, session, role


@dataclass(frozen=True)
class NeedStatus:
    location_id: str
    period: str
    kind: str
    required: int
    assigned: int
    staff: Tuple[str, ...]
    session_id: Optional[str] = None
    role_id: Optional[str] = None

    @property
    def status(self) -> str:
        if self.assigned >= self.required:
            return SATISFIED
        return PARTIAL if self.assigned > 0 else UNSATISFIED


@dataclass(frozen=True)
class NeedChange:
    location_id: str
    period: str
    kind: str
    added: Tuple[str, ...]
    removed: Tuple[str, ...]
    unchanged: Tuple[str, ...]
    status_before: str
    status_after: str
    session_id: Optional[str] = None
    role_id: Optional[str] = None


@dataclass(frozen=True)
class ImprovementSummary:
    unmet_before: int
    unmet_after: int
    missing_before: int
    missing_after: int

    @property
    def net_change(self) -> int:
        """Positive when the proposal leaves fewer needs unmet."""
        return self.unmet_before - self.unmet_after


@dataclass
class PreviewResult:
    date: date
    feasible: bool
    before: List[NeedStatus]
    after: List[NeedStatus]
    changes: List[NeedChange] = field(default_factory=list)
    summary: Optional[ImprovementSummary] = None
    drafts: List[DraftRow] = field(default_factory=list)
    objective: Optional[float] = None


def _need_key(period: str, ref: NeedRef, location_id: Optional[str]) -> NeedKey:
    if ref.kind == NEED_LOCATION:
        return (period, location_id or "", None, None)
    return (period, "", ref.session_id, ref.role_id)


def _key_of(need: Need) -> NeedKey:
    return _need_key(need.period, need.ref, need.location_id)


def _demand_table(needs: Iterable[Need]) -> Dict[NeedKey, Tuple[Need, int]]:
    table: Dict[NeedKey, Tuple[Need, int]] = {}
    for need in needs:
        key = _key_of(need)
        existing = table.get(key)
        table[key] = (need, need.required_count + (existing[1] if existing else 0))
    return table


def _statuses(
    table: Mapping[NeedKey, Tuple[Need, int]], assigned: Mapping[NeedKey, List[str]]
) -> List[NeedStatus]:
    rows = []
    for key, (need, required) in table.items():
        staff = tuple(sorted(assigned.get(key, [])))
        rows.append(
            NeedStatus(
                location_id=need.location_id,
                period=need.period,
                kind=need.kind,
                required=required,
                assigned=len(staff),
                staff=staff,
                session_id=need.session_id,
                role_id=need.role_id,
            )
        )
    return sorted(rows, key=lambda row: (row.period, row.location_id, row.session_id or "", row.role_id or ""))


def assignments_before(
    placeholders: Iterable[SlotPlaceholder], names: Mapping[str, str], rules: ClinicRules = CLINIC_RULES
) -> Dict[NeedKey, List[str]]:
    assigned: Dict[NeedKey, List[str]] = {}
    for slot in placeholders:
        if slot.synthetic:
            continue
        ref = slot_ref(slot, rules.admin_location_id)
        if ref.is_admin:
            continue
        key = _need_key(slot.period, ref, slot.location_id)
        assigned.setdefault(key, []).append(names.get(slot.staff_id, slot.staff_id))
    return assigned


def assignments_after(combos: Iterable[Combo], names: Mapping[str, str]) -> Dict[NeedKey, List[str]]:
    assigned: Dict[NeedKey, List[str]] = {}
    for combo in combos:
        for period, half in combo.halves():
            if isinstance(half, Need):
                assigned.setdefault(_key_of(half), []).append(names.get(combo.staff_id, combo.staff_id))
    return assigned


def diff_statuses(before: Sequence[NeedStatus], after: Sequence[NeedStatus]) -> List[NeedChange]:
    after_by_key = {(row.period, row.location_id, row.session_id, row.role_id): row for row in after}
    changes = []
    for row in before:
        other = after_by_key.get((row.period, row.location_id, row.session_id, row.role_id))
        if other is None:
            continue
        old, new = set(row.staff), set(other.staff)
        if old == new:
            continue
        changes.append(
            NeedChange(
                location_id=row.location_id,
                period=row.period,
                kind=row.kind,
                added=tuple(sorted(new - old)),
                removed=tuple(sorted(old - new)),
                unchanged=tuple(sorted(old & new)),
                status_before=row.status,
                status_after=other.status,
                session_id=row.session_id,
                role_id=row.role_id,
            )
        )
    return changes


def summarize(before: Sequence[NeedStatus], after: Sequence[NeedStatus]) -> ImprovementSummary:
    return ImprovementSummary(
        unmet_before=sum(1 for row in before if row.status != SATISFIED),
        unmet_after=sum(1 for row in after if row.status != SATISFIED),
        missing_before=sum(max(0, row.required - row.assigned) for row in before),
        missing_after=sum(max(0, row.required - row.assigned) for row in after),
    )


def _differs(slot: SlotPlaceholder, update: SlotUpdate, rules: ClinicRules) -> bool:
    before = slot_ref(slot, rules.admin_location_id)
    after = slot_ref(
        SlotPlaceholder(
            slot_id=update.slot_id,
            staff_id=slot.staff_id,
            date=slot.date,
            period=slot.period,
            location_id=update.location_id,
            session_id=update.session_id,
            role_id=update.role_id,
        ),
        rules.admin_location_id,
    )
    if not before.matches(after):
        return True
    return (slot.is_primary_closer, slot.is_secondary_closer, slot.is_tertiary_closer) != (
        update.is_primary_closer,
        update.is_secondary_closer,
        update.is_tertiary_closer,
    )


def draft_rows(
    reconciliation: Reconciliation, placeholders: Iterable[SlotPlaceholder], rules: ClinicRules = CLINIC_RULES
) -> List[DraftRow]:
    """Draft rows for slots whose proposed assignment differs from the current one."""
    by_id = {slot.slot_id: slot for slot in placeholders if not slot.synthetic}
    rows = []
    for update in reconciliation.updates:
        slot = by_id.get(update.slot_id)
        if slot is None or not _differs(slot, update, rules):
            continue
        rows.append(
            DraftRow(
                slot_id=update.slot_id,
                date=slot.date,
                period=slot.period,
                staff_id=slot.staff_id,
                location_id=update.location_id,
                session_id=update.session_id,
                role_id=update.role_id,
                is_primary_closer=update.is_primary_closer,
                is_secondary_closer=update.is_secondary_closer,
                is_tertiary_closer=update.is_tertiary_closer,
            )
        )
    return rows


def build_preview(
    day: date,
    needs: Sequence[Need],
    placeholders: Sequence[SlotPlaceholder],
    names: Mapping[str, str],
    reconciliation: Optional[Reconciliation],
    objective: Optional[float] = None,
    rules: ClinicRules = CLINIC_RULES,
) -> PreviewResult:
    """Compare the current schedule of ``day`` with a proposal; ``None`` means infeasible."""
    day_needs = [need for need in needs if need.date == day]
    day_slots = [slot for slot in placeholders if slot.date == day]
    table = _demand_table(day_needs)
    before = _statuses(table, assignments_before(day_slots, names, rules))
    if reconciliation is None:
        return PreviewResult(date=day, feasible=False, before=before, after=list(before))

    day_combos = [combo for combo in reconciliation.combos if combo.date == day]
    slot_ids = {slot.slot_id for slot in day_slots}
    after = _statuses(table, assignments_after(day_combos, names))
    day_reconciliation = Reconciliation(
        combos=day_combos,
        closing_roles=[role for role in reconciliation.closing_roles if role.date == day],
        updates=[update for update in reconciliation.updates if update.slot_id in slot_ids],
    )
    return PreviewResult(
        date=day,
        feasible=True,
        before=before,
        after=after,
        changes=diff_statuses(before, after),
        summary=summarize(before, after),
        drafts=draft_rows(day_reconciliation, day_slots, rules),
        objective=objective,
    )
