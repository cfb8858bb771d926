"""Tests for mapping solved values back to slots and for the preview diff."""

from datetime import date

from conftest import TEST_RULES
from staffing.config import AFTERNOON, MORNING
from staffing.data_access.week_loader import history_placements, inject_synthetic_admin
from staffing.domain.models import ADMIN, Combo, FairnessState, Location, Need, SlotPlaceholder
from staffing.engine.builder import PRIMARY, SECONDARY, BuiltModel, ClosingRoleVar, build_daily_model
from staffing.engine.model import LinearModel
from staffing.engine.preview import PARTIAL, SATISFIED, UNSATISFIED, build_preview
from staffing.engine.reconcile import placements_from, reconcile, select_combos

DAY = date(2024, 3, 8)

MORNING_NEED = Need("centre", DAY, MORNING, 2, doctor_ids=("d1",))
AFTERNOON_NEED = Need("centre", DAY, AFTERNOON, 2, doctor_ids=("d1",))

FULL = Combo("s1", DAY, MORNING_NEED, AFTERNOON_NEED, 100.0)
OFF = Combo("s1", DAY, ADMIN, ADMIN, 10.0)


def _built(*combos):
    model = LinearModel()
    for combo in combos:
        model.add_binary(combo.variable_name, combo.score)
    return BuiltModel(model=model, combos={combo.variable_name: combo for combo in combos})


def _slots(staff_id="s1", synthetic_afternoon=False):
    return [
        SlotPlaceholder(f"{staff_id}-m", staff_id, DAY, MORNING),
        SlotPlaceholder(None if synthetic_afternoon else f"{staff_id}-a", staff_id, DAY, AFTERNOON),
    ]


# ============================================================================
# Reconciliation
# ============================================================================

def test_values_above_half_are_selected():
    built = _built(FULL, OFF)
    assert select_combos(built, {FULL.variable_name: 0.51, OFF.variable_name: 0.49}) == [FULL]


def test_duplicate_selection_keeps_best_score():
    built = _built(FULL, OFF)
    assert select_combos(built, {FULL.variable_name: 1.0, OFF.variable_name: 1.0}) == [FULL]


def test_admin_half_writes_admin_location():
    result = reconcile(_built(OFF), {OFF.variable_name: 1.0}, _slots(), TEST_RULES)
    assert {update.location_id for update in result.updates} == {TEST_RULES.admin_location_id}


def test_synthetic_placeholder_is_not_written():
    result = reconcile(_built(FULL), {FULL.variable_name: 1.0}, _slots(synthetic_afternoon=True), TEST_RULES)

    assert [update.slot_id for update in result.updates] == ["s1-m"]
    assert result.skipped == [("s1", DAY, AFTERNOON)]


def test_closing_flags_follow_location():
    built = _built(FULL)
    role = ClosingRoleVar("r1", "s1", "centre", DAY, SECONDARY, tertiary=True)
    built.closing_roles.append(role)
    built.model.add_binary("r1")

    result = reconcile(built, {FULL.variable_name: 1.0, "r1": 1.0}, _slots(), TEST_RULES)

    assert all(update.is_tertiary_closer and not update.is_secondary_closer for update in result.updates)


def test_placements_count_closing_roles():
    role = ClosingRoleVar("r1", "s1", "centre", DAY, PRIMARY)
    placement = placements_from([FULL], [role], _slots())[0]

    assert placement.primary_closer and not placement.secondary_closer
    assert placement.location_ids == ("centre", "centre")
    assert placement.admin_halves == 0


def test_forced_admin_half_is_not_counted_as_admin_time():
    """A morning-only worker's synthetic afternoon counts the same as when the day is read back."""
    worked = Combo("s1", DAY, MORNING_NEED, ADMIN, 50.0)
    slots = [SlotPlaceholder("s1-m", "s1", DAY, MORNING, "centre")]
    completed = inject_synthetic_admin(slots, [DAY], TEST_RULES)

    solved = placements_from([worked], [], completed)[0]
    read_back = history_placements(slots, (), TEST_RULES)[0]

    assert solved.admin_halves == read_back.admin_halves == 0
    assert solved.location_ids == read_back.location_ids == ("centre",)


def test_admin_half_on_real_slot_is_counted():
    assert placements_from([OFF], [], _slots())[0].admin_halves == 2


# ============================================================================
# Preview
# ============================================================================

def test_infeasible_preview_keeps_current_state():
    preview = build_preview(DAY, [MORNING_NEED], _slots(), {"s1": "Alice"}, None, rules=TEST_RULES)

    assert not preview.feasible
    assert preview.after == preview.before
    assert preview.drafts == []


def test_preview_statuses_and_changes():
    slots = _slots() + _slots("s2")
    slots[0] = SlotPlaceholder("s1-m", "s1", DAY, MORNING, "centre")
    combos = [FULL, Combo("s2", DAY, MORNING_NEED, ADMIN, 50.0)]
    built = build_daily_model(DAY, combos, [MORNING_NEED, AFTERNOON_NEED], {"centre": Location("centre", "C")},
                              FairnessState(), TEST_RULES)
    values = {combo.variable_name: 1.0 for combo in combos}
    reconciliation = reconcile(built, values, slots, TEST_RULES)

    preview = build_preview(DAY, [MORNING_NEED, AFTERNOON_NEED], slots, {"s1": "Alice", "s2": "Bob"},
                            reconciliation, rules=TEST_RULES)
    before = {row.period: row.status for row in preview.before}
    after = {row.period: row.status for row in preview.after}

    assert before == {MORNING: PARTIAL, AFTERNOON: UNSATISFIED}
    assert after == {MORNING: SATISFIED, AFTERNOON: PARTIAL}
    morning_change = next(change for change in preview.changes if change.period == MORNING)
    assert morning_change.added == ("Bob",)
    assert morning_change.unchanged == ("Alice",)
    assert preview.summary.net_change == 1
    assert {draft.slot_id for draft in preview.drafts} == {"s1-a", "s2-m"}
