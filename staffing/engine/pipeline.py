"""Orchestrates load -> demand -> combos -> model -> solve -> reconcile for a list of dates."""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import date
from typing import Callable, Dict, List, Optional, Sequence, Set, Tuple

from staffing.config import (
    CLINIC_RULES,
    DEFAULT_SOLVER_MAX_TIME,
    PREVIEW_SCORE_WEIGHTS,
    STANDARD_SCORE_WEIGHTS,
    ClinicRules,
    ScoreWeights,
)
from staffing.data_access.slot_writer import SlotStore
from staffing.data_access.week_loader import DataSource, group_dates_by_week, history_placements, load_week
from staffing.domain.models import CurrentState, FairnessState, Need, WeekData
from staffing.engine.builder import PRIMARY, SECONDARY, BuiltModel, ClosingSite, RoleObjective, build_daily_model
from staffing.engine.combos import generate_combos
from staffing.engine.demand import compute_needs
from staffing.engine.preview import PreviewResult, build_preview
from staffing.engine.reconcile import Reconciliation, placements_from, reconcile
from staffing.engine.scoring import ComboScorer, admin_targets_of
from staffing.engine.solver import INFEASIBLE, SOLVER_ERROR, SolveResult, solve_model
from staffing.engine.weekly import build_weekly_model

logger = logging.getLogger(__name__)

SUCCESS = "success"

_store_lock = threading.Lock()


@dataclass
class DateReport:
    date: date
    status: str
    objective: Optional[float] = None
    assignments_written: int = 0
    needs_count: int = 0
    message: str = ""

    @property
    def success(self) -> bool:
        return self.status == SUCCESS


@dataclass
class OptimizationReport:
    mode: str
    dates: List[DateReport] = field(default_factory=list)

    @property
    def succeeded(self) -> List[date]:
        return [report.date for report in self.dates if report.success]

    @property
    def failed(self) -> List[date]:
        return [report.date for report in self.dates if not report.success]


# ---------------------------------------------------------------------------
# Shared solve steps
# ---------------------------------------------------------------------------
def _retention_role_bonus(week: WeekData, bonus: float) -> RoleObjective:
    """Closing roles already held in the current schedule keep a retention bonus."""
    held: Set[Tuple[str, date, str, str]] = set()
    for slot in week.placeholders:
        if slot.synthetic or not slot.location_id:
            continue
        if slot.is_primary_closer:
            held.add((slot.staff_id, slot.date, slot.location_id, PRIMARY))
        if slot.is_secondary_closer or slot.is_tertiary_closer:
            held.add((slot.staff_id, slot.date, slot.location_id, SECONDARY))

    def role_bonus(staff_id: str, role: str, site: ClosingSite) -> float:
        return bonus if (staff_id, site.date, site.location_id, role) in held else 0.0

    return role_bonus


def _scorer(week: WeekData, fairness: FairnessState, weights: ScoreWeights, rules: ClinicRules,
            current: Optional[CurrentState]) -> ComboScorer:
    return ComboScorer(week.preferences, fairness, admin_targets_of(week.staff), weights, rules, current)


def _safe_solve(built: BuiltModel, time_limit: int) -> SolveResult:
    try:
        return solve_model(built.model, time_limit)
    except Exception as exc:  # surfaced per date so a batch can continue
        logger.exception("Solver failed on %s", built.model.name)
        return SolveResult(status=SOLVER_ERROR, message=str(exc))


def _staff_ids(week: WeekData) -> List[str]:
    return [member.staff_id for member in week.staff]


def solve_week_daily(
    week: WeekData,
    needs: Sequence[Need],
    weights: ScoreWeights,
    rules: ClinicRules,
    time_limit: int,
    current: Optional[CurrentState] = None,
    on_day: Optional[Callable[[date, BuiltModel, SolveResult, Optional[Reconciliation]], None]] = None,
) -> None:
    """Days in calendar order, the fairness snapshot advancing between them."""
    fairness = week.fairness
    role_bonus = _retention_role_bonus(week, weights.retention_bonus) if current is not None else None
    for day in sorted(week.target_dates):
        day_slots = week.placeholders_on(day)
        combos = generate_combos(
            _staff_ids(week), [day], needs, day_slots, week.preferences,
            _scorer(week, fairness, weights, rules, current), rules,
        )
        built = build_daily_model(day, combos, needs, week.locations, fairness, rules, role_bonus=role_bonus)
        result = _safe_solve(built, time_limit)
        reconciliation = reconcile(built, result.values, day_slots, rules) if result.feasible else None
        if reconciliation is not None:
            fairness = fairness.advance(placements_from(reconciliation.combos, reconciliation.closing_roles, day_slots))
        else:
            fairness = fairness.advance(history_placements(day_slots, (), rules))
        if on_day:
            on_day(day, built, result, reconciliation)


def solve_week_global(
    week: WeekData,
    needs: Sequence[Need],
    weights: ScoreWeights,
    rules: ClinicRules,
    time_limit: int,
    current: Optional[CurrentState] = None,
) -> Tuple[BuiltModel, SolveResult, Optional[Reconciliation]]:
    """One atomic model for every target day of the week."""
    combos = generate_combos(
        _staff_ids(week), week.target_dates, needs, week.placeholders, week.preferences,
        _scorer(week, week.fairness, weights, rules, current), rules,
    )
    role_bonus = _retention_role_bonus(week, weights.retention_bonus) if current is not None else None
    built = build_weekly_model(
        week.target_dates, combos, needs, week.locations, week.fairness, week.preferences, rules,
        weights=weights, role_bonus=role_bonus,
    )
    result = _safe_solve(built, time_limit)
    reconciliation = reconcile(built, result.values, week.placeholders, rules) if result.feasible else None
    return built, result, reconciliation


def _failure_status(result: SolveResult) -> str:
    return SOLVER_ERROR if result.status == SOLVER_ERROR else INFEASIBLE


# ---------------------------------------------------------------------------
# Standard runs
# ---------------------------------------------------------------------------
def optimize_week(
    source: DataSource,
    store: Optional[SlotStore],
    dates: Sequence[date],
    weekly: bool = False,
    time_limit: int = DEFAULT_SOLVER_MAX_TIME,
    rules: ClinicRules = CLINIC_RULES,
    weights: ScoreWeights = STANDARD_SCORE_WEIGHTS,
) -> List[DateReport]:
    with _store_lock:
        week = load_week(source, dates, rules)
    needs = compute_needs(week, rules=rules)
    counts: Dict[date, int] = {day: sum(1 for need in needs if need.date == day) for day in week.target_dates}
    reports: List[DateReport] = []

    def write(updates) -> int:
        with _store_lock:
            return store.apply_updates(updates) if store is not None else len(updates)

    if weekly:
        _, result, reconciliation = solve_week_global(week, needs, weights, rules, time_limit)
        for day in week.target_dates:
            if reconciliation is None:
                reports.append(DateReport(day, _failure_status(result), needs_count=counts[day], message=result.message))
                continue
            day_slots = {slot.slot_id for slot in week.placeholders_on(day)}
            written = write([update for update in reconciliation.updates if update.slot_id in day_slots])
            reports.append(DateReport(day, SUCCESS, result.objective, written, counts[day]))
        return reports

    def on_day(day, built, result, reconciliation):
        if reconciliation is None:
            reports.append(DateReport(day, _failure_status(result), needs_count=counts[day], message=result.message))
            return
        reports.append(DateReport(day, SUCCESS, result.objective, write(reconciliation.updates), counts[day]))

    solve_week_daily(week, needs, weights, rules, time_limit, on_day=on_day)
    return reports


def optimize_dates(
    source: DataSource,
    store: Optional[SlotStore],
    dates: Sequence[date],
    weekly: bool = False,
    time_limit: int = DEFAULT_SOLVER_MAX_TIME,
    rules: ClinicRules = CLINIC_RULES,
    max_workers: int = 1,
) -> OptimizationReport:
    """Optimize every target date and write the validated results through ``store``.

    Dates are grouped into Monday-Sunday weeks; independent weeks may run in parallel.
    """
    report = OptimizationReport(mode="weekly" if weekly else "daily")
    groups = list(group_dates_by_week(dates).values())

    def run(week_dates: List[date]) -> List[DateReport]:
        return optimize_week(source, store, week_dates, weekly, time_limit, rules)

    if max_workers > 1 and len(groups) > 1:
        with ThreadPoolExecutor(max_workers=max_workers) as executor:
            for week_reports in executor.map(run, groups):
                report.dates.extend(week_reports)
    else:
        for week_dates in groups:
            report.dates.extend(run(week_dates))
    report.dates.sort(key=lambda item: item.date)
    return report


# ---------------------------------------------------------------------------
# Preview runs
# ---------------------------------------------------------------------------
def preview_week(
    source: DataSource,
    store: Optional[SlotStore],
    dates: Sequence[date],
    weekly: bool = False,
    time_limit: int = DEFAULT_SOLVER_MAX_TIME,
    rules: ClinicRules = CLINIC_RULES,
    weights: ScoreWeights = PREVIEW_SCORE_WEIGHTS,
) -> List[PreviewResult]:
    with _store_lock:
        week = load_week(source, dates, rules)
    needs = compute_needs(week, rules=rules)
    names = {member.staff_id: member.name for member in week.staff}
    previews: List[PreviewResult] = []

    def stage(preview: PreviewResult) -> None:
        if store is not None:
            with _store_lock:
                store.replace_drafts(preview.date, preview.drafts)
        previews.append(preview)

    if weekly:
        _, result, reconciliation = solve_week_global(week, needs, weights, rules, time_limit, week.current)
        for day in week.target_dates:
            stage(build_preview(day, needs, week.placeholders, names, reconciliation, result.objective, rules))
        return previews

    def on_day(day, built, result, reconciliation):
        stage(build_preview(day, needs, week.placeholders, names, reconciliation, result.objective, rules))

    solve_week_daily(week, needs, weights, rules, time_limit, week.current, on_day=on_day)
    return previews


def preview_dates(
    source: DataSource,
    store: Optional[SlotStore],
    dates: Sequence[date],
    weekly: bool = False,
    time_limit: int = DEFAULT_SOLVER_MAX_TIME,
    rules: ClinicRules = CLINIC_RULES,
) -> List[PreviewResult]:
    """Dry run: nothing permanent is written, proposals are staged as drafts per date."""
    previews: List[PreviewResult] = []
    for week_dates in group_dates_by_week(dates).values():
        previews.extend(preview_week(source, store, week_dates, weekly, time_limit, rules))
    return sorted(previews, key=lambda preview: preview.date)
