"""Weekly global model: all target days in one solve with in-model fairness escalation.

Daily closing history penalties are replaced by integer counters built from
per-day indicators, with exclusive tier penalties on top of them.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from datetime import date
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from staffing.config import (
    CLINIC_RULES,
    STANDARD_SCORE_WEIGHTS,
    WEEKLY_TIERS,
    ClinicRules,
    ScoreWeights,
    WeeklyFairnessTiers,
)
from staffing.domain.models import Combo, FairnessState, Location, Need, Preferences
from staffing.engine.builder import (
    PRIMARY,
    BuiltModel,
    ClosingRoleVar,
    RoleObjective,
    add_capacity_constraints,
    add_closing_constraints,
    add_combo_variables,
    add_coupling_constraints,
    find_closing_sites,
)
from staffing.engine.model import (
    LinearModel,
    add_and_indicator,
    add_equal_link,
    add_exclusive_tiers,
    add_threshold_indicator,
)

logger = logging.getLogger(__name__)


def _day_indicators(
    model: LinearModel, prefix: str, staff_id: str, per_day: Mapping[date, List[str]]
) -> List[str]:
    """One binary per day that is 1 exactly when any of that day's variables is."""
    indicators = []
    for day, names in sorted(per_day.items()):
        terms = {name: 1.0 for name in names}
        indicators.append(add_threshold_indicator(model, f"{prefix}_day__{staff_id}__{day.isoformat()}", terms, 1))
    return indicators


def _counter(model: LinearModel, name: str, indicators: Sequence[str]) -> str:
    counter = model.add_integer(name, 0, len(indicators))
    add_equal_link(model, f"link_{counter}", counter, indicators)
    return counter


def _shift(tiers: Sequence[Tuple[int, float]], prior: float) -> List[Tuple[float, float]]:
    return [(threshold - prior, penalty) for threshold, penalty in tiers]


def cluster_ranked_staff(
    staff_ids: Sequence[str], preferences: Preferences, rules: ClinicRules, weights: ScoreWeights
) -> List[str]:
    """Staff holding a cluster location at one of the low preference ranks."""
    selected = []
    for staff_id in staff_ids:
        ranks = {preferences.location_rank(staff_id, location_id) for location_id in rules.cluster_location_ids}
        if ranks & set(weights.overload_ranks):
            selected.append(staff_id)
    return selected


def build_weekly_model(
    days: Sequence[date],
    combos: Sequence[Combo],
    needs: Sequence[Need],
    locations: Mapping[str, Location],
    fairness: FairnessState,
    preferences: Preferences,
    rules: ClinicRules = CLINIC_RULES,
    tiers: WeeklyFairnessTiers = WEEKLY_TIERS,
    weights: ScoreWeights = STANDARD_SCORE_WEIGHTS,
    role_bonus: Optional[RoleObjective] = None,
) -> BuiltModel:
    days = sorted(days)
    week_combos = [combo for combo in combos if combo.date in days]
    week_needs = [need for need in needs if need.date in days]
    model = LinearModel(name=f"staffing_week_{days[0].isoformat()}" if days else "staffing_week")
    built = BuiltModel(model=model, combos=add_combo_variables(model, week_combos))
    add_coupling_constraints(model, week_combos)
    add_capacity_constraints(model, week_combos, week_needs)

    for day in days:
        for site in find_closing_sites(day, week_needs, locations, rules):
            built.closing_sites.append(site)
            built.closing_roles.extend(add_closing_constraints(model, week_combos, site, role_bonus))

    _add_closing_tiers(model, built.closing_roles, fairness, tiers)
    _add_cluster_tiers(model, week_combos, built.closing_roles, fairness, preferences, rules, tiers, weights)

    logger.info("Weekly model for %d day(s): %s", len(days), model.stats())
    return built


def _closing_terms(
    model: LinearModel, staff_id: str, roles: Sequence[ClosingRoleVar], tiers: WeeklyFairnessTiers
) -> Dict[str, float]:
    primary: Dict[date, List[str]] = defaultdict(list)
    secondary: Dict[date, List[str]] = defaultdict(list)
    for role in roles:
        (primary if role.role == PRIMARY else secondary)[role.date].append(role.name)
    terms: Dict[str, float] = {}
    if primary:
        counter = _counter(model, f"primary_days__{staff_id}", _day_indicators(model, "primary", staff_id, primary))
        terms[counter] = tiers.primary_weight
    if secondary:
        counter = _counter(
            model, f"secondary_days__{staff_id}", _day_indicators(model, "secondary", staff_id, secondary)
        )
        terms[counter] = tiers.secondary_weight
    return terms


def _prior_closing_score(staff_id: str, fairness: FairnessState, tiers: WeeklyFairnessTiers) -> int:
    primary, secondary = fairness.closing_counts(staff_id)
    return tiers.primary_weight * primary + tiers.secondary_weight * secondary


def _add_closing_tiers(
    model: LinearModel,
    closing_roles: Sequence[ClosingRoleVar],
    fairness: FairnessState,
    tiers: WeeklyFairnessTiers,
) -> None:
    by_staff: Dict[str, List[ClosingRoleVar]] = defaultdict(list)
    for role in closing_roles:
        by_staff[role.staff_id].append(role)

    for staff_id, roles in sorted(by_staff.items()):
        terms = _closing_terms(model, staff_id, roles, tiers)
        prior = _prior_closing_score(staff_id, fairness, tiers)
        add_exclusive_tiers(model, f"closing_tier__{staff_id}", terms, _shift(tiers.closing_tiers, prior))
        history = fairness.closing_history.get(staff_id)
        if history is not None:
            add_threshold_indicator(
                model,
                f"closing_history__{staff_id}",
                terms,
                tiers.history_threshold - history - prior,
                objective=-tiers.history_penalty,
            )


def _add_cluster_tiers(
    model: LinearModel,
    combos: Sequence[Combo],
    closing_roles: Sequence[ClosingRoleVar],
    fairness: FairnessState,
    preferences: Preferences,
    rules: ClinicRules,
    tiers: WeeklyFairnessTiers,
    weights: ScoreWeights,
) -> None:
    cluster = rules.cluster_location_ids
    if not cluster:
        return
    staff_ids = sorted({combo.staff_id for combo in combos})
    roles_by_staff: Dict[str, List[ClosingRoleVar]] = defaultdict(list)
    for role in closing_roles:
        roles_by_staff[role.staff_id].append(role)

    for staff_id in cluster_ranked_staff(staff_ids, preferences, rules, weights):
        per_day: Dict[date, List[str]] = defaultdict(list)
        for combo in combos:
            if combo.staff_id != staff_id:
                continue
            if any(combo.location_at(period) in cluster for period, _ in combo.halves()):
                per_day[combo.date].append(combo.variable_name)
        if not per_day:
            continue
        cluster_days = _counter(
            model, f"cluster_days__{staff_id}", _day_indicators(model, "cluster", staff_id, per_day)
        )
        prior_dates = set()
        for location_id in cluster:
            prior_dates |= fairness.days_at(staff_id, location_id)
        prior = len(prior_dates - set(per_day))
        terms = {cluster_days: 1.0}
        add_exclusive_tiers(
            model,
            f"cluster_tier__{staff_id}",
            terms,
            _shift(tiers.cluster_tiers, prior),
            scale=fairness.escalation(staff_id),
        )
        if fairness.cluster_history.get(staff_id, 0) >= tiers.cluster_history_threshold:
            add_threshold_indicator(
                model, f"cluster_history__{staff_id}", terms, 1 - prior, objective=-tiers.cluster_history_penalty
            )

        roles = roles_by_staff.get(staff_id)
        if not roles:
            continue
        closing_terms = {
            name: coefficient
            for name, coefficient in (
                (f"primary_days__{staff_id}", tiers.primary_weight),
                (f"secondary_days__{staff_id}", tiers.secondary_weight),
            )
            if model.has_variable(name)
        }
        closing_prior = _prior_closing_score(staff_id, fairness, tiers)
        heavy_closing = add_threshold_indicator(
            model,
            f"combined_closing__{staff_id}",
            closing_terms,
            tiers.combined_closing_above + 1 - closing_prior,
        )
        heavy_cluster = add_threshold_indicator(
            model, f"combined_cluster__{staff_id}", terms, tiers.combined_cluster_above + 1 - prior
        )
        add_and_indicator(
            model, f"combined_penalty__{staff_id}", heavy_closing, heavy_cluster, objective=-tiers.combined_penalty
        )
