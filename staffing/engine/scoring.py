"""Additive combo scoring: preferences, admin bonuses, overload and cross-half terms."""

from __future__ import annotations

from datetime import date
from typing import Dict, Mapping, Optional

from staffing.config import (
    AFTERNOON,
    CLINIC_RULES,
    MORNING,
    STANDARD_SCORE_WEIGHTS,
    ClinicRules,
    ScoreWeights,
)
from staffing.domain.models import (
    AdminAssignment,
    CurrentState,
    FairnessState,
    HalfAssignment,
    Need,
    Preferences,
    ref_of,
)
from staffing.engine.combos import is_specialty_room


class ComboScorer:
    """Scores a (morning, afternoon) pair for one staff member on one day.

    Instances are callables so they can be handed straight to the combo generator.
    Passing ``current`` switches on the preview retention bonus.
    """

    def __init__(
        self,
        preferences: Preferences,
        fairness: FairnessState,
        admin_targets: Mapping[str, Optional[int]],
        weights: ScoreWeights = STANDARD_SCORE_WEIGHTS,
        rules: ClinicRules = CLINIC_RULES,
        current: Optional[CurrentState] = None,
    ):
        self.preferences = preferences
        self.fairness = fairness
        self.admin_targets = admin_targets
        self.weights = weights
        self.rules = rules
        self.current = current

    def __call__(self, staff_id: str, day: date, morning: HalfAssignment, afternoon: HalfAssignment) -> float:
        return self.score(staff_id, day, morning, afternoon)

    def score(self, staff_id: str, day: date, morning: HalfAssignment, afternoon: HalfAssignment) -> float:
        used_admin = self.fairness.admin_used(staff_id)
        total = self.half_score(staff_id, morning, used_admin)
        if isinstance(morning, AdminAssignment):
            used_admin += 1
        total += self.half_score(staff_id, afternoon, used_admin)
        total += self.cross_half_score(morning, afternoon)
        total -= self.overload_penalty(staff_id, day, morning, afternoon)
        total += self.affinity_bonus(staff_id, morning, afternoon)
        if self.current is not None:
            total += self.retention_bonus(staff_id, day, morning, afternoon)
        return total

    # -- per half ---------------------------------------------------------
    def preference_score(self, staff_id: str, need: Need) -> float:
        """Best single matching preference; preferences are never summed."""
        weights = self.weights
        candidates = [0.0]
        if need.is_surgical:
            rank = self.preferences.role_rank(staff_id, need.role_id)
            if rank is not None:
                candidates.append(weights.role_preference.get(rank, 0.0))
        for doctor_id in need.doctor_ids:
            rank = self.preferences.doctor_rank(staff_id, doctor_id)
            if rank is not None:
                candidates.append(weights.doctor_preference.get(rank, 0.0))
        rank = self.preferences.location_rank(staff_id, need.location_id)
        if rank is not None:
            candidates.append(weights.location_preference.get(rank, 0.0))
        return max(candidates)

    def admin_bonus(self, staff_id: str, used_before: int) -> float:
        weights = self.weights
        target = self.admin_targets.get(staff_id)
        if target:
            return weights.admin_target_bonus if used_before < target else weights.admin_target_met_bonus
        return max(0.0, weights.admin_decay_start - used_before)

    def half_score(self, staff_id: str, half: HalfAssignment, used_admin: int) -> float:
        if half is None:
            return 0.0
        if isinstance(half, AdminAssignment):
            return self.admin_bonus(staff_id, used_admin)
        return self.preference_score(staff_id, half)

    # -- whole day --------------------------------------------------------
    def is_overload_candidate(self, staff_id: str, need: Need) -> bool:
        if need.is_surgical:
            return False
        tracked = self.rules.overload_location_ids
        if tracked and need.location_id not in tracked:
            return False
        rank = self.preferences.location_rank(staff_id, need.location_id)
        return rank in self.weights.overload_ranks

    def overload_penalty(self, staff_id: str, day: date, morning: HalfAssignment, afternoon: HalfAssignment) -> float:
        """Penalty for a low-preference site already used on several distinct days, once per day."""
        weights = self.weights
        penalty = 0.0
        seen = set()
        for half in (morning, afternoon):
            if not isinstance(half, Need) or half.location_id in seen:
                continue
            seen.add(half.location_id)
            if not self.is_overload_candidate(staff_id, half):
                continue
            total_days = len(self.fairness.days_at(staff_id, half.location_id) | {day})
            if total_days > weights.overload_free_days:
                over = total_days - weights.overload_free_days
                penalty += over * weights.overload_penalty * self.fairness.escalation(staff_id)
        return penalty

    def cross_half_score(self, morning: HalfAssignment, afternoon: HalfAssignment) -> float:
        if not isinstance(morning, Need) or not isinstance(afternoon, Need):
            return 0.0
        weights = self.weights
        if morning.location_id == afternoon.location_id:
            return weights.same_site_bonus
        if self._change_exempt(morning, afternoon) or self._change_exempt(afternoon, morning):
            return 0.0
        friction = self.rules.high_friction_location_ids
        if morning.location_id in friction or afternoon.location_id in friction:
            return -weights.high_friction_change_penalty
        return -weights.site_change_penalty

    def _change_exempt(self, first: Need, second: Need) -> bool:
        if not is_specialty_room(first, self.rules):
            return False
        return is_specialty_room(second, self.rules) or second.location_id == self.rules.alternate_location_id

    def affinity_bonus(self, staff_id: str, morning: HalfAssignment, afternoon: HalfAssignment) -> float:
        bonus = 0.0
        for affinity in self.rules.doctor_affinities:
            if staff_id not in affinity.staff_ids:
                continue
            for half in (morning, afternoon):
                if isinstance(half, Need) and affinity.doctor_id in half.doctor_ids:
                    bonus += affinity.bonus
        return bonus

    def retention_bonus(self, staff_id: str, day: date, morning: HalfAssignment, afternoon: HalfAssignment) -> float:
        state = self.current.get(staff_id, day)
        bonus = 0.0
        for period, half in ((MORNING, morning), (AFTERNOON, afternoon)):
            ref = ref_of(half)
            if ref is not None and ref.matches(state.at(period)):
                bonus += self.weights.retention_bonus
        return bonus


def admin_targets_of(staff) -> Dict[str, Optional[int]]:
    return {member.staff_id: member.admin_target for member in staff}
