"""Centralized knobs for the staffing optimizer. Tweak values here instead of touching the engine."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Optional, Tuple

# ---------------------------------------------------------------------------
# Calendar + half-day configuration
# ---------------------------------------------------------------------------
MORNING = "morning"
AFTERNOON = "afternoon"
PERIODS = (MORNING, AFTERNOON)

WEEK_START_WEEKDAY = 0  # Monday; weeks run Monday-Sunday

# ---------------------------------------------------------------------------
# Demand defaults
# ---------------------------------------------------------------------------
DEFAULT_STAFFING_COEFFICIENT: Optional[float] = 1.2  # Staff needed per doctor when the doctor row is silent
DEMAND_ROUNDING_DIGITS = 6  # Strip float noise from summed coefficients before the ceiling

# Location names containing one of these markers are the surgical block
SURGICAL_BLOCK_MARKERS = ("bloc", "opératoire", "operatoire", "operating")

ADMIN_MARKER = "admin"  # Token used for administrative halves in variable names

# ---------------------------------------------------------------------------
# Solver
# ---------------------------------------------------------------------------
DEFAULT_SOLVER_MAX_TIME = 60  # Seconds
MIP_BACKENDS = ("SCIP", "CBC")  # Tried in order
SELECTION_THRESHOLD = 0.5  # Solved values above this count as selected


@dataclass(frozen=True)
class ScoreWeights:
    """Preference scores and per-combo bonuses/penalties.

    Penalties are stored as positive magnitudes and subtracted by the scorer.
    """

    role_preference: Dict[int, float] = field(default_factory=lambda: {1: 6000.0, 2: 5500.0, 3: 5250.0})
    doctor_preference: Dict[int, float] = field(default_factory=lambda: {1: 3400.0, 2: 3240.0})
    location_preference: Dict[int, float] = field(
        default_factory=lambda: {1: 2200.0, 2: 2190.0, 3: 2180.0, 4: 2170.0}
    )
    overload_penalty: float = 300.0  # Per day over the 2-day threshold at a low-preference site
    overload_free_days: int = 2
    overload_ranks: FrozenSet[int] = frozenset({2, 3, 4})
    admin_target_bonus: float = 200.0  # Flat bonus while under the personal admin target
    admin_target_met_bonus: float = 1.0  # Near-zero once the target is met
    admin_decay_start: float = 10.0  # Without a target: start value, minus one per used admin half-day
    same_site_bonus: float = 20.0
    site_change_penalty: float = 40.0
    high_friction_change_penalty: float = 60.0
    retention_bonus: float = 200.0  # Preview only, per half matching the current schedule


STANDARD_SCORE_WEIGHTS = ScoreWeights()

# Preview runs were tuned separately and carry the older, lower scale.
PREVIEW_SCORE_WEIGHTS = ScoreWeights(
    role_preference={1: 5000.0, 2: 4500.0, 3: 4250.0},
    doctor_preference={1: 1400.0, 2: 1240.0},
    location_preference={1: 1200.0, 2: 1190.0, 3: 1180.0, 4: 1170.0},
    overload_penalty=150.0,
)


@dataclass(frozen=True)
class ClosingPenalties:
    """History-aware penalties on closing roles in the daily model."""

    repeat_secondary: float = 250.0  # Staff already held a secondary/tertiary role this week
    third_closing_duty: float = 250.0  # Staff already closed twice this week
    heavy_closing_duty: float = 200.0  # Added again for the 4th and for the 5th duty
    heavy_duty_thresholds: Tuple[int, ...] = (3, 4)


@dataclass(frozen=True)
class WeeklyFairnessTiers:
    """Tier thresholds and penalties of the weekly model. Only the highest tier fires."""

    primary_weight: int = 10
    secondary_weight: int = 12
    closing_tiers: Tuple[Tuple[int, float], ...] = ((22, 200.0), (29, 500.0), (31, 1100.0), (35, 10000.0))
    cluster_tiers: Tuple[Tuple[int, float], ...] = ((2, 150.0), (3, 1000.0), (4, 1500.0), (5, 2000.0))
    history_threshold: int = 44
    history_penalty: float = 300.0
    cluster_history_threshold: int = 2
    cluster_history_penalty: float = 300.0
    combined_closing_above: int = 22  # Closing score strictly above this
    combined_cluster_above: int = 1  # Cluster days strictly above this
    combined_penalty: float = 500.0


@dataclass(frozen=True)
class ExclusionRules:
    """Declarative same-day exclusion rules between location/room categories.

    ``forbidden_pairs`` lists tag pairs that never share a day. ``restricted``
    maps a tag to the tags it may be paired with; anything else is excluded.
    """

    forbidden_pairs: FrozenSet[FrozenSet[str]] = frozenset()
    restricted: Dict[str, FrozenSet[str]] = field(default_factory=dict)

    def excludes(self, morning_tags: FrozenSet[str], afternoon_tags: FrozenSet[str]) -> bool:
        for left in morning_tags:
            for right in afternoon_tags:
                if frozenset((left, right)) in self.forbidden_pairs:
                    return True
        for tags, other in ((morning_tags, afternoon_tags), (afternoon_tags, morning_tags)):
            for tag in tags:
                allowed = self.restricted.get(tag)
                if allowed is not None and not other & allowed:
                    return True
        return False


# Category tags produced by the combo generator
TAG_ADMIN = "admin"
TAG_STANDARD_ROOM = "standard_room"
TAG_FORBIDDEN_SITE = "forbidden_site"
TAG_SPECIALTY_ROOM = "specialty_room"
TAG_ALTERNATE_SITE = "alternate_site"
TAG_SURGICAL = "surgical"
TAG_LOCATION = "location"

DEFAULT_EXCLUSION_RULES = ExclusionRules(
    forbidden_pairs=frozenset({frozenset((TAG_STANDARD_ROOM, TAG_FORBIDDEN_SITE))}),
    restricted={TAG_SPECIALTY_ROOM: frozenset({TAG_ADMIN, TAG_SPECIALTY_ROOM, TAG_ALTERNATE_SITE})},
)


@dataclass(frozen=True)
class DoctorAffinity:
    """Bonus when a given doctor's need is staffed by one of the listed staff."""

    doctor_id: str
    staff_ids: FrozenSet[str]
    bonus: float


@dataclass(frozen=True)
class ClinicRules:
    """Clinic-specific identifiers. Defaults describe the production clinic."""

    admin_location_id: str = "00000000-0000-0000-0000-000000000001"
    high_friction_location_ids: FrozenSet[str] = frozenset(
        {
            "043899a1-a232-4c4b-9d7d-0eb44dad00ad",  # Centre Esplanade
            "7723c334-d06c-413d-96f0-be281d76520d",  # Vieille ville
        }
    )
    forbidden_location_ids: FrozenSet[str] = frozenset(
        {
            "043899a1-a232-4c4b-9d7d-0eb44dad00ad",
            "7723c334-d06c-413d-96f0-be281d76520d",
        }
    )
    standard_room_ids: FrozenSet[str] = frozenset(
        {
            "ae6dc538-e24c-4f53-b6f5-689a97ac4292",  # red
            "b8279252-aa3a-436d-b184-54da0de62f49",  # green
            "8965e942-0c6b-4261-a976-2bdf6cd13a00",  # yellow
        }
    )
    specialty_room_id: Optional[str] = "f3b11ee0-4463-4273-afcd-30148424077c"  # gastroenterology
    specialty_intervention_type_id: Optional[str] = "32da56a9-d58c-4e3f-94bb-2aa30e7f861c"
    alternate_location_id: Optional[str] = "7723c334-d06c-413d-96f0-be281d76520d"
    fallback_block_location_id: Optional[str] = "86f1047f-c4ff-441f-a064-42ee2f8ef37a"
    # Sites whose repeated low-preference use escalates the per-day overload penalty; empty means every location
    overload_location_ids: FrozenSet[str] = frozenset({"043899a1-a232-4c4b-9d7d-0eb44dad00ad"})  # Esplanade
    # Sites counted as one cluster by the weekly cluster-day tiers
    cluster_location_ids: FrozenSet[str] = frozenset({"4a06ca9e-43ed-43f6-a42f-e9b0f95df4d0"})  # Porrentruy
    # Doctors whose presence makes the secondary closer a tertiary closer
    tertiary_doctor_ids: FrozenSet[str] = frozenset({"121dc7d9-99dc-46bd-9b6c-d240ac6dc6c8"})
    # (staff_id, weekday) -> extra penalty for holding the secondary role that weekday
    secondary_weekday_penalties: Dict[Tuple[str, int], float] = field(
        default_factory=lambda: {("1e5339aa-5e82-4295-b918-e15a580b3396", 1): 500.0}
    )
    doctor_affinities: Tuple[DoctorAffinity, ...] = (
        DoctorAffinity(
            doctor_id="fda323f4-3efd-4c78-8b63-7d660fcd7eea",
            staff_ids=frozenset(
                {"68e74e31-12a7-4fd3-836d-41e8abf57792", "324639fa-2e3d-4903-a143-323a17b0d988"}
            ),
            bonus=3000.0,
        ),
    )
    exclusions: ExclusionRules = DEFAULT_EXCLUSION_RULES


CLINIC_RULES = ClinicRules()
CLOSING_PENALTIES = ClosingPenalties()
WEEKLY_TIERS = WeeklyFairnessTiers()
