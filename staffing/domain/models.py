"""Dataclasses and type definitions shared across the staffing modules."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import date
from typing import Dict, FrozenSet, Iterable, List, Optional, Tuple, Union

from staffing.config import ADMIN_MARKER, AFTERNOON, MORNING

NEED_LOCATION = "location"
NEED_SURGICAL = "surgical_role"

KEY_SEPARATOR = "__"
REF_SEPARATOR = "."
NO_SHIFT_MARKER = "off"


def _check_identifier(value: str, label: str) -> str:
    if not value:
        raise ValueError(f"Empty {label} cannot be encoded in a variable name")
    if KEY_SEPARATOR in value or REF_SEPARATOR in value:
        raise ValueError(f"Invalid {label} '{value}': '{KEY_SEPARATOR}' and '{REF_SEPARATOR}' are reserved")
    return value


# ---------------------------------------------------------------------------
# Reference data
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class Staff:
    staff_id: str
    name: str
    admin_target: Optional[int] = None  # Administrative half-days wanted per week


@dataclass(frozen=True)
class Doctor:
    doctor_id: str
    name: str
    staffing_coefficient: Optional[float] = None


@dataclass(frozen=True)
class Location:
    location_id: str
    name: str
    closing: bool = False  # Requires end-of-day closing roles


@dataclass(frozen=True)
class SurgicalRole:
    role_id: str
    name: str


@dataclass(frozen=True)
class SurgicalSession:
    session_id: str
    date: date
    period: str
    session_type_id: str
    location_id: Optional[str] = None
    room_id: Optional[str] = None
    doctor_id: Optional[str] = None
    cancelled: bool = False


@dataclass(frozen=True)
class RoleRequirement:
    session_type_id: str
    role_id: str
    required_count: int
    active: bool = True


@dataclass(frozen=True)
class DemandRow:
    """One doctor working at a location for a half-day."""

    location_id: str
    date: date
    period: str
    doctor_id: str


@dataclass(frozen=True)
class SlotPlaceholder:
    """A staff member's half-day slot. ``slot_id`` is ``None`` for synthetic placeholders."""

    slot_id: Optional[str]
    staff_id: str
    date: date
    period: str
    location_id: Optional[str] = None
    session_id: Optional[str] = None
    role_id: Optional[str] = None
    is_primary_closer: bool = False
    is_secondary_closer: bool = False
    is_tertiary_closer: bool = False

    @property
    def synthetic(self) -> bool:
        return self.slot_id is None


@dataclass(frozen=True)
class Preferences:
    """Ranked staff preferences: staff id -> target id -> rank (1 is best)."""

    roles: Dict[str, Dict[str, int]] = field(default_factory=dict)
    doctors: Dict[str, Dict[str, int]] = field(default_factory=dict)
    locations: Dict[str, Dict[str, int]] = field(default_factory=dict)

    def role_rank(self, staff_id: str, role_id: Optional[str]) -> Optional[int]:
        return self.roles.get(staff_id, {}).get(role_id) if role_id else None

    def doctor_rank(self, staff_id: str, doctor_id: str) -> Optional[int]:
        return self.doctors.get(staff_id, {}).get(doctor_id)

    def location_rank(self, staff_id: str, location_id: Optional[str]) -> Optional[int]:
        return self.locations.get(staff_id, {}).get(location_id) if location_id else None


# ---------------------------------------------------------------------------
# Needs, combos and their keys
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class AdminAssignment:
    """Marker for an administrative (unassigned) half-day."""

    def __repr__(self) -> str:
        return "ADMIN"


ADMIN = AdminAssignment()


@dataclass(frozen=True)
class NeedRef:
    """Identity of what a half-day is assigned to, independent of date and period."""

    kind: str  # "admin", NEED_LOCATION or NEED_SURGICAL
    location_id: Optional[str] = None
    session_id: Optional[str] = None
    role_id: Optional[str] = None

    @classmethod
    def admin(cls) -> "NeedRef":
        return cls(kind=ADMIN_MARKER)

    @property
    def is_admin(self) -> bool:
        return self.kind == ADMIN_MARKER

    def encode(self) -> str:
        if self.kind == ADMIN_MARKER:
            return ADMIN_MARKER
        if self.kind == NEED_LOCATION:
            return REF_SEPARATOR.join(("loc", _check_identifier(self.location_id or "", "location id")))
        if self.kind == NEED_SURGICAL:
            return REF_SEPARATOR.join(
                (
                    "op",
                    _check_identifier(self.session_id or "", "session id"),
                    _check_identifier(self.role_id or "", "role id"),
                )
            )
        raise ValueError(f"Unknown need kind '{self.kind}'")

    @classmethod
    def decode(cls, token: str) -> "NeedRef":
        parts = token.split(REF_SEPARATOR)
        if parts == [ADMIN_MARKER]:
            return cls.admin()
        if parts[0] == "loc" and len(parts) == 2:
            return cls(kind=NEED_LOCATION, location_id=parts[1])
        if parts[0] == "op" and len(parts) == 3:
            return cls(kind=NEED_SURGICAL, session_id=parts[1], role_id=parts[2])
        raise ValueError(f"Malformed need reference '{token}'")

    def matches(self, other: Optional["NeedRef"]) -> bool:
        """Identity match: admin/admin, location by id, surgical by session and role."""
        if other is None or other.kind != self.kind:
            return False
        if self.is_admin:
            return True
        if self.kind == NEED_LOCATION:
            return self.location_id == other.location_id
        return self.session_id == other.session_id and self.role_id == other.role_id


@dataclass(frozen=True)
class Need:
    location_id: str
    date: date
    period: str
    required_count: int
    doctor_ids: Tuple[str, ...] = ()
    kind: str = NEED_LOCATION
    session_id: Optional[str] = None
    role_id: Optional[str] = None
    room_id: Optional[str] = None
    intervention_type_id: Optional[str] = None

    def __post_init__(self):
        if self.required_count < 0:
            raise ValueError(f"Need at {self.location_id} on {self.date} has negative required count")
        if self.kind == NEED_SURGICAL and not (self.session_id and self.role_id):
            raise ValueError("Surgical needs require both a session id and a role id")

    @property
    def is_surgical(self) -> bool:
        return self.kind == NEED_SURGICAL

    @property
    def ref(self) -> NeedRef:
        return NeedRef(
            kind=self.kind,
            location_id=None if self.is_surgical else self.location_id,
            session_id=self.session_id,
            role_id=self.role_id,
        )

    @property
    def label(self) -> str:
        if self.is_surgical:
            return f"{self.location_id}/{self.session_id}/{self.role_id}"
        return self.location_id


HalfAssignment = Union[Need, AdminAssignment, None]


def ref_of(half: HalfAssignment) -> Optional[NeedRef]:
    if half is None:
        return None
    if isinstance(half, AdminAssignment):
        return NeedRef.admin()
    return half.ref


@dataclass(frozen=True)
class ComboKey:
    staff_id: str
    date: date
    morning: Optional[NeedRef]
    afternoon: Optional[NeedRef]

    PREFIX = "combo"

    def to_variable_name(self) -> str:
        halves = [ref.encode() if ref is not None else NO_SHIFT_MARKER for ref in (self.morning, self.afternoon)]
        return KEY_SEPARATOR.join(
            [self.PREFIX, _check_identifier(self.staff_id, "staff id"), self.date.isoformat(), *halves]
        )

    @classmethod
    def from_variable_name(cls, name: str) -> "ComboKey":
        parts = name.split(KEY_SEPARATOR)
        if len(parts) != 5 or parts[0] != cls.PREFIX:
            raise ValueError(f"Not a combo variable name: '{name}'")
        _, staff_id, day, morning, afternoon = parts
        halves = [None if token == NO_SHIFT_MARKER else NeedRef.decode(token) for token in (morning, afternoon)]
        return cls(staff_id=staff_id, date=date.fromisoformat(day), morning=halves[0], afternoon=halves[1])


@dataclass(frozen=True)
class Combo:
    staff_id: str
    date: date
    morning: HalfAssignment
    afternoon: HalfAssignment
    score: float = 0.0

    @property
    def key(self) -> ComboKey:
        return ComboKey(self.staff_id, self.date, ref_of(self.morning), ref_of(self.afternoon))

    @property
    def variable_name(self) -> str:
        return self.key.to_variable_name()

    def half(self, period: str) -> HalfAssignment:
        return self.morning if period == MORNING else self.afternoon

    def halves(self) -> Iterable[Tuple[str, HalfAssignment]]:
        return ((MORNING, self.morning), (AFTERNOON, self.afternoon))

    def location_at(self, period: str) -> Optional[str]:
        half = self.half(period)
        return half.location_id if isinstance(half, Need) else None


# ---------------------------------------------------------------------------
# Fairness snapshot
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class DayPlacement:
    """What one staff member did on one day, as fed into the fairness snapshot."""

    staff_id: str
    date: date
    admin_halves: int = 0
    location_ids: Tuple[str, ...] = ()
    primary_closer: bool = False
    secondary_closer: bool = False


@dataclass(frozen=True)
class FairnessState:
    """Immutable week-scoped fairness counters.

    ``advance`` returns a new snapshot; nothing here is updated in place.
    """

    admin_half_days: Dict[str, int] = field(default_factory=dict)
    location_dates: Dict[str, Dict[str, FrozenSet[date]]] = field(default_factory=dict)
    primary_counts: Dict[str, int] = field(default_factory=dict)
    secondary_counts: Dict[str, int] = field(default_factory=dict)
    overload_escalation: Dict[str, float] = field(default_factory=dict)
    closing_history: Dict[str, float] = field(default_factory=dict)
    cluster_history: Dict[str, int] = field(default_factory=dict)

    def admin_used(self, staff_id: str) -> int:
        return self.admin_half_days.get(staff_id, 0)

    def days_at(self, staff_id: str, location_id: str) -> FrozenSet[date]:
        return self.location_dates.get(staff_id, {}).get(location_id, frozenset())

    def escalation(self, staff_id: str) -> float:
        return self.overload_escalation.get(staff_id, 1.0)

    def closing_counts(self, staff_id: str) -> Tuple[int, int]:
        return self.primary_counts.get(staff_id, 0), self.secondary_counts.get(staff_id, 0)

    def advance(self, placements: Iterable[DayPlacement]) -> "FairnessState":
        admin = dict(self.admin_half_days)
        locations = {staff: dict(by_loc) for staff, by_loc in self.location_dates.items()}
        primary = dict(self.primary_counts)
        secondary = dict(self.secondary_counts)
        for placement in placements:
            staff = placement.staff_id
            if placement.admin_halves:
                admin[staff] = admin.get(staff, 0) + placement.admin_halves
            by_loc = locations.setdefault(staff, {})
            for location_id in set(placement.location_ids):
                by_loc[location_id] = by_loc.get(location_id, frozenset()) | {placement.date}
            if placement.primary_closer:
                primary[staff] = primary.get(staff, 0) + 1
            if placement.secondary_closer:
                secondary[staff] = secondary.get(staff, 0) + 1
        return replace(
            self,
            admin_half_days=admin,
            location_dates=locations,
            primary_counts=primary,
            secondary_counts=secondary,
        )


# ---------------------------------------------------------------------------
# Loaded week + current schedule
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class HalfDayState:
    morning: Optional[NeedRef] = None
    afternoon: Optional[NeedRef] = None

    def at(self, period: str) -> Optional[NeedRef]:
        return self.morning if period == MORNING else self.afternoon


@dataclass(frozen=True)
class CurrentState:
    """Pre-optimization assignments of the target dates, keyed by (staff id, date)."""

    assignments: Dict[Tuple[str, date], HalfDayState] = field(default_factory=dict)

    def get(self, staff_id: str, day: date) -> HalfDayState:
        return self.assignments.get((staff_id, day), HalfDayState())


@dataclass(frozen=True)
class WeekData:
    week_start: date
    target_dates: Tuple[date, ...]
    staff: List[Staff]
    doctors: Dict[str, Doctor]
    locations: Dict[str, Location]
    roles: Dict[str, SurgicalRole]
    preferences: Preferences
    demand_rows: List[DemandRow]
    sessions: List[SurgicalSession]
    requirements: List[RoleRequirement]
    placeholders: List[SlotPlaceholder]
    fairness: FairnessState
    current: CurrentState

    def placeholders_on(self, day: date) -> List[SlotPlaceholder]:
        return [slot for slot in self.placeholders if slot.date == day]

    def staff_name(self, staff_id: str) -> str:
        for member in self.staff:
            if member.staff_id == staff_id:
                return member.name
        return staff_id


# ---------------------------------------------------------------------------
# Write-back records
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class SlotUpdate:
    slot_id: str
    location_id: str
    session_id: Optional[str] = None
    role_id: Optional[str] = None
    is_primary_closer: bool = False
    is_secondary_closer: bool = False
    is_tertiary_closer: bool = False


@dataclass(frozen=True)
class DraftRow:
    slot_id: str
    date: date
    period: str
    staff_id: str
    location_id: str
    session_id: Optional[str] = None
    role_id: Optional[str] = None
    is_primary_closer: bool = False
    is_secondary_closer: bool = False
    is_tertiary_closer: bool = False


def slot_ref(slot: SlotPlaceholder, admin_location_id: str) -> NeedRef:
    """What a placeholder is currently assigned to; no location means administrative."""
    if slot.session_id and slot.role_id:
        return NeedRef(kind=NEED_SURGICAL, session_id=slot.session_id, role_id=slot.role_id)
    if slot.location_id and slot.location_id != admin_location_id:
        return NeedRef(kind=NEED_LOCATION, location_id=slot.location_id)
    return NeedRef.admin()
