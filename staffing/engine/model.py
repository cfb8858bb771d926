"""Solver-agnostic linear model plus the reusable linear indicator builders.

The model is a plain container (variables with objective coefficients, named
linear constraints with ``equal``/``max``/``min`` senses). The solver driver
translates it to OR-Tools; tests inspect it directly.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

BINARY = "binary"
INTEGER = "integer"

EQUAL = "equal"
MAX = "max"
MIN = "min"
SENSES = (EQUAL, MAX, MIN)


@dataclass
class Variable:
    name: str
    kind: str = BINARY
    objective: float = 0.0
    lower: float = 0.0
    upper: float = 1.0


@dataclass
class Constraint:
    name: str
    sense: str
    bound: float
    terms: Dict[str, float] = field(default_factory=dict)

    def is_satisfied(self, values: Mapping[str, float], tolerance: float = 1e-6) -> bool:
        lhs = sum(coefficient * values.get(name, 0.0) for name, coefficient in self.terms.items())
        if self.sense == EQUAL:
            return abs(lhs - self.bound) <= tolerance
        if self.sense == MAX:
            return lhs <= self.bound + tolerance
        return lhs >= self.bound - tolerance


class LinearModel:
    """Maximization model over binary and integer variables."""

    def __init__(self, name: str = "staffing"):
        self.name = name
        self.variables: Dict[str, Variable] = {}
        self.constraints: Dict[str, Constraint] = {}

    # -- variables --------------------------------------------------------
    def add_binary(self, name: str, objective: float = 0.0) -> str:
        return self._add_variable(Variable(name=name, kind=BINARY, objective=objective))

    def add_integer(self, name: str, lower: float, upper: float, objective: float = 0.0) -> str:
        if upper < lower:
            raise ValueError(f"Variable '{name}' has upper bound {upper} below lower bound {lower}")
        return self._add_variable(Variable(name=name, kind=INTEGER, objective=objective, lower=lower, upper=upper))

    def _add_variable(self, variable: Variable) -> str:
        if variable.name in self.variables:
            raise ValueError(f"Duplicate variable '{variable.name}'")
        self.variables[variable.name] = variable
        return variable.name

    def has_variable(self, name: str) -> bool:
        return name in self.variables

    def add_objective(self, name: str, delta: float) -> None:
        self.variables[name].objective += delta

    def binaries(self) -> List[str]:
        return [name for name, var in self.variables.items() if var.kind == BINARY]

    def integers(self) -> List[str]:
        return [name for name, var in self.variables.items() if var.kind == INTEGER]

    # -- constraints ------------------------------------------------------
    def add_constraint(
        self, name: str, sense: str, bound: float, terms: Optional[Mapping[str, float]] = None
    ) -> Constraint:
        if sense not in SENSES:
            raise ValueError(f"Unknown constraint sense '{sense}'")
        if name in self.constraints:
            raise ValueError(f"Duplicate constraint '{name}'")
        constraint = Constraint(name=name, sense=sense, bound=float(bound))
        self.constraints[name] = constraint
        for var_name, coefficient in (terms or {}).items():
            self.add_term(name, var_name, coefficient)
        return constraint

    def add_term(self, constraint_name: str, var_name: str, coefficient: float = 1.0) -> None:
        if var_name not in self.variables:
            raise KeyError(f"Constraint '{constraint_name}' references unknown variable '{var_name}'")
        terms = self.constraints[constraint_name].terms
        terms[var_name] = terms.get(var_name, 0.0) + coefficient

    # -- helpers ----------------------------------------------------------
    def expression_bounds(self, terms: Mapping[str, float], constant: float = 0.0) -> Tuple[float, float]:
        low = high = constant
        for name, coefficient in terms.items():
            var = self.variables[name]
            if coefficient >= 0:
                low += coefficient * var.lower
                high += coefficient * var.upper
            else:
                low += coefficient * var.upper
                high += coefficient * var.lower
        return low, high

    def objective_value(self, values: Mapping[str, float]) -> float:
        return sum(var.objective * values.get(name, 0.0) for name, var in self.variables.items())

    def violated_constraints(self, values: Mapping[str, float]) -> List[str]:
        return [name for name, constraint in self.constraints.items() if not constraint.is_satisfied(values)]

    def stats(self) -> Dict[str, int]:
        return {
            "variables": len(self.variables),
            "binaries": len(self.binaries()),
            "integers": len(self.integers()),
            "constraints": len(self.constraints),
        }


# ---------------------------------------------------------------------------
# Linear indicator builders
# ---------------------------------------------------------------------------
def add_upper_link(model: LinearModel, name: str, var: str, terms: Iterable[str]) -> Constraint:
    """``var - sum(terms) <= 0``: var may only be 1 when one of the terms is."""
    constraint = model.add_constraint(name, MAX, 0, {var: 1.0})
    for term in terms:
        model.add_term(name, term, -1.0)
    return constraint


def add_equal_link(model: LinearModel, name: str, var: str, terms: Iterable[str]) -> Constraint:
    """``var - sum(terms) = 0``."""
    constraint = model.add_constraint(name, EQUAL, 0, {var: 1.0})
    for term in terms:
        model.add_term(name, term, -1.0)
    return constraint


def big_m_for(model: LinearModel, terms: Mapping[str, float], threshold: float) -> float:
    """Smallest M making both threshold-indicator constraints non-binding when relaxed."""
    low, high = model.expression_bounds(terms)
    return max(threshold - low, high - threshold + 1, 1.0)


def add_threshold_indicator(
    model: LinearModel,
    name: str,
    terms: Mapping[str, float],
    threshold: float,
    big_m: Optional[float] = None,
    objective: float = 0.0,
) -> str:
    """Binary ``name`` equals 1 exactly when the integer expression reaches ``threshold``.

    Emits ``expr - M*y >= threshold - M`` and ``expr - M*y <= threshold - 1``.
    """
    m = big_m if big_m is not None else big_m_for(model, terms, threshold)
    indicator = model.add_binary(name, objective=objective)
    upper = model.add_constraint(f"{name}__on", MIN, threshold - m, terms)
    model.add_term(upper.name, indicator, -m)
    lower = model.add_constraint(f"{name}__off", MAX, threshold - 1, terms)
    model.add_term(lower.name, indicator, -m)
    return indicator


def add_and_indicator(model: LinearModel, name: str, left: str, right: str, objective: float = 0.0) -> str:
    """Binary equal to ``left AND right`` for binary operands."""
    indicator = model.add_binary(name, objective=objective)
    model.add_constraint(f"{name}__le_left", MAX, 0, {indicator: 1.0, left: -1.0})
    model.add_constraint(f"{name}__le_right", MAX, 0, {indicator: 1.0, right: -1.0})
    model.add_constraint(f"{name}__ge_both", MIN, -1, {indicator: 1.0, left: -1.0, right: -1.0})
    return indicator


def add_exclusive_tiers(
    model: LinearModel,
    name: str,
    terms: Mapping[str, float],
    tiers: Sequence[Tuple[float, float]],
    big_m: Optional[float] = None,
    scale: float = 1.0,
) -> List[str]:
    """Tier binaries where only the highest reached tier carries its penalty.

    ``tiers`` is a list of ``(threshold, penalty)``. For each threshold a reach
    indicator ``r_k`` is built; the exclusive tier ``z_k = r_k - r_{k+1}`` holds
    the penalty so the penalties never stack.
    """
    ordered = sorted(tiers)
    reached = [
        add_threshold_indicator(model, f"{name}__reach_{index}", terms, threshold, big_m)
        for index, (threshold, _) in enumerate(ordered)
    ]
    for index in range(1, len(reached)):
        model.add_constraint(
            f"{name}__nested_{index}", MAX, 0, {reached[index]: 1.0, reached[index - 1]: -1.0}
        )

    exclusive: List[str] = []
    for index, (_, penalty) in enumerate(ordered):
        tier = model.add_binary(f"{name}__tier_{index}", objective=-penalty * scale)
        link = {tier: 1.0, reached[index]: -1.0}
        if index + 1 < len(reached):
            link[reached[index + 1]] = 1.0
        model.add_constraint(f"{name}__tier_link_{index}", EQUAL, 0, link)
        exclusive.append(tier)
    if exclusive:
        model.add_constraint(f"{name}__one_tier", MAX, 1, {tier: 1.0 for tier in exclusive})
    return exclusive
