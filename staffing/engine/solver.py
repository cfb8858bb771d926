"""Translate a ``LinearModel`` to an OR-Tools MIP and solve it."""

from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass, field
from typing import Dict, Optional, Sequence

from ortools.linear_solver import pywraplp

from staffing.config import DEFAULT_SOLVER_MAX_TIME, MIP_BACKENDS
from staffing.engine.model import BINARY, EQUAL, MAX, LinearModel

logger = logging.getLogger(__name__)

OPTIMAL = "optimal"
FEASIBLE = "feasible"
INFEASIBLE = "infeasible"
SOLVER_ERROR = "solver_error"

_STATUS_NAMES = {
    pywraplp.Solver.OPTIMAL: OPTIMAL,
    pywraplp.Solver.FEASIBLE: FEASIBLE,
}


@dataclass
class SolveResult:
    status: str
    objective: Optional[float] = None
    values: Dict[str, float] = field(default_factory=dict)
    wall_time: float = 0.0
    message: str = ""

    @property
    def feasible(self) -> bool:
        return self.status in (OPTIMAL, FEASIBLE)


def create_solver(backends: Sequence[str] = MIP_BACKENDS) -> pywraplp.Solver:
    for backend in backends:
        solver = pywraplp.Solver.CreateSolver(backend)
        if solver is not None:
            logger.debug("Using MIP backend %s", backend)
            return solver
    raise RuntimeError(f"No MIP backend available (tried {', '.join(backends)})")


def solve_model(
    model: LinearModel,
    time_limit: int = DEFAULT_SOLVER_MAX_TIME,
    backends: Sequence[str] = MIP_BACKENDS,
) -> SolveResult:
    """Maximize the model. Degenerate outcomes are reported as infeasible, never trusted."""
    start = time.time()
    solver = create_solver(backends)
    solver.SetTimeLimit(int(time_limit * 1000))
    infinity = solver.infinity()

    variables: Dict[str, pywraplp.Variable] = {}
    for name, var in model.variables.items():
        if var.kind == BINARY:
            variables[name] = solver.BoolVar(name)
        else:
            variables[name] = solver.IntVar(var.lower, var.upper, name)

    for name, constraint in model.constraints.items():
        if constraint.sense == EQUAL:
            row = solver.Constraint(constraint.bound, constraint.bound, name)
        elif constraint.sense == MAX:
            row = solver.Constraint(-infinity, constraint.bound, name)
        else:
            row = solver.Constraint(constraint.bound, infinity, name)
        for var_name, coefficient in constraint.terms.items():
            row.SetCoefficient(variables[var_name], coefficient)

    objective = solver.Objective()
    for name, var in model.variables.items():
        if var.objective:
            objective.SetCoefficient(variables[name], var.objective)
    objective.SetMaximization()

    logger.info("Solving %s (%d variables, %d constraints)", model.name, len(variables), len(model.constraints))
    status = solver.Solve()
    elapsed = time.time() - start

    if status not in _STATUS_NAMES:
        logger.warning("Model %s has no usable solution (status %s)", model.name, status)
        return SolveResult(status=INFEASIBLE, wall_time=elapsed, message=f"solver status {status}")

    value = objective.Value()
    if math.isnan(value) or math.isinf(value):
        logger.warning("Model %s returned a degenerate objective %s", model.name, value)
        return SolveResult(status=INFEASIBLE, wall_time=elapsed, message=f"degenerate objective {value}")

    values = {name: var.solution_value() for name, var in variables.items()}
    return SolveResult(status=_STATUS_NAMES[status], objective=value, values=values, wall_time=elapsed)
