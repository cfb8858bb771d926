"""Tests for the OR-Tools solver driver."""

import math

import pytest
from ortools.linear_solver import pywraplp

from staffing.engine import solver
from staffing.engine.model import MAX, LinearModel
from staffing.engine.solver import INFEASIBLE, OPTIMAL, create_solver, solve_model


class _DegenerateSolver:
    """Stands in for a MIP backend that claims optimality with a broken objective."""

    def __init__(self, value):
        self.value = value

    def SetTimeLimit(self, milliseconds):
        pass

    def infinity(self):
        return math.inf

    def BoolVar(self, name):
        return name

    def IntVar(self, lower, upper, name):
        return name

    def Constraint(self, lower, upper, name):
        return self

    def SetCoefficient(self, variable, coefficient):
        pass

    def Objective(self):
        return self

    def SetMaximization(self):
        pass

    def Solve(self):
        return pywraplp.Solver.OPTIMAL

    def Value(self):
        return self.value


def _pick_one():
    model = LinearModel("pick_one")
    model.add_binary("a", objective=3.0)
    model.add_binary("b", objective=5.0)
    model.add_constraint("one", MAX, 1, {"a": 1.0, "b": 1.0})
    return model


def test_solves_small_model():
    result = solve_model(_pick_one(), time_limit=10)

    assert result.status == OPTIMAL
    assert result.objective == pytest.approx(5.0)
    assert result.values["b"] == pytest.approx(1.0)
    assert result.values["a"] == pytest.approx(0.0)


def test_infeasible_model_has_no_values():
    model = _pick_one()
    model.add_binary("c")
    model.add_constraint("impossible", MAX, -1, {"c": 1.0})

    result = solve_model(model, time_limit=10)

    assert result.status == INFEASIBLE
    assert not result.feasible
    assert result.values == {}


@pytest.mark.parametrize("value", [math.nan, math.inf, -math.inf])
def test_degenerate_objective_is_treated_as_infeasible(monkeypatch, value):
    monkeypatch.setattr(solver, "create_solver", lambda backends: _DegenerateSolver(value))

    result = solve_model(_pick_one(), time_limit=10)

    assert result.status == INFEASIBLE
    assert "degenerate objective" in result.message
    assert result.values == {}


def test_missing_backends_raise():
    with pytest.raises(RuntimeError):
        create_solver(("NO_SUCH_BACKEND",))
