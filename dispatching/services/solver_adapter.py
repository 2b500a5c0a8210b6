"""Solver-agnostic linear program description and the OR-Tools adapter."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, Mapping, Optional, Protocol

try:
    from ortools.linear_solver import pywraplp
except ModuleNotFoundError:  # pragma: no cover - runtime dependency guard
    pywraplp = None  # type: ignore[assignment]

from dispatching.domain.errors import SolverDependencyError
from dispatching.domain.models import SolveStatus
from dispatching.utils.logger import get_logger


logger = get_logger(__name__)


class Sense(str, Enum):
    EQ = "=="
    LE = "<="
    GE = ">="


@dataclass(frozen=True)
class VariableSpec:
    name: str
    lower: float
    upper: float
    integer: bool


@dataclass(frozen=True)
class ConstraintSpec:
    name: str
    coefficients: tuple[tuple[str, float], ...]
    sense: Sense
    rhs: float

    def evaluate(self, values: Mapping[str, float]) -> float:
        return sum(coefficient * values[name] for name, coefficient in self.coefficients)

    def is_satisfied(self, values: Mapping[str, float], tolerance: float = 1e-6) -> bool:
        lhs = self.evaluate(values)
        if self.sense is Sense.EQ:
            return abs(lhs - self.rhs) <= tolerance
        if self.sense is Sense.LE:
            return lhs <= self.rhs + tolerance
        return lhs >= self.rhs - tolerance


@dataclass
class LinearProgram:
    """Variables, constraints and objective handed to a solver adapter."""

    name: str
    variables: dict[str, VariableSpec] = field(default_factory=dict)
    constraints: list[ConstraintSpec] = field(default_factory=list)
    objective: dict[str, float] = field(default_factory=dict)
    minimize: bool = True

    def add_variable(self, name: str, lower: float, upper: float, integer: bool) -> str:
        if name in self.variables:
            raise ValueError(f"variable {name} is already declared")
        self.variables[name] = VariableSpec(name=name, lower=lower, upper=upper, integer=integer)
        return name

    def add_constraint(
        self,
        name: str,
        terms: Iterable[tuple[str, float]],
        sense: Sense,
        rhs: float,
    ) -> ConstraintSpec:
        coefficients = tuple(terms)
        for variable_name, _ in coefficients:
            if variable_name not in self.variables:
                raise ValueError(f"constraint {name} references undeclared variable {variable_name}")
        constraint = ConstraintSpec(name=name, coefficients=coefficients, sense=sense, rhs=float(rhs))
        self.constraints.append(constraint)
        return constraint

    def set_objective_coefficient(self, name: str, coefficient: float) -> None:
        if name not in self.variables:
            raise ValueError(f"objective references undeclared variable {name}")
        self.objective[name] = float(coefficient)

    def constraint(self, name: str) -> ConstraintSpec:
        for constraint in self.constraints:
            if constraint.name == name:
                return constraint
        raise KeyError(name)

    def constraints_with_prefix(self, prefix: str) -> list[ConstraintSpec]:
        return [constraint for constraint in self.constraints if constraint.name.startswith(prefix)]

    def objective_value(self, values: Mapping[str, float]) -> float:
        return sum(coefficient * values[name] for name, coefficient in self.objective.items())


@dataclass(frozen=True)
class SolverOutcome:
    status: SolveStatus
    values: dict[str, float]
    objective_value: Optional[float]
    wall_time_ms: int


class SolverAdapter(Protocol):
    def solve(self, program: LinearProgram, time_limit_seconds: float) -> SolverOutcome:
        ...


def _ensure_solver_dependency() -> None:
    if pywraplp is None:
        raise SolverDependencyError(
            "OR-Tools is not installed. Install 'ortools' to enable allocation optimization."
        )


class OrToolsSolverAdapter:
    """Runs a ``LinearProgram`` through ``pywraplp`` in a single blocking call."""

    def __init__(self, backend: str = "CBC") -> None:
        self._backend = backend

    @property
    def backend(self) -> str:
        return self._backend

    def _create_solver(self, program_name: str):
        _ensure_solver_dependency()
        solver = pywraplp.Solver.CreateSolver(self._backend)
        if solver is None:
            raise SolverDependencyError(
                f"OR-Tools backend {self._backend} is not available in this build"
            )
        logger.debug("Solver created | backend=%s | program=%s", self._backend, program_name)
        return solver

    def _map_status(self, status: int, wall_time_ms: int, time_limit_ms: int) -> SolveStatus:
        if status == pywraplp.Solver.OPTIMAL:
            return SolveStatus.OPTIMAL
        if status == pywraplp.Solver.FEASIBLE:
            return SolveStatus.FEASIBLE
        if status == pywraplp.Solver.INFEASIBLE:
            return SolveStatus.INFEASIBLE
        if status == pywraplp.Solver.UNBOUNDED:
            return SolveStatus.UNBOUNDED
        if status == pywraplp.Solver.NOT_SOLVED and wall_time_ms >= time_limit_ms:
            return SolveStatus.TIMED_OUT
        return SolveStatus.ERROR

    def solve(self, program: LinearProgram, time_limit_seconds: float) -> SolverOutcome:
        solver = self._create_solver(program.name)
        infinity = solver.infinity()

        solver_variables = {}
        for spec in program.variables.values():
            if spec.integer:
                solver_variables[spec.name] = solver.IntVar(spec.lower, spec.upper, spec.name)
            else:
                solver_variables[spec.name] = solver.NumVar(spec.lower, spec.upper, spec.name)

        for spec in program.constraints:
            if spec.sense is Sense.EQ:
                constraint = solver.Constraint(spec.rhs, spec.rhs, spec.name)
            elif spec.sense is Sense.LE:
                constraint = solver.Constraint(-infinity, spec.rhs, spec.name)
            else:
                constraint = solver.Constraint(spec.rhs, infinity, spec.name)
            for variable_name, coefficient in spec.coefficients:
                constraint.SetCoefficient(solver_variables[variable_name], coefficient)

        objective = solver.Objective()
        for variable_name, coefficient in program.objective.items():
            objective.SetCoefficient(solver_variables[variable_name], coefficient)
        if program.minimize:
            objective.SetMinimization()
        else:
            objective.SetMaximization()

        time_limit_ms = int(time_limit_seconds * 1000)
        solver.SetTimeLimit(time_limit_ms)
        logger.info(
            "Solving | program=%s | backend=%s | variables=%s | constraints=%s | time_limit_ms=%s",
            program.name,
            self._backend,
            solver.NumVariables(),
            solver.NumConstraints(),
            time_limit_ms,
        )

        raw_status = solver.Solve()
        wall_time_ms = int(solver.wall_time())
        status = self._map_status(raw_status, wall_time_ms, time_limit_ms)
        if not status.has_solution:
            logger.warning(
                "Solve ended without a solution | program=%s | status=%s | wall_time_ms=%s",
                program.name,
                status.value,
                wall_time_ms,
            )
            return SolverOutcome(
                status=status,
                values={},
                objective_value=None,
                wall_time_ms=wall_time_ms,
            )

        values = {
            name: float(variable.solution_value())
            for name, variable in solver_variables.items()
        }
        objective_value = float(objective.Value())
        logger.info(
            "Solve completed | program=%s | status=%s | objective_value=%.6f | wall_time_ms=%s",
            program.name,
            status.value,
            objective_value,
            wall_time_ms,
        )
        return SolverOutcome(
            status=status,
            values=values,
            objective_value=objective_value,
            wall_time_ms=wall_time_ms,
        )
