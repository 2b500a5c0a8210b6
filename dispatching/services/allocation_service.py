"""One allocation run: partition, build, solve, optional relaxed re-solve, extract."""

from __future__ import annotations

from typing import Mapping, Optional, Sequence

from dispatching.domain.constraints import (
    AllocationConfig,
    config_from_settings,
    validate_allocation_config,
)
from dispatching.domain.models import AllocationResult, Cargo, Depot, SolveStatus, Town
from dispatching.services.model_builder import BuildArtifacts, build_model
from dispatching.services.output_extractor import extract_output_records, summarize_solution
from dispatching.services.partition_service import (
    PartitionedInventories,
    build_depots,
    partition_inventories,
)
from dispatching.services.solver_adapter import (
    OrToolsSolverAdapter,
    SolverAdapter,
    SolverOutcome,
)
from dispatching.utils.config import Settings, get_settings
from dispatching.utils.logger import get_logger


logger = get_logger(__name__)


def find_constraint_violations(
    artifacts: BuildArtifacts,
    outcome: SolverOutcome,
    tolerance: float,
) -> list[str]:
    """Names of constraints the reported values break beyond ``tolerance``.

    The tolerance is relative to the right-hand side, with a floor of one unit.
    """
    violations = []
    for constraint in artifacts.program.constraints:
        scaled = tolerance * max(1.0, abs(constraint.rhs))
        if not constraint.is_satisfied(outcome.values, scaled):
            violations.append(constraint.name)
    return violations


def solve_model(
    *,
    artifacts: BuildArtifacts,
    solver: SolverAdapter,
    config: AllocationConfig,
) -> SolverOutcome:
    outcome = solver.solve(artifacts.program, config.solver_max_time_seconds)
    if outcome.status.has_solution:
        violations = find_constraint_violations(artifacts, outcome, config.solution_tolerance)
        if violations:
            logger.warning(
                "Solution violates constraints | count=%s | first=%s",
                len(violations),
                violations[:5],
            )
    return outcome


class AllocationOptimizationService:
    """Business logic orchestration for the dispatching LP."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        solver: Optional[SolverAdapter] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._solver = solver

    @property
    def settings(self) -> Settings:
        return self._settings

    def _solver_for(self, config: AllocationConfig) -> SolverAdapter:
        if self._solver is not None:
            return self._solver
        return OrToolsSolverAdapter(backend=config.solver_backend)

    def partition(
        self,
        cargos_by_depot: Mapping[str, Sequence[Cargo]],
        towns_by_depot: Mapping[str, Sequence[Town]],
        depots: Optional[Sequence[Depot]] = None,
    ) -> PartitionedInventories:
        if depots is None:
            depots = build_depots(cargos_by_depot, towns_by_depot)
        return partition_inventories(cargos_by_depot, towns_by_depot, depots)

    def optimize_allocation(
        self,
        cargos_by_depot: Mapping[str, Sequence[Cargo]],
        towns_by_depot: Mapping[str, Sequence[Town]],
        depots: Optional[Sequence[Depot]] = None,
        **overrides,
    ) -> AllocationResult:
        """Run the dispatching model once and return ratios per town and depot.

        ``overrides`` replace ``AllocationConfig`` fields for this run only;
        ``None`` values fall back to settings. Infeasible and timed-out solves
        come back as a status with no records.
        """
        config = config_from_settings(self._settings, **overrides)
        validate_allocation_config(config)
        partition = self.partition(cargos_by_depot, towns_by_depot, depots)
        solver = self._solver_for(config)

        artifacts = build_model(partition=partition, config=config)
        outcome = solve_model(artifacts=artifacts, solver=solver, config=config)

        if outcome.status is SolveStatus.INFEASIBLE and config.relax_on_infeasible:
            logger.warning(
                "Model infeasible, re-solving without global minimum ratios | depots=%s",
                partition.depot_count,
            )
            artifacts = build_model(partition=partition, config=config, relax_min_ratio=True)
            outcome = solve_model(artifacts=artifacts, solver=solver, config=config)

        if not outcome.status.has_solution:
            logger.warning(
                "Allocation produced no solution | status=%s | relaxed=%s | wall_time_ms=%s",
                outcome.status.value,
                artifacts.relaxed,
                outcome.wall_time_ms,
            )
            return AllocationResult(
                status=outcome.status,
                records=[],
                summary=None,
                relaxed=artifacts.relaxed,
            )

        records = extract_output_records(
            partition=partition,
            index=artifacts.index,
            values=outcome.values,
        )
        summary = summarize_solution(partition=partition, artifacts=artifacts, outcome=outcome)
        logger.info(
            "Allocation completed | status=%s | records=%s | relaxed=%s",
            outcome.status.value,
            len(records),
            artifacts.relaxed,
        )
        return AllocationResult(
            status=outcome.status,
            records=records,
            summary=summary,
            relaxed=artifacts.relaxed,
        )
