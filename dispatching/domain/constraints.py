"""Domain-level validation rules for allocation runs."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from dispatching.domain.errors import AllocationValidationError
from dispatching.utils.config import Settings


CONTINUOUS_ONLY_BACKENDS = frozenset({"GLOP", "PDLP", "CLP"})


class GroupCapPolicy(str, Enum):
    """Which volumes count against a cargo's per-town-group maximum ratio."""

    ON_TIME_ONLY = "on_time_only"
    ALL_VOLUME = "all_volume"


@dataclass(frozen=True)
class AllocationConfig:
    exceed_cost: float
    solver_backend: str
    integer_variables: bool
    solver_max_time_seconds: int
    include_carry_over: bool
    include_exceed_penalty: bool
    allow_overflow: bool
    group_cap_policy: GroupCapPolicy
    relax_on_infeasible: bool
    solution_tolerance: float


def config_from_settings(settings: Settings, **overrides) -> AllocationConfig:
    values = {
        "exceed_cost": settings.allocation_exceed_cost,
        "solver_backend": settings.allocation_solver_backend,
        "integer_variables": settings.allocation_integer_variables,
        "solver_max_time_seconds": settings.allocation_solver_max_time_seconds,
        "include_carry_over": settings.allocation_include_carry_over,
        "include_exceed_penalty": settings.allocation_include_exceed_penalty,
        "allow_overflow": settings.allocation_allow_overflow,
        "group_cap_policy": settings.allocation_group_cap_policy,
        "relax_on_infeasible": settings.allocation_relax_on_infeasible,
        "solution_tolerance": settings.allocation_solution_tolerance,
    }
    values.update({key: value for key, value in overrides.items() if value is not None})
    try:
        values["group_cap_policy"] = GroupCapPolicy(values["group_cap_policy"])
    except ValueError as exc:
        raise AllocationValidationError(
            f"group_cap_policy must be one of {[policy.value for policy in GroupCapPolicy]}"
        ) from exc
    return AllocationConfig(**values)


def validate_allocation_config(config: AllocationConfig) -> None:
    if config.exceed_cost <= 0.0:
        raise AllocationValidationError("exceed_cost must be > 0")
    if not config.solver_backend.strip():
        raise AllocationValidationError("solver_backend must be non-empty")
    if config.integer_variables and config.solver_backend.upper() in CONTINUOUS_ONLY_BACKENDS:
        raise AllocationValidationError(
            f"solver backend {config.solver_backend} cannot handle integer variables"
        )
    if config.solver_max_time_seconds <= 0:
        raise AllocationValidationError("solver_max_time_seconds must be > 0")
    if not isinstance(config.group_cap_policy, GroupCapPolicy):
        raise AllocationValidationError("group_cap_policy must be a GroupCapPolicy")
    if not 0.0 <= config.solution_tolerance < 1.0:
        raise AllocationValidationError("solution_tolerance must be in [0, 1)")
