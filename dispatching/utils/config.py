"""Process settings resolved from environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Optional


ENV_PREFIX = "DISPATCHING_"


def _env(name: str, default: str) -> str:
    return os.getenv(f"{ENV_PREFIX}{name}", default)


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(f"{ENV_PREFIX}{name}")
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class Settings:
    app_name: str
    app_version: str
    log_level: str
    output_dir: Path
    default_inventory_id: str
    allocation_exceed_cost: float
    allocation_solver_backend: str
    allocation_integer_variables: bool
    allocation_solver_max_time_seconds: int
    allocation_include_carry_over: bool
    allocation_include_exceed_penalty: bool
    allocation_allow_overflow: bool
    allocation_group_cap_policy: str
    allocation_relax_on_infeasible: bool
    allocation_solution_tolerance: float
    admin_token: Optional[str]


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Build settings once per process; tests reset via ``cache_clear``."""
    return Settings(
        app_name=_env("APP_NAME", "Dispatching Allocation"),
        app_version=_env("APP_VERSION", "0.1.0"),
        log_level=_env("LOG_LEVEL", "INFO"),
        output_dir=Path(_env("OUTPUT_DIR", "Output")),
        default_inventory_id=_env("DEFAULT_INVENTORY_ID", "ALL"),
        allocation_exceed_cost=float(_env("EXCEED_COST", "100.0")),
        allocation_solver_backend=_env("SOLVER_BACKEND", "CBC"),
        allocation_integer_variables=_env_bool("INTEGER_VARIABLES", True),
        allocation_solver_max_time_seconds=int(_env("SOLVER_MAX_TIME_SECONDS", "60")),
        allocation_include_carry_over=_env_bool("INCLUDE_CARRY_OVER", False),
        allocation_include_exceed_penalty=_env_bool("INCLUDE_EXCEED_PENALTY", True),
        allocation_allow_overflow=_env_bool("ALLOW_OVERFLOW", True),
        allocation_group_cap_policy=_env("GROUP_CAP_POLICY", "on_time_only"),
        allocation_relax_on_infeasible=_env_bool("RELAX_ON_INFEASIBLE", False),
        allocation_solution_tolerance=float(_env("SOLUTION_TOLERANCE", "1e-6")),
        admin_token=os.getenv("ADMIN_TOKEN") or None,
    )
