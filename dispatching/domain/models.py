"""Domain models for cargo dispatching and allocation results."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Mapping, Optional

from dispatching.domain.errors import EntityValidationError


TOWN_ID_SEPARATOR = "~"
UNBOUNDED_DELIVERY_CAPACITY = 10_000_000.0


def make_town_id(city_id: str, town_id: str) -> str:
    return f"{city_id}{TOWN_ID_SEPARATOR}{town_id}"


def normalize_demand(value: float) -> int:
    """Round demand to whole units, flooring an exact zero to one."""
    if value < 0:
        raise EntityValidationError(f"demand must be >= 0, got {value}")
    rounded = int(round(value))
    if rounded == 0:
        return 1
    return rounded


def _check_ratio(name: str, value: float) -> None:
    if not 0.0 <= value <= 1.0:
        raise EntityValidationError(f"{name} must be between 0 and 1, got {value}")


class SolveStatus(str, Enum):
    OPTIMAL = "optimal"
    FEASIBLE = "feasible"
    INFEASIBLE = "infeasible"
    UNBOUNDED = "unbounded"
    TIMED_OUT = "timed_out"
    ERROR = "error"

    @property
    def has_solution(self) -> bool:
        return self in (SolveStatus.OPTIMAL, SolveStatus.FEASIBLE)


@dataclass(frozen=True)
class Cargo:
    cargo_id: str
    capacity: float
    min_ratio: float
    max_ratio: float
    min_group_ratios: Mapping[str, float] = field(default_factory=dict)
    max_group_ratios: Mapping[str, float] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.cargo_id:
            raise EntityValidationError("cargo_id must be non-empty")
        if self.capacity < 0:
            raise EntityValidationError(
                f"capacity of cargo {self.cargo_id} must be >= 0, got {self.capacity}"
            )
        _check_ratio(f"min_ratio of cargo {self.cargo_id}", self.min_ratio)
        _check_ratio(f"max_ratio of cargo {self.cargo_id}", self.max_ratio)
        if self.min_ratio > self.max_ratio:
            raise EntityValidationError(
                f"min_ratio exceeds max_ratio for cargo {self.cargo_id}"
            )
        for group, ratio in self.min_group_ratios.items():
            _check_ratio(f"min ratio of cargo {self.cargo_id} for group {group}", ratio)
        for group, ratio in self.max_group_ratios.items():
            _check_ratio(f"max ratio of cargo {self.cargo_id} for group {group}", ratio)
        object.__setattr__(self, "min_group_ratios", dict(self.min_group_ratios))
        object.__setattr__(self, "max_group_ratios", dict(self.max_group_ratios))

    def covers_group(self, town_group: str) -> bool:
        return town_group in self.min_group_ratios and town_group in self.max_group_ratios

    def min_group_ratio(self, town_group: str) -> float:
        try:
            return self.min_group_ratios[town_group]
        except KeyError as exc:
            raise EntityValidationError(
                f"cargo {self.cargo_id} has no minimum ratio for town group {town_group}"
            ) from exc

    def max_group_ratio(self, town_group: str) -> float:
        try:
            return self.max_group_ratios[town_group]
        except KeyError as exc:
            raise EntityValidationError(
                f"cargo {self.cargo_id} has no maximum ratio for town group {town_group}"
            ) from exc


@dataclass(frozen=True)
class DeliveryTerms:
    """Per-(town, cargo) delivery-mode capacities and unit costs."""

    same_day_capacity: float = UNBOUNDED_DELIVERY_CAPACITY
    carry_over_capacity: float = UNBOUNDED_DELIVERY_CAPACITY
    same_day_cost: float = 0.0
    carry_over_cost: float = 0.0
    non_delivery_cost: float = 0.0

    def __post_init__(self) -> None:
        if self.same_day_capacity < 0 or self.carry_over_capacity < 0:
            raise EntityValidationError("delivery capacities must be >= 0")


DEFAULT_DELIVERY_TERMS = DeliveryTerms()


@dataclass(frozen=True)
class Town:
    """Demand point keyed by its composite ``city~town`` id.

    ``demand`` is normalized on construction: rounded to whole units, with a
    rounded zero replaced by one so town-balance rows never collapse.
    """

    town_id: str
    town_group: str
    demand: float
    nps: Mapping[str, float] = field(default_factory=dict)
    delivery_terms: Mapping[str, DeliveryTerms] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.town_id:
            raise EntityValidationError("town_id must be non-empty")
        object.__setattr__(self, "demand", normalize_demand(self.demand))
        object.__setattr__(self, "nps", dict(self.nps))
        object.__setattr__(self, "delivery_terms", dict(self.delivery_terms))

    def nps_for(self, cargo_id: str) -> float:
        try:
            return self.nps[cargo_id]
        except KeyError as exc:
            raise EntityValidationError(
                f"town {self.town_id} has no NPS score for cargo {cargo_id}"
            ) from exc

    def terms_for(self, cargo_id: str) -> DeliveryTerms:
        return self.delivery_terms.get(cargo_id, DEFAULT_DELIVERY_TERMS)

    def cargo_min_ratio(self, cargo: Cargo) -> float:
        return cargo.min_group_ratio(self.town_group)

    def cargo_max_ratio(self, cargo: Cargo) -> float:
        return cargo.max_group_ratio(self.town_group)


class Depot:
    """Depot-level view of cargo capacities and town demands.

    Both mappings are insert-once caches: adding an existing key keeps the
    first value.
    """

    def __init__(self, depot_id: str) -> None:
        if not depot_id:
            raise EntityValidationError("depot_id must be non-empty")
        self._depot_id = depot_id
        self._cargo_capacity: dict[str, float] = {}
        self._town_demand: dict[str, float] = {}

    def __repr__(self) -> str:
        return (
            f"Depot(depot_id={self._depot_id!r}, cargos={len(self._cargo_capacity)}, "
            f"towns={len(self._town_demand)})"
        )

    @property
    def depot_id(self) -> str:
        return self._depot_id

    def add_cargo_capacity(self, cargo_id: str, capacity: float) -> None:
        if cargo_id not in self._cargo_capacity:
            self._cargo_capacity[cargo_id] = capacity

    def add_town_demand(self, town_id: str, demand: float) -> None:
        if town_id not in self._town_demand:
            self._town_demand[town_id] = demand

    def has_cargo(self, cargo_id: str) -> bool:
        return cargo_id in self._cargo_capacity

    def has_town(self, town_id: str) -> bool:
        return town_id in self._town_demand

    def cargo_capacity(self, cargo_id: str) -> float:
        try:
            return self._cargo_capacity[cargo_id]
        except KeyError as exc:
            raise EntityValidationError(
                f"depot {self._depot_id} has no capacity for cargo {cargo_id}"
            ) from exc

    def town_demand(self, town_id: str) -> float:
        try:
            return self._town_demand[town_id]
        except KeyError as exc:
            raise EntityValidationError(
                f"depot {self._depot_id} has no demand for town {town_id}"
            ) from exc


@dataclass(frozen=True)
class Inventory:
    depot: Depot
    cargos: tuple[Cargo, ...]
    towns: tuple[Town, ...]

    @property
    def depot_id(self) -> str:
        return self.depot.depot_id

    @property
    def cargo_ids(self) -> list[str]:
        return [cargo.cargo_id for cargo in self.cargos]

    @property
    def town_ids(self) -> list[str]:
        return [town.town_id for town in self.towns]


@dataclass(frozen=True)
class OutputRecord:
    town_id: str
    depot_id: str
    allocations: tuple[tuple[str, float], ...]

    @property
    def cargo_ids(self) -> list[str]:
        return [cargo_id for cargo_id, _ in self.allocations]

    @property
    def ratios(self) -> list[float]:
        return [ratio for _, ratio in self.allocations]

    def ratio_for(self, cargo_id: str) -> float:
        for allocated_cargo_id, ratio in self.allocations:
            if allocated_cargo_id == cargo_id:
                return ratio
        raise KeyError(cargo_id)


@dataclass(frozen=True)
class RunSummary:
    order_amount: float
    objective_value: float
    total_cost: float
    wall_time_ms: int
    network_ratios: tuple[tuple[str, float], ...]


@dataclass(frozen=True)
class AllocationResult:
    status: SolveStatus
    records: list[OutputRecord]
    summary: Optional[RunSummary]
    relaxed: bool = False
