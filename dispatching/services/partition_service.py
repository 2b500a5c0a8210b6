"""Inventory partitioning: aligns towns and cargos across depots."""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass
from typing import Mapping, Sequence

from dispatching.domain.errors import EntityValidationError, PartitionConsistencyError
from dispatching.domain.models import Cargo, Depot, Inventory, Town, normalize_demand
from dispatching.utils.logger import get_logger


logger = get_logger(__name__)


@dataclass(frozen=True)
class PartitionedInventories:
    """Depot-ordered inventories sharing one positional cargo/town index.

    Index ``d`` addresses a depot, ``i`` a cargo and ``k`` a town; the same
    ``i`` (or ``k``) names the same cargo (or town) id in every depot.
    """

    inventories: tuple[Inventory, ...]

    @property
    def depot_count(self) -> int:
        return len(self.inventories)

    @property
    def cargo_count(self) -> int:
        return len(self.inventories[0].cargos)

    @property
    def town_count(self) -> int:
        return len(self.inventories[0].towns)

    @property
    def depot_ids(self) -> list[str]:
        return [inventory.depot_id for inventory in self.inventories]

    @property
    def cargo_ids(self) -> list[str]:
        return self.inventories[0].cargo_ids

    @property
    def order_amount(self) -> float:
        return float(
            sum(
                self.demand(d, k)
                for d in range(self.depot_count)
                for k in range(self.town_count)
            )
        )

    def cargo(self, d: int, i: int) -> Cargo:
        return self.inventories[d].cargos[i]

    def town(self, d: int, k: int) -> Town:
        return self.inventories[d].towns[k]

    def demand(self, d: int, k: int) -> int:
        inventory = self.inventories[d]
        return normalize_demand(inventory.depot.town_demand(inventory.towns[k].town_id))

    def capacity(self, d: int, i: int) -> float:
        inventory = self.inventories[d]
        return inventory.depot.cargo_capacity(inventory.cargos[i].cargo_id)

    def town_demand_across_depots(self, k: int) -> int:
        return sum(self.demand(d, k) for d in range(self.depot_count))


def build_depots(
    cargos_by_depot: Mapping[str, Sequence[Cargo]],
    towns_by_depot: Mapping[str, Sequence[Town]],
) -> list[Depot]:
    """Derive depot caches from the cargo and town lists of each inventory."""
    depots: list[Depot] = []
    for depot_id, cargos in cargos_by_depot.items():
        depot = Depot(depot_id)
        for cargo in cargos:
            depot.add_cargo_capacity(cargo.cargo_id, cargo.capacity)
        for town in towns_by_depot.get(depot_id, ()):
            depot.add_town_demand(town.town_id, town.demand)
        depots.append(depot)
    return depots


def _check_unique(depot_id: str, label: str, identifiers: list[str]) -> None:
    duplicates = sorted(item for item, count in Counter(identifiers).items() if count > 1)
    if duplicates:
        raise PartitionConsistencyError(
            f"depot {depot_id} lists duplicate {label} ids: {duplicates}"
        )


def _check_alignment(
    label: str,
    reference_depot: str,
    reference_ids: list[str],
    depot_id: str,
    identifiers: list[str],
) -> None:
    if len(identifiers) != len(reference_ids):
        raise PartitionConsistencyError(
            f"depot {depot_id} has {len(identifiers)} {label}s but depot "
            f"{reference_depot} has {len(reference_ids)}"
        )
    for position, (expected, actual) in enumerate(zip(reference_ids, identifiers)):
        if expected != actual:
            raise PartitionConsistencyError(
                f"{label} at position {position} is {actual!r} in depot {depot_id} "
                f"but {expected!r} in depot {reference_depot}"
            )


def _check_inventory(inventory: Inventory) -> None:
    depot = inventory.depot
    for cargo in inventory.cargos:
        if not depot.has_cargo(cargo.cargo_id):
            raise PartitionConsistencyError(
                f"depot {depot.depot_id} has no capacity for cargo {cargo.cargo_id}"
            )
    for town in inventory.towns:
        if not depot.has_town(town.town_id):
            raise PartitionConsistencyError(
                f"depot {depot.depot_id} has no demand for town {town.town_id}"
            )
        for cargo in inventory.cargos:
            if cargo.cargo_id not in town.nps:
                raise PartitionConsistencyError(
                    f"town {town.town_id} in depot {depot.depot_id} has no NPS "
                    f"score for cargo {cargo.cargo_id}"
                )
            if not cargo.covers_group(town.town_group):
                raise PartitionConsistencyError(
                    f"cargo {cargo.cargo_id} in depot {depot.depot_id} has no ratio "
                    f"bounds for town group {town.town_group}"
                )


def partition_inventories(
    cargos_by_depot: Mapping[str, Sequence[Cargo]],
    towns_by_depot: Mapping[str, Sequence[Town]],
    depots: Sequence[Depot],
) -> PartitionedInventories:
    """Group cargos and towns per depot and verify positional alignment.

    Raises ``PartitionConsistencyError`` on any mismatch so no decision
    variable is ever created over misaligned indices.
    """
    if not depots:
        raise PartitionConsistencyError("at least one depot is required")

    inventories: list[Inventory] = []
    for depot in depots:
        cargos = cargos_by_depot.get(depot.depot_id)
        towns = towns_by_depot.get(depot.depot_id)
        if not cargos:
            raise PartitionConsistencyError(f"depot {depot.depot_id} has no cargos")
        if not towns:
            raise PartitionConsistencyError(f"depot {depot.depot_id} has no towns")
        inventory = Inventory(depot=depot, cargos=tuple(cargos), towns=tuple(towns))
        _check_unique(depot.depot_id, "cargo", inventory.cargo_ids)
        _check_unique(depot.depot_id, "town", inventory.town_ids)
        try:
            _check_inventory(inventory)
        except EntityValidationError as exc:
            raise PartitionConsistencyError(str(exc)) from exc
        inventories.append(inventory)

    reference = inventories[0]
    for inventory in inventories[1:]:
        _check_alignment(
            "cargo", reference.depot_id, reference.cargo_ids, inventory.depot_id, inventory.cargo_ids
        )
        _check_alignment(
            "town", reference.depot_id, reference.town_ids, inventory.depot_id, inventory.town_ids
        )
        for reference_town, town in zip(reference.towns, inventory.towns):
            if reference_town.town_group != town.town_group:
                raise PartitionConsistencyError(
                    f"town {town.town_id} is in group {town.town_group} in depot "
                    f"{inventory.depot_id} but {reference_town.town_group} in depot "
                    f"{reference.depot_id}"
                )

    unused = sorted(
        (set(cargos_by_depot) | set(towns_by_depot)) - {depot.depot_id for depot in depots}
    )
    if unused:
        raise PartitionConsistencyError(f"inventories without a depot: {unused}")

    partition = PartitionedInventories(inventories=tuple(inventories))
    logger.info(
        "Inventories partitioned | depots=%s | cargos=%s | towns=%s | order_amount=%.0f",
        partition.depot_count,
        partition.cargo_count,
        partition.town_count,
        partition.order_amount,
    )
    return partition
