"""Turns solved variable values into per-(town, depot) allocation ratios."""

from __future__ import annotations

from types import TracebackType
from typing import Mapping, Optional, Protocol, Sequence

from dispatching.domain.errors import ExtractionError
from dispatching.domain.models import TOWN_ID_SEPARATOR, OutputRecord, RunSummary
from dispatching.services.model_builder import BuildArtifacts, VariableIndex
from dispatching.services.partition_service import PartitionedInventories
from dispatching.services.solver_adapter import SolverOutcome
from dispatching.utils.logger import get_logger


logger = get_logger(__name__)


class OutputSink(Protocol):
    """Destination for the result table, held open for one whole write."""

    def __enter__(self) -> "OutputSink":
        ...

    def __exit__(
        self,
        exc_type: Optional[type[BaseException]],
        exc: Optional[BaseException],
        traceback: Optional[TracebackType],
    ) -> None:
        ...

    def write_row(self, row: Sequence[object]) -> None:
        ...


class InMemoryOutputSink:
    """Collects rows in memory; used by the HTTP layer and tests."""

    def __init__(self) -> None:
        self.rows: list[list[object]] = []
        self.is_open = False
        self.open_count = 0

    def __enter__(self) -> "InMemoryOutputSink":
        self.is_open = True
        self.open_count += 1
        self.rows = []
        return self

    def __exit__(self, exc_type, exc, traceback) -> None:
        self.is_open = False

    def write_row(self, row: Sequence[object]) -> None:
        if not self.is_open:
            raise RuntimeError("sink must be entered before writing")
        self.rows.append(list(row))


def _value(values: Mapping[str, float], name: str) -> float:
    try:
        return values[name]
    except KeyError as exc:
        raise ExtractionError(f"solution has no value for variable {name}") from exc


def extract_output_records(
    *,
    partition: PartitionedInventories,
    index: VariableIndex,
    values: Mapping[str, float],
) -> list[OutputRecord]:
    """Emit one record per depot then town, in partition order.

    The ratio for each cargo is ``(x + y + z) / Demand[d][k]``; demand is
    already floored to one so the division is always defined.
    """
    records: list[OutputRecord] = []
    for d in range(partition.depot_count):
        depot_id = partition.depot_ids[d]
        for k in range(partition.town_count):
            demand = partition.demand(d, k) or 1
            allocations = []
            for i in range(partition.cargo_count):
                allocated = sum(_value(values, name) for name in index.allocated(d, i, k))
                allocations.append((partition.cargo(d, i).cargo_id, allocated / demand))
            records.append(
                OutputRecord(
                    town_id=partition.town(d, k).town_id,
                    depot_id=depot_id,
                    allocations=tuple(allocations),
                )
            )
    return records


def summarize_solution(
    *,
    partition: PartitionedInventories,
    artifacts: BuildArtifacts,
    outcome: SolverOutcome,
) -> RunSummary:
    """Report the network-wide cargo ratios and the NPS-weighted total cost."""
    if not outcome.status.has_solution:
        raise ExtractionError(f"cannot summarize a solve with status {outcome.status.value}")

    index = artifacts.index
    values = outcome.values
    total_cost = 0.0
    for d in range(partition.depot_count):
        for i in range(partition.cargo_count):
            cargo_id = partition.cargo(d, i).cargo_id
            for k in range(partition.town_count):
                town = partition.town(d, k)
                terms = town.terms_for(cargo_id)
                nps = town.nps_for(cargo_id)
                total_cost += _value(values, index.on_time(d, i, k)) * (terms.same_day_cost + nps)
                carry_over = index.carry_over(d, i, k)
                if carry_over is not None:
                    total_cost += _value(values, carry_over) * (terms.carry_over_cost + nps)
                total_cost += _value(values, index.overflow(d, i, k)) * (
                    terms.non_delivery_cost + nps
                )

    order_amount = artifacts.order_amount
    network_ratios = tuple(
        (cargo_id, _value(values, index.total(i)) / order_amount)
        for i, cargo_id in enumerate(partition.cargo_ids)
    )
    summary = RunSummary(
        order_amount=order_amount,
        objective_value=float(outcome.objective_value or 0.0),
        total_cost=total_cost,
        wall_time_ms=outcome.wall_time_ms,
        network_ratios=network_ratios,
    )
    logger.info(
        "Solution summary | order_amount=%.0f | objective_value=%.2f | total_cost=%.2f | wall_time_ms=%s",
        summary.order_amount,
        summary.objective_value,
        summary.total_cost,
        summary.wall_time_ms,
    )
    for cargo_id, ratio in network_ratios:
        logger.info("Network ratio | cargo_id=%s | ratio=%.3f", cargo_id, ratio)
    return summary


def _split_town_id(town_id: str) -> tuple[str, str]:
    city, separator, town = town_id.partition(TOWN_ID_SEPARATOR)
    if not separator:
        return "", town_id
    return city, town


def build_output_table(
    records: Sequence[OutputRecord],
    depot_ids: Sequence[str],
    cargo_ids: Sequence[str],
) -> list[list[object]]:
    """Lay records out as two header rows plus one row per town.

    Row order follows the first appearance of each town; column blocks follow
    ``depot_ids``, each block listing ``cargo_ids`` in order.
    """
    depot_header: list[object] = ["", ""]
    cargo_header: list[object] = ["City", "Town"]
    for depot_id in depot_ids:
        depot_header.append(depot_id)
        depot_header.extend([""] * (len(cargo_ids) - 1))
        cargo_header.extend(cargo_ids)

    by_town: dict[str, dict[str, OutputRecord]] = {}
    for record in records:
        by_town.setdefault(record.town_id, {})[record.depot_id] = record

    rows: list[list[object]] = [depot_header, cargo_header]
    for town_id, records_by_depot in by_town.items():
        city, town = _split_town_id(town_id)
        row: list[object] = [city, town]
        for depot_id in depot_ids:
            record = records_by_depot.get(depot_id)
            if record is None:
                raise ExtractionError(f"no output record for town {town_id} in depot {depot_id}")
            row.extend(record.ratio_for(cargo_id) for cargo_id in cargo_ids)
        rows.append(row)
    return rows


def write_output(
    *,
    records: Sequence[OutputRecord],
    depot_ids: Sequence[str],
    cargo_ids: Sequence[str],
    sink: OutputSink,
) -> int:
    """Write the full result table through ``sink`` inside one acquisition."""
    rows = build_output_table(records, depot_ids, cargo_ids)
    with sink:
        for row in rows:
            sink.write_row(row)
    logger.info("Output written | rows=%s | records=%s", len(rows), len(records))
    return len(rows)
