"""CSV format adapters for cargo, town and depot tables and the result table."""

from __future__ import annotations

import csv
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Mapping, Optional, Sequence

import numpy as np
import pandas as pd

from dispatching.domain.errors import EntityValidationError, MalformedInputError
from dispatching.domain.models import Cargo, DeliveryTerms, Town, make_town_id
from dispatching.utils.config import Settings, get_settings
from dispatching.utils.logger import get_logger


logger = get_logger(__name__)

TOWN_GROUPS = ("A", "B", "C")
CARGO_COLUMN_COUNT = 2 + 2 * (1 + len(TOWN_GROUPS))
TOWN_FIXED_COLUMNS = 4


@dataclass(frozen=True)
class TownRow:
    """Town table row before demand is resolved against a depot."""

    town_id: str
    town_group: str
    demand: float
    nps: Mapping[str, float]
    delivery_terms: Mapping[str, DeliveryTerms] = field(default_factory=dict)

    def to_town(self, demand: Optional[float] = None) -> Town:
        return Town(
            town_id=self.town_id,
            town_group=self.town_group,
            demand=self.demand if demand is None else demand,
            nps=self.nps,
            delivery_terms=self.delivery_terms,
        )


@dataclass(frozen=True)
class DispatchingInput:
    cargos_by_depot: dict[str, list[Cargo]]
    towns_by_depot: dict[str, list[Town]]


def _table_width(path: Path) -> int:
    with path.open(newline="", encoding="utf-8") as handle:
        return max((len(row) for row in csv.reader(handle)), default=0)


def _read_table(path: Path) -> pd.DataFrame:
    """Read a header-less table whose rows may differ in width.

    pandas sizes the frame from the first line, so the widest row is measured
    first and every row is padded to it.
    """
    try:
        width = _table_width(path)
        if width == 0:
            raise MalformedInputError(f"{path.name} is empty")
        return pd.read_csv(
            path,
            header=None,
            names=range(width),
            dtype=str,
            keep_default_na=False,
        )
    except FileNotFoundError as exc:
        raise MalformedInputError(f"input file not found: {path}") from exc
    except (pd.errors.ParserError, pd.errors.EmptyDataError) as exc:
        raise MalformedInputError(f"cannot parse {path}: {exc}") from exc


def _cell(value: object) -> str:
    # Short rows are padded with NaN by pandas.
    if not isinstance(value, str):
        return ""
    return value.strip()


def _to_float(value: object, path: Path, row: int, column: int) -> float:
    text = _cell(value)
    try:
        return float(text)
    except ValueError as exc:
        raise MalformedInputError(
            f"{path.name} row {row} column {column}: {text!r} is not a number"
        ) from exc


def _header_cells(frame: pd.DataFrame, row: int, start: int) -> list[str]:
    # Blank cells past the last name come from trailing commas or padding.
    cells = [_cell(cell) for cell in frame.iloc[row, start:]]
    while cells and not cells[-1]:
        cells.pop()
    return cells


def _require_columns(frame: pd.DataFrame, expected: int, path: Path) -> None:
    if frame.shape[1] < expected:
        raise MalformedInputError(
            f"{path.name} has {frame.shape[1]} columns, expected at least {expected}"
        )


class CsvDataRepository:
    """Reads the dispatching input tables from CSV files."""

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self._settings = settings or get_settings()

    @property
    def inventory_id(self) -> str:
        return self._settings.default_inventory_id

    def read_cargos(self, path: Path) -> list[Cargo]:
        """Cargo table: one header row, then ``id, capacity, min ratios, max ratios``."""
        path = Path(path)
        frame = _read_table(path)
        _require_columns(frame, CARGO_COLUMN_COUNT, path)

        group_count = len(TOWN_GROUPS)
        cargos: list[Cargo] = []
        seen: set[str] = set()
        for row_number, row in enumerate(frame.iloc[1:].itertuples(index=False), start=2):
            cells = list(row)
            cargo_id = _cell(cells[0])
            if not cargo_id:
                raise MalformedInputError(f"{path.name} row {row_number}: empty cargo id")
            numbers = [
                _to_float(cells[column], path, row_number, column)
                for column in range(1, CARGO_COLUMN_COUNT)
            ]
            if cargo_id in seen:
                logger.warning("Duplicate cargo ignored | cargo_id=%s | file=%s", cargo_id, path.name)
                continue
            seen.add(cargo_id)

            capacity, global_min = numbers[0], numbers[1]
            group_min = numbers[2 : 2 + group_count]
            global_max = numbers[2 + group_count]
            group_max = numbers[3 + group_count : 3 + 2 * group_count]
            try:
                cargos.append(
                    Cargo(
                        cargo_id=cargo_id,
                        capacity=capacity,
                        min_ratio=global_min,
                        max_ratio=global_max,
                        min_group_ratios=dict(zip(TOWN_GROUPS, group_min)),
                        max_group_ratios=dict(zip(TOWN_GROUPS, group_max)),
                    )
                )
            except EntityValidationError as exc:
                raise MalformedInputError(f"{path.name} row {row_number}: {exc}") from exc

        logger.info("Cargo table loaded | file=%s | cargos=%s", path.name, len(cargos))
        return cargos

    def read_town_rows(self, path: Path, cargo_ids: Sequence[str]) -> list[TownRow]:
        """Town table: two header rows; the second names the NPS cargo columns."""
        path = Path(path)
        frame = _read_table(path)
        if len(frame.index) < 2:
            raise MalformedInputError(f"{path.name} must have two header rows")
        _require_columns(frame, TOWN_FIXED_COLUMNS + 1, path)

        nps_cargo_ids = _header_cells(frame, 1, TOWN_FIXED_COLUMNS)
        unknown = sorted(set(nps_cargo_ids) - set(cargo_ids))
        if unknown:
            raise MalformedInputError(f"{path.name} lists NPS for unknown cargos: {unknown}")

        rows: list[TownRow] = []
        for row_number, row in enumerate(frame.iloc[2:].itertuples(index=False), start=3):
            cells = list(row)
            city_id, town_id, town_group = (_cell(cell) for cell in cells[:3])
            if not city_id or not town_id or not town_group:
                raise MalformedInputError(
                    f"{path.name} row {row_number}: city, town and group are required"
                )
            demand = _to_float(cells[3], path, row_number, 3)
            if demand < 0:
                raise MalformedInputError(f"{path.name} row {row_number}: negative demand")
            nps = {
                cargo_id: _to_float(cells[column], path, row_number, column)
                for column, cargo_id in enumerate(nps_cargo_ids, start=TOWN_FIXED_COLUMNS)
            }
            rows.append(
                TownRow(
                    town_id=make_town_id(city_id, town_id),
                    town_group=town_group,
                    demand=demand,
                    nps=nps,
                )
            )

        logger.info("Town table loaded | file=%s | towns=%s", path.name, len(rows))
        return rows

    def read_towns(self, path: Path, cargo_ids: Sequence[str]) -> list[Town]:
        return [row.to_town() for row in self.read_town_rows(path, cargo_ids)]

    def read_depot_capacities(self, path: Path) -> dict[str, dict[str, float]]:
        """Depot table: header of depot names, then one row of capacities per cargo.

        Returns ``{depot_id: {cargo_id: capacity}}`` with depots in column order.
        """
        path = Path(path)
        frame = _read_table(path)
        _require_columns(frame, 2, path)

        depot_ids = _header_cells(frame, 0, 1)
        if any(not depot_id for depot_id in depot_ids):
            raise MalformedInputError(f"{path.name} has an empty depot name")
        capacities: dict[str, dict[str, float]] = {depot_id: {} for depot_id in depot_ids}
        for row_number, row in enumerate(frame.iloc[1:].itertuples(index=False), start=2):
            cells = list(row)
            cargo_id = _cell(cells[0])
            if not cargo_id:
                raise MalformedInputError(f"{path.name} row {row_number}: empty cargo id")
            for column, depot_id in enumerate(depot_ids, start=1):
                capacities[depot_id][cargo_id] = _to_float(cells[column], path, row_number, column)

        logger.info("Depot table loaded | file=%s | depots=%s", path.name, len(depot_ids))
        return capacities

    def read_input(
        self,
        cargo_file: Path,
        town_file: Path,
        depot_file: Optional[Path] = None,
    ) -> DispatchingInput:
        """Load every table and split it into per-depot inventories.

        Without a depot table everything lands in the single default
        inventory. With one, town demand in the town table is read as a
        percentage of each depot's total cargo capacity.
        """
        cargos = self.read_cargos(cargo_file)
        town_rows = self.read_town_rows(town_file, [cargo.cargo_id for cargo in cargos])
        if depot_file is None:
            return DispatchingInput(
                cargos_by_depot={self.inventory_id: cargos},
                towns_by_depot={self.inventory_id: [row.to_town() for row in town_rows]},
            )
        capacities = self.read_depot_capacities(depot_file)
        return split_by_depot(cargos, town_rows, capacities, source=Path(depot_file).name)


def split_by_depot(
    cargos: Sequence[Cargo],
    town_rows: Sequence[TownRow],
    capacities: Mapping[str, Mapping[str, float]],
    source: str = "depot table",
) -> DispatchingInput:
    """Give every depot its own cargo capacities and percentage-based town demand."""
    cargo_ids = [cargo.cargo_id for cargo in cargos]
    percents = np.array([row.demand for row in town_rows], dtype=float)

    cargos_by_depot: dict[str, list[Cargo]] = {}
    towns_by_depot: dict[str, list[Town]] = {}
    for depot_id, depot_capacities in capacities.items():
        missing = [cargo_id for cargo_id in cargo_ids if cargo_id not in depot_capacities]
        if missing:
            raise MalformedInputError(f"{source}: depot {depot_id} has no capacity for {missing}")

        try:
            cargos_by_depot[depot_id] = [
                Cargo(
                    cargo_id=cargo.cargo_id,
                    capacity=depot_capacities[cargo.cargo_id],
                    min_ratio=cargo.min_ratio,
                    max_ratio=cargo.max_ratio,
                    min_group_ratios=cargo.min_group_ratios,
                    max_group_ratios=cargo.max_group_ratios,
                )
                for cargo in cargos
            ]
        except EntityValidationError as exc:
            raise MalformedInputError(f"{source}: depot {depot_id}: {exc}") from exc

        capacity_sum = float(sum(depot_capacities[cargo_id] for cargo_id in cargo_ids))
        demands = np.maximum(np.rint(capacity_sum * percents / 100.0), 1.0)
        towns_by_depot[depot_id] = [
            row.to_town(demand=float(demand)) for row, demand in zip(town_rows, demands)
        ]
        logger.debug(
            "Depot inventory derived | depot_id=%s | capacity_sum=%.0f | demand_sum=%.0f",
            depot_id,
            capacity_sum,
            float(demands.sum()),
        )
    return DispatchingInput(cargos_by_depot=cargos_by_depot, towns_by_depot=towns_by_depot)


def result_file_name(moment: Optional[datetime] = None) -> str:
    moment = moment or datetime.now()
    return f"Result_{moment:%Y%m%d%H%M%S}.csv"


class CsvOutputSink:
    """Buffers result rows and writes them to one CSV file on a clean exit.

    The file is only created once every row is in hand, so a failed write
    never leaves a truncated result behind.
    """

    def __init__(self, path: Path) -> None:
        self._path = Path(path)
        self._open = False
        self._rows: list[list[object]] = []

    @property
    def path(self) -> Path:
        return self._path

    def __enter__(self) -> "CsvOutputSink":
        self._open = True
        self._rows = []
        return self

    def __exit__(self, exc_type, exc, traceback) -> None:
        self._open = False
        if exc_type is not None:
            logger.warning("Result file skipped | path=%s | error=%s", self._path, exc_type.__name__)
            return
        self._path.parent.mkdir(parents=True, exist_ok=True)
        with self._path.open("w", newline="", encoding="utf-8") as handle:
            pd.DataFrame(self._rows).to_csv(handle, header=False, index=False)
        logger.info("Result file written | path=%s | rows=%s", self._path, len(self._rows))

    def write_row(self, row: Sequence[object]) -> None:
        if not self._open:
            raise RuntimeError("sink must be entered before writing")
        self._rows.append(list(row))
