from __future__ import annotations

from dataclasses import replace
from datetime import datetime

import pandas as pd
import pytest

from dispatching.domain.errors import MalformedInputError
from dispatching.domain.models import OutputRecord
from dispatching.repository.csv_repository import (
    CsvDataRepository,
    CsvOutputSink,
    result_file_name,
)
from dispatching.services.output_extractor import write_output
from dispatching.utils.config import get_settings


CARGO_TABLE = (
    "cargoId,capacity,globalMin,minA,minB,minC,globalMax,maxA,maxB,maxC\n"
    "C1,100,0.3,0.1,0,0,0.7,0.9,1,1\n"
    "C2,60,0.2,0,0,0,0.8,1,1,1\n"
)
TOWN_TABLE = (
    "City,Town,Group,Demand,NPS,\n"
    "City,Town,Group,Demand,C1,C2\n"
    "IST,KADIKOY,A,12.5,1,2\n"
    "ANK,CANKAYA,B,0.2,2.5,1\n"
)
DEPOT_TABLE = (
    "Cargo,North,South\n"
    "C1,100,40\n"
    "C2,60,0\n"
)


def _write(tmp_path, name: str, content: str):
    path = tmp_path / name
    path.write_text(content, encoding="utf-8")
    return path


def _repository() -> CsvDataRepository:
    return CsvDataRepository(replace(get_settings(), default_inventory_id="ALL"))


def test_read_cargos_maps_group_columns(tmp_path) -> None:
    cargos = _repository().read_cargos(_write(tmp_path, "Cargo.csv", CARGO_TABLE))

    assert [cargo.cargo_id for cargo in cargos] == ["C1", "C2"]
    first = cargos[0]
    assert first.capacity == 100.0
    assert (first.min_ratio, first.max_ratio) == (0.3, 0.7)
    assert first.min_group_ratios == {"A": 0.1, "B": 0.0, "C": 0.0}
    assert first.max_group_ratios["A"] == 0.9


def test_read_towns_builds_composite_ids_and_nps(tmp_path) -> None:
    towns = _repository().read_towns(_write(tmp_path, "Town.csv", TOWN_TABLE), ["C1", "C2"])

    assert [town.town_id for town in towns] == ["IST~KADIKOY", "ANK~CANKAYA"]
    assert towns[0].demand == 12
    assert towns[1].demand == 1
    assert towns[1].nps == {"C1": 2.5, "C2": 1.0}
    assert towns[1].town_group == "B"


def test_input_without_depot_table_uses_single_inventory(tmp_path) -> None:
    data = _repository().read_input(
        _write(tmp_path, "Cargo.csv", CARGO_TABLE),
        _write(tmp_path, "Town.csv", TOWN_TABLE),
    )

    assert list(data.cargos_by_depot) == ["ALL"]
    assert len(data.towns_by_depot["ALL"]) == 2


def test_depot_table_turns_percentages_into_demand(tmp_path) -> None:
    data = _repository().read_input(
        _write(tmp_path, "Cargo.csv", CARGO_TABLE),
        _write(tmp_path, "Town.csv", TOWN_TABLE),
        _write(tmp_path, "Depot.csv", DEPOT_TABLE),
    )

    assert list(data.cargos_by_depot) == ["North", "South"]
    assert [cargo.capacity for cargo in data.cargos_by_depot["South"]] == [40.0, 0.0]
    assert data.cargos_by_depot["South"][0].min_group_ratios["A"] == 0.1
    # North: 160 * 12.5% = 20, 160 * 0.2% = 0.32 -> floored to 1
    assert [town.demand for town in data.towns_by_depot["North"]] == [20, 1]
    # South: 40 * 12.5% = 5
    assert [town.demand for town in data.towns_by_depot["South"]] == [5, 1]


def test_town_table_tolerates_short_first_header_row(tmp_path) -> None:
    table = (
        "City,Town,Group,Demand\n"
        "City,Town,Group,Demand,C1,C2\n"
        "IST,KADIKOY,A,50,1,2\n"
    )

    towns = _repository().read_towns(_write(tmp_path, "Town.csv", table), ["C1", "C2"])

    assert [town.town_id for town in towns] == ["IST~KADIKOY"]
    assert towns[0].nps == {"C1": 1.0, "C2": 2.0}


def test_trailing_commas_do_not_add_columns(tmp_path) -> None:
    town_table = TOWN_TABLE.replace("IST,KADIKOY,A,12.5,1,2\n", "IST,KADIKOY,A,12.5,1,2,\n")
    depot_table = "Cargo,North,South,\nC1,100,40,\nC2,60,0\n"

    data = _repository().read_input(
        _write(tmp_path, "Cargo.csv", CARGO_TABLE),
        _write(tmp_path, "Town.csv", town_table),
        _write(tmp_path, "Depot.csv", depot_table),
    )

    assert list(data.cargos_by_depot) == ["North", "South"]
    assert data.towns_by_depot["North"][0].nps == {"C1": 1.0, "C2": 2.0}


def test_empty_table_raises(tmp_path) -> None:
    with pytest.raises(MalformedInputError):
        _repository().read_cargos(_write(tmp_path, "Cargo.csv", ""))


def test_non_numeric_field_raises(tmp_path) -> None:
    bad = CARGO_TABLE.replace("C2,60,", "C2,sixty,")

    with pytest.raises(MalformedInputError):
        _repository().read_cargos(_write(tmp_path, "Cargo.csv", bad))


def test_missing_columns_raise(tmp_path) -> None:
    with pytest.raises(MalformedInputError):
        _repository().read_cargos(_write(tmp_path, "Cargo.csv", "cargoId,capacity\nC1,10\n"))


def test_unknown_nps_cargo_raises(tmp_path) -> None:
    with pytest.raises(MalformedInputError):
        _repository().read_towns(_write(tmp_path, "Town.csv", TOWN_TABLE), ["C1"])


def test_depot_without_capacity_for_cargo_raises(tmp_path) -> None:
    depot_table = "Cargo,North\nC1,100\n"

    with pytest.raises(MalformedInputError):
        _repository().read_input(
            _write(tmp_path, "Cargo.csv", CARGO_TABLE),
            _write(tmp_path, "Town.csv", TOWN_TABLE),
            _write(tmp_path, "Depot.csv", depot_table),
        )


def test_missing_file_raises(tmp_path) -> None:
    with pytest.raises(MalformedInputError):
        _repository().read_cargos(tmp_path / "absent.csv")


def test_csv_sink_writes_two_header_rows(tmp_path) -> None:
    records = [
        OutputRecord("IST~KADIKOY", "North", (("C1", 0.75), ("C2", 0.25))),
        OutputRecord("IST~KADIKOY", "South", (("C1", 1.0), ("C2", 0.0))),
    ]
    path = tmp_path / "out" / "Result.csv"

    write_output(
        records=records,
        depot_ids=["North", "South"],
        cargo_ids=["C1", "C2"],
        sink=CsvOutputSink(path),
    )

    frame = pd.read_csv(path, header=None, dtype=str, keep_default_na=False)
    assert list(frame.iloc[0]) == ["", "", "North", "", "South", ""]
    assert list(frame.iloc[1]) == ["City", "Town", "C1", "C2", "C1", "C2"]
    assert list(frame.iloc[2])[:2] == ["IST", "KADIKOY"]
    assert [float(value) for value in frame.iloc[2, 2:]] == [0.75, 0.25, 1.0, 0.0]


def test_csv_sink_leaves_no_file_when_write_fails(tmp_path) -> None:
    path = tmp_path / "out" / "Result.csv"

    with pytest.raises(ValueError):
        with CsvOutputSink(path) as sink:
            sink.write_row(["", "", "North"])
            raise ValueError("row build failed")

    assert not path.exists()


def test_csv_sink_rejects_rows_outside_the_context(tmp_path) -> None:
    with pytest.raises(RuntimeError):
        CsvOutputSink(tmp_path / "Result.csv").write_row(["City", "Town"])


def test_result_file_name_is_timestamped() -> None:
    assert result_file_name(datetime(2024, 3, 5, 7, 8, 9)) == "Result_20240305070809.csv"
