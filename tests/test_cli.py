from __future__ import annotations

import pytest

import main


CARGO_TABLE = (
    "cargoId,capacity,globalMin,minA,minB,minC,globalMax,maxA,maxB,maxC\n"
    "C1,100,0.3,0,0,0,0.7,1,1,1\n"
    "C2,100,0.3,0,0,0,0.7,1,1,1\n"
)
TOWN_TABLE = (
    "City,Town,Group,Demand,NPS,\n"
    "City,Town,Group,Demand,C1,C2\n"
    "IST,KADIKOY,A,50,1,2\n"
    "IST,USKUDAR,A,50,2,1\n"
)


def _write_inputs(tmp_path, cargo_table: str = CARGO_TABLE):
    cargo_file = tmp_path / "Cargo.csv"
    town_file = tmp_path / "Town.csv"
    cargo_file.write_text(cargo_table, encoding="utf-8")
    town_file.write_text(TOWN_TABLE, encoding="utf-8")
    return cargo_file, town_file


def test_run_writes_result_table(tmp_path, capsys) -> None:
    pytest.importorskip("ortools")
    cargo_file, town_file = _write_inputs(tmp_path)
    output_dir = tmp_path / "Output"

    exit_code = main.main(
        [
            "run",
            "--cargo-file",
            str(cargo_file),
            "--town-file",
            str(town_file),
            "--output-dir",
            str(output_dir),
        ]
    )

    assert exit_code == main.EXIT_OK
    written = list(output_dir.glob("Result_*.csv"))
    assert len(written) == 1
    lines = written[0].read_text(encoding="utf-8").splitlines()
    assert lines[1] == "City,Town,C1,C2"
    assert len(lines) == 4
    assert "Total cost" in capsys.readouterr().out


def test_run_reports_malformed_input(tmp_path) -> None:
    cargo_file, town_file = _write_inputs(tmp_path, CARGO_TABLE.replace("C2,100", "C2,lots"))

    exit_code = main.main(
        ["run", "--cargo-file", str(cargo_file), "--town-file", str(town_file), "--log-level", "warning"]
    )

    assert exit_code == main.EXIT_FAILED


def test_run_requires_input_files() -> None:
    with pytest.raises(SystemExit):
        main.main(["run", "--town-file", "Town.csv"])
