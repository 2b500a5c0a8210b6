#!/usr/bin/env python3
"""Validate local dispatching environment readiness."""

from __future__ import annotations

import importlib
import shutil
import sys
import tempfile
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from dispatching.repository.csv_repository import CsvDataRepository, CsvOutputSink
from dispatching.services.allocation_service import AllocationOptimizationService
from dispatching.services.output_extractor import write_output
from dispatching.services.solver_adapter import OrToolsSolverAdapter, LinearProgram, Sense
from dispatching.utils.config import get_settings

SEPARATOR_LINE = "=" * 44

SAMPLE_CARGO_TABLE = (
    "cargoId,capacity,globalMin,minA,minB,minC,globalMax,maxA,maxB,maxC\n"
    "C1,100,0.3,0,0,0,0.7,1,1,1\n"
    "C2,100,0.3,0,0,0,0.7,1,1,1\n"
)
SAMPLE_TOWN_TABLE = (
    "City,Town,Group,Demand,NPS,\n"
    "City,Town,Group,Demand,C1,C2\n"
    "IST,KADIKOY,A,50,1,2\n"
    "IST,USKUDAR,A,50,2,1\n"
)


def _print_result(name: str, success: bool, detail: str = "") -> tuple[bool, str]:
    if success:
        return True, f"[PASS] {name}{detail}"
    return False, f"[FAIL] {name}: {detail}"


def main() -> int:
    results: list[str] = []
    all_passed = True
    temp_dir = Path(tempfile.mkdtemp(prefix="dispatching-env-"))

    # CHECK 1: Python version >= 3.10
    if sys.version_info >= (3, 10):
        ok, line = _print_result("Python " + sys.version.split()[0], True)
    else:
        ok, line = _print_result(
            "Python version >= 3.10",
            False,
            f"found {sys.version.split()[0]}",
        )
    results.append(line)
    all_passed = all_passed and ok

    # CHECK 2: Required packages importable
    package_specs = ["fastapi", "uvicorn", "pydantic", "numpy", "pandas", "ortools", "httpx", "pytest"]
    import_errors: list[str] = []
    for module_name in package_specs:
        try:
            importlib.import_module(module_name)
        except Exception as exc:  # pragma: no cover - runtime guard
            import_errors.append(f"{module_name} ({exc})")
    if import_errors:
        ok, line = _print_result(
            "Required packages",
            False,
            "missing/unimportable -> " + "; ".join(import_errors),
        )
    else:
        ok, line = _print_result("Required packages: all importable", True)
    results.append(line)
    all_passed = all_passed and ok

    settings = get_settings()
    try:
        # CHECK 3: Solver backend creation and a one-variable solve
        try:
            program = LinearProgram(name="EnvironmentCheck")
            program.add_variable("v", 0.0, 10.0, True)
            program.add_constraint("floor", [("v", 1.0)], Sense.GE, 3.0)
            program.set_objective_coefficient("v", 1.0)
            outcome = OrToolsSolverAdapter(settings.allocation_solver_backend).solve(program, 5)
            if outcome.values.get("v") != 3.0:
                raise RuntimeError(f"expected v=3, got {outcome.values.get('v')}")
            ok, line = _print_result(
                f"Solver backend {settings.allocation_solver_backend}", True
            )
        except Exception as exc:
            ok, line = _print_result("Solver backend", False, str(exc))
        results.append(line)
        all_passed = all_passed and ok

        # CHECK 4: Sample tables load
        cargo_file = temp_dir / "Cargo.csv"
        town_file = temp_dir / "Town.csv"
        cargo_file.write_text(SAMPLE_CARGO_TABLE, encoding="utf-8")
        town_file.write_text(SAMPLE_TOWN_TABLE, encoding="utf-8")
        data = None
        try:
            data = CsvDataRepository(settings).read_input(cargo_file, town_file)
            ok, line = _print_result("Sample CSV tables", True)
        except Exception as exc:
            ok, line = _print_result("Sample CSV tables", False, str(exc))
        results.append(line)
        all_passed = all_passed and ok

        # CHECK 5: End-to-end allocation and result file
        try:
            if data is None:
                raise RuntimeError("sample tables did not load")
            result = AllocationOptimizationService(settings=settings).optimize_allocation(
                data.cargos_by_depot, data.towns_by_depot
            )
            if not result.records:
                raise RuntimeError(f"no allocation, status={result.status.value}")
            depot_ids = list(data.cargos_by_depot)
            sink = CsvOutputSink(temp_dir / "Result.csv")
            rows = write_output(
                records=result.records,
                depot_ids=depot_ids,
                cargo_ids=[cargo.cargo_id for cargo in data.cargos_by_depot[depot_ids[0]]],
                sink=sink,
            )
            ok, line = _print_result(
                "End-to-end allocation",
                True,
                f": status={result.status.value} rows={rows}",
            )
        except Exception as exc:
            ok, line = _print_result("End-to-end allocation", False, str(exc))
        results.append(line)
        all_passed = all_passed and ok

    finally:
        shutil.rmtree(temp_dir, ignore_errors=True)

    print(SEPARATOR_LINE)
    print(" Dispatching Environment Validation")
    print(SEPARATOR_LINE)
    for line in results:
        print(f" {line}")
    print(SEPARATOR_LINE)
    if all_passed:
        print(" All checks passed. Environment is ready.")
        print(SEPARATOR_LINE)
        return 0
    print(" One or more checks failed.")
    print(SEPARATOR_LINE)
    return 1


if __name__ == "__main__":
    raise SystemExit(main())
