"""
main.py: Command line entry point.

Run one allocation from CSV tables and write the result table:

    python main.py run --cargo-file Input/Cargo.csv --town-file Input/Town.csv

Add ``--depot-file Input/Depot.csv`` to split the network into depots; town
demand is then read as a percentage of each depot's capacity.

Start the HTTP API instead:

    python main.py serve

This file does NOT contain application logic. See app.py for the FastAPI
application and dispatching/services for the optimization workflow.
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path
from typing import Optional, Sequence

import uvicorn

from dispatching.domain.errors import DispatchingError
from dispatching.domain.models import AllocationResult
from dispatching.repository.csv_repository import (
    CsvDataRepository,
    CsvOutputSink,
    result_file_name,
)
from dispatching.services.allocation_service import AllocationOptimizationService
from dispatching.services.output_extractor import write_output
from dispatching.utils.config import get_settings
from dispatching.utils.logger import get_logger, set_log_level


logger = get_logger(__name__)

HOST = "127.0.0.1"
PORT = 8000

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_NO_SOLUTION = 2


def _print_summary(result: AllocationResult, output_path: Path) -> None:
    summary = result.summary
    print("=" * 60)
    print(f"  Status        : {result.status.value}{' (relaxed)' if result.relaxed else ''}")
    print(f"  Order amount  : {summary.order_amount:.0f}")
    print(f"  Objective     : {summary.objective_value:.2f}")
    print(f"  Total cost    : {summary.total_cost:.2f}")
    print(f"  Wall time     : {summary.wall_time_ms} ms")
    print("-" * 60)
    for cargo_id, ratio in summary.network_ratios:
        print(f"  {cargo_id:<14}: {ratio:.3f}")
    print("-" * 60)
    print(f"  Result file   : {output_path}")
    print("=" * 60)


def run(
    cargo_file: Path,
    town_file: Path,
    depot_file: Optional[Path] = None,
    output_dir: Optional[Path] = None,
) -> int:
    settings = get_settings()
    repository = CsvDataRepository(settings)
    service = AllocationOptimizationService(settings=settings)

    try:
        data = repository.read_input(cargo_file, town_file, depot_file)
        result = service.optimize_allocation(data.cargos_by_depot, data.towns_by_depot)
        if not result.records:
            logger.error("No allocation written | status=%s", result.status.value)
            return EXIT_NO_SOLUTION

        output_path = Path(output_dir or settings.output_dir) / result_file_name()
        depot_ids = list(data.cargos_by_depot)
        cargo_ids = [cargo.cargo_id for cargo in data.cargos_by_depot[depot_ids[0]]]
        write_output(
            records=result.records,
            depot_ids=depot_ids,
            cargo_ids=cargo_ids,
            sink=CsvOutputSink(output_path),
        )
    except DispatchingError as exc:
        logger.error("Allocation run failed | error=%s | detail=%s", type(exc).__name__, exc)
        return EXIT_FAILED

    _print_summary(result, output_path)
    return EXIT_OK


def serve(host: str = HOST, port: int = PORT, reload: bool = False) -> None:
    print(f"  Server   : http://{host}:{port}")
    print(f"  API docs : http://{host}:{port}/docs")
    print("  Press CTRL+C to stop\n")

    uvicorn.run(
        "app:app",
        host=host,
        port=port,
        reload=reload,
        log_level="info",
    )


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Multi-depot cargo dispatching optimizer")
    commands = parser.add_subparsers(dest="command", required=True)

    run_parser = commands.add_parser("run", help="solve one allocation from CSV tables")
    run_parser.add_argument("--cargo-file", type=Path, required=True)
    run_parser.add_argument("--town-file", type=Path, required=True)
    run_parser.add_argument("--depot-file", type=Path, default=None)
    run_parser.add_argument("--output-dir", type=Path, default=None)
    run_parser.add_argument("--log-level", default=None, help="override DISPATCHING_LOG_LEVEL")

    serve_parser = commands.add_parser("serve", help="start the HTTP API")
    serve_parser.add_argument("--host", default=HOST)
    serve_parser.add_argument("--port", type=int, default=PORT)
    serve_parser.add_argument("--reload", action="store_true")
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = _build_parser().parse_args(argv)
    if args.command == "serve":
        serve(host=args.host, port=args.port, reload=args.reload)
        return EXIT_OK
    if args.log_level:
        set_log_level(args.log_level)
    return run(
        cargo_file=args.cargo_file,
        town_file=args.town_file,
        depot_file=args.depot_file,
        output_dir=args.output_dir,
    )


if __name__ == "__main__":
    sys.exit(main())
