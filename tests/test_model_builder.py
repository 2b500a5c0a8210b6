"""Formulation tests; no solver is involved."""

from __future__ import annotations

import pytest

from dispatching.domain.constraints import AllocationConfig, GroupCapPolicy
from dispatching.domain.models import Cargo, DeliveryTerms, Town
from dispatching.services.model_builder import OVERFLOW_UPPER_BOUND, build_model
from dispatching.services.partition_service import build_depots, partition_inventories
from dispatching.services.solver_adapter import Sense


def _config(**overrides) -> AllocationConfig:
    values = {
        "exceed_cost": 100.0,
        "solver_backend": "CBC",
        "integer_variables": True,
        "solver_max_time_seconds": 5,
        "include_carry_over": False,
        "include_exceed_penalty": True,
        "allow_overflow": True,
        "group_cap_policy": GroupCapPolicy.ON_TIME_ONLY,
        "relax_on_infeasible": False,
        "solution_tolerance": 1e-6,
    }
    values.update(overrides)
    return AllocationConfig(**values)


def _partition(depot_ids=("D1",)):
    cargos = {
        depot_id: [
            Cargo("C1", 100.0, 0.3, 0.7, {"A": 0.1}, {"A": 0.9}),
            Cargo("C2", 80.0, 0.2, 0.8, {"A": 0.0}, {"A": 1.0}),
        ]
        for depot_id in depot_ids
    }
    towns = {
        depot_id: [
            Town(
                "IST~KADIKOY",
                "A",
                50,
                {"C1": 1.0, "C2": 2.0},
                {"C1": DeliveryTerms(same_day_capacity=30.0, same_day_cost=0.5, non_delivery_cost=4.0)},
            ),
            Town("IST~USKUDAR", "A", 0, {"C1": 2.0, "C2": 1.0}),
        ]
        for depot_id in depot_ids
    }
    return partition_inventories(cargos, towns, build_depots(cargos, towns))


def test_variable_counts_and_bounds() -> None:
    artifacts = build_model(partition=_partition(("D1", "D2")), config=_config())
    program = artifacts.program

    # a[i] plus x and z for every (d, i, k)
    assert len(program.variables) == 2 + 2 * (2 * 2 * 2)
    assert artifacts.order_amount == 2 * (50 + 1)
    assert program.variables["a[0]"].upper == artifacts.order_amount
    assert program.variables["x[0][0][0]"].upper == 30.0
    assert program.variables["x[0][1][0]"].upper == 10_000_000.0
    assert program.variables["z[1][1][1]"].upper == OVERFLOW_UPPER_BOUND
    assert all(spec.integer for spec in program.variables.values())
    assert "y[0][0][0]" not in program.variables


def test_constraint_families_are_named_and_counted() -> None:
    program = build_model(partition=_partition(("D1", "D2")), config=_config()).program

    assert len(program.constraints_with_prefix("global_balance")) == 1
    assert len(program.constraints_with_prefix("town_balance")) == 2 * 2
    assert len(program.constraints_with_prefix("cargo_linkage")) == 2
    assert len(program.constraints_with_prefix("global_min_ratio")) == 2
    assert len(program.constraints_with_prefix("global_max_ratio")) == 2
    assert len(program.constraints_with_prefix("group_min_ratio")) == 2 * 2
    assert len(program.constraints_with_prefix("group_max_ratio")) == 2 * 2
    assert len(program.constraints_with_prefix("depot_capacity")) == 2 * 2


def test_zero_demand_floor_reaches_town_balance() -> None:
    program = build_model(partition=_partition(), config=_config()).program

    balance = program.constraint("town_balance[0][1]")
    assert balance.sense is Sense.EQ
    assert balance.rhs == 1.0
    assert {name for name, _ in balance.coefficients} == {
        "x[0][0][1]",
        "z[0][0][1]",
        "x[0][1][1]",
        "z[0][1][1]",
    }


def test_global_ratio_rows_scale_order_amount() -> None:
    program = build_model(partition=_partition(), config=_config()).program

    assert program.constraint("global_min_ratio[0]").rhs == pytest.approx(0.3 * 51)
    assert program.constraint("global_max_ratio[1]").rhs == pytest.approx(0.8 * 51)
    linkage = dict(program.constraint("cargo_linkage[0]").coefficients)
    assert linkage["a[0]"] == -1.0
    assert linkage["x[0][0][0]"] == 1.0


def test_relaxed_model_drops_only_global_minimums() -> None:
    baseline = build_model(partition=_partition(), config=_config())
    relaxed = build_model(partition=_partition(), config=_config(), relax_min_ratio=True)

    assert relaxed.relaxed
    assert relaxed.program.constraints_with_prefix("global_min_ratio") == []
    assert len(relaxed.program.constraints) == len(baseline.program.constraints) - 2


def test_group_cap_policy_selects_capped_volumes() -> None:
    on_time = build_model(partition=_partition(), config=_config()).program
    all_volume = build_model(
        partition=_partition(),
        config=_config(group_cap_policy=GroupCapPolicy.ALL_VOLUME),
    ).program

    on_time_row = on_time.constraint("group_max_ratio[0][0]")
    assert [name for name, _ in on_time_row.coefficients] == ["x[0][0][0]"]
    assert on_time_row.rhs == pytest.approx(0.9 * 50)
    all_volume_row = all_volume.constraint("group_max_ratio[0][0]")
    assert [name for name, _ in all_volume_row.coefficients] == ["x[0][0][0]", "z[0][0][0]"]
    assert on_time.constraint("group_min_ratio[0][0]").rhs == pytest.approx(0.1 * 50)


def test_depot_capacity_sums_on_time_volume() -> None:
    program = build_model(partition=_partition(), config=_config()).program

    row = program.constraint("depot_capacity[1][0]")
    assert row.sense is Sense.LE
    assert row.rhs == 80.0
    assert [name for name, _ in row.coefficients] == ["x[0][1][0]", "x[0][1][1]"]


def test_objective_uses_exceed_penalty_or_nps() -> None:
    penalized = build_model(partition=_partition(), config=_config()).program
    plain = build_model(
        partition=_partition(),
        config=_config(include_exceed_penalty=False),
    ).program

    assert penalized.objective["x[0][0][0]"] == pytest.approx(0.5 + 1.0)
    assert penalized.objective["z[0][0][0]"] == pytest.approx(4.0 + 100.0)
    assert plain.objective["z[0][0][0]"] == pytest.approx(4.0 + 1.0)
    assert plain.objective["z[0][1][1]"] == pytest.approx(1.0)
    assert penalized.minimize


def test_carry_over_variables_join_balance_and_objective() -> None:
    program = build_model(
        partition=_partition(),
        config=_config(include_carry_over=True),
    ).program

    assert "y[0][0][0]" in program.variables
    names = [name for name, _ in program.constraint("town_balance[0][0]").coefficients]
    assert names == ["x[0][0][0]", "y[0][0][0]", "z[0][0][0]", "x[0][1][0]", "y[0][1][0]", "z[0][1][0]"]
    assert program.objective["y[0][1][0]"] == pytest.approx(2.0)


def test_overflow_disabled_pins_z_to_zero() -> None:
    program = build_model(partition=_partition(), config=_config(allow_overflow=False)).program

    assert all(
        spec.upper == 0.0 for name, spec in program.variables.items() if name.startswith("z[")
    )


def test_continuous_variables_when_configured() -> None:
    program = build_model(
        partition=_partition(),
        config=_config(integer_variables=False, solver_backend="GLOP"),
    ).program

    assert not any(spec.integer for spec in program.variables.values())
