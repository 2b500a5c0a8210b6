from __future__ import annotations

import pytest

from dispatching.domain.errors import EntityValidationError
from dispatching.domain.models import (
    Cargo,
    DeliveryTerms,
    Depot,
    OutputRecord,
    SolveStatus,
    Town,
    make_town_id,
    normalize_demand,
)


def _cargo(**overrides) -> Cargo:
    values = {
        "cargo_id": "C1",
        "capacity": 100.0,
        "min_ratio": 0.3,
        "max_ratio": 0.7,
        "min_group_ratios": {"A": 0.0},
        "max_group_ratios": {"A": 1.0},
    }
    values.update(overrides)
    return Cargo(**values)


def test_zero_demand_is_floored_to_one() -> None:
    town = Town(town_id="IST~KADIKOY", town_group="A", demand=0.0)

    assert town.demand == 1
    assert normalize_demand(0.4) == 1


def test_demand_is_rounded_to_whole_units() -> None:
    assert Town(town_id="t", town_group="A", demand=12.6).demand == 13
    assert normalize_demand(7.0) == 7


def test_negative_demand_is_rejected() -> None:
    with pytest.raises(EntityValidationError):
        Town(town_id="t", town_group="A", demand=-1.0)


def test_town_id_is_composite() -> None:
    assert make_town_id("IST", "KADIKOY") == "IST~KADIKOY"


def test_cargo_ratio_bounds_are_validated() -> None:
    with pytest.raises(EntityValidationError):
        _cargo(min_ratio=0.8, max_ratio=0.7)
    with pytest.raises(EntityValidationError):
        _cargo(max_ratio=1.2)
    with pytest.raises(EntityValidationError):
        _cargo(max_group_ratios={"A": -0.1})


def test_unknown_group_lookup_raises() -> None:
    cargo = _cargo()
    town = Town(town_id="t", town_group="B", demand=5)

    assert cargo.covers_group("A")
    assert not cargo.covers_group("B")
    with pytest.raises(EntityValidationError):
        town.cargo_min_ratio(cargo)


def test_town_defaults_delivery_terms() -> None:
    town = Town(town_id="t", town_group="A", demand=5, nps={"C1": 2.0})

    terms = town.terms_for("C1")
    assert terms.same_day_capacity == 10_000_000.0
    assert terms.carry_over_cost == 0.0
    assert town.nps_for("C1") == 2.0
    with pytest.raises(EntityValidationError):
        town.nps_for("C2")


def test_town_keeps_explicit_delivery_terms() -> None:
    terms = DeliveryTerms(same_day_capacity=5.0, non_delivery_cost=3.0)
    town = Town(town_id="t", town_group="A", demand=5, delivery_terms={"C1": terms})

    assert town.terms_for("C1") is terms


def test_depot_caches_are_insert_once() -> None:
    depot = Depot("D1")
    depot.add_cargo_capacity("C1", 100.0)
    depot.add_cargo_capacity("C1", 5.0)
    depot.add_town_demand("t", 10.0)
    depot.add_town_demand("t", 99.0)

    assert depot.cargo_capacity("C1") == 100.0
    assert depot.town_demand("t") == 10.0
    with pytest.raises(EntityValidationError):
        depot.cargo_capacity("C2")


def test_output_record_is_frozen() -> None:
    record = OutputRecord(town_id="t", depot_id="D1", allocations=(("C1", 0.25), ("C2", 0.75)))

    assert record.ratio_for("C2") == 0.75
    assert record.cargo_ids == ["C1", "C2"]
    with pytest.raises(AttributeError):
        record.town_id = "other"  # type: ignore[misc]


def test_only_optimal_and_feasible_carry_solutions() -> None:
    assert SolveStatus.OPTIMAL.has_solution
    assert SolveStatus.FEASIBLE.has_solution
    assert not SolveStatus.INFEASIBLE.has_solution
    assert not SolveStatus.TIMED_OUT.has_solution
