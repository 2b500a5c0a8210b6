"""Linear model formulation for multi-depot cargo dispatching.

Decision variables, with ``d`` a depot, ``i`` a cargo and ``k`` a town:

* ``a[i]``: total volume assigned to cargo ``i`` over every depot and town.
* ``x[d][i][k]``: volume delivered on the same day.
* ``y[d][i][k]``: volume carried over to the next day (optional).
* ``z[d][i][k]``: overflow volume, penalized in the objective.

Constraints:

1. ``sum_i a[i] = OrderAmount``
2. ``sum_i x + y + z = Demand[d][k]`` for every depot and town
3. ``sum_{d,k} x + y + z - a[i] = 0`` for every cargo
4. ``minRatio_i * OrderAmount <= a[i] <= maxRatio_i * OrderAmount``
5. ``sum_d x + y + z >= minGroupRatio * sum_d Demand[d][k]`` and the matching
   upper bound over the volumes selected by the group cap policy
6. ``sum_k x[d][i][k] <= Capacity[d][i]``

The overflow variable keeps the model feasible whenever ratio bounds allow
it: demand that cannot be delivered within capacity is booked as overflow at
the exceed cost.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from dispatching.domain.constraints import AllocationConfig, GroupCapPolicy
from dispatching.services.partition_service import PartitionedInventories
from dispatching.services.solver_adapter import LinearProgram, Sense
from dispatching.utils.logger import get_logger


logger = get_logger(__name__)

OVERFLOW_UPPER_BOUND = float(2**31 - 1)
MODEL_NAME = "Dispatcher"


@dataclass(frozen=True)
class VariableIndex:
    """Positional naming scheme shared by the builder and the extractor."""

    depot_count: int
    cargo_count: int
    town_count: int
    include_carry_over: bool

    def total(self, i: int) -> str:
        return f"a[{i}]"

    def on_time(self, d: int, i: int, k: int) -> str:
        return f"x[{d}][{i}][{k}]"

    def carry_over(self, d: int, i: int, k: int) -> Optional[str]:
        if not self.include_carry_over:
            return None
        return f"y[{d}][{i}][{k}]"

    def overflow(self, d: int, i: int, k: int) -> str:
        return f"z[{d}][{i}][{k}]"

    def allocated(self, d: int, i: int, k: int) -> list[str]:
        """Every variable that counts towards the demand of ``(d, k)``."""
        names = [self.on_time(d, i, k)]
        carry_over = self.carry_over(d, i, k)
        if carry_over is not None:
            names.append(carry_over)
        names.append(self.overflow(d, i, k))
        return names


@dataclass(frozen=True)
class BuildArtifacts:
    program: LinearProgram
    index: VariableIndex
    order_amount: float
    relaxed: bool


def _create_decision_variables(
    program: LinearProgram,
    partition: PartitionedInventories,
    index: VariableIndex,
    config: AllocationConfig,
    order_amount: float,
) -> None:
    integer = config.integer_variables
    for i in range(index.cargo_count):
        program.add_variable(index.total(i), 0.0, order_amount, integer)

    overflow_upper = OVERFLOW_UPPER_BOUND if config.allow_overflow else 0.0
    for d in range(index.depot_count):
        for i in range(index.cargo_count):
            cargo_id = partition.cargo(d, i).cargo_id
            for k in range(index.town_count):
                terms = partition.town(d, k).terms_for(cargo_id)
                program.add_variable(
                    index.on_time(d, i, k), 0.0, terms.same_day_capacity, integer
                )
                carry_over = index.carry_over(d, i, k)
                if carry_over is not None:
                    program.add_variable(carry_over, 0.0, terms.carry_over_capacity, integer)
                program.add_variable(index.overflow(d, i, k), 0.0, overflow_upper, integer)


def _orders_assigned_to_cargos(
    program: LinearProgram, index: VariableIndex, order_amount: float
) -> None:
    program.add_constraint(
        "global_balance",
        ((index.total(i), 1.0) for i in range(index.cargo_count)),
        Sense.EQ,
        order_amount,
    )


def _orders_in_towns(
    program: LinearProgram, partition: PartitionedInventories, index: VariableIndex
) -> None:
    for d in range(index.depot_count):
        for k in range(index.town_count):
            program.add_constraint(
                f"town_balance[{d}][{k}]",
                (
                    (name, 1.0)
                    for i in range(index.cargo_count)
                    for name in index.allocated(d, i, k)
                ),
                Sense.EQ,
                partition.demand(d, k),
            )


def _order_match(program: LinearProgram, index: VariableIndex) -> None:
    for i in range(index.cargo_count):
        terms = [
            (name, 1.0)
            for d in range(index.depot_count)
            for k in range(index.town_count)
            for name in index.allocated(d, i, k)
        ]
        terms.append((index.total(i), -1.0))
        program.add_constraint(f"cargo_linkage[{i}]", terms, Sense.EQ, 0.0)


def _global_ratio_limits(
    program: LinearProgram,
    partition: PartitionedInventories,
    index: VariableIndex,
    order_amount: float,
    include_minimum: bool,
) -> None:
    # Ratio bounds come from the first inventory; cargo ids are aligned.
    for i in range(index.cargo_count):
        cargo = partition.cargo(0, i)
        if include_minimum:
            program.add_constraint(
                f"global_min_ratio[{i}]",
                [(index.total(i), 1.0)],
                Sense.GE,
                order_amount * cargo.min_ratio,
            )
        program.add_constraint(
            f"global_max_ratio[{i}]",
            [(index.total(i), 1.0)],
            Sense.LE,
            order_amount * cargo.max_ratio,
        )


def _group_ratio_limits(
    program: LinearProgram,
    partition: PartitionedInventories,
    index: VariableIndex,
    policy: GroupCapPolicy,
) -> None:
    for i in range(index.cargo_count):
        cargo = partition.cargo(0, i)
        for k in range(index.town_count):
            town = partition.town(0, k)
            demand = partition.town_demand_across_depots(k)

            program.add_constraint(
                f"group_min_ratio[{i}][{k}]",
                (
                    (name, 1.0)
                    for d in range(index.depot_count)
                    for name in index.allocated(d, i, k)
                ),
                Sense.GE,
                demand * town.cargo_min_ratio(cargo),
            )

            if policy is GroupCapPolicy.ALL_VOLUME:
                capped = [
                    (name, 1.0)
                    for d in range(index.depot_count)
                    for name in index.allocated(d, i, k)
                ]
            else:
                capped = [(index.on_time(d, i, k), 1.0) for d in range(index.depot_count)]
            program.add_constraint(
                f"group_max_ratio[{i}][{k}]",
                capped,
                Sense.LE,
                demand * town.cargo_max_ratio(cargo),
            )


def _cargo_capacities_by_inventories(
    program: LinearProgram, partition: PartitionedInventories, index: VariableIndex
) -> None:
    for i in range(index.cargo_count):
        for d in range(index.depot_count):
            program.add_constraint(
                f"depot_capacity[{i}][{d}]",
                ((index.on_time(d, i, k), 1.0) for k in range(index.town_count)),
                Sense.LE,
                partition.capacity(d, i),
            )


def _create_objective(
    program: LinearProgram,
    partition: PartitionedInventories,
    index: VariableIndex,
    config: AllocationConfig,
) -> None:
    for d in range(index.depot_count):
        for i in range(index.cargo_count):
            cargo_id = partition.cargo(d, i).cargo_id
            for k in range(index.town_count):
                town = partition.town(d, k)
                terms = town.terms_for(cargo_id)
                nps = town.nps_for(cargo_id)

                program.set_objective_coefficient(
                    index.on_time(d, i, k), terms.same_day_cost + nps
                )
                carry_over = index.carry_over(d, i, k)
                if carry_over is not None:
                    program.set_objective_coefficient(carry_over, terms.carry_over_cost + nps)
                penalty = config.exceed_cost if config.include_exceed_penalty else nps
                program.set_objective_coefficient(
                    index.overflow(d, i, k), terms.non_delivery_cost + penalty
                )
    program.minimize = True


def build_model(
    *,
    partition: PartitionedInventories,
    config: AllocationConfig,
    relax_min_ratio: bool = False,
) -> BuildArtifacts:
    """Build the dispatching program over an aligned partition.

    ``relax_min_ratio`` drops the global minimum-ratio rows; it is the only
    difference between the baseline model and the infeasibility fallback.
    """
    index = VariableIndex(
        depot_count=partition.depot_count,
        cargo_count=partition.cargo_count,
        town_count=partition.town_count,
        include_carry_over=config.include_carry_over,
    )
    order_amount = partition.order_amount
    program = LinearProgram(name=MODEL_NAME)

    _create_decision_variables(program, partition, index, config, order_amount)
    _orders_assigned_to_cargos(program, index, order_amount)
    _orders_in_towns(program, partition, index)
    _order_match(program, index)
    _global_ratio_limits(
        program, partition, index, order_amount, include_minimum=not relax_min_ratio
    )
    _group_ratio_limits(program, partition, index, config.group_cap_policy)
    _cargo_capacities_by_inventories(program, partition, index)
    _create_objective(program, partition, index, config)

    logger.info(
        (
            "Model built | variables=%s | constraints=%s | order_amount=%.0f | "
            "carry_over=%s | exceed_penalty=%s | overflow=%s | group_cap=%s | relaxed=%s"
        ),
        len(program.variables),
        len(program.constraints),
        order_amount,
        config.include_carry_over,
        config.include_exceed_penalty,
        config.allow_overflow,
        config.group_cap_policy.value,
        relax_min_ratio,
    )
    return BuildArtifacts(
        program=program,
        index=index,
        order_amount=order_amount,
        relaxed=relax_min_ratio,
    )
