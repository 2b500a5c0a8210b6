"""HTTP controller layer for dispatching allocation runs."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field, field_validator, model_validator

from dispatching.controllers.dependencies import get_allocation_service, require_admin
from dispatching.domain.constraints import GroupCapPolicy
from dispatching.domain.errors import (
    AllocationValidationError,
    EntityValidationError,
    ExtractionError,
    MalformedInputError,
    PartitionConsistencyError,
    SolverDependencyError,
)
from dispatching.domain.models import AllocationResult, Cargo, DeliveryTerms, make_town_id
from dispatching.repository.csv_repository import DispatchingInput, TownRow, split_by_depot
from dispatching.services.allocation_service import AllocationOptimizationService
from dispatching.services.output_extractor import InMemoryOutputSink, write_output
from dispatching.utils.logger import get_logger


logger = get_logger(__name__)

router = APIRouter(tags=["allocation"])


class CargoPayload(BaseModel):
    cargo_id: str = Field(min_length=1)
    capacity: float = Field(ge=0.0)
    min_ratio: float = Field(ge=0.0, le=1.0)
    max_ratio: float = Field(ge=0.0, le=1.0)
    min_group_ratios: dict[str, float] = Field(default_factory=dict)
    max_group_ratios: dict[str, float] = Field(default_factory=dict)

    @model_validator(mode="after")
    def validate_ratio_order(self) -> "CargoPayload":
        if self.min_ratio > self.max_ratio:
            raise ValueError("min_ratio must be <= max_ratio")
        return self


class DeliveryTermsPayload(BaseModel):
    same_day_capacity: float | None = Field(default=None, ge=0.0)
    carry_over_capacity: float | None = Field(default=None, ge=0.0)
    same_day_cost: float = 0.0
    carry_over_cost: float = 0.0
    non_delivery_cost: float = 0.0

    def to_terms(self) -> DeliveryTerms:
        defaults = DeliveryTerms()
        return DeliveryTerms(
            same_day_capacity=(
                self.same_day_capacity
                if self.same_day_capacity is not None
                else defaults.same_day_capacity
            ),
            carry_over_capacity=(
                self.carry_over_capacity
                if self.carry_over_capacity is not None
                else defaults.carry_over_capacity
            ),
            same_day_cost=self.same_day_cost,
            carry_over_cost=self.carry_over_cost,
            non_delivery_cost=self.non_delivery_cost,
        )


class TownPayload(BaseModel):
    """One town; ``demand`` is a percentage when depot capacities are given."""

    city_id: str = Field(min_length=1)
    town_id: str = Field(min_length=1)
    town_group: str = Field(min_length=1)
    demand: float = Field(ge=0.0)
    nps: dict[str, float]
    delivery_terms: dict[str, DeliveryTermsPayload] = Field(default_factory=dict)


class OptimizeAllocationRequest(BaseModel):
    cargos: list[CargoPayload] = Field(min_length=1)
    towns: list[TownPayload] = Field(min_length=1)
    depot_capacities: dict[str, dict[str, float]] | None = None
    exceed_cost: float | None = Field(default=None, gt=0.0)
    solver_max_time_seconds: int | None = Field(default=None, gt=0)
    integer_variables: bool | None = None
    include_carry_over: bool | None = None
    include_exceed_penalty: bool | None = None
    allow_overflow: bool | None = None
    group_cap_policy: GroupCapPolicy | None = None
    relax_on_infeasible: bool | None = None

    @field_validator("depot_capacities")
    @classmethod
    def validate_depot_capacities(
        cls,
        value: dict[str, dict[str, float]] | None,
    ) -> dict[str, dict[str, float]] | None:
        if value is None:
            return None
        if not value:
            raise ValueError("depot_capacities must list at least one depot")
        for depot_id, capacities in value.items():
            if not depot_id.strip():
                raise ValueError("depot_capacities depot id must be non-empty")
            for cargo_id, capacity in capacities.items():
                if capacity < 0.0:
                    raise ValueError(f"capacity of {cargo_id} at {depot_id} must be >= 0")
        return value


class AllocationRecordResponse(BaseModel):
    town_id: str
    depot_id: str
    ratios: dict[str, float]


class RunSummaryResponse(BaseModel):
    order_amount: float = Field(ge=0.0)
    objective_value: float
    total_cost: float
    wall_time_ms: int = Field(ge=0)
    network_ratios: dict[str, float]


class OptimizeAllocationResponse(BaseModel):
    status: str
    relaxed: bool
    summary: RunSummaryResponse | None
    records: list[AllocationRecordResponse]
    table: list[list[str | float]]


def _to_input(payload: OptimizeAllocationRequest, inventory_id: str) -> DispatchingInput:
    cargos = [
        Cargo(
            cargo_id=item.cargo_id,
            capacity=item.capacity,
            min_ratio=item.min_ratio,
            max_ratio=item.max_ratio,
            min_group_ratios=item.min_group_ratios,
            max_group_ratios=item.max_group_ratios,
        )
        for item in payload.cargos
    ]
    town_rows = [
        TownRow(
            town_id=make_town_id(item.city_id, item.town_id),
            town_group=item.town_group,
            demand=item.demand,
            nps=item.nps,
            delivery_terms={
                cargo_id: terms.to_terms() for cargo_id, terms in item.delivery_terms.items()
            },
        )
        for item in payload.towns
    ]
    if payload.depot_capacities is not None:
        return split_by_depot(cargos, town_rows, payload.depot_capacities, source="request")
    return DispatchingInput(
        cargos_by_depot={inventory_id: cargos},
        towns_by_depot={inventory_id: [row.to_town() for row in town_rows]},
    )


def _to_response(result: AllocationResult) -> OptimizeAllocationResponse:
    table: list[list[str | float]] = []
    if result.records:
        depot_ids = list(dict.fromkeys(record.depot_id for record in result.records))
        sink = InMemoryOutputSink()
        write_output(
            records=result.records,
            depot_ids=depot_ids,
            cargo_ids=result.records[0].cargo_ids,
            sink=sink,
        )
        table = sink.rows
    summary = None
    if result.summary is not None:
        summary = RunSummaryResponse(
            order_amount=result.summary.order_amount,
            objective_value=result.summary.objective_value,
            total_cost=result.summary.total_cost,
            wall_time_ms=result.summary.wall_time_ms,
            network_ratios=dict(result.summary.network_ratios),
        )
    return OptimizeAllocationResponse(
        status=result.status.value,
        relaxed=result.relaxed,
        summary=summary,
        records=[
            AllocationRecordResponse(
                town_id=record.town_id,
                depot_id=record.depot_id,
                ratios=dict(record.allocations),
            )
            for record in result.records
        ],
        table=table,
    )


@router.post(
    "/optimize_allocation",
    response_model=OptimizeAllocationResponse,
    status_code=status.HTTP_200_OK,
    dependencies=[Depends(require_admin)],
)
def optimize_allocation(
    payload: OptimizeAllocationRequest,
    service: AllocationOptimizationService = Depends(get_allocation_service),
) -> OptimizeAllocationResponse:
    """Run one dispatching optimization over the posted entities."""
    try:
        data = _to_input(payload, service.settings.default_inventory_id)
        result = service.optimize_allocation(
            data.cargos_by_depot,
            data.towns_by_depot,
            exceed_cost=payload.exceed_cost,
            solver_max_time_seconds=payload.solver_max_time_seconds,
            integer_variables=payload.integer_variables,
            include_carry_over=payload.include_carry_over,
            include_exceed_penalty=payload.include_exceed_penalty,
            allow_overflow=payload.allow_overflow,
            group_cap_policy=payload.group_cap_policy,
            relax_on_infeasible=payload.relax_on_infeasible,
        )
        return _to_response(result)
    except (AllocationValidationError, EntityValidationError, MalformedInputError) as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc
    except PartitionConsistencyError as exc:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=str(exc),
        ) from exc
    except SolverDependencyError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=str(exc),
        ) from exc
    except ExtractionError as exc:
        logger.exception("Result extraction failed")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=str(exc),
        ) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected optimization failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to optimize allocation",
        ) from exc
