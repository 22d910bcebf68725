"""Allocation API endpoints: distribution math, validation and planning."""
from fastapi import APIRouter

from app.api.deps import Auth, Engine
from app.schemas.allocation import (
    AllocationOptimizeRequest,
    AllocationPlan,
    AllocationPlanRequest,
    AllocationValidationRequest,
    DistributeRequest,
    DistributionResult,
    MathValidationResult,
    OptimizationResult,
    UnallocatedQuantityResponse,
)


router = APIRouter(tags=["Allocations"])


@router.post("/distribute", response_model=DistributionResult)
async def distribute_by_percentage(data: DistributeRequest, auth: Auth, engine: Engine):
    """
    Split a quantity across locations by percentage.

    Quantities are rounded down per location; the leftover is returned as
    remaining_quantity. Percentages over 100% in total are rejected with 400.
    """
    return engine.distribute_by_percentage(data.total_quantity, data.percentages)


@router.post("/validate", response_model=MathValidationResult)
async def validate_allocation(data: AllocationValidationRequest, auth: Auth, engine: Engine):
    """Check a candidate allocation against the line item's ordered quantity."""
    return await engine.validate_allocation_math(
        data.line_item_id,
        auth.tenant_id,
        data.existing_allocations,
        data.candidate,
    )


@router.post("/plan", response_model=AllocationPlan)
async def plan_allocation(data: AllocationPlanRequest, auth: Auth, engine: Engine):
    """Apply an allocation strategy to line items and locations."""
    return engine.calculate_optimal_allocation(data.line_items, data.locations, data.strategy)


@router.post("/optimize", response_model=OptimizationResult)
async def optimize_allocations(data: AllocationOptimizeRequest, auth: Auth, engine: Engine):
    """Apply per-location min/max limits to existing allocations."""
    return await engine.optimize_allocation_balance(
        data.allocations,
        data.constraints,
        tenant_id=auth.tenant_id,
    )


@router.get("/line-items/{line_item_id}/unallocated", response_model=UnallocatedQuantityResponse)
async def get_unallocated_quantity(line_item_id: str, auth: Auth, engine: Engine):
    """Ordered quantity of a line item not yet allocated."""
    unallocated = await engine.calculate_unallocated_quantity(line_item_id, auth.tenant_id)
    return UnallocatedQuantityResponse(line_item_id=line_item_id, unallocated_quantity=unallocated)
