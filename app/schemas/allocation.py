"""Allocation schemas: engine inputs/outputs and API request bodies."""
from datetime import datetime
from decimal import Decimal
from typing import Annotated, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field

from app.models.allocation import AllocationStatus
from app.models.location import LocationType
from app.schemas.base import BaseCreateSchema, BaseResponseSchema, SnapshotSchema


# ==================== ENTITY SNAPSHOTS ====================

class LineItemSnapshot(SnapshotSchema):
    """Purchase order line item as seen by the allocation engine."""
    id: str
    purchase_order_id: str
    product_id: str
    quantity_ordered: int = Field(..., gt=0)
    unit_price: Decimal = Decimal("0")
    line_total: Decimal = Decimal("0")
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class LocationSnapshot(SnapshotSchema):
    """Destination location."""
    id: str
    tenant_id: str
    name: str
    type: LocationType = LocationType.RESTAURANT
    address: Optional[str] = None


class AllocationSnapshot(SnapshotSchema):
    """An allocation row that already exists for a line item."""
    id: Optional[str] = None
    tenant_id: Optional[str] = None
    po_item_id: str
    target_location_id: str
    quantity_allocated: int
    quantity_received: int = 0
    status: AllocationStatus = AllocationStatus.ALLOCATED
    created_by: Optional[str] = None


class AllocationInput(BaseModel):
    """Candidate allocation to validate against a line item."""
    target_location_id: str
    quantity_allocated: int


# ==================== PERCENTAGE DISTRIBUTION ====================

class LocationPercentage(BaseModel):
    """Requested share of a quantity for one location."""
    location_id: str
    percentage: float = Field(..., ge=0)


class LocationDistribution(BaseModel):
    """Achieved allocation for one location."""
    location_id: str
    allocated_quantity: int
    percentage: float


class DistributionResult(BaseModel):
    """Outcome of splitting a quantity by percentage."""
    distributions: List[LocationDistribution] = Field(default_factory=list)
    total_distributed: int = 0
    remaining_quantity: int = 0
    distribution_accuracy: float = 0.0


class MathValidationResult(BaseModel):
    """Structured verdict on a candidate allocation. Callers render `errors` as field errors."""
    valid: bool
    total_allocated: int = 0
    remaining_quantity: int = 0
    over_allocation: Optional[int] = None
    errors: List[str] = Field(default_factory=list)


# ==================== STRATEGIES ====================

class ManualStrategy(BaseModel):
    """Allocations are entered one by one; the engine computes nothing."""
    type: Literal["MANUAL"] = "MANUAL"


class PercentageStrategy(BaseModel):
    """Split each line item by percentage per location."""
    type: Literal["PERCENTAGE"] = "PERCENTAGE"
    location_percentages: Dict[str, float] = Field(default_factory=dict)


class FixedAmountStrategy(BaseModel):
    """Allocate exact integer quantities per location."""
    type: Literal["FIXED_AMOUNT"] = "FIXED_AMOUNT"
    location_amounts: Dict[str, int] = Field(default_factory=dict)


AllocationStrategy = Annotated[
    Union[ManualStrategy, PercentageStrategy, FixedAmountStrategy],
    Field(discriminator="type"),
]


# ==================== PLANS ====================

class PlannedAllocation(BaseModel):
    """Allocation proposed by a plan, not yet persisted."""
    po_item_id: str
    target_location_id: str
    quantity_allocated: int
    confidence: float = Field(..., ge=0, le=1)


class AllocationPlan(BaseModel):
    """Outcome of applying a strategy to line items and locations."""
    allocations: List[PlannedAllocation] = Field(default_factory=list)
    unallocated_quantity: int = 0
    feasible: bool = False
    optimization_score: float = 0.0
    errors: List[str] = Field(default_factory=list)


# ==================== BALANCE OPTIMISATION ====================

class AllocationConstraints(BaseModel):
    """Limits applied when rebalancing existing allocations."""
    max_quantity_per_location: Optional[int] = Field(None, gt=0)
    min_quantity_per_location: Optional[int] = Field(None, gt=0)
    allowed_locations: Optional[List[str]] = None
    require_full_allocation: bool = False


class AllocationChange(BaseModel):
    allocation_id: Optional[str] = None
    po_item_id: str
    target_location_id: str
    old_quantity: int
    new_quantity: int
    reason: str


class OptimizationResult(BaseModel):
    optimized_allocations: List[AllocationSnapshot] = Field(default_factory=list)
    improvement_score: float = 0.0
    changes: List[AllocationChange] = Field(default_factory=list)
    feasible: bool = True
    errors: List[str] = Field(default_factory=list)


# ==================== API REQUEST / RESPONSE ====================

class DistributeRequest(BaseCreateSchema):
    total_quantity: int = Field(..., ge=0)
    percentages: List[LocationPercentage] = Field(default_factory=list)


class AllocationValidationRequest(BaseCreateSchema):
    line_item_id: str
    existing_allocations: List[AllocationSnapshot] = Field(default_factory=list)
    candidate: AllocationInput


class AllocationPlanRequest(BaseCreateSchema):
    line_items: List[LineItemSnapshot] = Field(default_factory=list)
    locations: List[LocationSnapshot] = Field(default_factory=list)
    strategy: AllocationStrategy


class AllocationOptimizeRequest(BaseCreateSchema):
    allocations: List[AllocationSnapshot] = Field(default_factory=list)
    constraints: AllocationConstraints = Field(default_factory=AllocationConstraints)


class UnallocatedQuantityResponse(BaseResponseSchema):
    line_item_id: str
    unallocated_quantity: int
