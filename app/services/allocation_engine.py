"""
Allocation Engine.

Splits a purchase-order line item's ordered quantity across destination
locations and checks that no line item is ever over-allocated.

Every operation is either pure arithmetic or issues one or two tenant-scoped
reads through the repository port. Nothing is cached between calls and
repository errors propagate to the caller untouched.

Rounding rule: per-location quantities are always rounded DOWN before they
are summed, so a distribution never hands out more than the total. Whatever
truncation leaves behind is reported as `remaining_quantity`.
"""
import logging
from collections import defaultdict
from decimal import Decimal
from typing import Dict, List, Optional, Sequence

from app.core.exceptions import NotFoundError, ValidationError
from app.models.allocation import AllocationStatus
from app.schemas.allocation import (
    AllocationChange,
    AllocationConstraints,
    AllocationInput,
    AllocationPlan,
    AllocationSnapshot,
    AllocationStrategy,
    DistributionResult,
    FixedAmountStrategy,
    LineItemSnapshot,
    LocationDistribution,
    LocationPercentage,
    LocationSnapshot,
    ManualStrategy,
    MathValidationResult,
    OptimizationResult,
    PercentageStrategy,
    PlannedAllocation,
)
from app.services.repository import RepositoryPort


logger = logging.getLogger(__name__)

PO_ITEM_NOT_FOUND = "PO item not found"
NON_POSITIVE_QUANTITY = "Allocation quantity must be greater than zero"
NO_MATCHING_LOCATION = "No requested percentage matches a target location"

# Penalty applied to a line item's improvement score per allocation capped at the maximum.
MAX_CAP_PENALTY = 10


def _as_decimal(value: float) -> Decimal:
    # str() keeps 33.33 as 33.33 instead of its binary expansion
    return Decimal(str(value))


def _format_percent(value: Decimal) -> str:
    if value == value.to_integral_value():
        return str(int(value))
    return format(value.normalize(), "f")


def optimization_score(accuracy: float, distributed: int, ordered: int) -> float:
    """
    Score a feasible per-item allocation on a 0-100 scale.

    Equal weight on distribution accuracy and on the share of the ordered
    quantity actually handed out. Infeasible plans never reach this
    function; they score 0.
    """
    fill = (distributed / ordered * 100) if ordered > 0 else 0.0
    return 0.5 * accuracy + 0.5 * fill


def _live(allocation: AllocationSnapshot) -> bool:
    return allocation.status != AllocationStatus.CANCELLED


class AllocationEngine:
    """Allocation math and planning over a tenant-scoped repository."""

    def __init__(self, repository: RepositoryPort):
        self.repository = repository

    # ------------------------------------------------------------------
    # Percentage distribution
    # ------------------------------------------------------------------

    def distribute_by_percentage(
        self,
        total_quantity: int,
        percentages: Sequence[LocationPercentage],
    ) -> DistributionResult:
        """
        Distribute `total_quantity` across locations by percentage.

        Raises:
            ValidationError: negative quantity or percentage, or percentages
                summing to more than 100.
        """
        if total_quantity < 0:
            raise ValidationError(f"Total quantity cannot be negative (got {total_quantity})")

        requested = [(lp.location_id, _as_decimal(lp.percentage)) for lp in percentages]
        for location_id, percent in requested:
            if percent < 0:
                raise ValidationError(f"Percentage for location {location_id} cannot be negative")

        total_percentage = sum((percent for _, percent in requested), Decimal("0"))
        if total_percentage > 100:
            raise ValidationError(f"Total percentage ({_format_percent(total_percentage)}%) exceeds 100%")

        if total_quantity == 0:
            return DistributionResult()

        quantity = Decimal(total_quantity)
        distributions = [
            LocationDistribution(
                location_id=location_id,
                allocated_quantity=int((quantity * percent) // 100),
                percentage=float(percent),
            )
            for location_id, percent in requested
        ]
        total_distributed = sum(d.allocated_quantity for d in distributions)

        return DistributionResult(
            distributions=distributions,
            total_distributed=total_distributed,
            remaining_quantity=max(0, total_quantity - total_distributed),
            distribution_accuracy=self._accuracy(percentages, distributions, total_quantity),
        )

    def validate_distribution_accuracy(
        self,
        requested: Sequence[LocationPercentage],
        actual: DistributionResult,
    ) -> float:
        """
        Score how closely `actual` matches `requested` (0-100).

        Achieved percentages are measured against what was actually
        distributed. Locations are matched by id; 0 when nothing overlaps.
        """
        if not requested or not actual.distributions or actual.total_distributed <= 0:
            return 0.0
        return self._accuracy(requested, actual.distributions, actual.total_distributed)

    @staticmethod
    def _accuracy(
        requested: Sequence[LocationPercentage],
        distributions: Sequence[LocationDistribution],
        base_quantity: int,
    ) -> float:
        if not requested or not distributions or base_quantity <= 0:
            return 0.0

        by_location = {d.location_id: d for d in distributions}
        deviations = []
        for req in requested:
            achieved = by_location.get(req.location_id)
            if achieved is None:
                continue
            achieved_percent = achieved.allocated_quantity / base_quantity * 100
            deviations.append(abs(req.percentage - achieved_percent))

        if not deviations:
            return 0.0
        return min(100.0, max(0.0, 100.0 - sum(deviations) / len(deviations)))

    # ------------------------------------------------------------------
    # Validation against a line item
    # ------------------------------------------------------------------

    async def validate_allocation_math(
        self,
        line_item_id: str,
        tenant_id: str,
        existing_allocations: Sequence[AllocationSnapshot],
        candidate: AllocationInput,
    ) -> MathValidationResult:
        """
        Check a candidate allocation against the line item's ordered quantity.

        Business-rule failures are reported in `errors`, never raised, so a
        form can show all of them at once.
        """
        line_item = await self.repository.get_line_item_by_id(line_item_id, tenant_id)
        if line_item is None:
            return MathValidationResult(valid=False, errors=[PO_ITEM_NOT_FOUND])

        ordered = line_item.quantity_ordered
        current_total = sum(
            a.quantity_allocated
            for a in existing_allocations
            if a.po_item_id == line_item_id and _live(a)
        )
        total_allocated = current_total + candidate.quantity_allocated

        errors: List[str] = []
        over_allocation: Optional[int] = None

        if candidate.quantity_allocated <= 0:
            errors.append(NON_POSITIVE_QUANTITY)

        if total_allocated > ordered:
            over_allocation = total_allocated - ordered
            errors.append(f"Over-allocation detected: {over_allocation} units exceed ordered quantity")

        if errors:
            logger.debug("Allocation rejected for line item %s: %s", line_item_id, errors)

        return MathValidationResult(
            valid=not errors,
            total_allocated=total_allocated,
            remaining_quantity=max(0, ordered - total_allocated),
            over_allocation=over_allocation,
            errors=errors,
        )

    async def calculate_unallocated_quantity(self, line_item_id: str, tenant_id: str) -> int:
        """Ordered quantity not yet covered by allocations, never negative."""
        line_item = await self.repository.get_line_item_by_id(line_item_id, tenant_id)
        if line_item is None:
            raise NotFoundError(PO_ITEM_NOT_FOUND)

        allocated = await self.repository.sum_allocated_quantity(line_item_id, tenant_id)
        return max(0, line_item.quantity_ordered - allocated)

    # ------------------------------------------------------------------
    # Planning
    # ------------------------------------------------------------------

    def calculate_optimal_allocation(
        self,
        line_items: Sequence[LineItemSnapshot],
        locations: Sequence[LocationSnapshot],
        strategy: AllocationStrategy,
    ) -> AllocationPlan:
        """Apply `strategy` to every line item over the given locations."""
        if not line_items or not locations:
            return AllocationPlan(allocations=[], unallocated_quantity=0, feasible=False, optimization_score=0.0)

        item_plans = [self._plan_line_item(item, locations, strategy) for item in line_items]

        allocations = [a for plan in item_plans for a in plan.allocations]
        errors = [e for plan in item_plans for e in plan.errors]
        feasible = all(plan.feasible for plan in item_plans) and self._plan_within_ordered(allocations, line_items)

        score = 0.0
        if feasible:
            score = sum(plan.optimization_score for plan in item_plans) / len(item_plans)

        return AllocationPlan(
            allocations=allocations,
            unallocated_quantity=sum(plan.unallocated_quantity for plan in item_plans),
            feasible=feasible,
            optimization_score=score,
            errors=errors,
        )

    def _plan_line_item(
        self,
        line_item: LineItemSnapshot,
        locations: Sequence[LocationSnapshot],
        strategy: AllocationStrategy,
    ) -> AllocationPlan:
        if isinstance(strategy, PercentageStrategy):
            return self._percentage_plan(line_item, locations, strategy)
        if isinstance(strategy, FixedAmountStrategy):
            return self._fixed_amount_plan(line_item, locations, strategy)
        if isinstance(strategy, ManualStrategy):
            # Allocations are entered by hand elsewhere.
            return AllocationPlan(
                allocations=[],
                unallocated_quantity=line_item.quantity_ordered,
                feasible=True,
                optimization_score=0.0,
            )
        raise ValidationError(f"Unsupported allocation strategy: {type(strategy).__name__}")

    def _percentage_plan(
        self,
        line_item: LineItemSnapshot,
        locations: Sequence[LocationSnapshot],
        strategy: PercentageStrategy,
    ) -> AllocationPlan:
        ordered = line_item.quantity_ordered
        try:
            percentages = [
                LocationPercentage(location_id=loc.id, percentage=strategy.location_percentages[loc.id])
                for loc in locations
                if strategy.location_percentages.get(loc.id, 0) != 0
            ]
            if not percentages:
                return self._infeasible(line_item, NO_MATCHING_LOCATION)
            distribution = self.distribute_by_percentage(ordered, percentages)
        except ValueError as e:
            # pydantic rejects negative percentages while building LocationPercentage
            return self._infeasible(line_item, f"Invalid percentage for line item {line_item.id}: {e}")
        except ValidationError as e:
            return self._infeasible(line_item, e.message)

        confidence = distribution.distribution_accuracy / 100
        allocations = [
            PlannedAllocation(
                po_item_id=line_item.id,
                target_location_id=d.location_id,
                quantity_allocated=d.allocated_quantity,
                confidence=confidence,
            )
            for d in distribution.distributions
            if d.allocated_quantity > 0
        ]
        return AllocationPlan(
            allocations=allocations,
            unallocated_quantity=distribution.remaining_quantity,
            feasible=True,
            optimization_score=optimization_score(
                distribution.distribution_accuracy, distribution.total_distributed, ordered
            ),
        )

    def _fixed_amount_plan(
        self,
        line_item: LineItemSnapshot,
        locations: Sequence[LocationSnapshot],
        strategy: FixedAmountStrategy,
    ) -> AllocationPlan:
        ordered = line_item.quantity_ordered
        allocations: List[PlannedAllocation] = []
        total_allocated = 0

        for location in locations:
            amount = strategy.location_amounts.get(location.id)
            if amount is None or amount == 0:
                continue
            if amount < 0:
                return self._infeasible(
                    line_item, f"Fixed amount for location {location.id} cannot be negative"
                )
            allocations.append(
                PlannedAllocation(
                    po_item_id=line_item.id,
                    target_location_id=location.id,
                    quantity_allocated=amount,
                    confidence=1.0,
                )
            )
            total_allocated += amount

        feasible = total_allocated <= ordered
        errors = []
        if not feasible:
            errors.append(
                f"Over-allocation detected: {total_allocated - ordered} units exceed ordered quantity"
            )

        return AllocationPlan(
            allocations=allocations,
            unallocated_quantity=max(0, ordered - total_allocated),
            feasible=feasible,
            # exact amounts: accuracy is 100 by construction
            optimization_score=optimization_score(100.0, total_allocated, ordered) if feasible else 0.0,
            errors=errors,
        )

    @staticmethod
    def _infeasible(line_item: LineItemSnapshot, error: str) -> AllocationPlan:
        logger.debug("Line item %s has no feasible allocation: %s", line_item.id, error)
        return AllocationPlan(
            allocations=[],
            unallocated_quantity=line_item.quantity_ordered,
            feasible=False,
            optimization_score=0.0,
            errors=[error],
        )

    @staticmethod
    def _plan_within_ordered(
        allocations: Sequence[PlannedAllocation],
        line_items: Sequence[LineItemSnapshot],
    ) -> bool:
        totals: Dict[str, int] = defaultdict(int)
        for allocation in allocations:
            totals[allocation.po_item_id] += allocation.quantity_allocated
        return all(totals[item.id] <= item.quantity_ordered for item in line_items)

    # ------------------------------------------------------------------
    # Balance optimisation
    # ------------------------------------------------------------------

    async def optimize_allocation_balance(
        self,
        current_allocations: Sequence[AllocationSnapshot],
        constraints: AllocationConstraints,
        tenant_id: Optional[str] = None,
    ) -> OptimizationResult:
        """
        Apply per-location min/max limits to existing allocations.

        With `tenant_id`, each line item is loaded so a raise to the minimum
        can be refused when it would exceed the ordered quantity.
        """
        by_item: Dict[str, List[AllocationSnapshot]] = defaultdict(list)
        for allocation in current_allocations:
            if _live(allocation):
                by_item[allocation.po_item_id].append(allocation)

        if not by_item:
            return OptimizationResult(optimized_allocations=list(current_allocations))

        changes: List[AllocationChange] = []
        errors: List[str] = []
        replacements: Dict[int, AllocationSnapshot] = {}
        scores: List[float] = []
        feasible = True

        for po_item_id, item_allocations in by_item.items():
            ordered: Optional[int] = None
            if tenant_id is not None:
                line_item = await self.repository.get_line_item_by_id(po_item_id, tenant_id)
                if line_item is None:
                    raise NotFoundError(PO_ITEM_NOT_FOUND)
                ordered = line_item.quantity_ordered

            item_score = 100
            item_changes: List[AllocationChange] = []
            capped: Dict[int, int] = {}
            raised: Dict[int, int] = {}

            for allocation in item_allocations:
                if constraints.allowed_locations is not None and allocation.target_location_id not in constraints.allowed_locations:
                    feasible = False
                    errors.append(
                        f"Location {allocation.target_location_id} is not an allowed destination "
                        f"for line item {po_item_id}"
                    )

                quantity = allocation.quantity_allocated
                if constraints.max_quantity_per_location and quantity > constraints.max_quantity_per_location:
                    quantity = constraints.max_quantity_per_location
                    item_score -= MAX_CAP_PENALTY
                capped[id(allocation)] = quantity
                if constraints.min_quantity_per_location and quantity < constraints.min_quantity_per_location:
                    quantity = constraints.min_quantity_per_location
                raised[id(allocation)] = quantity

            final = raised
            if ordered is not None and sum(raised.values()) > ordered:
                feasible = False
                errors.append(
                    f"Raising allocations to the minimum of {constraints.min_quantity_per_location} "
                    f"would exceed ordered quantity for line item {po_item_id}"
                )
                final = capped

            total_final = sum(final.values())
            if constraints.require_full_allocation and ordered is not None and total_final < ordered:
                feasible = False
                errors.append(f"Line item {po_item_id} has {ordered - total_final} units unallocated")

            for allocation in item_allocations:
                new_quantity = final[id(allocation)]
                if new_quantity == allocation.quantity_allocated:
                    continue
                item_changes.append(
                    AllocationChange(
                        allocation_id=allocation.id,
                        po_item_id=po_item_id,
                        target_location_id=allocation.target_location_id,
                        old_quantity=allocation.quantity_allocated,
                        new_quantity=new_quantity,
                        reason="Applied quantity constraints",
                    )
                )
                replacements[id(allocation)] = allocation.model_copy(update={"quantity_allocated": new_quantity})

            changes.extend(item_changes)
            scores.append(max(0, item_score))

        return OptimizationResult(
            optimized_allocations=[replacements.get(id(a), a) for a in current_allocations],
            improvement_score=sum(scores) / len(scores),
            changes=changes,
            feasible=feasible,
            errors=errors,
        )
