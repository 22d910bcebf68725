"""
Repository port consumed by the allocation engine and the transfer services.

The engine and state machine only ever see `RepositoryPort`; production wires
in `SqlAlchemyRepository`, tests wire in in-memory fakes.
"""
import logging
from datetime import datetime, timezone
from typing import Optional, Protocol, runtime_checkable

from sqlalchemy import select, func, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import ConcurrentModificationError, NotFoundError
from app.models.allocation import Allocation, AllocationStatus
from app.models.purchase import PurchaseOrder, PurchaseOrderItem
from app.models.transfer import Transfer, TransferAuditLog, TransferStatus
from app.schemas.allocation import LineItemSnapshot
from app.schemas.transfer import TransferAuditEntry, TransferRequest


logger = logging.getLogger(__name__)


@runtime_checkable
class RepositoryPort(Protocol):
    """Tenant-scoped reads for the core plus the writes the caller performs."""

    async def get_line_item_by_id(self, line_item_id: str, tenant_id: str) -> Optional[LineItemSnapshot]:
        ...

    async def sum_allocated_quantity(self, line_item_id: str, tenant_id: str) -> int:
        ...

    async def get_transfer_by_id(self, transfer_id: str, tenant_id: str) -> Optional[TransferRequest]:
        ...

    async def persist_transfer(
        self,
        transfer: TransferRequest,
        expected_status: Optional[TransferStatus] = None,
    ) -> None:
        ...

    async def record_transfer_audit(self, entry: TransferAuditEntry) -> None:
        ...


# Columns the state machine may change; everything else is fixed at creation.
_MUTABLE_TRANSFER_FIELDS = (
    "status",
    "quantity_shipped",
    "quantity_received",
    "approved_by",
    "approved_at",
    "rejected_by",
    "rejected_at",
    "shipped_by",
    "shipped_at",
    "received_by",
    "received_at",
    "cancelled_by",
    "cancelled_at",
    "cancellation_reason",
    "rejection_reason",
    "variance_reason",
    "notes",
    "updated_at",
)


class SqlAlchemyRepository:
    """RepositoryPort backed by an async SQLAlchemy session."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_line_item_by_id(self, line_item_id: str, tenant_id: str) -> Optional[LineItemSnapshot]:
        """Get a PO line item, scoped through its purchase order's tenant."""
        query = (
            select(PurchaseOrderItem)
            .join(PurchaseOrder, PurchaseOrderItem.purchase_order_id == PurchaseOrder.id)
            .where(
                PurchaseOrderItem.id == line_item_id,
                PurchaseOrder.tenant_id == tenant_id,
            )
        )
        result = await self.db.execute(query)
        item = result.scalar_one_or_none()
        if item is None:
            return None
        return LineItemSnapshot.model_validate(item)

    async def sum_allocated_quantity(self, line_item_id: str, tenant_id: str) -> int:
        """Sum quantity_allocated over live (non-cancelled) allocations for the line item."""
        query = select(func.coalesce(func.sum(Allocation.quantity_allocated), 0)).where(
            Allocation.po_item_id == line_item_id,
            Allocation.tenant_id == tenant_id,
            Allocation.status != AllocationStatus.CANCELLED.value,
        )
        total = await self.db.scalar(query)
        return int(total or 0)

    async def get_transfer_by_id(self, transfer_id: str, tenant_id: str) -> Optional[TransferRequest]:
        query = select(Transfer).where(
            Transfer.id == transfer_id,
            Transfer.tenant_id == tenant_id,
        )
        result = await self.db.execute(query)
        transfer = result.scalar_one_or_none()
        if transfer is None:
            return None
        return TransferRequest.model_validate(transfer)

    async def persist_transfer(
        self,
        transfer: TransferRequest,
        expected_status: Optional[TransferStatus] = None,
    ) -> None:
        """
        Write a transfer snapshot back.

        With `expected_status` the UPDATE is conditional on the row still being
        in that status; zero affected rows means another request won the race.
        """
        values = {field: getattr(transfer, field) for field in _MUTABLE_TRANSFER_FIELDS}
        values["status"] = transfer.status.value
        if values["updated_at"] is None:
            values["updated_at"] = datetime.now(timezone.utc)

        conditions = [
            Transfer.id == transfer.id,
            Transfer.tenant_id == transfer.tenant_id,
        ]
        if expected_status is not None:
            conditions.append(Transfer.status == TransferStatus(expected_status).value)

        result = await self.db.execute(
            update(Transfer).where(*conditions).values(**values)
        )
        if result.rowcount == 0:
            exists = await self.db.scalar(
                select(func.count()).select_from(Transfer).where(
                    Transfer.id == transfer.id,
                    Transfer.tenant_id == transfer.tenant_id,
                )
            )
            if not exists:
                raise NotFoundError("Transfer not found")
            logger.warning(
                "Conditional write lost for transfer %s (expected %s)",
                transfer.id, expected_status,
            )
            raise ConcurrentModificationError(
                f"Transfer {transfer.id} was modified concurrently"
            )
        await self.db.flush()

    async def record_transfer_audit(self, entry: TransferAuditEntry) -> None:
        audit_log = TransferAuditLog(
            tenant_id=entry.tenant_id,
            transfer_id=entry.transfer_id,
            action=entry.action.value,
            old_status=entry.old_status.value,
            new_status=entry.new_status.value,
            old_values=entry.old_values,
            new_values=entry.new_values,
            performed_by=entry.performed_by,
            performed_at=entry.performed_at,
            notes=entry.notes,
            ip_address=entry.ip_address,
            user_agent=entry.user_agent,
            request_metadata=entry.request_metadata or None,
        )
        self.db.add(audit_log)
        await self.db.flush()
