# Models module
from app.models.location import Location, LocationType
from app.models.purchase import PurchaseOrder, PurchaseOrderItem
from app.models.allocation import Allocation, AllocationStatus
from app.models.transfer import (
    Transfer,
    TransferAuditLog,
    TransferStatus,
    TransferPriority,
    TransferAuditAction,
)

__all__ = [
    "Location",
    "LocationType",
    "PurchaseOrder",
    "PurchaseOrderItem",
    "Allocation",
    "AllocationStatus",
    "Transfer",
    "TransferAuditLog",
    "TransferStatus",
    "TransferPriority",
    "TransferAuditAction",
]
