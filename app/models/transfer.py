"""Transfer models for location-to-location inventory movements."""
from enum import Enum
from datetime import datetime, timezone
from typing import Optional, Any
import uuid

from sqlalchemy import String, Text, Integer, DateTime, ForeignKey, CheckConstraint, JSON
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base


class TransferStatus(str, Enum):
    """Transfer status enum."""
    REQUESTED = "REQUESTED"  # Initial state
    APPROVED = "APPROVED"  # Approved by source location, ready to ship
    REJECTED = "REJECTED"  # Terminal
    SHIPPED = "SHIPPED"  # Goods left the source location
    RECEIVED = "RECEIVED"  # Terminal
    CANCELLED = "CANCELLED"  # Terminal


class TransferPriority(str, Enum):
    """Transfer priority enum."""
    NORMAL = "NORMAL"
    HIGH = "HIGH"
    EMERGENCY = "EMERGENCY"


class TransferAuditAction(str, Enum):
    """Actions recorded in the transfer audit trail."""
    CREATED = "CREATED"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    SHIPPED = "SHIPPED"
    RECEIVED = "RECEIVED"
    CANCELLED = "CANCELLED"


class Transfer(Base):
    """Inventory transfer of a single product between two locations."""

    __tablename__ = "transfers"
    __table_args__ = (
        CheckConstraint("source_location_id != destination_location_id", name="transfers_source_destination_check"),
        CheckConstraint("quantity_requested > 0", name="transfers_quantity_requested_check"),
        CheckConstraint("quantity_shipped >= 0", name="transfers_quantity_shipped_check"),
        CheckConstraint("quantity_received >= 0", name="transfers_quantity_received_check"),
    )

    id: Mapped[str] = mapped_column(String(50), primary_key=True, default=lambda: str(uuid.uuid4()))
    tenant_id: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    product_id: Mapped[str] = mapped_column(String(50), nullable=False, index=True)

    # Locations
    source_location_id: Mapped[str] = mapped_column(String(50), ForeignKey("locations.id"), nullable=False, index=True)
    destination_location_id: Mapped[str] = mapped_column(String(50), ForeignKey("locations.id"), nullable=False, index=True)

    # Quantities
    quantity_requested: Mapped[int] = mapped_column(Integer, nullable=False)
    quantity_shipped: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    quantity_received: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    status: Mapped[str] = mapped_column(String(20), nullable=False, default=TransferStatus.REQUESTED.value, index=True)
    priority: Mapped[str] = mapped_column(String(20), nullable=False, default=TransferPriority.NORMAL.value, index=True)

    # Users involved, one actor/timestamp pair per transition
    requested_by: Mapped[str] = mapped_column(String(50), nullable=False)
    requested_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    approved_by: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    approved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    rejected_by: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    rejected_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    shipped_by: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    shipped_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    received_by: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    received_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    cancelled_by: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    cancellation_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    rejection_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    variance_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )

    def __repr__(self) -> str:
        return f"<Transfer(id='{self.id}', status='{self.status}')>"


class TransferAuditLog(Base):
    """One row per executed transfer state transition."""

    __tablename__ = "transfer_audit_log"

    id: Mapped[str] = mapped_column(String(50), primary_key=True, default=lambda: str(uuid.uuid4()))
    tenant_id: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    transfer_id: Mapped[str] = mapped_column(String(50), ForeignKey("transfers.id"), nullable=False, index=True)

    action: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    old_status: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    new_status: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)

    # Change tracking
    old_values: Mapped[Optional[dict[str, Any]]] = mapped_column(JSON, nullable=True)
    new_values: Mapped[Optional[dict[str, Any]]] = mapped_column(JSON, nullable=True)

    performed_by: Mapped[str] = mapped_column(String(50), nullable=False)
    performed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Request metadata
    ip_address: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    user_agent: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    request_metadata: Mapped[Optional[dict[str, Any]]] = mapped_column(JSON, nullable=True)
