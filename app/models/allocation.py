"""Allocation model: part of a line item's ordered quantity assigned to a location."""
from enum import Enum
from datetime import datetime, timezone
from typing import Optional
import uuid

from sqlalchemy import String, Text, Integer, DateTime, ForeignKey, CheckConstraint
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base


class AllocationStatus(str, Enum):
    """Allocation status enum."""
    PENDING = "PENDING"
    ALLOCATED = "ALLOCATED"
    PARTIALLY_RECEIVED = "PARTIALLY_RECEIVED"
    RECEIVED = "RECEIVED"
    CANCELLED = "CANCELLED"


class Allocation(Base):
    """Allocation of a PO line item quantity to a target location."""

    __tablename__ = "allocations"
    __table_args__ = (
        CheckConstraint("quantity_allocated > 0", name="allocations_quantity_allocated_check"),
        CheckConstraint("quantity_received >= 0", name="allocations_quantity_received_check"),
    )

    id: Mapped[str] = mapped_column(String(50), primary_key=True, default=lambda: str(uuid.uuid4()))
    tenant_id: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    po_item_id: Mapped[str] = mapped_column(
        String(50),
        ForeignKey("po_items.id"),
        nullable=False,
        index=True,
    )
    target_location_id: Mapped[str] = mapped_column(
        String(50),
        ForeignKey("locations.id"),
        nullable=False,
        index=True,
    )
    quantity_allocated: Mapped[int] = mapped_column(Integer, nullable=False)
    quantity_received: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    status: Mapped[str] = mapped_column(String(30), nullable=False, default=AllocationStatus.PENDING.value)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_by: Mapped[str] = mapped_column(String(50), nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )
