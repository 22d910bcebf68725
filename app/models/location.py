"""Location model: restaurants, commissaries and other stock-holding sites."""
from enum import Enum
from datetime import datetime, timezone
from typing import Optional
import uuid

from sqlalchemy import String, Text, DateTime
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base


class LocationType(str, Enum):
    """Location type enum."""
    RESTAURANT = "RESTAURANT"
    COMMISSARY = "COMMISSARY"
    POP_UP = "POP_UP"
    WAREHOUSE = "WAREHOUSE"


class Location(Base):
    """A tenant-owned site that can receive allocations and transfers."""

    __tablename__ = "locations"

    id: Mapped[str] = mapped_column(String(50), primary_key=True, default=lambda: str(uuid.uuid4()))
    tenant_id: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    type: Mapped[str] = mapped_column(String(20), nullable=False, default=LocationType.RESTAURANT.value)
    address: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )

    def __repr__(self) -> str:
        return f"<Location(name='{self.name}', type='{self.type}')>"
