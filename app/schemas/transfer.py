"""Transfer schemas for the state machine and the API."""
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from app.models.transfer import TransferStatus, TransferPriority, TransferAuditAction
from app.schemas.base import BaseCreateSchema, SnapshotSchema


# ==================== SNAPSHOT ====================

class TransferRequest(SnapshotSchema):
    """Immutable view of a transfer. The state machine returns a new one per transition."""
    id: str
    tenant_id: str
    product_id: str
    source_location_id: str
    destination_location_id: str

    quantity_requested: int = Field(..., gt=0)
    quantity_shipped: int = Field(0, ge=0)
    quantity_received: int = Field(0, ge=0)

    status: TransferStatus = TransferStatus.REQUESTED
    priority: TransferPriority = TransferPriority.NORMAL

    requested_by: str
    requested_at: Optional[datetime] = None
    approved_by: Optional[str] = None
    approved_at: Optional[datetime] = None
    rejected_by: Optional[str] = None
    rejected_at: Optional[datetime] = None
    shipped_by: Optional[str] = None
    shipped_at: Optional[datetime] = None
    received_by: Optional[str] = None
    received_at: Optional[datetime] = None
    cancelled_by: Optional[str] = None
    cancelled_at: Optional[datetime] = None

    cancellation_reason: Optional[str] = None
    rejection_reason: Optional[str] = None
    variance_reason: Optional[str] = None
    notes: Optional[str] = None

    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @model_validator(mode="after")
    def check_quantities(self):
        if self.quantity_shipped > self.quantity_requested:
            raise ValueError("quantity_shipped cannot exceed quantity_requested")
        if self.quantity_received > self.quantity_shipped:
            raise ValueError("quantity_received cannot exceed quantity_shipped")
        return self


# ==================== STATE MACHINE INPUTS / OUTPUTS ====================

class TransitionContext(BaseModel):
    """Who is asking, for which tenant, and request metadata kept for audit."""
    model_config = {"frozen": True}

    user_id: str
    tenant_id: str
    reason: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


class ShippingData(BaseModel):
    quantity_shipped: Optional[int] = Field(None, gt=0)


class ReceivingData(BaseModel):
    quantity_received: int
    variance_reason: Optional[str] = None
    received_at: Optional[datetime] = None


class TransitionValidation(BaseModel):
    valid: bool = True
    errors: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    required_fields: List[str] = Field(default_factory=list)


class TransferAuditEntry(BaseModel):
    """Audit record for one executed transition; persisted by the caller."""
    tenant_id: str
    transfer_id: str
    action: TransferAuditAction
    old_status: TransferStatus
    new_status: TransferStatus
    old_values: Dict[str, Any]
    new_values: Dict[str, Any]
    performed_by: str
    performed_at: datetime
    notes: str
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    request_metadata: Dict[str, Any] = Field(default_factory=dict)


# ==================== API REQUEST BODIES ====================

class _ReasonBody(BaseCreateSchema):
    reason: str = Field(..., min_length=1)

    @field_validator("reason")
    @classmethod
    def reason_not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("reason must not be blank")
        return v


class TransferCancel(_ReasonBody):
    """Transfer cancellation request."""


class TransferRejection(_ReasonBody):
    """Transfer rejection request."""


class TransferApproval(BaseCreateSchema):
    """Transfer approval request."""
    notes: Optional[str] = None


class TransferShip(BaseCreateSchema):
    """Transfer shipping request."""
    quantity_shipped: Optional[int] = Field(None, gt=0)
    shipping_notes: Optional[str] = None


class TransferReceive(BaseCreateSchema):
    """Transfer receipt confirmation."""
    quantity_received: int = Field(..., ge=0)
    variance_reason: Optional[str] = None
    notes: Optional[str] = None


# ==================== API RESPONSES ====================

class TransferActionResponse(BaseModel):
    success: bool = True
    data: Optional[TransferRequest] = None
    message: str
    warnings: List[str] = Field(default_factory=list)


class TransferTransitionsResponse(BaseModel):
    success: bool = True
    transfer_id: str
    current_status: TransferStatus
    valid_transitions: List[TransferStatus]


class ErrorResponse(BaseModel):
    success: bool = False
    error: str
    message: str
