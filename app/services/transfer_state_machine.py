"""
Transfer State Machine

This module is the SINGLE SOURCE OF TRUTH for transfer status transitions.

    REQUESTED -> APPROVED | REJECTED | CANCELLED
    APPROVED  -> SHIPPED | CANCELLED
    SHIPPED   -> RECEIVED
    RECEIVED, REJECTED, CANCELLED are terminal.

`execute_transition` is pure: it takes a snapshot, returns a new snapshot and
never writes anything. Persisting the result (and the audit entry from
`build_audit_entry`) is the caller's job, with a conditional write keyed on
the status that was read.
"""
import logging
from datetime import datetime, timezone
from typing import Dict, FrozenSet, Optional

from app.config import settings
from app.core.exceptions import AuthorizationError, ValidationError
from app.models.transfer import TransferAuditAction, TransferStatus
from app.schemas.transfer import (
    ReceivingData,
    ShippingData,
    TransferAuditEntry,
    TransferRequest,
    TransitionContext,
    TransitionValidation,
)


logger = logging.getLogger(__name__)


# =============================================================================
# TRANSITION RULES
# =============================================================================

TRANSFER_TRANSITIONS: Dict[TransferStatus, FrozenSet[TransferStatus]] = {
    TransferStatus.REQUESTED: frozenset({
        TransferStatus.APPROVED,    # Source location agrees to send
        TransferStatus.REJECTED,    # Source location declines
        TransferStatus.CANCELLED,   # Requester withdraws
    }),
    TransferStatus.APPROVED: frozenset({
        TransferStatus.SHIPPED,
        TransferStatus.CANCELLED,
    }),
    TransferStatus.SHIPPED: frozenset({
        TransferStatus.RECEIVED,    # Shortfall is recorded as variance, not cancellation
    }),
    TransferStatus.RECEIVED: frozenset(),
    TransferStatus.REJECTED: frozenset(),
    TransferStatus.CANCELLED: frozenset(),
}

# Verb used in error messages, e.g. "Cannot cancel transfer in SHIPPED status"
TRANSITION_VERBS: Dict[TransferStatus, str] = {
    TransferStatus.REQUESTED: "request",
    TransferStatus.APPROVED: "approve",
    TransferStatus.REJECTED: "reject",
    TransferStatus.SHIPPED: "ship",
    TransferStatus.RECEIVED: "receive",
    TransferStatus.CANCELLED: "cancel",
}

_REASON_REQUIRED = frozenset({TransferStatus.CANCELLED, TransferStatus.REJECTED})


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def get_valid_transitions(current_status: TransferStatus) -> FrozenSet[TransferStatus]:
    """Statuses reachable in one step from `current_status`."""
    return TRANSFER_TRANSITIONS.get(TransferStatus(current_status), frozenset())


def can_transition(current_status: TransferStatus, new_status: TransferStatus) -> bool:
    """Check if a transition is allowed."""
    return TransferStatus(new_status) in get_valid_transitions(current_status)


def is_terminal(status: TransferStatus) -> bool:
    return not get_valid_transitions(status)


def illegal_transition_message(current_status: TransferStatus, new_status: TransferStatus) -> str:
    current = TransferStatus(current_status)
    target = TransferStatus(new_status)
    message = f"Cannot {TRANSITION_VERBS[target]} transfer in {current.value} status"
    allowed = sorted(s.value for s in get_valid_transitions(current))
    if not allowed:
        return f"{message}. This is a terminal state."
    return f"{message}. Allowed transitions: {', '.join(allowed)}"


def _blank(value: Optional[str]) -> bool:
    return value is None or not value.strip()


# =============================================================================
# VALIDATION
# =============================================================================

def validate_transition(
    transfer: TransferRequest,
    new_status: TransferStatus,
    context: TransitionContext,
    shipping: Optional[ShippingData] = None,
    receiving: Optional[ReceivingData] = None,
) -> TransitionValidation:
    """
    Check a transition without applying it.

    Returns every problem found for the first failing stage rather than
    raising, so callers can show them together.
    """
    new_status = TransferStatus(new_status)
    result = TransitionValidation()

    if transfer.tenant_id != context.tenant_id:
        result.valid = False
        result.errors.append("Transfer does not belong to the specified tenant")
        return result

    if not can_transition(transfer.status, new_status):
        result.valid = False
        result.errors.append(illegal_transition_message(transfer.status, new_status))
        return result

    if _blank(context.user_id):
        result.valid = False
        result.errors.append("User ID is required for state transitions")
        return result

    if new_status in _REASON_REQUIRED and _blank(context.reason):
        result.valid = False
        label = "Cancellation" if new_status == TransferStatus.CANCELLED else "Rejection"
        result.errors.append(f"{label} reason is required")
        result.required_fields.append("reason")

    elif new_status == TransferStatus.SHIPPED:
        quantity = shipping.quantity_shipped if shipping and shipping.quantity_shipped else transfer.quantity_requested
        if quantity > transfer.quantity_requested:
            result.valid = False
            result.errors.append(
                f"Quantity shipped ({quantity}) cannot exceed quantity requested ({transfer.quantity_requested})"
            )

    elif new_status == TransferStatus.RECEIVED:
        _validate_receipt(transfer, receiving, result)

    return result


def _validate_receipt(
    transfer: TransferRequest,
    receiving: Optional[ReceivingData],
    result: TransitionValidation,
) -> None:
    if receiving is None:
        result.valid = False
        result.errors.append("Receiving data is required for receipt confirmation")
        result.required_fields.append("receiving")
        return

    if receiving.quantity_received < 0:
        result.valid = False
        result.errors.append("Quantity received cannot be negative")
        return

    if receiving.quantity_received > transfer.quantity_shipped:
        result.valid = False
        result.errors.append(
            f"Quantity received ({receiving.quantity_received}) cannot exceed "
            f"quantity shipped ({transfer.quantity_shipped})"
        )
        return

    variance = transfer.quantity_shipped - receiving.quantity_received
    if variance > 0 and _blank(receiving.variance_reason):
        result.warnings.append(
            f"Shrinkage detected: {variance} units. "
            f"Consider providing a variance reason for audit purposes."
        )


# =============================================================================
# TRANSITION EXECUTOR
# =============================================================================

def execute_transition(
    transfer: TransferRequest,
    new_status: TransferStatus,
    context: TransitionContext,
    shipping: Optional[ShippingData] = None,
    receiving: Optional[ReceivingData] = None,
    now: Optional[datetime] = None,
) -> TransferRequest:
    """
    Move a transfer to `new_status` and return the new snapshot.

    The input snapshot is left untouched and nothing is persisted.

    Raises:
        AuthorizationError: context tenant does not own the transfer
        ValidationError: illegal transition or missing/invalid transition data
    """
    new_status = TransferStatus(new_status)

    if transfer.tenant_id != context.tenant_id:
        logger.warning(
            "Tenant %s attempted to move transfer %s owned by another tenant",
            context.tenant_id, transfer.id,
        )
        raise AuthorizationError("Transfer does not belong to the specified tenant")

    validation = validate_transition(transfer, new_status, context, shipping=shipping, receiving=receiving)
    if not validation.valid:
        raise ValidationError("; ".join(validation.errors), errors=validation.errors)

    for warning in validation.warnings:
        logger.info("Transfer %s: %s", transfer.id, warning)

    now = now or datetime.now(timezone.utc)
    updates = {"status": new_status, "updated_at": now}

    if new_status == TransferStatus.APPROVED:
        updates["approved_by"] = context.user_id
        updates["approved_at"] = now

    elif new_status == TransferStatus.REJECTED:
        updates["rejected_by"] = context.user_id
        updates["rejected_at"] = now
        updates["rejection_reason"] = context.reason.strip()

    elif new_status == TransferStatus.CANCELLED:
        updates["cancelled_by"] = context.user_id
        updates["cancelled_at"] = now
        updates["cancellation_reason"] = context.reason.strip()

    elif new_status == TransferStatus.SHIPPED:
        updates["shipped_by"] = context.user_id
        updates["shipped_at"] = now
        updates["quantity_shipped"] = (
            shipping.quantity_shipped if shipping and shipping.quantity_shipped else transfer.quantity_requested
        )

    elif new_status == TransferStatus.RECEIVED:
        updates["received_by"] = context.user_id
        updates["received_at"] = receiving.received_at or now
        updates["quantity_received"] = receiving.quantity_received
        if transfer.quantity_shipped - receiving.quantity_received > 0:
            updates["variance_reason"] = receiving.variance_reason or settings.DEFAULT_VARIANCE_REASON

    # Reason doubles as the transition note except where it has a dedicated column
    if not _blank(context.reason) and new_status not in _REASON_REQUIRED:
        updates["notes"] = context.reason.strip()

    logger.debug("Transfer %s: %s -> %s by %s", transfer.id, transfer.status.value, new_status.value, context.user_id)
    return TransferRequest.model_validate({**transfer.model_dump(), **updates})


# =============================================================================
# AUDIT
# =============================================================================

def build_audit_entry(
    before: TransferRequest,
    after: TransferRequest,
    context: TransitionContext,
) -> TransferAuditEntry:
    """Audit record for an executed transition, carrying the request metadata."""
    return TransferAuditEntry(
        tenant_id=context.tenant_id,
        transfer_id=after.id,
        action=TransferAuditAction(after.status.value),
        old_status=before.status,
        new_status=after.status,
        old_values=before.model_dump(mode="json"),
        new_values=after.model_dump(mode="json"),
        performed_by=context.user_id,
        performed_at=after.updated_at or datetime.now(timezone.utc),
        notes=audit_notes(before, after, context),
        ip_address=context.ip_address,
        user_agent=context.user_agent,
        request_metadata=dict(context.metadata),
    )


def audit_notes(before: TransferRequest, after: TransferRequest, context: TransitionContext) -> str:
    """Human-readable description of a transition."""
    status_change = f"Status changed from {before.status.value} to {after.status.value}"

    if after.status == TransferStatus.APPROVED:
        return f"{status_change}. Transfer approved" + (f": {context.reason}" if context.reason else "")

    if after.status == TransferStatus.REJECTED:
        return f"{status_change}. Transfer rejected: {after.rejection_reason}"

    if after.status == TransferStatus.CANCELLED:
        return f"{status_change}. Transfer cancelled: {after.cancellation_reason}"

    if after.status == TransferStatus.SHIPPED:
        note = f"{status_change}. Transfer shipped ({after.quantity_shipped} units)"
        return note + (f". Notes: {context.reason}" if context.reason else "")

    if after.status == TransferStatus.RECEIVED:
        variance = after.quantity_shipped - after.quantity_received
        note = f"{status_change}. Transfer received ({after.quantity_received} units)"
        if variance > 0:
            note += f" with {variance} units shrinkage ({after.variance_reason})"
        return note

    return status_change
