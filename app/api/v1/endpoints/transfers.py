"""Transfer API endpoints."""
from typing import Optional

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from app.api.deps import Auth, Transfers, build_transition_context
from app.schemas.transfer import (
    ErrorResponse,
    ReceivingData,
    TransferActionResponse,
    TransferApproval,
    TransferCancel,
    TransferReceive,
    TransferRejection,
    TransferShip,
    TransferTransitionsResponse,
)
from app.services.transfer_service import (
    TRANSFER_NOT_FOUND,
    TRANSFER_NOT_FOUND_MESSAGE,
    TransitionOutcome,
)


router = APIRouter(tags=["Transfers"])


def _not_found() -> JSONResponse:
    return JSONResponse(
        status_code=404,
        content=ErrorResponse(error=TRANSFER_NOT_FOUND, message=TRANSFER_NOT_FOUND_MESSAGE).model_dump(),
    )


def _respond(outcome: TransitionOutcome) -> JSONResponse:
    if outcome.success:
        body = TransferActionResponse(
            data=outcome.transfer,
            message=outcome.message,
            warnings=outcome.warnings,
        )
    else:
        body = ErrorResponse(error=outcome.error, message=outcome.message)
    return JSONResponse(status_code=outcome.status_code, content=body.model_dump(mode="json"))


@router.get(
    "/{transfer_id}",
    response_model=TransferActionResponse,
    responses={404: {"model": ErrorResponse}},
)
async def get_transfer(transfer_id: str, auth: Auth, service: Transfers):
    """Get transfer by ID."""
    transfer = await service.get_transfer(transfer_id, auth.tenant_id)
    if transfer is None:
        return _not_found()
    return TransferActionResponse(data=transfer, message="Transfer retrieved successfully")


@router.get(
    "/{transfer_id}/transitions",
    response_model=TransferTransitionsResponse,
    responses={404: {"model": ErrorResponse}},
)
async def get_transfer_transitions(transfer_id: str, auth: Auth, service: Transfers):
    """Statuses the transfer can move to next."""
    found = await service.get_valid_transitions(transfer_id, auth.tenant_id)
    if found is None:
        return _not_found()
    transfer, transitions = found
    return TransferTransitionsResponse(
        transfer_id=transfer.id,
        current_status=transfer.status,
        valid_transitions=sorted(transitions, key=lambda s: s.value),
    )


@router.post(
    "/{transfer_id}/approve",
    response_model=TransferActionResponse,
    responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
async def approve_transfer(
    transfer_id: str,
    request: Request,
    auth: Auth,
    service: Transfers,
    data: Optional[TransferApproval] = None,
):
    """Approve a transfer request."""
    context = build_transition_context(request, auth, reason=data.notes if data else None)
    return _respond(await service.approve(transfer_id, context))


@router.post(
    "/{transfer_id}/reject",
    response_model=TransferActionResponse,
    responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
async def reject_transfer(
    transfer_id: str,
    data: TransferRejection,
    request: Request,
    auth: Auth,
    service: Transfers,
):
    """Reject a transfer request."""
    context = build_transition_context(request, auth, reason=data.reason)
    return _respond(await service.reject(transfer_id, context))


@router.post(
    "/{transfer_id}/ship",
    response_model=TransferActionResponse,
    responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
async def ship_transfer(
    transfer_id: str,
    request: Request,
    auth: Auth,
    service: Transfers,
    data: Optional[TransferShip] = None,
):
    """Mark an approved transfer as shipped."""
    data = data or TransferShip()
    context = build_transition_context(request, auth, reason=data.shipping_notes)
    return _respond(await service.ship(transfer_id, context, quantity_shipped=data.quantity_shipped))


@router.post(
    "/{transfer_id}/receive",
    response_model=TransferActionResponse,
    responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
async def receive_transfer(
    transfer_id: str,
    data: TransferReceive,
    request: Request,
    auth: Auth,
    service: Transfers,
):
    """Confirm receipt of a shipped transfer, recording any shortfall."""
    context = build_transition_context(request, auth, reason=data.notes)
    receiving = ReceivingData(
        quantity_received=data.quantity_received,
        variance_reason=data.variance_reason,
    )
    return _respond(await service.receive(transfer_id, context, receiving))


@router.post(
    "/{transfer_id}/cancel",
    response_model=TransferActionResponse,
    responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
async def cancel_transfer(
    transfer_id: str,
    data: TransferCancel,
    request: Request,
    auth: Auth,
    service: Transfers,
):
    """Cancel a transfer. Only REQUESTED and APPROVED transfers can be cancelled."""
    context = build_transition_context(request, auth, reason=data.reason)
    return _respond(await service.cancel(transfer_id, context))
