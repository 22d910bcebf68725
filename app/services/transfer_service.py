"""Transfer Service: load, transition, persist and audit location-to-location transfers."""
import logging
from dataclasses import dataclass, field
from typing import FrozenSet, List, Optional, Tuple

from app.config import settings
from app.core.exceptions import AuthorizationError, ConcurrentModificationError, ValidationError
from app.models.transfer import TransferStatus
from app.schemas.transfer import ReceivingData, ShippingData, TransferRequest, TransitionContext
from app.services import transfer_state_machine as state_machine
from app.services.repository import RepositoryPort


logger = logging.getLogger(__name__)

TRANSFER_NOT_FOUND = "Transfer not found"
TRANSFER_NOT_FOUND_MESSAGE = "The requested transfer does not exist or you do not have access to it"

# Past tense used in success messages, e.g. "Transfer cancelled successfully"
_PAST_TENSE = {
    TransferStatus.APPROVED: "approved",
    TransferStatus.REJECTED: "rejected",
    TransferStatus.SHIPPED: "shipped",
    TransferStatus.RECEIVED: "received",
    TransferStatus.CANCELLED: "cancelled",
}


@dataclass(frozen=True)
class TransitionOutcome:
    """Result of a transition request, ready to be mapped to an HTTP response."""
    success: bool
    status_code: int
    message: str
    transfer: Optional[TransferRequest] = None
    error: Optional[str] = None
    warnings: List[str] = field(default_factory=list)


class TransferService:
    """Service for transfer state changes.

    Every transition re-reads the transfer, decides with the state machine
    and writes conditionally on the status it read. A lost race re-runs the
    whole cycle; a stale decision is never replayed.
    """

    def __init__(self, repository: RepositoryPort, max_attempts: Optional[int] = None):
        self.repository = repository
        self.max_attempts = max_attempts or settings.TRANSFER_TRANSITION_MAX_ATTEMPTS

    async def get_transfer(self, transfer_id: str, tenant_id: str) -> Optional[TransferRequest]:
        """Get transfer by ID for the tenant."""
        return await self.repository.get_transfer_by_id(transfer_id, tenant_id)

    async def get_valid_transitions(
        self,
        transfer_id: str,
        tenant_id: str,
    ) -> Optional[Tuple[TransferRequest, FrozenSet[TransferStatus]]]:
        transfer = await self.get_transfer(transfer_id, tenant_id)
        if transfer is None:
            return None
        return transfer, state_machine.get_valid_transitions(transfer.status)

    async def transition(
        self,
        transfer_id: str,
        new_status: TransferStatus,
        context: TransitionContext,
        shipping: Optional[ShippingData] = None,
        receiving: Optional[ReceivingData] = None,
    ) -> TransitionOutcome:
        """Run the decide-then-persist cycle for one transition."""
        new_status = TransferStatus(new_status)
        failure = f"Failed to {state_machine.TRANSITION_VERBS[new_status]} transfer"

        for attempt in range(1, self.max_attempts + 1):
            current = await self.repository.get_transfer_by_id(transfer_id, context.tenant_id)
            if current is None:
                return TransitionOutcome(
                    success=False,
                    status_code=404,
                    error=TRANSFER_NOT_FOUND,
                    message=TRANSFER_NOT_FOUND_MESSAGE,
                )

            try:
                updated = state_machine.execute_transition(
                    current, new_status, context, shipping=shipping, receiving=receiving
                )
            except (ValidationError, AuthorizationError) as e:
                logger.warning(
                    "Rejected transition of transfer %s to %s: %s",
                    transfer_id, new_status.value, e.message,
                )
                return TransitionOutcome(success=False, status_code=400, error=failure, message=e.message)

            try:
                await self.repository.persist_transfer(updated, expected_status=current.status)
            except ConcurrentModificationError:
                logger.warning(
                    "Transfer %s changed while moving to %s (attempt %d/%d)",
                    transfer_id, new_status.value, attempt, self.max_attempts,
                )
                continue

            await self.repository.record_transfer_audit(
                state_machine.build_audit_entry(current, updated, context)
            )
            logger.info(
                "Transfer %s moved %s -> %s by user %s",
                transfer_id, current.status.value, updated.status.value, context.user_id,
            )

            warnings = []
            if new_status == TransferStatus.RECEIVED:
                warnings = state_machine.validate_transition(
                    current, new_status, context, receiving=receiving
                ).warnings

            return TransitionOutcome(
                success=True,
                status_code=200,
                transfer=updated,
                message=f"Transfer {_PAST_TENSE[new_status]} successfully",
                warnings=warnings,
            )

        return TransitionOutcome(
            success=False,
            status_code=409,
            error=failure,
            message=f"Transfer {transfer_id} was modified concurrently; please retry",
        )

    async def approve(self, transfer_id: str, context: TransitionContext) -> TransitionOutcome:
        return await self.transition(transfer_id, TransferStatus.APPROVED, context)

    async def reject(self, transfer_id: str, context: TransitionContext) -> TransitionOutcome:
        return await self.transition(transfer_id, TransferStatus.REJECTED, context)

    async def cancel(self, transfer_id: str, context: TransitionContext) -> TransitionOutcome:
        return await self.transition(transfer_id, TransferStatus.CANCELLED, context)

    async def ship(
        self,
        transfer_id: str,
        context: TransitionContext,
        quantity_shipped: Optional[int] = None,
    ) -> TransitionOutcome:
        return await self.transition(
            transfer_id,
            TransferStatus.SHIPPED,
            context,
            shipping=ShippingData(quantity_shipped=quantity_shipped),
        )

    async def receive(
        self,
        transfer_id: str,
        context: TransitionContext,
        receiving: ReceivingData,
    ) -> TransitionOutcome:
        return await self.transition(transfer_id, TransferStatus.RECEIVED, context, receiving=receiving)
