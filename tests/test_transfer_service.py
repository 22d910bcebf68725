import pytest

from app.models.transfer import TransferStatus
from app.schemas.transfer import ReceivingData, TransitionContext
from app.services import transfer_state_machine
from app.services.transfer_service import TransferService

from tests.conftest import OTHER_TENANT, TENANT, USER, build_transfer


@pytest.fixture
def service(repository):
    return TransferService(repository, max_attempts=3)


class TestCancelTransfer:

    async def test_cancel_persists_and_audits(self, service, repository, context):
        repository.add_transfer(build_transfer())

        outcome = await service.cancel("tr-1", context)

        assert outcome.success is True
        assert outcome.status_code == 200
        assert outcome.message == "Transfer cancelled successfully"
        assert outcome.transfer.status == TransferStatus.CANCELLED
        assert repository.transfers["tr-1"].status == TransferStatus.CANCELLED
        assert repository.transfers["tr-1"].cancellation_reason == "Supplier delivered early"

        assert len(repository.audit_entries) == 1
        entry = repository.audit_entries[0]
        assert entry.transfer_id == "tr-1"
        assert entry.old_status == TransferStatus.REQUESTED
        assert entry.new_status == TransferStatus.CANCELLED
        assert entry.ip_address == "203.0.113.7"

    async def test_missing_transfer_skips_state_machine(self, service, context, monkeypatch):
        calls = []
        monkeypatch.setattr(transfer_state_machine, "execute_transition", lambda *a, **kw: calls.append(a))

        outcome = await service.cancel("missing", context)

        assert outcome.success is False
        assert outcome.status_code == 404
        assert outcome.error == "Transfer not found"
        assert calls == []

    async def test_other_tenants_transfer_is_not_found(self, service, repository):
        repository.add_transfer(build_transfer(tenant_id=OTHER_TENANT))
        context = TransitionContext(user_id=USER, tenant_id=TENANT, reason="dup")

        outcome = await service.cancel("tr-1", context)

        assert outcome.status_code == 404
        assert repository.transfers["tr-1"].status == TransferStatus.REQUESTED

    async def test_illegal_transition_is_400(self, service, repository, context):
        repository.add_transfer(build_transfer(status=TransferStatus.SHIPPED, quantity_shipped=40))

        outcome = await service.cancel("tr-1", context)

        assert outcome.success is False
        assert outcome.status_code == 400
        assert outcome.error == "Failed to cancel transfer"
        assert "Cannot cancel transfer in SHIPPED status" in outcome.message
        assert repository.persist_calls == 0
        assert repository.audit_entries == []


class TestConcurrency:

    async def test_retries_after_lost_race(self, service, repository, context):
        repository.add_transfer(build_transfer())
        repository.injected_conflicts = 1

        outcome = await service.cancel("tr-1", context)

        assert outcome.success is True
        assert repository.persist_calls == 2
        # every attempt re-reads the transfer
        assert repository.transfer_reads == 2
        assert len(repository.audit_entries) == 1

    async def test_gives_up_after_max_attempts(self, service, repository, context):
        repository.add_transfer(build_transfer())
        repository.injected_conflicts = 5

        outcome = await service.cancel("tr-1", context)

        assert outcome.success is False
        assert outcome.status_code == 409
        assert outcome.error == "Failed to cancel transfer"
        assert repository.persist_calls == 3
        assert repository.audit_entries == []
        assert repository.transfers["tr-1"].status == TransferStatus.REQUESTED

    async def test_state_changed_by_competitor_is_reevaluated(self, service, repository, context):
        repository.add_transfer(build_transfer())
        original_persist = repository.persist_transfer

        async def competitor_ships_first(transfer, expected_status=None):
            # Another request moves the row to SHIPPED between our read and write
            if repository.persist_calls == 0:
                repository.transfers["tr-1"] = build_transfer(
                    status=TransferStatus.SHIPPED, quantity_shipped=40
                )
            await original_persist(transfer, expected_status=expected_status)

        repository.persist_transfer = competitor_ships_first

        outcome = await service.cancel("tr-1", context)

        assert outcome.status_code == 400
        assert "Cannot cancel transfer in SHIPPED status" in outcome.message
        assert repository.transfers["tr-1"].status == TransferStatus.SHIPPED


class TestOtherTransitions:

    async def test_full_lifecycle(self, service, repository, context):
        repository.add_transfer(build_transfer())

        assert (await service.approve("tr-1", context)).success
        shipped = await service.ship("tr-1", context, quantity_shipped=30)
        assert shipped.transfer.quantity_shipped == 30

        received = await service.receive("tr-1", context.model_copy(update={"reason": None}), ReceivingData(quantity_received=28))

        assert received.success is True
        assert received.message == "Transfer received successfully"
        assert received.transfer.variance_reason == "Shrinkage during transfer"
        assert received.warnings == [
            "Shrinkage detected: 2 units. Consider providing a variance reason for audit purposes."
        ]
        assert [e.new_status for e in repository.audit_entries] == [
            TransferStatus.APPROVED,
            TransferStatus.SHIPPED,
            TransferStatus.RECEIVED,
        ]

    async def test_reject(self, service, repository, context):
        repository.add_transfer(build_transfer())

        outcome = await service.reject("tr-1", context)

        assert outcome.transfer.status == TransferStatus.REJECTED
        assert outcome.message == "Transfer rejected successfully"

    async def test_valid_transitions(self, service, repository):
        repository.add_transfer(build_transfer(status=TransferStatus.APPROVED))

        transfer, transitions = await service.get_valid_transitions("tr-1", TENANT)

        assert transfer.id == "tr-1"
        assert transitions == {TransferStatus.SHIPPED, TransferStatus.CANCELLED}

    async def test_valid_transitions_missing(self, service):
        assert await service.get_valid_transitions("missing", TENANT) is None
