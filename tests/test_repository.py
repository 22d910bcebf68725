"""SqlAlchemyRepository against an in-memory SQLite database."""
from datetime import datetime, timezone

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from app.core.exceptions import ConcurrentModificationError, NotFoundError
from app.database import init_db
from app.models import (
    Allocation,
    AllocationStatus,
    Location,
    PurchaseOrder,
    PurchaseOrderItem,
    Transfer,
    TransferAuditLog,
    TransferStatus,
)
from app.schemas.transfer import TransitionContext
from app.services import transfer_state_machine as sm
from app.services.allocation_engine import AllocationEngine
from app.services.repository import RepositoryPort, SqlAlchemyRepository
from app.services.transfer_service import TransferService

from tests.conftest import OTHER_TENANT, TENANT, USER


@pytest.fixture
async def session():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    await init_db(bind=engine)
    factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with factory() as db:
        yield db
    await engine.dispose()


@pytest.fixture
async def seeded(session):
    session.add_all([
        Location(id="loc-commissary", tenant_id=TENANT, name="Commissary", type="COMMISSARY"),
        Location(id="loc-downtown", tenant_id=TENANT, name="Downtown"),
        PurchaseOrder(id="po-1", tenant_id=TENANT, po_number="PO-0001"),
        PurchaseOrderItem(id="po-item-1", purchase_order_id="po-1", product_id="prod-1", quantity_ordered=100),
        Allocation(
            tenant_id=TENANT, po_item_id="po-item-1", target_location_id="loc-downtown",
            quantity_allocated=30, status=AllocationStatus.ALLOCATED.value, created_by=USER,
        ),
        Allocation(
            tenant_id=TENANT, po_item_id="po-item-1", target_location_id="loc-commissary",
            quantity_allocated=20, status=AllocationStatus.CANCELLED.value, created_by=USER,
        ),
        Transfer(
            id="tr-1",
            tenant_id=TENANT,
            product_id="prod-1",
            source_location_id="loc-commissary",
            destination_location_id="loc-downtown",
            quantity_requested=40,
            status=TransferStatus.REQUESTED.value,
            requested_by="user-requester",
            requested_at=datetime(2026, 1, 5, 9, 0, tzinfo=timezone.utc),
        ),
    ])
    await session.flush()
    return SqlAlchemyRepository(session)


async def test_satisfies_port(session):
    assert isinstance(SqlAlchemyRepository(session), RepositoryPort)


async def test_line_item_is_tenant_scoped(seeded):
    item = await seeded.get_line_item_by_id("po-item-1", TENANT)

    assert item.quantity_ordered == 100
    assert await seeded.get_line_item_by_id("po-item-1", OTHER_TENANT) is None


async def test_sum_excludes_cancelled(seeded):
    assert await seeded.sum_allocated_quantity("po-item-1", TENANT) == 30
    assert await seeded.sum_allocated_quantity("po-item-1", OTHER_TENANT) == 0


async def test_unallocated_through_engine(seeded):
    assert await AllocationEngine(seeded).calculate_unallocated_quantity("po-item-1", TENANT) == 70


async def test_get_transfer_is_tenant_scoped(seeded):
    transfer = await seeded.get_transfer_by_id("tr-1", TENANT)

    assert transfer.status == TransferStatus.REQUESTED
    assert await seeded.get_transfer_by_id("tr-1", OTHER_TENANT) is None


async def test_conditional_write(seeded, session):
    context = TransitionContext(user_id=USER, tenant_id=TENANT, reason="Menu change")
    current = await seeded.get_transfer_by_id("tr-1", TENANT)
    cancelled = sm.execute_transition(current, TransferStatus.CANCELLED, context)

    await seeded.persist_transfer(cancelled, expected_status=TransferStatus.REQUESTED)

    row = await session.scalar(select(Transfer).where(Transfer.id == "tr-1"))
    await session.refresh(row)
    assert row.status == "CANCELLED"
    assert row.cancellation_reason == "Menu change"

    # second writer still expects REQUESTED
    with pytest.raises(ConcurrentModificationError):
        await seeded.persist_transfer(cancelled, expected_status=TransferStatus.REQUESTED)


async def test_persist_missing_transfer(seeded):
    context = TransitionContext(user_id=USER, tenant_id=TENANT, reason="Menu change")
    current = await seeded.get_transfer_by_id("tr-1", TENANT)
    ghost = sm.execute_transition(current, TransferStatus.CANCELLED, context).model_copy(update={"id": "tr-ghost"})

    with pytest.raises(NotFoundError):
        await seeded.persist_transfer(ghost, expected_status=TransferStatus.REQUESTED)


async def test_service_writes_audit_row(seeded, session):
    context = TransitionContext(
        user_id=USER,
        tenant_id=TENANT,
        reason="Menu change",
        ip_address="203.0.113.7",
        user_agent="pytest",
        metadata={"request_id": "req-42"},
    )

    outcome = await TransferService(seeded).cancel("tr-1", context)

    assert outcome.success is True
    logs = (await session.scalars(select(TransferAuditLog))).all()
    assert len(logs) == 1
    assert logs[0].action == "CANCELLED"
    assert logs[0].old_status == "REQUESTED"
    assert logs[0].ip_address == "203.0.113.7"
    assert logs[0].new_values["cancellation_reason"] == "Menu change"
    assert logs[0].request_metadata == {"request_id": "req-42"}
