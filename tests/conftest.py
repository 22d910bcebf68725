from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple

import httpx
import pytest

from app.core.exceptions import ConcurrentModificationError, NotFoundError
from app.models.transfer import TransferStatus
from app.schemas.allocation import LineItemSnapshot
from app.schemas.transfer import TransferAuditEntry, TransferRequest, TransitionContext


TENANT = "tenant-a"
OTHER_TENANT = "tenant-b"
USER = "user-1"


class InMemoryRepository:
    """RepositoryPort fake keeping everything in dicts."""

    def __init__(self):
        self.line_items: Dict[Tuple[str, str], LineItemSnapshot] = {}
        self.allocated: Dict[Tuple[str, str], int] = {}
        self.transfers: Dict[str, TransferRequest] = {}
        self.audit_entries: List[TransferAuditEntry] = []
        self.transfer_reads = 0
        self.persist_calls = 0
        # Number of upcoming persist_transfer calls that lose a race
        self.injected_conflicts = 0

    def add_line_item(self, tenant_id: str, quantity_ordered: int, line_item_id: str = "po-item-1") -> LineItemSnapshot:
        item = LineItemSnapshot(
            id=line_item_id,
            purchase_order_id="po-1",
            product_id="prod-tomatoes",
            quantity_ordered=quantity_ordered,
        )
        self.line_items[(tenant_id, line_item_id)] = item
        return item

    def add_transfer(self, transfer: TransferRequest) -> TransferRequest:
        self.transfers[transfer.id] = transfer
        return transfer

    async def get_line_item_by_id(self, line_item_id: str, tenant_id: str) -> Optional[LineItemSnapshot]:
        return self.line_items.get((tenant_id, line_item_id))

    async def sum_allocated_quantity(self, line_item_id: str, tenant_id: str) -> int:
        return self.allocated.get((tenant_id, line_item_id), 0)

    async def get_transfer_by_id(self, transfer_id: str, tenant_id: str) -> Optional[TransferRequest]:
        self.transfer_reads += 1
        transfer = self.transfers.get(transfer_id)
        if transfer is None or transfer.tenant_id != tenant_id:
            return None
        return transfer

    async def persist_transfer(self, transfer: TransferRequest, expected_status: Optional[TransferStatus] = None) -> None:
        self.persist_calls += 1
        if self.injected_conflicts:
            self.injected_conflicts -= 1
            raise ConcurrentModificationError(f"Transfer {transfer.id} was modified concurrently")
        stored = self.transfers.get(transfer.id)
        if stored is None or stored.tenant_id != transfer.tenant_id:
            raise NotFoundError("Transfer not found")
        if expected_status is not None and stored.status != expected_status:
            raise ConcurrentModificationError(f"Transfer {transfer.id} was modified concurrently")
        self.transfers[transfer.id] = transfer

    async def record_transfer_audit(self, entry: TransferAuditEntry) -> None:
        self.audit_entries.append(entry)


def build_transfer(**overrides) -> TransferRequest:
    values = dict(
        id="tr-1",
        tenant_id=TENANT,
        product_id="prod-tomatoes",
        source_location_id="loc-commissary",
        destination_location_id="loc-downtown",
        quantity_requested=40,
        status=TransferStatus.REQUESTED,
        requested_by="user-requester",
        requested_at=datetime(2026, 1, 5, 9, 0, tzinfo=timezone.utc),
        created_at=datetime(2026, 1, 5, 9, 0, tzinfo=timezone.utc),
        updated_at=datetime(2026, 1, 5, 9, 0, tzinfo=timezone.utc),
    )
    values.update(overrides)
    return TransferRequest(**values)


@pytest.fixture
def repository() -> InMemoryRepository:
    return InMemoryRepository()


@pytest.fixture
def context() -> TransitionContext:
    return TransitionContext(
        user_id=USER,
        tenant_id=TENANT,
        reason="Supplier delivered early",
        ip_address="203.0.113.7",
        user_agent="pytest",
    )


@pytest.fixture
async def client(repository):
    from app.api.deps import get_repository
    from app.main import app

    app.dependency_overrides[get_repository] = lambda: repository
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers() -> Dict[str, str]:
    return {"X-Tenant-ID": TENANT, "X-User-ID": USER, "User-Agent": "pytest-client"}
