# Services module
from app.services.allocation_engine import AllocationEngine
from app.services.repository import RepositoryPort, SqlAlchemyRepository
from app.services.transfer_service import TransferService, TransitionOutcome

__all__ = [
    "AllocationEngine",
    "RepositoryPort",
    "SqlAlchemyRepository",
    "TransferService",
    "TransitionOutcome",
]
