from dataclasses import dataclass
from typing import Annotated, Optional
import logging

from fastapi import Depends, HTTPException, status, Request
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.schemas.transfer import TransitionContext
from app.services.allocation_engine import AllocationEngine
from app.services.repository import RepositoryPort, SqlAlchemyRepository
from app.services.transfer_service import TransferService


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuthContext:
    """Tenant and user resolved by the upstream auth layer."""
    tenant_id: str
    user_id: str


async def get_auth_context(request: Request) -> AuthContext:
    """
    Dependency returning the authenticated tenant and user.

    Token handling happens upstream. Its middleware either leaves an
    AuthContext on `request.state.auth` or forwards the identity in the
    X-Tenant-ID / X-User-ID headers.
    """
    auth = getattr(request.state, "auth", None)
    if isinstance(auth, AuthContext):
        return auth

    tenant_id = request.headers.get("X-Tenant-ID")
    user_id = request.headers.get("X-User-ID")
    if not tenant_id or not user_id:
        logger.warning("Request to %s without tenant/user context", request.url.path)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication context is missing",
        )
    return AuthContext(tenant_id=tenant_id, user_id=user_id)


def get_client_ip(request: Request) -> Optional[str]:
    """Client IP from proxy headers, falling back to the socket peer."""
    forwarded = request.headers.get("cf-connecting-ip") or request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None


def _request_metadata(request: Request) -> dict:
    metadata = {"method": request.method, "path": request.url.path}
    request_id = request.headers.get("x-request-id")
    if request_id:
        metadata["request_id"] = request_id
    return metadata


def build_transition_context(
    request: Request,
    auth: AuthContext,
    reason: Optional[str] = None,
) -> TransitionContext:
    return TransitionContext(
        user_id=auth.user_id,
        tenant_id=auth.tenant_id,
        reason=reason,
        ip_address=get_client_ip(request),
        user_agent=request.headers.get("user-agent"),
        metadata=_request_metadata(request),
    )


DB = Annotated[AsyncSession, Depends(get_db)]


async def get_repository(db: DB) -> RepositoryPort:
    return SqlAlchemyRepository(db)


Repository = Annotated[RepositoryPort, Depends(get_repository)]


async def get_allocation_engine(repository: Repository) -> AllocationEngine:
    return AllocationEngine(repository)


async def get_transfer_service(repository: Repository) -> TransferService:
    return TransferService(repository)


Auth = Annotated[AuthContext, Depends(get_auth_context)]
Engine = Annotated[AllocationEngine, Depends(get_allocation_engine)]
Transfers = Annotated[TransferService, Depends(get_transfer_service)]
