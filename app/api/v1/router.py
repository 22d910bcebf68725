from fastapi import APIRouter

from app.api.v1.endpoints import (
    allocations,
    transfers,
)


api_router = APIRouter(prefix="/api/v1")

# Allocation engine
api_router.include_router(
    allocations.router,
    prefix="/allocations",
    tags=["Allocations"]
)

# Transfer state machine
api_router.include_router(
    transfers.router,
    prefix="/transfers",
    tags=["Transfers"]
)
