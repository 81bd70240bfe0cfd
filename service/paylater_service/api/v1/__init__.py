"""API v1 router aggregation."""

from fastapi import APIRouter

from paylater_service.api.v1 import (
    admin,
    merchants,
    payment_intents,
    refunds,
    transactions,
)

router = APIRouter()

# Include all v1 routers
router.include_router(payment_intents.router, prefix="/payment_intents", tags=["payment_intents"])
router.include_router(transactions.router, prefix="/transactions", tags=["transactions"])
router.include_router(refunds.router, prefix="/refunds", tags=["refunds"])
router.include_router(merchants.router, prefix="/merchants", tags=["merchants"])
router.include_router(admin.router, prefix="/admin", tags=["admin"])
