"""API v1 routers."""
from fastapi import APIRouter

from paylink.api.v1 import payment_links, subscriptions, bank_transfers, public

router = APIRouter()

router.include_router(payment_links.router, prefix="/payment-links", tags=["payment-links"])
router.include_router(subscriptions.router, prefix="/subscriptions", tags=["subscriptions"])
router.include_router(bank_transfers.router, prefix="/bank-transfers", tags=["bank-transfers"])
router.include_router(public.router, prefix="/public", tags=["public"])
