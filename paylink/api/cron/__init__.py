"""
Cron endpoints.

Called by an external scheduler with ``Authorization: Bearer <CRON_SECRET>``:

    0 * * * *   GET /cron/cancel-expired-payments
    0 6 * * *   GET /cron/charge-deferred-payments
    5 0 * * *   GET /cron/process-scheduled-cancellations
"""
import logging

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from paylink.core.dependencies import require_cron_secret
from paylink.database import get_session_factory
from paylink.schemas.responses import JobResultOut
from paylink.services import scheduler_service
from paylink.services.stripe_service import StripeService, get_stripe_gateway
from paylink.services.tbi_service import TbiService, get_tbi_gateway

logger = logging.getLogger(__name__)

router = APIRouter(dependencies=[Depends(require_cron_secret)])


def _job_failed(job_name: str, error: Exception) -> HTTPException:
    logger.error(f"❌ [Cron] {job_name} failed: {error}", exc_info=True)
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail="Internal server error",
    )


@router.get("/cancel-expired-payments", response_model=JobResultOut)
async def cancel_expired_payments(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    stripe_gateway: StripeService = Depends(get_stripe_gateway),
    tbi_gateway: TbiService = Depends(get_tbi_gateway),
):
    try:
        result = await scheduler_service.cancel_expired_payments(session_factory, stripe_gateway, tbi_gateway)
    except Exception as e:
        raise _job_failed("cancel-expired-payments", e)
    return result.to_response()


@router.get("/charge-deferred-payments", response_model=JobResultOut)
async def charge_deferred_payments(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    stripe_gateway: StripeService = Depends(get_stripe_gateway),
):
    try:
        result = await scheduler_service.charge_deferred_payments(session_factory, stripe_gateway)
    except Exception as e:
        raise _job_failed("charge-deferred-payments", e)
    return result.to_response()


@router.get("/process-scheduled-cancellations", response_model=JobResultOut)
async def process_scheduled_cancellations(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
):
    try:
        result = await scheduler_service.process_scheduled_cancellations(session_factory)
    except Exception as e:
        raise _job_failed("process-scheduled-cancellations", e)
    return result.to_response()
