"""Gateway webhooks."""
import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from paylink.config import EngineSecrets
from paylink.core.dependencies import get_engine_secrets
from paylink.core.errors import UnauthorizedError, ValidationError
from paylink.database import get_db
from paylink.services.webhook_service import WebhookService, verify_calendly_event

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/stripe")
async def stripe_webhook(
    request: Request,
    db: AsyncSession = Depends(get_db),
    secrets: EngineSecrets = Depends(get_engine_secrets),
):
    """
    Stripe events.

    400 stops Stripe from retrying a payload that will never verify,
    500 makes it deliver the event again later.
    """
    body = await request.body()
    service = WebhookService(db, secrets)
    try:
        return await service.handle_stripe_event(body, request.headers.get("Stripe-Signature"))
    except ValidationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.message)
    except Exception as e:
        logger.error(f"❌ Stripe webhook processing failed: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Webhook processing failed",
        )


@router.post("/tbi")
async def tbi_webhook(
    request: Request,
    db: AsyncSession = Depends(get_db),
    secrets: EngineSecrets = Depends(get_engine_secrets),
):
    """TBI Bank loan status callbacks, sent as a form with an encrypted order_data field."""
    try:
        form = await request.form()
    except Exception as e:
        logger.warning(f"⚠️ TBI webhook with unreadable form: {e}")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid form data")

    order_data = form.get("order_data")
    service = WebhookService(db, secrets)
    try:
        return await service.handle_tbi_callback(order_data if isinstance(order_data, str) else None)
    except ValidationError as e:
        logger.warning(f"⚠️ TBI webhook rejected: {e.message}")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.message)
    except Exception as e:
        logger.error(f"❌ TBI webhook processing failed: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Webhook processing failed",
        )


@router.post("/calendly")
async def calendly_webhook(request: Request):
    body = await request.body()
    try:
        verify_calendly_event(body, request.headers.get("Calendly-Webhook-Signature"))
    except UnauthorizedError as e:
        logger.warning("⚠️ Calendly webhook with invalid signature")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=e.message)
    except ValidationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.message)
    return {"received": True}
