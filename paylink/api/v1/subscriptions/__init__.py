"""Subscriptions API (staff)."""
import uuid
from datetime import datetime
from typing import Literal

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from paylink.core.dependencies import get_current_staff
from paylink.core.errors import PaymentEngineError, to_http_exception
from paylink.database import get_db
from paylink.models.enums import PaymentProductType
from paylink.schemas.responses import SubscriptionOut
from paylink.services.stripe_service import StripeService, get_stripe_gateway
from paylink.services.subscription_service import GRACEFUL_CANCEL, IMMEDIATE_CANCEL, SubscriptionService

router = APIRouter(dependencies=[Depends(get_current_staff)])


class CancelSubscriptionRequest(BaseModel):
    cancel_type: Literal["graceful", "immediate"] = GRACEFUL_CANCEL


class CancelSubscriptionResponse(BaseModel):
    message: str


class RetryPaymentResponse(BaseModel):
    succeeded: bool
    subscription: SubscriptionOut


class UpdatePaymentTokenResponse(BaseModel):
    token: str
    expires_at: datetime


class ReschedulePaymentRequest(BaseModel):
    new_payment_date: datetime


@router.post("/{kind}/{subscription_id}/cancel", response_model=CancelSubscriptionResponse)
async def cancel_subscription(
    kind: PaymentProductType,
    subscription_id: uuid.UUID,
    request: CancelSubscriptionRequest,
    db: AsyncSession = Depends(get_db),
):
    """
    Cancel a subscription.

    "graceful" stops it at the next payment date, "immediate" cancels it and
    its membership now.
    """
    service = SubscriptionService(db)
    try:
        message = await service.cancel_subscription(kind, subscription_id, request.cancel_type)
    except PaymentEngineError as e:
        raise to_http_exception(e, "Failed to cancel subscription")
    return CancelSubscriptionResponse(message=message)


@router.post("/{kind}/{subscription_id}/on-hold", response_model=SubscriptionOut)
async def set_subscription_on_hold(
    kind: PaymentProductType,
    subscription_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
):
    service = SubscriptionService(db)
    try:
        return await service.set_on_hold(kind, subscription_id)
    except PaymentEngineError as e:
        raise to_http_exception(e, "Failed to put subscription on hold")


@router.post("/{kind}/{subscription_id}/retry-payment", response_model=RetryPaymentResponse)
async def retry_subscription_payment(
    kind: PaymentProductType,
    subscription_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    stripe_gateway: StripeService = Depends(get_stripe_gateway),
):
    """Charge the stored card of an on-hold subscription again."""
    service = SubscriptionService(db, stripe_gateway)
    try:
        succeeded, subscription = await service.retry_payment(kind, subscription_id)
    except PaymentEngineError as e:
        raise to_http_exception(e, "Failed to retry payment")
    return RetryPaymentResponse(
        succeeded=succeeded,
        subscription=SubscriptionOut.model_validate(subscription),
    )


@router.post("/{kind}/{subscription_id}/update-payment-token", response_model=UpdatePaymentTokenResponse)
async def generate_update_payment_token(
    kind: PaymentProductType,
    subscription_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
):
    """Create the one-time token sent to the customer to replace their card."""
    service = SubscriptionService(db)
    try:
        result = await service.generate_update_payment_token(kind, subscription_id)
    except PaymentEngineError as e:
        raise to_http_exception(e, "Failed to generate update payment token")
    return UpdatePaymentTokenResponse(**result)


@router.post("/{kind}/{subscription_id}/reschedule-payment", response_model=SubscriptionOut)
async def reschedule_subscription_payment(
    kind: PaymentProductType,
    subscription_id: uuid.UUID,
    request: ReschedulePaymentRequest,
    db: AsyncSession = Depends(get_db),
):
    service = SubscriptionService(db)
    try:
        return await service.reschedule_payment(kind, subscription_id, request.new_payment_date)
    except PaymentEngineError as e:
        raise to_http_exception(e, "Failed to reschedule payment")
