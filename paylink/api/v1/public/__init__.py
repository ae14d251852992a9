"""Public API used by the checkout and update-card pages."""
import uuid

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from paylink.core.errors import PaymentEngineError, to_http_exception
from paylink.database import get_db
from paylink.models.enums import OrderStatusType, PaymentProductType
from paylink.schemas.payment_link import BillingData
from paylink.schemas.responses import ScheduledPayment, SubscriptionOut, SubscriptionSummary
from paylink.services.bank_transfer_service import BankTransferService
from paylink.services.payment_link_service import PaymentLinkService
from paylink.services.payment_schedule_service import build_payment_schedule
from paylink.services.stripe_service import StripeService, get_stripe_gateway
from paylink.services.subscription_service import SubscriptionService
from paylink.services.tbi_service import TbiService, get_tbi_gateway

router = APIRouter()


class UpdateTokenRequest(BaseModel):
    subscription_id: uuid.UUID
    token: str
    type: PaymentProductType


class UpdatePaymentMethodRequest(UpdateTokenRequest):
    setup_intent_id: str


class SetupIntentResponse(BaseModel):
    id: str
    client_secret: str


class BankTransferResponse(BaseModel):
    order_id: uuid.UUID
    status: OrderStatusType


class TbiRedirectResponse(BaseModel):
    redirect_url: str


@router.post("/subscriptions/validate-update-token", response_model=SubscriptionSummary)
async def validate_update_token(
    request: UpdateTokenRequest,
    db: AsyncSession = Depends(get_db),
):
    service = SubscriptionService(db)
    try:
        return await service.validate_update_token(request.type, request.subscription_id, request.token)
    except PaymentEngineError as e:
        raise to_http_exception(e, "Failed to validate token")


@router.post("/subscriptions/setup-intent", response_model=SetupIntentResponse)
async def create_setup_intent(
    request: UpdateTokenRequest,
    db: AsyncSession = Depends(get_db),
    stripe_gateway: StripeService = Depends(get_stripe_gateway),
):
    service = SubscriptionService(db, stripe_gateway)
    try:
        intent = await service.create_setup_intent(request.type, request.subscription_id, request.token)
    except PaymentEngineError as e:
        raise to_http_exception(e, "Failed to create setup intent")
    return SetupIntentResponse(**intent)


@router.post("/subscriptions/update-payment-method", response_model=SubscriptionOut)
async def update_payment_method(
    request: UpdatePaymentMethodRequest,
    db: AsyncSession = Depends(get_db),
    stripe_gateway: StripeService = Depends(get_stripe_gateway),
):
    """Store the card confirmed on the update-card page. The token is consumed."""
    service = SubscriptionService(db, stripe_gateway)
    try:
        return await service.update_payment_method(
            request.type,
            request.subscription_id,
            request.token,
            request.setup_intent_id,
        )
    except PaymentEngineError as e:
        raise to_http_exception(e, "Failed to update payment method")


@router.get("/payment-links/{kind}/{link_id}/schedule", response_model=list[ScheduledPayment])
async def get_payment_schedule(
    kind: PaymentProductType,
    link_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    stripe_gateway: StripeService = Depends(get_stripe_gateway),
):
    """Payments the customer agrees to at checkout."""
    service = PaymentLinkService(db, stripe_gateway)
    try:
        link = await service.get_payment_link(kind, link_id)
    except PaymentEngineError as e:
        raise to_http_exception(e, "Failed to load payment schedule")
    return build_payment_schedule(link)


@router.post("/payment-links/{kind}/{link_id}/bank-transfer", response_model=BankTransferResponse)
async def initiate_bank_transfer(
    kind: PaymentProductType,
    link_id: uuid.UUID,
    billing_data: BillingData,
    db: AsyncSession = Depends(get_db),
):
    service = BankTransferService(db)
    try:
        order = await service.initiate(kind, link_id, billing_data.model_dump())
    except PaymentEngineError as e:
        raise to_http_exception(e, "Failed to start bank transfer")
    return BankTransferResponse(order_id=order.id, status=order.status)


@router.post("/payment-links/{kind}/{link_id}/tbi", response_model=TbiRedirectResponse)
async def initiate_tbi_payment(
    kind: PaymentProductType,
    link_id: uuid.UUID,
    billing_data: BillingData,
    db: AsyncSession = Depends(get_db),
    stripe_gateway: StripeService = Depends(get_stripe_gateway),
    tbi_gateway: TbiService = Depends(get_tbi_gateway),
):
    """Open a TBI loan application and return the URL the customer is redirected to."""
    service = PaymentLinkService(db, stripe_gateway, tbi_gateway)
    try:
        redirect_url = await service.initiate_tbi_payment(kind, link_id, billing_data.model_dump())
    except PaymentEngineError as e:
        raise to_http_exception(e, "Failed to start TBI payment")
    return TbiRedirectResponse(redirect_url=redirect_url)
