"""Payment links API (staff)."""
import logging
import uuid

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from paylink.core.dependencies import get_current_staff
from paylink.core.errors import PaymentEngineError, to_http_exception
from paylink.database import get_db
from paylink.models.enums import PaymentProductType
from paylink.schemas.payment_link import (
    CreatePaymentLinkResponse,
    ExtensionPaymentLinkForm,
    ProductPaymentLinkForm,
)
from paylink.schemas.responses import PaymentLinkOut
from paylink.services.payment_link_service import PaymentLinkService
from paylink.services.stripe_service import StripeService, get_stripe_gateway

logger = logging.getLogger(__name__)

router = APIRouter()


async def _create(
    kind: PaymentProductType,
    form,
    staff: dict,
    db: AsyncSession,
    stripe_gateway: StripeService,
) -> CreatePaymentLinkResponse:
    service = PaymentLinkService(db, stripe_gateway)
    try:
        link, url = await service.create_one_payment_link(kind, form, uuid.UUID(staff["sub"]))
    except PaymentEngineError as e:
        raise to_http_exception(e, "Failed to create payment link")

    return CreatePaymentLinkResponse(
        data=PaymentLinkOut.model_validate(link).model_dump(mode="json"),
        url=url,
    )


@router.post("/product", response_model=CreatePaymentLinkResponse)
async def create_product_payment_link(
    form: ProductPaymentLinkForm,
    staff: dict = Depends(get_current_staff),
    db: AsyncSession = Depends(get_db),
    stripe_gateway: StripeService = Depends(get_stripe_gateway),
):
    """Create a payment link for a new product purchase."""
    return await _create(PaymentProductType.PRODUCT, form, staff, db, stripe_gateway)


@router.post("/extension", response_model=CreatePaymentLinkResponse)
async def create_extension_payment_link(
    form: ExtensionPaymentLinkForm,
    staff: dict = Depends(get_current_staff),
    db: AsyncSession = Depends(get_db),
    stripe_gateway: StripeService = Depends(get_stripe_gateway),
):
    """Create a payment link that extends an existing membership."""
    return await _create(PaymentProductType.EXTENSION, form, staff, db, stripe_gateway)
