"""Builders shared by the service and API tests."""
import uuid
from unittest.mock import AsyncMock

from pydantic import TypeAdapter
from sqlalchemy import func, select

from paylink.models.enums import PaymentLinkType, PaymentMethodType, PaymentProductType
from paylink.models.membership import Membership
from paylink.models.order import ORDER_MODELS
from paylink.models.subscription import SUBSCRIPTION_MODELS
from paylink.schemas.payment_link import ExtensionPaymentLinkForm, ProductPaymentLinkForm
from paylink.services.fulfillment_service import FulfillmentService
from paylink.services.payment_link_service import PaymentLinkService
from paylink.services.stripe_service import StripeService

FORM_ADAPTERS = {
    PaymentProductType.PRODUCT: TypeAdapter(ProductPaymentLinkForm),
    PaymentProductType.EXTENSION: TypeAdapter(ExtensionPaymentLinkForm),
}


async def create_link(
    db,
    catalog,
    link_type: PaymentLinkType = PaymentLinkType.INTEGRAL,
    payment_method_type: PaymentMethodType = PaymentMethodType.CARD,
    kind: PaymentProductType = PaymentProductType.PRODUCT,
    membership: Membership | None = None,
    intent_id: str | None = None,
    **overrides,
):
    """Create a payment link through the factory with a stubbed Stripe gateway."""
    intent_id = intent_id or f"pi_{uuid.uuid4().hex[:12]}"
    gateway = AsyncMock(spec=StripeService)
    gateway.create_payment_intent.return_value = {
        "id": intent_id,
        "client_secret": f"{intent_id}_secret",
        "customer_id": "cus_test_1",
    }

    data = {
        "type": link_type.value,
        "payment_method_type": payment_method_type.value,
        "payment_setting_id": str(catalog["eur_setting"].id),
        "contract_id": str(catalog["contract"].id),
    }
    deposit = {
        "deposit_amount": "228" if link_type == PaymentLinkType.INSTALLMENTS_DEPOSIT else "200",
        "first_payment_date_after_deposit_option_id": str(catalog["deposit_option"].id),
    }

    if kind == PaymentProductType.PRODUCT:
        data.update({
            "product_id": str(catalog["product"].id),
            "customer_email": "client@example.com",
            "customer_name": "Ana Popescu",
        })
        installment_field = {"product_installment_id": str(catalog["installment"].id)}
    else:
        data.update({
            "extension_id": str(catalog["extension"].id),
            "membership_id": str(membership.id),
        })
        installment_field = {"extension_installment_id": str(catalog["extension_installment"].id)}
        deposit["deposit_amount"] = "100"

    if link_type in (PaymentLinkType.DEPOSIT, PaymentLinkType.INSTALLMENTS_DEPOSIT):
        data.update(deposit)
    if link_type in (PaymentLinkType.INSTALLMENTS, PaymentLinkType.INSTALLMENTS_DEPOSIT):
        data.update(installment_field)
    data.update(overrides)

    form = FORM_ADAPTERS[kind].validate_python(data)
    link, _ = await PaymentLinkService(db, gateway).create_one_payment_link(kind, form, catalog["user"].id)
    return link


async def create_membership(db, catalog) -> Membership:
    """A paid integral product purchase, returning its membership."""
    link = await create_link(db, catalog)
    await FulfillmentService(db).fulfill_stripe_payment(
        PaymentProductType.PRODUCT,
        link.id,
        {"id": link.stripe_payment_intent_id, "customer": "cus_test_1", "payment_method": "pm_card_1"},
    )
    order = await get_orders(db, PaymentProductType.PRODUCT, link.id)
    result = await db.execute(select(Membership).where(Membership.parent_order_id == order[0].id))
    return result.scalar_one()


async def create_subscription(db, catalog, link_type=PaymentLinkType.INSTALLMENTS, kind=PaymentProductType.PRODUCT):
    """Fulfill a recurring card link and return (link, subscription)."""
    membership = await create_membership(db, catalog) if kind == PaymentProductType.EXTENSION else None
    link = await create_link(db, catalog, link_type=link_type, kind=kind, membership=membership)
    await FulfillmentService(db).fulfill_stripe_payment(
        kind,
        link.id,
        {"id": link.stripe_payment_intent_id, "customer": "cus_test_1", "payment_method": "pm_card_1"},
    )
    subscriptions = await get_subscriptions(db, kind)
    return link, subscriptions[-1]


async def get_orders(db, kind: PaymentProductType, payment_link_id: uuid.UUID):
    model = ORDER_MODELS[kind]
    result = await db.execute(
        select(model)
        .where(model.payment_link_id == payment_link_id)
        .order_by(model.created_at)
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


async def get_subscriptions(db, kind: PaymentProductType):
    model = SUBSCRIPTION_MODELS[kind]
    result = await db.execute(
        select(model).order_by(model.created_at).execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


async def reload(db, instance):
    """Re-read a row written through another session or a bulk update."""
    await db.refresh(instance)
    return instance


async def membership_count(db) -> int:
    result = await db.execute(select(func.count()).select_from(Membership))
    return result.scalar_one()


async def membership_for(db, order) -> Membership:
    result = await db.execute(
        select(Membership)
        .where(Membership.parent_order_id == order.id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one()
