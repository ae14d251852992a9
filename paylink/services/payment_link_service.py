"""Payment link factory."""
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from paylink.config import settings
from paylink.core.cache import cache_service, get_cache_key_constant, get_cache_key_payment_setting
from paylink.core.errors import (
    CLIENT_ERRORS,
    ConflictError,
    InternalError,
    NotFoundError,
    PaymentEngineError,
    ValidationError,
)
from paylink.models.enums import (
    OPEN_PAYMENT_STATUSES,
    PaymentCurrencyType,
    PaymentLinkType,
    PaymentMethodType,
    PaymentProductType,
    PaymentStatusType,
)
from paylink.models.membership import Membership
from paylink.models.payment_link import PAYMENT_LINK_MODELS, ExtensionPaymentLink, ProductPaymentLink
from paylink.models.product import ExtensionInstallment, Product, ProductExtension, ProductInstallment
from paylink.models.setting import (
    EUR_TO_RON_RATE_KEY,
    Contract,
    FirstPaymentDateAfterDepositOption,
    PaymentSetting,
    Setting,
)
from paylink.models.user import User
from paylink.schemas.payment_link import (
    ExtensionFormBase,
    PaymentLinkFormBase,
    ProductFormBase,
)
from paylink.services import dates_service, pricing_service
from paylink.services.stripe_service import StripeService
from paylink.services.tbi_service import TbiService

logger = logging.getLogger(__name__)


@dataclass
class PricingContext:
    """Everything a builder needs besides the variant-specific inputs."""

    price: Decimal  # catalogue price, EUR
    min_deposit_amount: Decimal  # EUR
    currency: PaymentCurrencyType
    tva_rate: Decimal
    extra_tax_rate: Decimal
    eur_to_ron_rate: Decimal | None
    expires_at: datetime
    common: dict = field(default_factory=dict)

    def localize(self, amount_eur: Decimal) -> Decimal:
        """Catalogue prices are in EUR; RON links convert them."""
        if self.currency == PaymentCurrencyType.RON:
            return pricing_service.convert_eur_to_ron(amount_eur, self.eur_to_ron_rate)
        return amount_eur


def build_integral_insert_data(ctx: PricingContext) -> dict:
    total = pricing_service.calculate_total_amount_to_pay(
        ctx.localize(ctx.price), ctx.tva_rate, ctx.extra_tax_rate
    )
    return {
        **_base_insert_data(ctx, PaymentLinkType.INTEGRAL),
        "total_amount_to_pay": total,
        "total_amount_to_pay_in_cents": pricing_service.convert_to_cents(total),
    }


def build_deposit_insert_data(
    ctx: PricingContext,
    deposit_amount: Decimal,
    option: FirstPaymentDateAfterDepositOption,
) -> dict:
    amounts = pricing_service.calculate_deposit_remaining_amount_to_pay(
        price=ctx.localize(ctx.price),
        deposit_amount=deposit_amount,
        tva_rate=ctx.tva_rate,
        extra_tax_rate=ctx.extra_tax_rate,
        min_deposit_amount=ctx.localize(ctx.min_deposit_amount),
    )
    deposit = pricing_service.round_amount(deposit_amount)
    return {
        **_base_insert_data(ctx, PaymentLinkType.DEPOSIT),
        "total_amount_to_pay": amounts.total_amount_to_pay,
        "total_amount_to_pay_in_cents": pricing_service.convert_to_cents(amounts.total_amount_to_pay),
        "deposit_amount": deposit,
        "deposit_amount_in_cents": pricing_service.convert_to_cents(deposit),
        "remaining_amount_to_pay": amounts.remaining_amount_to_pay,
        "remaining_amount_to_pay_in_cents": pricing_service.convert_to_cents(amounts.remaining_amount_to_pay),
        "first_payment_date_after_deposit": dates_service.first_payment_date_after_deposit(
            ctx.expires_at, option.value
        ),
    }


def build_installments_insert_data(ctx: PricingContext, price_per_installment: Decimal, count: int) -> dict:
    amounts = pricing_service.calculate_installments_amount_to_pay(
        ctx.localize(price_per_installment), count, ctx.tva_rate, ctx.extra_tax_rate
    )
    return {
        **_base_insert_data(ctx, PaymentLinkType.INSTALLMENTS),
        "total_amount_to_pay": amounts.total_amount_to_pay,
        "total_amount_to_pay_in_cents": pricing_service.convert_to_cents(amounts.total_amount_to_pay),
        "installment_amount_to_pay": amounts.installment_amount_to_pay,
        "installment_amount_to_pay_in_cents": pricing_service.convert_to_cents(amounts.installment_amount_to_pay),
        "installments_count": count,
    }


def build_installments_deposit_insert_data(
    ctx: PricingContext,
    price_per_installment: Decimal,
    count: int,
    deposit_amount: Decimal,
    option: FirstPaymentDateAfterDepositOption,
) -> dict:
    amounts = pricing_service.calculate_installments_deposit_remaining_amount_to_pay(
        price_per_installment=ctx.localize(price_per_installment),
        installments_count=count,
        deposit_amount=deposit_amount,
        tva_rate=ctx.tva_rate,
        extra_tax_rate=ctx.extra_tax_rate,
        min_deposit_amount=ctx.localize(ctx.min_deposit_amount),
    )
    deposit = pricing_service.round_amount(deposit_amount)
    return {
        **_base_insert_data(ctx, PaymentLinkType.INSTALLMENTS_DEPOSIT),
        "total_amount_to_pay": amounts.total_amount_to_pay,
        "total_amount_to_pay_in_cents": pricing_service.convert_to_cents(amounts.total_amount_to_pay),
        "deposit_amount": deposit,
        "deposit_amount_in_cents": pricing_service.convert_to_cents(deposit),
        "remaining_amount_to_pay": amounts.remaining_amount_to_pay,
        "remaining_amount_to_pay_in_cents": pricing_service.convert_to_cents(amounts.remaining_amount_to_pay),
        "installment_amount_to_pay": amounts.installment_amount_to_pay,
        "installment_amount_to_pay_in_cents": pricing_service.convert_to_cents(amounts.installment_amount_to_pay),
        "remaining_installment_amount_to_pay": amounts.remaining_installment_amount_to_pay,
        "remaining_installment_amount_to_pay_in_cents": pricing_service.convert_to_cents(
            amounts.remaining_installment_amount_to_pay
        ),
        "installments_count": count,
        "first_payment_date_after_deposit": dates_service.first_payment_date_after_deposit(
            ctx.expires_at, option.value
        ),
    }


def _base_insert_data(ctx: PricingContext, link_type: PaymentLinkType) -> dict:
    return {
        **ctx.common,
        "type": link_type,
        "status": PaymentStatusType.CREATED,
        "currency": ctx.currency,
        "tva_rate": ctx.tva_rate,
        "extra_tax_rate": ctx.extra_tax_rate,
        "eur_to_ron_rate": ctx.eur_to_ron_rate,
        "expires_at": ctx.expires_at,
    }


def get_checkout_url(link_id: uuid.UUID) -> str:
    return f"{settings.public_base_url.rstrip('/')}/checkout/{link_id}"


class PaymentLinkService:
    """Builds, persists and checks out payment links."""

    def __init__(self, db: AsyncSession, stripe_gateway: StripeService, tbi_gateway: TbiService | None = None):
        self.db = db
        self.stripe = stripe_gateway
        self.tbi = tbi_gateway

    async def create_one_payment_link(
        self,
        kind: PaymentProductType,
        form: PaymentLinkFormBase,
        user_id: uuid.UUID,
    ) -> tuple[ProductPaymentLink | ExtensionPaymentLink, str]:
        """
        Create a payment link and, for card and bank transfer links, its Stripe PaymentIntent.

        Returns the persisted link and its public checkout URL.
        """
        try:
            if kind == PaymentProductType.PRODUCT:
                if not isinstance(form, ProductFormBase):
                    raise ValidationError("Product payment link form expected")
                insert_data = await self._product_insert_data(form, user_id)
            else:
                if not isinstance(form, ExtensionFormBase):
                    raise ValidationError("Extension payment link form expected")
                insert_data = await self._extension_insert_data(form, user_id)

            link = PAYMENT_LINK_MODELS[kind](id=uuid.uuid4(), **insert_data)

            # TBI opens its loan application at checkout instead
            if link.payment_method_type != PaymentMethodType.TBI:
                intent = await self.stripe.create_payment_intent(
                    amount_in_cents=pricing_service.first_charge_amount_in_cents(link),
                    currency=link.currency.value,
                    customer_email=link.customer_email,
                    customer_name=link.customer_name,
                    metadata={
                        "payment_link_id": str(link.id),
                        "payment_product_type": kind.value,
                        "payment_link_type": link.type.value,
                    },
                )
                link.stripe_payment_intent_id = intent["id"]
                link.stripe_client_secret = intent["client_secret"]

            self.db.add(link)
            await self.db.commit()
            await self.db.refresh(link)
        except CLIENT_ERRORS:
            await self.db.rollback()
            raise
        except Exception as e:
            await self.db.rollback()
            logger.error(f"❌ Failed to create {kind.value} payment link: {e!r}", exc_info=True)
            raise InternalError("Failed to create payment link") from e

        logger.info(f"✅ {kind.value} payment link {link.id} created ({link.type.value}, {link.payment_method_type.value})")
        return link, get_checkout_url(link.id)

    async def get_payment_link(self, kind: PaymentProductType, link_id: uuid.UUID):
        model = PAYMENT_LINK_MODELS[kind]
        result = await self.db.execute(
            select(model).where(model.id == link_id, model.deleted_at.is_(None))
        )
        link = result.scalar_one_or_none()
        if not link:
            raise NotFoundError("Payment link not found")
        return link

    async def initiate_tbi_payment(
        self,
        kind: PaymentProductType,
        link_id: uuid.UUID,
        billing_data: dict,
    ) -> str:
        """Open a TBI loan application for a TBI payment link; returns the TBI redirect URL."""
        link = await self.get_payment_link(kind, link_id)
        if link.payment_method_type != PaymentMethodType.TBI:
            raise ValidationError("Payment link is not a TBI payment link")
        if link.status not in OPEN_PAYMENT_STATUSES:
            raise ConflictError(f"Payment link is already {link.status.value}")
        if link.expires_at < dates_service.utcnow():
            raise ConflictError("Payment link has expired")
        if self.tbi is None:
            raise InternalError("TBI gateway not available")

        tbi_order_id = link.tbi_order_id or f"{link.id.hex[:12]}-{uuid.uuid4().hex[:8]}"
        try:
            redirect_url = await self.tbi.create_loan_application(
                order_id=tbi_order_id,
                order_total=link.total_amount_to_pay,
                product_name=link.product_name,
                billing_data=billing_data,
                back_ref=f"{get_checkout_url(link.id)}/tbi-return",
            )
        except PaymentEngineError as e:
            logger.error(f"❌ TBI loan application failed for link {link.id}: {e.message}")
            raise InternalError("Failed to start TBI payment") from e

        link.tbi_order_id = tbi_order_id
        link.billing_data = billing_data
        link.status = PaymentStatusType.PROCESSING
        await self.db.commit()

        logger.info(f"TBI payment initiated for link {link.id}, TBI order {tbi_order_id}")
        return redirect_url

    async def _product_insert_data(self, form: ProductFormBase, user_id: uuid.UUID) -> dict:
        product = await self._get_active(Product, form.product_id, "Product not found")
        ctx = await self._pricing_context(
            form,
            user_id,
            price=product.price,
            min_deposit_amount=product.min_deposit_amount or Decimal("0"),
            common={
                "product_id": product.id,
                "product_name": product.name,
                "customer_email": form.customer_email,
                "customer_name": form.customer_name,
            },
        )

        if form.type in (PaymentLinkType.DEPOSIT, PaymentLinkType.INSTALLMENTS_DEPOSIT):
            if not product.is_deposit_amount_enabled:
                raise ValidationError("Deposit payments are not enabled for this product")

        if form.type == PaymentLinkType.INTEGRAL:
            return build_integral_insert_data(ctx)

        if form.type == PaymentLinkType.DEPOSIT:
            option = await self._get_deposit_option(form.first_payment_date_after_deposit_option_id)
            return build_deposit_insert_data(ctx, form.deposit_amount, option)

        installment = await self._get_active(
            ProductInstallment, form.product_installment_id, "Product installment not found"
        )
        if installment.product_id != product.id:
            raise ValidationError("Installment tier does not belong to the product")
        ctx.common["product_installment_id"] = installment.id

        if form.type == PaymentLinkType.INSTALLMENTS:
            return build_installments_insert_data(ctx, installment.price_per_installment, installment.count)

        option = await self._get_deposit_option(form.first_payment_date_after_deposit_option_id)
        return build_installments_deposit_insert_data(
            ctx, installment.price_per_installment, installment.count, form.deposit_amount, option
        )

    async def _extension_insert_data(self, form: ExtensionFormBase, user_id: uuid.UUID) -> dict:
        extension = await self._get_active(ProductExtension, form.extension_id, "Extension not found")
        product = await self._get_active(Product, extension.product_id, "Extension not found")
        membership = await self._get_active(Membership, form.membership_id, "Membership not found")

        ctx = await self._pricing_context(
            form,
            user_id,
            price=extension.price,
            min_deposit_amount=extension.min_deposit_amount or Decimal("0"),
            common={
                "extension_id": extension.id,
                "membership_id": membership.id,
                "product_name": product.name,
                "customer_email": membership.customer_email,
                "customer_name": membership.customer_name,
            },
        )

        if form.type == PaymentLinkType.INTEGRAL:
            return build_integral_insert_data(ctx)

        if form.type == PaymentLinkType.DEPOSIT:
            option = await self._get_deposit_option(form.first_payment_date_after_deposit_option_id)
            return build_deposit_insert_data(ctx, form.deposit_amount, option)

        installment = await self._get_active(
            ExtensionInstallment, form.extension_installment_id, "Extension installment not found"
        )
        if installment.extension_id != extension.id:
            raise ValidationError("Installment tier does not belong to the extension")
        ctx.common["extension_installment_id"] = installment.id

        if form.type == PaymentLinkType.INSTALLMENTS:
            return build_installments_insert_data(ctx, installment.price_per_installment, installment.count)

        option = await self._get_deposit_option(form.first_payment_date_after_deposit_option_id)
        return build_installments_deposit_insert_data(
            ctx, installment.price_per_installment, installment.count, form.deposit_amount, option
        )

    async def _pricing_context(
        self,
        form: PaymentLinkFormBase,
        user_id: uuid.UUID,
        price: Decimal,
        min_deposit_amount: Decimal,
        common: dict,
    ) -> PricingContext:
        payment_setting = await self._get_payment_setting(form.payment_setting_id)
        await self._get_active(Contract, form.contract_id, "Contract not found")
        await self._get_active(User, user_id, "User not found")

        eur_to_ron_rate = None
        if payment_setting["currency"] == PaymentCurrencyType.RON:
            eur_to_ron_rate = await self._get_eur_to_ron_rate()

        return PricingContext(
            price=price,
            min_deposit_amount=min_deposit_amount,
            currency=payment_setting["currency"],
            tva_rate=payment_setting["tva_rate"],
            extra_tax_rate=payment_setting["extra_tax_rate"],
            eur_to_ron_rate=eur_to_ron_rate,
            expires_at=dates_service.create_payment_link_expires_at(),
            common={
                **common,
                "payment_method_type": form.payment_method_type,
                "contract_id": form.contract_id,
                "created_by_id": user_id,
                "caller_name": form.caller_name,
                "setter_name": form.setter_name,
            },
        )

    async def _get_active(self, model, entity_id: uuid.UUID, message: str):
        result = await self.db.execute(
            select(model).where(model.id == entity_id, model.deleted_at.is_(None))
        )
        entity = result.scalar_one_or_none()
        if not entity:
            raise NotFoundError(message)
        return entity

    async def _get_deposit_option(self, option_id: uuid.UUID) -> FirstPaymentDateAfterDepositOption:
        return await self._get_active(
            FirstPaymentDateAfterDepositOption, option_id, "First payment date after deposit option not found"
        )

    async def _get_payment_setting(self, payment_setting_id: uuid.UUID) -> dict:
        """Payment settings are immutable reference data, read through the cache."""
        cache_key = get_cache_key_payment_setting(str(payment_setting_id))
        cached = await cache_service.get(cache_key)
        if cached is None:
            payment_setting = await self._get_active(PaymentSetting, payment_setting_id, "Payment setting not found")
            cached = {
                "currency": payment_setting.currency.value,
                "tva_rate": str(payment_setting.tva_rate),
                "extra_tax_rate": str(payment_setting.extra_tax_rate or 0),
            }
            await cache_service.set(cache_key, cached)

        return {
            "currency": PaymentCurrencyType(cached["currency"]),
            "tva_rate": Decimal(cached["tva_rate"]),
            "extra_tax_rate": Decimal(cached["extra_tax_rate"]),
        }

    async def _get_eur_to_ron_rate(self) -> Decimal:
        cache_key = get_cache_key_constant(EUR_TO_RON_RATE_KEY)
        cached = await cache_service.get(cache_key)
        if cached is not None:
            return Decimal(cached)

        result = await self.db.execute(select(Setting).where(Setting.key == EUR_TO_RON_RATE_KEY))
        setting = result.scalar_one_or_none()
        if not setting:
            raise InternalError("EUR to RON rate not configured")

        value = setting.value
        if isinstance(value, dict) and "value" in value:
            value = value["value"]
        rate = pricing_service.to_decimal(str(value), EUR_TO_RON_RATE_KEY)

        await cache_service.set(cache_key, str(rate))
        return rate
