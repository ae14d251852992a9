"""Payment link models."""
import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import String, Numeric, BigInteger, Integer, ForeignKey, JSON
from sqlalchemy.orm import Mapped, mapped_column

from paylink.database import Base
from paylink.models.enums import (
    PaymentCurrencyType,
    PaymentLinkType,
    PaymentMethodType,
    PaymentProductType,
    PaymentStatusType,
    enum_column,
)
from paylink.services.dates_service import utcnow


class PaymentLinkColumns:
    """Columns shared by product and extension payment links."""

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    type: Mapped[PaymentLinkType] = mapped_column(enum_column(PaymentLinkType), nullable=False)
    payment_method_type: Mapped[PaymentMethodType] = mapped_column(enum_column(PaymentMethodType), nullable=False)
    status: Mapped[PaymentStatusType] = mapped_column(
        enum_column(PaymentStatusType), nullable=False, default=PaymentStatusType.CREATED
    )
    currency: Mapped[PaymentCurrencyType] = mapped_column(enum_column(PaymentCurrencyType), nullable=False)

    customer_email: Mapped[str] = mapped_column(String, nullable=False)
    customer_name: Mapped[str | None] = mapped_column(String, nullable=True)
    caller_name: Mapped[str | None] = mapped_column(String, nullable=True)
    setter_name: Mapped[str | None] = mapped_column(String, nullable=True)
    product_name: Mapped[str] = mapped_column(String, nullable=False)

    # Rates captured at creation
    tva_rate: Mapped[Decimal] = mapped_column(Numeric(10, 4), nullable=False)
    extra_tax_rate: Mapped[Decimal] = mapped_column(Numeric(10, 4), nullable=False)
    eur_to_ron_rate: Mapped[Decimal | None] = mapped_column(Numeric(10, 4), nullable=True)

    # Amounts
    total_amount_to_pay: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    total_amount_to_pay_in_cents: Mapped[int] = mapped_column(BigInteger, nullable=False)
    deposit_amount: Mapped[Decimal | None] = mapped_column(Numeric(10, 2), nullable=True)
    deposit_amount_in_cents: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    remaining_amount_to_pay: Mapped[Decimal | None] = mapped_column(Numeric(10, 2), nullable=True)
    remaining_amount_to_pay_in_cents: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    installment_amount_to_pay: Mapped[Decimal | None] = mapped_column(Numeric(10, 2), nullable=True)
    installment_amount_to_pay_in_cents: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    remaining_installment_amount_to_pay: Mapped[Decimal | None] = mapped_column(Numeric(10, 2), nullable=True)
    remaining_installment_amount_to_pay_in_cents: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    installments_count: Mapped[int | None] = mapped_column(Integer, nullable=True)

    first_payment_date_after_deposit: Mapped[datetime | None] = mapped_column(nullable=True)
    expires_at: Mapped[datetime] = mapped_column(nullable=False)

    # Gateways
    stripe_payment_intent_id: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
    stripe_client_secret: Mapped[str | None] = mapped_column(String, nullable=True)
    tbi_order_id: Mapped[str | None] = mapped_column(String, unique=True, nullable=True)
    billing_data: Mapped[dict | None] = mapped_column(JSON, nullable=True)  # Filled at checkout

    created_at: Mapped[datetime] = mapped_column(default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(default=utcnow, onupdate=utcnow)
    deleted_at: Mapped[datetime | None] = mapped_column(nullable=True)


class ProductPaymentLink(PaymentLinkColumns, Base):
    """Payment link for a new product purchase."""

    __tablename__ = "product_payment_links"

    payment_product_type = PaymentProductType.PRODUCT

    product_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("products.id"), nullable=False)
    product_installment_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("product_installments.id"), nullable=True
    )
    contract_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("contracts.id"), nullable=False)
    created_by_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("users.id"), nullable=False)


class ExtensionPaymentLink(PaymentLinkColumns, Base):
    """Payment link that extends an existing membership."""

    __tablename__ = "extension_payment_links"

    payment_product_type = PaymentProductType.EXTENSION

    extension_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("product_extensions.id"), nullable=False)
    extension_installment_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("extension_installments.id"), nullable=True
    )
    membership_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("memberships.id"), nullable=False)
    contract_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("contracts.id"), nullable=False)
    created_by_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("users.id"), nullable=False)


PAYMENT_LINK_MODELS = {
    PaymentProductType.PRODUCT: ProductPaymentLink,
    PaymentProductType.EXTENSION: ExtensionPaymentLink,
}
