"""Subscription models."""
import uuid
from datetime import datetime

from sqlalchemy import String, Integer, BigInteger, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column

from paylink.database import Base
from paylink.models.enums import (
    PaymentCurrencyType,
    PaymentMethodType,
    PaymentProductType,
    SubscriptionStatusType,
    enum_column,
)
from paylink.services.dates_service import utcnow


class SubscriptionColumns:
    """Columns shared by product and extension subscriptions."""

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    status: Mapped[SubscriptionStatusType] = mapped_column(enum_column(SubscriptionStatusType), nullable=False)
    payment_method_type: Mapped[PaymentMethodType] = mapped_column(enum_column(PaymentMethodType), nullable=False)
    membership_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("memberships.id"), nullable=False)
    customer_email: Mapped[str] = mapped_column(String, nullable=False)
    customer_name: Mapped[str | None] = mapped_column(String, nullable=True)
    product_name: Mapped[str] = mapped_column(String, nullable=False)
    currency: Mapped[PaymentCurrencyType] = mapped_column(enum_column(PaymentCurrencyType), nullable=False)

    # Schedule
    installment_amount_to_pay_in_cents: Mapped[int] = mapped_column(BigInteger, nullable=False)
    remaining_payments: Mapped[int] = mapped_column(Integer, nullable=False)
    next_payment_date: Mapped[datetime | None] = mapped_column(nullable=True)
    start_date: Mapped[datetime] = mapped_column(default=utcnow)

    # Failures
    payment_failure_count: Mapped[int] = mapped_column(Integer, default=0)
    last_payment_failure_reason: Mapped[str | None] = mapped_column(String, nullable=True)
    last_payment_attempt_date: Mapped[datetime | None] = mapped_column(nullable=True)

    # Graceful cancellation marker
    scheduled_cancellation_date: Mapped[datetime | None] = mapped_column(nullable=True)

    # SHA-256 of the one-time token sent to the customer to update the card
    update_payment_token: Mapped[str | None] = mapped_column(String, nullable=True)
    update_payment_token_expires_at: Mapped[datetime | None] = mapped_column(nullable=True)

    # Stored card for off-session charges
    stripe_customer_id: Mapped[str | None] = mapped_column(String, nullable=True)
    stripe_payment_method_id: Mapped[str | None] = mapped_column(String, nullable=True)

    created_at: Mapped[datetime] = mapped_column(default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(default=utcnow, onupdate=utcnow)
    deleted_at: Mapped[datetime | None] = mapped_column(nullable=True)


class ProductSubscription(SubscriptionColumns, Base):
    __tablename__ = "product_subscriptions"

    payment_product_type = PaymentProductType.PRODUCT

    product_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("products.id"), nullable=False)
    parent_order_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("product_orders.id"), unique=True, nullable=False)


class ExtensionSubscription(SubscriptionColumns, Base):
    __tablename__ = "extension_subscriptions"

    payment_product_type = PaymentProductType.EXTENSION

    extension_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("product_extensions.id"), nullable=False)
    parent_order_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("extension_orders.id"), unique=True, nullable=False)


SUBSCRIPTION_MODELS = {
    PaymentProductType.PRODUCT: ProductSubscription,
    PaymentProductType.EXTENSION: ExtensionSubscription,
}
