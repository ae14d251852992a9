"""Response models."""
import uuid
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict

from paylink.models.enums import (
    PaymentCurrencyType,
    PaymentLinkType,
    PaymentMethodType,
    PaymentStatusType,
    SubscriptionStatusType,
)


class PaymentLinkOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    type: PaymentLinkType
    payment_method_type: PaymentMethodType
    status: PaymentStatusType
    currency: PaymentCurrencyType
    customer_email: str
    customer_name: str | None
    product_name: str
    tva_rate: Decimal
    extra_tax_rate: Decimal
    eur_to_ron_rate: Decimal | None
    total_amount_to_pay: Decimal
    total_amount_to_pay_in_cents: int
    deposit_amount: Decimal | None
    deposit_amount_in_cents: int | None
    remaining_amount_to_pay: Decimal | None
    remaining_amount_to_pay_in_cents: int | None
    installment_amount_to_pay: Decimal | None
    installment_amount_to_pay_in_cents: int | None
    remaining_installment_amount_to_pay: Decimal | None
    remaining_installment_amount_to_pay_in_cents: int | None
    installments_count: int | None
    first_payment_date_after_deposit: datetime | None
    expires_at: datetime
    stripe_payment_intent_id: str | None
    stripe_client_secret: str | None
    created_at: datetime | None


class SubscriptionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    status: SubscriptionStatusType
    payment_method_type: PaymentMethodType
    membership_id: uuid.UUID
    remaining_payments: int
    next_payment_date: datetime | None
    payment_failure_count: int
    last_payment_failure_reason: str | None
    scheduled_cancellation_date: datetime | None


class SubscriptionSummary(BaseModel):
    """What the customer sees on the update-card page."""

    id: uuid.UUID
    customer_email: str
    customer_name: str | None
    product_name: str


class ScheduledPayment(BaseModel):
    amount: Decimal
    date: datetime | None  # None means due at checkout
    description: str


class JobResultOut(BaseModel):
    processedCount: int
    successCount: int
    errors: list[dict]
    duration: str
    timestamp: datetime
