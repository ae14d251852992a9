"""Enumerations stored in the database."""
import enum

from sqlalchemy import Enum


class PaymentLinkType(str, enum.Enum):
    INTEGRAL = "Integral"
    DEPOSIT = "Deposit"
    INSTALLMENTS = "Installments"
    INSTALLMENTS_DEPOSIT = "InstallmentsDeposit"


class PaymentProductType(str, enum.Enum):
    PRODUCT = "Product"
    EXTENSION = "Extension"


class PaymentMethodType(str, enum.Enum):
    CARD = "Card"
    BANK_TRANSFER = "BankTransfer"
    TBI = "TBI"


class PaymentCurrencyType(str, enum.Enum):
    EUR = "EUR"
    RON = "RON"


class PaymentStatusType(str, enum.Enum):
    CREATED = "Created"
    PROCESSING = "Processing"
    SUCCEEDED = "Succeeded"
    CANCELED = "Canceled"
    PAYMENT_FAILED = "PaymentFailed"


class OrderType(str, enum.Enum):
    PARENT_ORDER = "ParentOrder"
    RENEWAL_ORDER = "RenewalOrder"
    ONE_TIME_PAYMENT_ORDER = "OneTimePaymentOrder"


class OrderStatusType(str, enum.Enum):
    PENDING_CARD_PAYMENT = "PendingCardPayment"
    PENDING_BANK_TRANSFER_PAYMENT = "PendingBankTransferPayment"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"


class MembershipStatusType(str, enum.Enum):
    ACTIVE = "Active"
    PAUSED = "Paused"
    CANCELLED = "Cancelled"
    DELAYED = "Delayed"


class SubscriptionStatusType(str, enum.Enum):
    ACTIVE = "Active"
    ON_HOLD = "OnHold"
    CANCELLED = "Cancelled"
    COMPLETED = "Completed"


# Payment links that can still be paid or canceled
OPEN_PAYMENT_STATUSES = (PaymentStatusType.CREATED, PaymentStatusType.PROCESSING)

# Subscriptions that no longer accept changes
TERMINAL_SUBSCRIPTION_STATUSES = (SubscriptionStatusType.CANCELLED, SubscriptionStatusType.COMPLETED)


def enum_column(enum_class: type[enum.Enum]) -> Enum:
    """String column holding the enum values."""
    return Enum(
        enum_class,
        native_enum=False,
        length=32,
        values_callable=lambda members: [member.value for member in members],
        validate_strings=True,
    )
