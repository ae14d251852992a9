"""Database models."""
from paylink.models.user import User
from paylink.models.product import Product, ProductInstallment, ProductExtension, ExtensionInstallment
from paylink.models.setting import Setting, PaymentSetting, FirstPaymentDateAfterDepositOption, Contract
from paylink.models.payment_link import ProductPaymentLink, ExtensionPaymentLink
from paylink.models.order import ProductOrder, ExtensionOrder
from paylink.models.membership import Membership
from paylink.models.subscription import ProductSubscription, ExtensionSubscription

__all__ = [
    "User",
    "Product",
    "ProductInstallment",
    "ProductExtension",
    "ExtensionInstallment",
    "Setting",
    "PaymentSetting",
    "FirstPaymentDateAfterDepositOption",
    "Contract",
    "ProductPaymentLink",
    "ExtensionPaymentLink",
    "ProductOrder",
    "ExtensionOrder",
    "Membership",
    "ProductSubscription",
    "ExtensionSubscription",
]
