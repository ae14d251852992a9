"""Payment link form payloads, one model per payment structure."""
import uuid
from decimal import Decimal
from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field

from paylink.models.enums import PaymentLinkType, PaymentMethodType


class PaymentLinkFormBase(BaseModel):
    payment_method_type: PaymentMethodType
    payment_setting_id: uuid.UUID
    contract_id: uuid.UUID
    caller_name: str | None = None
    setter_name: str | None = None


class ProductFormBase(PaymentLinkFormBase):
    product_id: uuid.UUID
    customer_email: str
    customer_name: str | None = None


class ProductIntegralForm(ProductFormBase):
    type: Literal[PaymentLinkType.INTEGRAL]


class ProductDepositForm(ProductFormBase):
    type: Literal[PaymentLinkType.DEPOSIT]
    deposit_amount: Decimal = Field(ge=0)
    first_payment_date_after_deposit_option_id: uuid.UUID


class ProductInstallmentsForm(ProductFormBase):
    type: Literal[PaymentLinkType.INSTALLMENTS]
    product_installment_id: uuid.UUID


class ProductInstallmentsDepositForm(ProductFormBase):
    type: Literal[PaymentLinkType.INSTALLMENTS_DEPOSIT]
    product_installment_id: uuid.UUID
    deposit_amount: Decimal = Field(ge=0)
    first_payment_date_after_deposit_option_id: uuid.UUID


ProductPaymentLinkForm = Annotated[
    Union[ProductIntegralForm, ProductDepositForm, ProductInstallmentsForm, ProductInstallmentsDepositForm],
    Field(discriminator="type"),
]


class ExtensionFormBase(PaymentLinkFormBase):
    """Extension links take the customer from the membership they extend."""

    extension_id: uuid.UUID
    membership_id: uuid.UUID


class ExtensionIntegralForm(ExtensionFormBase):
    type: Literal[PaymentLinkType.INTEGRAL]


class ExtensionDepositForm(ExtensionFormBase):
    type: Literal[PaymentLinkType.DEPOSIT]
    deposit_amount: Decimal = Field(ge=0)
    first_payment_date_after_deposit_option_id: uuid.UUID


class ExtensionInstallmentsForm(ExtensionFormBase):
    type: Literal[PaymentLinkType.INSTALLMENTS]
    extension_installment_id: uuid.UUID


class ExtensionInstallmentsDepositForm(ExtensionFormBase):
    type: Literal[PaymentLinkType.INSTALLMENTS_DEPOSIT]
    extension_installment_id: uuid.UUID
    deposit_amount: Decimal = Field(ge=0)
    first_payment_date_after_deposit_option_id: uuid.UUID


ExtensionPaymentLinkForm = Annotated[
    Union[ExtensionIntegralForm, ExtensionDepositForm, ExtensionInstallmentsForm, ExtensionInstallmentsDepositForm],
    Field(discriminator="type"),
]


class BillingData(BaseModel):
    """Person or company details captured at checkout."""

    first_name: str
    last_name: str
    email: str
    phone: str | None = None
    address: str | None = None
    city: str | None = None
    county: str | None = None
    postal_code: str | None = None
    country: str | None = None
    company_name: str | None = None
    company_tax_id: str | None = None
    company_registration_number: str | None = None


class CreatePaymentLinkResponse(BaseModel):
    data: dict
    url: str
