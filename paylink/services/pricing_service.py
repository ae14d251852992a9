"""
Pricing calculator.

All amounts are Decimal and every rounding goes through round_amount
(half-up to 2 decimals), so that cent conversions round-trip exactly.
"""
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Union

from paylink.core.errors import ValidationError
from paylink.models.enums import PaymentLinkType

Numeric = Union[Decimal, int, str]

TWO_PLACES = Decimal("0.01")
HUNDRED = Decimal("100")


@dataclass(frozen=True)
class DepositAmounts:
    total_amount_to_pay: Decimal
    remaining_amount_to_pay: Decimal


@dataclass(frozen=True)
class InstallmentsAmounts:
    installment_amount_to_pay: Decimal
    total_amount_to_pay: Decimal


@dataclass(frozen=True)
class InstallmentsDepositAmounts:
    installment_amount_to_pay: Decimal
    total_amount_to_pay: Decimal
    remaining_amount_to_pay: Decimal
    remaining_installment_amount_to_pay: Decimal


def to_decimal(value: Numeric, field: str = "amount") -> Decimal:
    """Parse a non-negative decimal, raising ValidationError otherwise."""
    if isinstance(value, bool) or not isinstance(value, (Decimal, int, str)):
        raise ValidationError(f"{field} must be a decimal number")
    try:
        result = Decimal(value.strip() if isinstance(value, str) else value)
    except InvalidOperation:
        raise ValidationError(f"{field} must be a decimal number")
    if not result.is_finite():
        raise ValidationError(f"{field} must be a decimal number")
    if result < 0:
        raise ValidationError(f"{field} must not be negative")
    return result


def round_amount(value: Decimal) -> Decimal:
    return value.quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def add_tax(amount: Decimal, tax_rate: Decimal) -> Decimal:
    return amount + amount * tax_rate / HUNDRED


def calculate_total_amount_to_pay(price: Numeric, tva_rate: Numeric, extra_tax_rate: Numeric) -> Decimal:
    """total = price * (1 + extra tax) * (1 + TVA)"""
    base = to_decimal(price, "price")
    with_extra_tax = add_tax(base, to_decimal(extra_tax_rate, "extra_tax_rate"))
    return round_amount(add_tax(with_extra_tax, to_decimal(tva_rate, "tva_rate")))


def calculate_deposit_remaining_amount_to_pay(
    price: Numeric,
    deposit_amount: Numeric,
    tva_rate: Numeric,
    extra_tax_rate: Numeric,
    min_deposit_amount: Numeric = 0,
) -> DepositAmounts:
    total = calculate_total_amount_to_pay(price, tva_rate, extra_tax_rate)
    deposit = round_amount(to_decimal(deposit_amount, "deposit_amount"))
    _check_deposit(deposit, total, to_decimal(min_deposit_amount, "min_deposit_amount"))
    return DepositAmounts(
        total_amount_to_pay=total,
        remaining_amount_to_pay=total - deposit,
    )


def calculate_installments_amount_to_pay(
    price_per_installment: Numeric,
    installments_count: int,
    tva_rate: Numeric,
    extra_tax_rate: Numeric,
) -> InstallmentsAmounts:
    count = _check_installments_count(installments_count)
    installment = calculate_total_amount_to_pay(price_per_installment, tva_rate, extra_tax_rate)
    return InstallmentsAmounts(
        installment_amount_to_pay=installment,
        total_amount_to_pay=installment * count,
    )


def calculate_installments_deposit_remaining_amount_to_pay(
    price_per_installment: Numeric,
    installments_count: int,
    deposit_amount: Numeric,
    tva_rate: Numeric,
    extra_tax_rate: Numeric,
    min_deposit_amount: Numeric = 0,
) -> InstallmentsDepositAmounts:
    """
    Installments plan where a deposit is paid upfront.

    The deposit is taken off the total and what is left is spread evenly
    over all the installments, so remaining_installment_amount_to_pay is
    what each deferred charge collects.
    """
    amounts = calculate_installments_amount_to_pay(
        price_per_installment, installments_count, tva_rate, extra_tax_rate
    )
    deposit = round_amount(to_decimal(deposit_amount, "deposit_amount"))
    _check_deposit(deposit, amounts.total_amount_to_pay, to_decimal(min_deposit_amount, "min_deposit_amount"))

    remaining = amounts.total_amount_to_pay - deposit
    return InstallmentsDepositAmounts(
        installment_amount_to_pay=amounts.installment_amount_to_pay,
        total_amount_to_pay=amounts.total_amount_to_pay,
        remaining_amount_to_pay=remaining,
        remaining_installment_amount_to_pay=round_amount(remaining / installments_count),
    )


def convert_to_cents(amount: Numeric) -> int:
    return int(round_amount(to_decimal(amount)) * HUNDRED)


def cents_to_amount(cents: int) -> Decimal:
    if isinstance(cents, bool) or not isinstance(cents, int) or cents < 0:
        raise ValidationError("cents must be a non-negative integer")
    return round_amount(Decimal(cents) / HUNDRED)


def convert_eur_to_ron(amount_eur: Numeric, eur_to_ron_rate: Numeric) -> Decimal:
    return round_amount(to_decimal(amount_eur, "amount") * to_decimal(eur_to_ron_rate, "eur_to_ron_rate"))


def first_charge_amount_in_cents(link) -> int:
    """Amount collected by the checkout intent of a payment link."""
    if link.type in (PaymentLinkType.DEPOSIT, PaymentLinkType.INSTALLMENTS_DEPOSIT):
        return link.deposit_amount_in_cents
    if link.type == PaymentLinkType.INSTALLMENTS:
        return link.installment_amount_to_pay_in_cents
    return link.total_amount_to_pay_in_cents


def _check_deposit(deposit: Decimal, total: Decimal, minimum: Decimal) -> None:
    if deposit > total:
        raise ValidationError(f"Deposit amount {deposit} exceeds the total amount {total}")
    if deposit < minimum:
        raise ValidationError(f"Deposit amount {deposit} is below the minimum deposit {minimum}")


def _check_installments_count(installments_count: int) -> int:
    if isinstance(installments_count, bool) or not isinstance(installments_count, int) or installments_count < 1:
        raise ValidationError("installments_count must be a positive integer")
    return installments_count
