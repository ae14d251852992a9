"""Expected payments of a payment link, shown to the customer at checkout."""
from datetime import datetime

from paylink.models.enums import PaymentLinkType
from paylink.schemas.responses import ScheduledPayment
from paylink.services import dates_service


def build_payment_schedule(link, now: datetime | None = None) -> list[ScheduledPayment]:
    """
    Ordered list of payments the customer agrees to.

    The first item is always due at checkout (date None).
    """
    now = now or dates_service.utcnow()

    if link.type == PaymentLinkType.DEPOSIT:
        schedule = [ScheduledPayment(amount=link.deposit_amount, date=None, description="Deposit")]
        if link.remaining_amount_to_pay and link.first_payment_date_after_deposit:
            schedule.append(
                ScheduledPayment(
                    amount=link.remaining_amount_to_pay,
                    date=link.first_payment_date_after_deposit,
                    description="Remaining balance",
                )
            )
        return schedule

    if link.type == PaymentLinkType.INSTALLMENTS:
        count = link.installments_count or 1
        return [
            ScheduledPayment(
                amount=link.installment_amount_to_pay,
                date=None if i == 0 else dates_service.add_months(now, i),
                description=f"Installment {i + 1}",
            )
            for i in range(count)
        ]

    if link.type == PaymentLinkType.INSTALLMENTS_DEPOSIT:
        schedule = [ScheduledPayment(amount=link.deposit_amount, date=None, description="Deposit")]
        if link.first_payment_date_after_deposit:
            schedule.extend(
                ScheduledPayment(
                    amount=link.remaining_installment_amount_to_pay,
                    date=dates_service.add_months(link.first_payment_date_after_deposit, i),
                    description=f"Installment {i + 1}",
                )
                for i in range(link.installments_count or 1)
            )
        return schedule

    return [ScheduledPayment(amount=link.total_amount_to_pay, date=None, description="Full payment")]
