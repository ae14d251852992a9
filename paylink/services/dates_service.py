"""Date helpers for payment links and subscription schedules."""
import calendar
from datetime import datetime, timedelta, timezone

from paylink.config import settings


def utcnow() -> datetime:
    """Current time as a naive UTC datetime, the way it is stored."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def add_days(value: datetime, days: int) -> datetime:
    return value + timedelta(days=days)


def add_months(value: datetime, months: int) -> datetime:
    """
    Add calendar months, clamping the day to the end of the target month.

    Jan 31 + 1 month gives Feb 28 (or 29 in a leap year).
    """
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def create_payment_link_expires_at(now: datetime | None = None) -> datetime:
    """Payment links stay open for a fixed number of hours after creation."""
    return (now or utcnow()) + timedelta(hours=settings.payment_link_ttl_hours)


def first_payment_date_after_deposit(expires_at: datetime, offset_days: int) -> datetime:
    """The first deferred charge happens a number of days after the link expires."""
    return add_days(expires_at, offset_days)


def create_update_payment_token_expires_at(now: datetime | None = None) -> datetime:
    return (now or utcnow()) + timedelta(hours=settings.update_payment_token_ttl_hours)
