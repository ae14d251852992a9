"""Reference data used when pricing payment links."""
import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import String, Numeric, Integer, JSON
from sqlalchemy.orm import Mapped, mapped_column

from paylink.database import Base
from paylink.models.enums import PaymentCurrencyType, enum_column
from paylink.services.dates_service import utcnow

EUR_TO_RON_RATE_KEY = "eur_to_ron_rate"


class Setting(Base):
    """Key/value constants, e.g. {"key": "eur_to_ron_rate", "value": {"value": "4.9764"}}."""

    __tablename__ = "settings"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    key: Mapped[str] = mapped_column(String, unique=True, nullable=False)
    value: Mapped[dict] = mapped_column(JSON, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(default=utcnow, onupdate=utcnow)


class PaymentSetting(Base):
    """Per-market currency and tax rates."""

    __tablename__ = "payment_settings"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    label: Mapped[str] = mapped_column(String, nullable=False)
    currency: Mapped[PaymentCurrencyType] = mapped_column(enum_column(PaymentCurrencyType), nullable=False)
    tva_rate: Mapped[Decimal] = mapped_column(Numeric(10, 4), nullable=False)
    extra_tax_rate: Mapped[Decimal] = mapped_column(Numeric(10, 4), default=Decimal("0"))
    created_at: Mapped[datetime] = mapped_column(default=utcnow)
    deleted_at: Mapped[datetime | None] = mapped_column(nullable=True)


class FirstPaymentDateAfterDepositOption(Base):
    """How many days after the link expires the first deferred charge happens."""

    __tablename__ = "first_payment_date_after_deposit_options"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    label: Mapped[str] = mapped_column(String, nullable=False)
    value: Mapped[int] = mapped_column(Integer, nullable=False)  # days
    created_at: Mapped[datetime] = mapped_column(default=utcnow)
    deleted_at: Mapped[datetime | None] = mapped_column(nullable=True)


class Contract(Base):
    __tablename__ = "contracts"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String, nullable=False)
    created_at: Mapped[datetime] = mapped_column(default=utcnow)
    deleted_at: Mapped[datetime | None] = mapped_column(nullable=True)
