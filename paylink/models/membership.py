"""Membership model."""
import uuid
from datetime import datetime

from sqlalchemy import String, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column

from paylink.database import Base
from paylink.models.enums import MembershipStatusType, enum_column
from paylink.services.dates_service import utcnow


class Membership(Base):
    """Customer access window for a product."""

    __tablename__ = "memberships"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    parent_order_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("product_orders.id"), unique=True, nullable=False)
    customer_email: Mapped[str] = mapped_column(String, nullable=False)
    customer_name: Mapped[str | None] = mapped_column(String, nullable=True)
    product_name: Mapped[str] = mapped_column(String, nullable=False)
    status: Mapped[MembershipStatusType] = mapped_column(enum_column(MembershipStatusType), nullable=False)
    start_date: Mapped[datetime] = mapped_column(nullable=False)
    end_date: Mapped[datetime] = mapped_column(nullable=False)
    # Set while the membership waits for the first deferred payment
    delayed_start_date: Mapped[datetime | None] = mapped_column(nullable=True)
    created_at: Mapped[datetime] = mapped_column(default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(default=utcnow, onupdate=utcnow)
    deleted_at: Mapped[datetime | None] = mapped_column(nullable=True)
