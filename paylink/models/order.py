"""Order models."""
import uuid
from datetime import datetime

from sqlalchemy import String, ForeignKey, JSON
from sqlalchemy.orm import Mapped, mapped_column

from paylink.database import Base
from paylink.models.enums import OrderStatusType, OrderType, PaymentProductType, enum_column
from paylink.services.dates_service import utcnow


class OrderColumns:
    """Columns shared by product and extension orders."""

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    type: Mapped[OrderType] = mapped_column(enum_column(OrderType), nullable=False)
    status: Mapped[OrderStatusType] = mapped_column(enum_column(OrderStatusType), nullable=False)
    # One order per payment event; TBI orders use "tbi_<order id>"
    stripe_payment_intent_id: Mapped[str | None] = mapped_column(String, unique=True, nullable=True)
    billing_data: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    customer_email: Mapped[str] = mapped_column(String, nullable=False)
    customer_name: Mapped[str | None] = mapped_column(String, nullable=True)
    product_name: Mapped[str] = mapped_column(String, nullable=False)
    completed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    created_at: Mapped[datetime] = mapped_column(default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(default=utcnow, onupdate=utcnow)
    deleted_at: Mapped[datetime | None] = mapped_column(nullable=True)


class ProductOrder(OrderColumns, Base):
    __tablename__ = "product_orders"

    payment_product_type = PaymentProductType.PRODUCT

    payment_link_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("product_payment_links.id"), nullable=False)
    # Set on renewal orders
    subscription_id: Mapped[uuid.UUID | None] = mapped_column(nullable=True)


class ExtensionOrder(OrderColumns, Base):
    __tablename__ = "extension_orders"

    payment_product_type = PaymentProductType.EXTENSION

    payment_link_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("extension_payment_links.id"), nullable=False)
    membership_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("memberships.id"), nullable=False)
    subscription_id: Mapped[uuid.UUID | None] = mapped_column(nullable=True)


ORDER_MODELS = {
    PaymentProductType.PRODUCT: ProductOrder,
    PaymentProductType.EXTENSION: ExtensionOrder,
}
