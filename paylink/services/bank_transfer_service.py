"""Bank transfer checkout and staff confirmation."""
import logging
import uuid

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from paylink.core.errors import ConflictError, NotFoundError, ValidationError
from paylink.models.enums import (
    OPEN_PAYMENT_STATUSES,
    OrderStatusType,
    OrderType,
    PaymentLinkType,
    PaymentMethodType,
    PaymentProductType,
    PaymentStatusType,
)
from paylink.models.order import ORDER_MODELS
from paylink.models.payment_link import PAYMENT_LINK_MODELS
from paylink.services import dates_service
from paylink.services.fulfillment_service import FulfillmentService

logger = logging.getLogger(__name__)


class BankTransferService:
    """
    Customers choose bank transfer at checkout and receive the bank details;
    staff confirm the order once the money arrives.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def initiate(self, kind: PaymentProductType, payment_link_id: uuid.UUID, billing_data: dict):
        """
        Register the customer's intent to pay by bank transfer.

        Creates the pending order once per link; repeated calls return it.
        """
        link_model = PAYMENT_LINK_MODELS[kind]
        order_model = ORDER_MODELS[kind]

        result = await self.db.execute(
            select(link_model).where(link_model.id == payment_link_id, link_model.deleted_at.is_(None))
        )
        link = result.scalar_one_or_none()
        if not link:
            raise NotFoundError("Payment link not found")
        if link.payment_method_type != PaymentMethodType.BANK_TRANSFER:
            raise ValidationError("Payment link is not a bank transfer payment link")
        if link.status not in OPEN_PAYMENT_STATUSES:
            raise ConflictError(f"Payment link is already {link.status.value}")

        result = await self.db.execute(
            select(order_model).where(
                order_model.payment_link_id == link.id,
                order_model.status == OrderStatusType.PENDING_BANK_TRANSFER_PAYMENT,
                order_model.deleted_at.is_(None),
            )
        )
        existing = result.scalar_one_or_none()
        if existing:
            return existing

        if link.expires_at < dates_service.utcnow():
            raise ConflictError("Payment link has expired")

        order = order_model(
            id=uuid.uuid4(),
            type=(
                OrderType.ONE_TIME_PAYMENT_ORDER
                if link.type == PaymentLinkType.INTEGRAL
                else OrderType.PARENT_ORDER
            ),
            status=OrderStatusType.PENDING_BANK_TRANSFER_PAYMENT,
            payment_link_id=link.id,
            billing_data=billing_data,
            customer_email=link.customer_email,
            customer_name=link.customer_name,
            product_name=link.product_name,
        )
        if kind == PaymentProductType.EXTENSION:
            order.membership_id = link.membership_id
        self.db.add(order)

        await self.db.execute(
            update(link_model)
            .where(link_model.id == link.id, link_model.status == PaymentStatusType.CREATED)
            .values(
                status=PaymentStatusType.PROCESSING,
                billing_data=billing_data,
                updated_at=dates_service.utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        await self.db.refresh(order)

        logger.info(f"Bank transfer order {order.id} created for payment link {link.id}")
        return order

    async def confirm(self, kind: PaymentProductType, order_id: uuid.UUID):
        """Staff confirmed the transfer: complete the order and fulfill the link."""
        order_model = ORDER_MODELS[kind]
        result = await self.db.execute(
            select(order_model).where(order_model.id == order_id, order_model.deleted_at.is_(None))
        )
        order = result.scalar_one_or_none()
        if not order:
            raise NotFoundError("Order not found")
        if order.status != OrderStatusType.PENDING_BANK_TRANSFER_PAYMENT:
            raise ConflictError(f"Order is already {order.status.value}")

        fulfilled = await FulfillmentService(self.db).fulfill_bank_transfer(kind, order)
        if not fulfilled:
            raise ConflictError("Payment link is no longer open for payment")

        await self.db.refresh(order)
        logger.info(f"✅ Bank transfer order {order.id} confirmed")
        return order
