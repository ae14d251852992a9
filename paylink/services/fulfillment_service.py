"""Turns successful payments into orders, memberships and subscriptions."""
import logging
import uuid

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from paylink.core.errors import NotFoundError
from paylink.models.enums import (
    OPEN_PAYMENT_STATUSES,
    MembershipStatusType,
    OrderStatusType,
    OrderType,
    PaymentLinkType,
    PaymentMethodType,
    PaymentProductType,
    PaymentStatusType,
    SubscriptionStatusType,
)
from paylink.models.membership import Membership
from paylink.models.order import ORDER_MODELS
from paylink.models.payment_link import PAYMENT_LINK_MODELS
from paylink.models.product import Product, ProductExtension
from paylink.models.subscription import SUBSCRIPTION_MODELS
from paylink.services import dates_service

logger = logging.getLogger(__name__)

RECURRING_LINK_TYPES = (
    PaymentLinkType.DEPOSIT,
    PaymentLinkType.INSTALLMENTS,
    PaymentLinkType.INSTALLMENTS_DEPOSIT,
)


def tbi_payment_key(tbi_order_id: str) -> str:
    """Orders paid through TBI are keyed by the TBI order id."""
    return f"tbi_{tbi_order_id}"


def _has_deferred_payments(link) -> bool:
    """False when the first payment already covered the whole amount, e.g. a deposit equal to the total."""
    if link.type == PaymentLinkType.INSTALLMENTS:
        return (link.installments_count or 1) > 1
    return (link.remaining_amount_to_pay_in_cents or 0) > 0


class FulfillmentService:
    """
    Fulfillment of paid payment links.

    Every entry point runs in a single transaction: the link is claimed
    with a conditional status update, then the order, membership and
    subscription are written and committed together. Redelivered events
    find the existing order (or lose the claim) and change nothing.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def fulfill_stripe_payment(
        self,
        kind: PaymentProductType,
        payment_link_id: uuid.UUID,
        payment_intent: dict,
    ) -> bool:
        """
        Fulfill a payment_intent.succeeded event.

        payment_intent carries "id", and optionally "customer" and
        "payment_method", which are stored on the subscription for later
        off-session charges. Returns False if the event was already handled.
        """
        link = await self._get_link(kind, payment_link_id)
        return await self._fulfill(
            kind,
            link,
            payment_key=payment_intent["id"],
            customer_id=payment_intent.get("customer"),
            payment_method_id=payment_intent.get("payment_method"),
        )

    async def fulfill_tbi_approval(self, tbi_order_id: str) -> bool:
        """TBI financed the whole amount: one-time order and membership, no subscription."""
        kind, link = await self.get_link_by_tbi_order_id(tbi_order_id)
        return await self._fulfill(kind, link, payment_key=tbi_payment_key(tbi_order_id), one_shot=True)

    async def fulfill_bank_transfer(self, kind: PaymentProductType, order) -> bool:
        """Complete a pending bank transfer order confirmed by staff."""
        link = await self._get_link(kind, order.payment_link_id)
        return await self._fulfill(kind, link, payment_key=None, pending_order=order)

    async def mark_tbi_rejected(self, tbi_order_id: str, reason: str | None) -> bool:
        """Rejected with a reason means the payment failed, without one the customer gave up."""
        kind, link = await self.get_link_by_tbi_order_id(tbi_order_id)
        new_status = PaymentStatusType.PAYMENT_FAILED if reason and reason.strip() else PaymentStatusType.CANCELED
        changed = await self._transition_link(kind, link.id, OPEN_PAYMENT_STATUSES, new_status)
        await self.db.commit()
        logger.info(f"TBI order {tbi_order_id} rejected, link {link.id} -> {new_status.value} ({reason or 'no reason'})")
        return changed

    async def mark_tbi_pending(self, tbi_order_id: str) -> bool:
        kind, link = await self.get_link_by_tbi_order_id(tbi_order_id)
        changed = await self._transition_link(
            kind, link.id, (PaymentStatusType.CREATED,), PaymentStatusType.PROCESSING
        )
        await self.db.commit()
        return changed

    async def get_link_by_tbi_order_id(self, tbi_order_id: str):
        for kind, model in PAYMENT_LINK_MODELS.items():
            result = await self.db.execute(
                select(model).where(model.tbi_order_id == tbi_order_id, model.deleted_at.is_(None))
            )
            link = result.scalar_one_or_none()
            if link:
                return kind, link
        raise NotFoundError(f"No payment link for TBI order {tbi_order_id}")

    async def _fulfill(
        self,
        kind: PaymentProductType,
        link,
        payment_key: str | None,
        customer_id: str | None = None,
        payment_method_id: str | None = None,
        one_shot: bool = False,
        pending_order=None,
    ) -> bool:
        order_model = ORDER_MODELS[kind]
        link_id = link.id

        try:
            if payment_key:
                result = await self.db.execute(
                    select(order_model.id).where(order_model.stripe_payment_intent_id == payment_key)
                )
                if result.scalar_one_or_none():
                    logger.info(f"Payment {payment_key} already fulfilled, skipping")
                    await self.db.rollback()
                    return False

            claimed = await self._transition_link(kind, link_id, OPEN_PAYMENT_STATUSES, PaymentStatusType.SUCCEEDED)
            if not claimed:
                logger.info(f"Payment link {link_id} is no longer open, skipping fulfillment")
                await self.db.rollback()
                return False

            now = dates_service.utcnow()
            recurring = link.type in RECURRING_LINK_TYPES and not one_shot and _has_deferred_payments(link)
            order_type = OrderType.PARENT_ORDER if recurring else OrderType.ONE_TIME_PAYMENT_ORDER

            if pending_order is not None:
                order = pending_order
                order.type = order_type
                order.status = OrderStatusType.COMPLETED
                order.completed_at = now
            else:
                order = order_model(
                    id=uuid.uuid4(),
                    type=order_type,
                    status=OrderStatusType.COMPLETED,
                    payment_link_id=link.id,
                    stripe_payment_intent_id=payment_key,
                    billing_data=link.billing_data,
                    customer_email=link.customer_email,
                    customer_name=link.customer_name,
                    product_name=link.product_name,
                    completed_at=now,
                )
                if kind == PaymentProductType.EXTENSION:
                    order.membership_id = link.membership_id
                self.db.add(order)
            await self.db.flush()

            if kind == PaymentProductType.PRODUCT:
                membership = await self._create_membership(link, order, recurring)
                owner = {"product_id": link.product_id}
            else:
                membership = await self._extend_membership(link)
                owner = {"extension_id": link.extension_id}

            if recurring:
                self._create_subscription(
                    kind, link, order, membership, owner, customer_id, payment_method_id
                )

            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info(
            f"✅ {kind.value} payment link {link.id} fulfilled: order {order.id} ({order_type.value}), "
            f"membership {membership.id}"
        )
        return True

    async def _transition_link(self, kind, link_id, from_statuses, new_status: PaymentStatusType) -> bool:
        model = PAYMENT_LINK_MODELS[kind]
        result = await self.db.execute(
            update(model)
            .where(model.id == link_id, model.status.in_(from_statuses))
            .values(status=new_status, updated_at=dates_service.utcnow())
            .execution_options(synchronize_session=False)
        )
        return result.rowcount > 0

    async def _create_membership(self, link, order, recurring: bool) -> Membership:
        product = await self.db.get(Product, link.product_id)
        if not product:
            raise NotFoundError("Product not found")

        now = dates_service.utcnow()
        delayed = recurring and link.type in (PaymentLinkType.DEPOSIT, PaymentLinkType.INSTALLMENTS_DEPOSIT)
        start_date = (link.first_payment_date_after_deposit or now) if delayed else now

        membership = Membership(
            id=uuid.uuid4(),
            parent_order_id=order.id,
            customer_email=link.customer_email,
            customer_name=link.customer_name,
            product_name=link.product_name,
            status=MembershipStatusType.DELAYED if delayed else MembershipStatusType.ACTIVE,
            start_date=start_date,
            end_date=dates_service.add_months(start_date, product.membership_duration_months),
            delayed_start_date=start_date if delayed else None,
        )
        self.db.add(membership)
        await self.db.flush()
        return membership

    async def _extend_membership(self, link) -> Membership:
        extension = await self.db.get(ProductExtension, link.extension_id)
        membership = await self.db.get(Membership, link.membership_id)
        if not extension or not membership:
            raise NotFoundError("Extension or membership not found")

        membership.end_date = dates_service.add_months(membership.end_date, extension.extension_months)
        await self.db.flush()
        return membership

    def _create_subscription(
        self,
        kind: PaymentProductType,
        link,
        order,
        membership: Membership,
        owner: dict,
        customer_id: str | None,
        payment_method_id: str | None,
    ):
        now = dates_service.utcnow()

        if link.type == PaymentLinkType.DEPOSIT:
            remaining_payments = 1
            next_payment_date = link.first_payment_date_after_deposit
            amount_in_cents = link.remaining_amount_to_pay_in_cents
        elif link.type == PaymentLinkType.INSTALLMENTS:
            # The first installment was this payment
            remaining_payments = (link.installments_count or 1) - 1
            next_payment_date = dates_service.add_months(now, 1)
            amount_in_cents = link.installment_amount_to_pay_in_cents
        else:
            remaining_payments = link.installments_count or 1
            next_payment_date = link.first_payment_date_after_deposit
            amount_in_cents = link.remaining_installment_amount_to_pay_in_cents

        if remaining_payments <= 0:
            return None

        subscription = SUBSCRIPTION_MODELS[kind](
            id=uuid.uuid4(),
            status=SubscriptionStatusType.ACTIVE,
            payment_method_type=link.payment_method_type,
            membership_id=membership.id,
            parent_order_id=order.id,
            customer_email=link.customer_email,
            customer_name=link.customer_name,
            product_name=link.product_name,
            currency=link.currency,
            installment_amount_to_pay_in_cents=amount_in_cents,
            remaining_payments=remaining_payments,
            next_payment_date=next_payment_date or now,
            start_date=now,
            payment_failure_count=0,
            stripe_customer_id=customer_id if link.payment_method_type == PaymentMethodType.CARD else None,
            stripe_payment_method_id=payment_method_id if link.payment_method_type == PaymentMethodType.CARD else None,
            **owner,
        )
        self.db.add(subscription)
        return subscription

    async def _get_link(self, kind: PaymentProductType, payment_link_id: uuid.UUID):
        model = PAYMENT_LINK_MODELS[kind]
        result = await self.db.execute(
            select(model).where(model.id == payment_link_id, model.deleted_at.is_(None))
        )
        link = result.scalar_one_or_none()
        if not link:
            raise NotFoundError(f"Payment link {payment_link_id} not found")
        return link
