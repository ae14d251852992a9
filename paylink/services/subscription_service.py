"""Subscription state transitions: charges, cancellation, hold, card updates."""
import logging
import uuid
from datetime import datetime, timezone

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from paylink.core.errors import ConflictError, GatewayError, NotFoundError, ValidationError
from paylink.core.security import generate_update_payment_token, hash_token
from paylink.models.enums import (
    TERMINAL_SUBSCRIPTION_STATUSES,
    MembershipStatusType,
    OrderStatusType,
    OrderType,
    PaymentMethodType,
    PaymentProductType,
    SubscriptionStatusType,
)
from paylink.models.membership import Membership
from paylink.models.order import ORDER_MODELS
from paylink.models.subscription import SUBSCRIPTION_MODELS
from paylink.schemas.responses import SubscriptionSummary
from paylink.services import dates_service
from paylink.services.stripe_service import StripeService

logger = logging.getLogger(__name__)

GRACEFUL_CANCEL = "graceful"
IMMEDIATE_CANCEL = "immediate"


async def get_subscription(db: AsyncSession, kind: PaymentProductType, subscription_id: uuid.UUID):
    model = SUBSCRIPTION_MODELS[kind]
    result = await db.execute(
        select(model)
        .where(model.id == subscription_id, model.deleted_at.is_(None))
        .execution_options(populate_existing=True)
    )
    subscription = result.scalar_one_or_none()
    if not subscription:
        raise NotFoundError("Subscription not found")
    return subscription


async def set_membership_status(
    db: AsyncSession,
    membership_id: uuid.UUID,
    new_status: MembershipStatusType,
    from_statuses: tuple[MembershipStatusType, ...] | None = None,
) -> None:
    stmt = update(Membership).where(Membership.id == membership_id)
    if from_statuses:
        stmt = stmt.where(Membership.status.in_(from_statuses))
    await db.execute(
        stmt.values(status=new_status, updated_at=dates_service.utcnow()).execution_options(
            synchronize_session=False
        )
    )


async def _add_renewal_order(db: AsyncSession, kind: PaymentProductType, subscription, charge_id: str, now):
    order_model = ORDER_MODELS[kind]
    existing = await db.execute(select(order_model.id).where(order_model.stripe_payment_intent_id == charge_id))
    if existing.scalar_one_or_none():
        return

    parent_order = await _get_parent_order(db, kind, subscription)
    renewal = order_model(
        type=OrderType.RENEWAL_ORDER,
        status=OrderStatusType.COMPLETED,
        payment_link_id=parent_order.payment_link_id,
        subscription_id=subscription.id,
        stripe_payment_intent_id=charge_id,
        customer_email=subscription.customer_email,
        customer_name=subscription.customer_name,
        product_name=subscription.product_name,
        billing_data=parent_order.billing_data,
        completed_at=now,
    )
    if kind == PaymentProductType.EXTENSION:
        renewal.membership_id = subscription.membership_id
    db.add(renewal)


async def record_charge_success(
    db: AsyncSession,
    kind: PaymentProductType,
    subscription,
    charge_id: str,
) -> bool:
    """
    Apply a successful deferred charge.

    Creates the renewal order, moves the schedule forward and completes the
    subscription when no payment is left. The renewal order is written even
    when another writer changed the subscription during the charge; in that
    case the schedule is left alone and False is returned.
    """
    model = SUBSCRIPTION_MODELS[kind]
    now = dates_service.utcnow()
    remaining = subscription.remaining_payments - 1
    completed = remaining <= 0

    result = await db.execute(
        update(model)
        .where(
            model.id == subscription.id,
            model.status == subscription.status,
            model.remaining_payments == subscription.remaining_payments,
        )
        .values(
            remaining_payments=max(remaining, 0),
            next_payment_date=None if completed else dates_service.add_months(
                subscription.next_payment_date or now, 1
            ),
            status=SubscriptionStatusType.COMPLETED if completed else SubscriptionStatusType.ACTIVE,
            payment_failure_count=0,
            last_payment_failure_reason=None,
            last_payment_attempt_date=now,
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    await _add_renewal_order(db, kind, subscription, charge_id, now)
    if result.rowcount == 0:
        await db.flush()
        logger.warning(
            f"⚠️ Subscription {subscription.id} changed during charge {charge_id}, "
            f"renewal order stored without updating the schedule"
        )
        return False

    # Delayed memberships start with their first deferred payment
    await set_membership_status(
        db,
        subscription.membership_id,
        MembershipStatusType.ACTIVE,
        from_statuses=(MembershipStatusType.DELAYED, MembershipStatusType.PAUSED),
    )
    await db.flush()
    await db.refresh(subscription)

    logger.info(
        f"✅ Subscription {subscription.id} charged ({charge_id}), "
        f"remaining payments: {subscription.remaining_payments}, status: {subscription.status.value}"
    )
    return True


async def record_charge_failure(
    db: AsyncSession,
    kind: PaymentProductType,
    subscription,
    reason: str,
) -> bool:
    """Put the subscription on hold and pause its membership after a failed charge."""
    model = SUBSCRIPTION_MODELS[kind]
    now = dates_service.utcnow()

    result = await db.execute(
        update(model)
        .where(model.id == subscription.id, model.status == subscription.status)
        .values(
            payment_failure_count=model.payment_failure_count + 1,
            last_payment_failure_reason=reason[:500],
            last_payment_attempt_date=now,
            status=SubscriptionStatusType.ON_HOLD,
            scheduled_cancellation_date=None,
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        return False

    await set_membership_status(
        db,
        subscription.membership_id,
        MembershipStatusType.PAUSED,
        from_statuses=(MembershipStatusType.ACTIVE, MembershipStatusType.DELAYED),
    )
    await db.flush()
    await db.refresh(subscription)

    logger.warning(
        f"⚠️ Subscription {subscription.id} put on hold after failed charge "
        f"(failures: {subscription.payment_failure_count}): {reason}"
    )
    return True


async def charge_subscription(
    db: AsyncSession,
    kind: PaymentProductType,
    subscription,
    stripe_gateway: StripeService,
) -> bool:
    """
    Charge the next installment of a subscription and record the outcome.

    Returns True when the charge succeeded and False when it was declined.
    Raises ConflictError when the money was collected but the subscription
    changed in the meantime. Commits the session.
    """
    if subscription.payment_method_type != PaymentMethodType.CARD:
        raise ValidationError("Only card subscriptions can be charged automatically")

    try:
        customer_id, payment_method_id = await _stored_card(db, kind, subscription, stripe_gateway)
        charge = await stripe_gateway.charge_off_session(
            customer_id=customer_id,
            payment_method_id=payment_method_id,
            amount_in_cents=subscription.installment_amount_to_pay_in_cents,
            currency=subscription.currency.value,
            metadata={
                "subscription_id": str(subscription.id),
                "payment_product_type": kind.value,
                "remaining_payments": str(subscription.remaining_payments),
            },
            idempotency_key=f"renewal-{subscription.id}-{subscription.remaining_payments}-{subscription.payment_failure_count}",
        )
    except GatewayError as e:
        await record_charge_failure(db, kind, subscription, e.message)
        await db.commit()
        return False

    recorded = await record_charge_success(db, kind, subscription, charge["id"])
    await db.commit()
    if not recorded:
        raise ConflictError(f"Charged ({charge['id']}) but subscription changed")
    return True


async def _stored_card(db: AsyncSession, kind: PaymentProductType, subscription, stripe_gateway: StripeService):
    """Customer and card to charge, read from the first payment if not stored yet."""
    if subscription.stripe_customer_id and subscription.stripe_payment_method_id:
        return subscription.stripe_customer_id, subscription.stripe_payment_method_id

    parent_order = await _get_parent_order(db, kind, subscription)
    if not parent_order.stripe_payment_intent_id:
        raise GatewayError("No stored payment method for this subscription")

    intent = await stripe_gateway.retrieve_payment_intent(parent_order.stripe_payment_intent_id)
    if not intent.get("customer") or not intent.get("payment_method"):
        raise GatewayError("No stored payment method for this subscription")

    subscription.stripe_customer_id = intent["customer"]
    subscription.stripe_payment_method_id = intent["payment_method"]
    await db.flush()
    return intent["customer"], intent["payment_method"]


async def _get_parent_order(db: AsyncSession, kind: PaymentProductType, subscription):
    order_model = ORDER_MODELS[kind]
    result = await db.execute(select(order_model).where(order_model.id == subscription.parent_order_id))
    parent_order = result.scalar_one_or_none()
    if not parent_order:
        raise NotFoundError("Parent order not found")
    return parent_order


class SubscriptionService:
    """Staff and customer initiated subscription changes."""

    def __init__(self, db: AsyncSession, stripe_gateway: StripeService | None = None):
        self.db = db
        self.stripe = stripe_gateway

    async def cancel_subscription(
        self,
        kind: PaymentProductType,
        subscription_id: uuid.UUID,
        cancel_type: str,
    ) -> str:
        """
        Cancel gracefully (at the next payment date) or immediately.

        Returns a message describing what happened.
        """
        subscription = await get_subscription(self.db, kind, subscription_id)
        model = SUBSCRIPTION_MODELS[kind]
        now = dates_service.utcnow()

        if subscription.status == SubscriptionStatusType.CANCELLED:
            raise ConflictError("Subscription is already cancelled")
        if subscription.status == SubscriptionStatusType.COMPLETED:
            raise ConflictError("Subscription is already completed")

        if cancel_type == GRACEFUL_CANCEL:
            if subscription.scheduled_cancellation_date:
                raise ConflictError("Subscription cancellation is already scheduled")
            if not subscription.next_payment_date:
                raise ValidationError("Subscription has no next payment date")
            if subscription.status != SubscriptionStatusType.ACTIVE:
                raise ConflictError("Only active subscriptions can be cancelled at the end of the billing period")

            result = await self.db.execute(
                update(model)
                .where(
                    model.id == subscription.id,
                    model.status == SubscriptionStatusType.ACTIVE,
                    model.scheduled_cancellation_date.is_(None),
                )
                .values(
                    scheduled_cancellation_date=subscription.next_payment_date,
                    payment_failure_count=0,
                    last_payment_failure_reason=None,
                    last_payment_attempt_date=None,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                await self.db.rollback()
                raise ConflictError("Subscription changed, try again")
            await self.db.commit()

            logger.info(f"Subscription {subscription.id} will be cancelled on {subscription.next_payment_date}")
            return "Subscription will be cancelled at the end of the current billing period"

        if cancel_type == IMMEDIATE_CANCEL:
            result = await self.db.execute(
                update(model)
                .where(model.id == subscription.id, model.status == subscription.status)
                .values(
                    status=SubscriptionStatusType.CANCELLED,
                    scheduled_cancellation_date=None,
                    payment_failure_count=0,
                    last_payment_failure_reason=None,
                    last_payment_attempt_date=None,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                await self.db.rollback()
                raise ConflictError("Subscription changed, try again")
            await set_membership_status(self.db, subscription.membership_id, MembershipStatusType.CANCELLED)
            await self.db.commit()

            logger.info(f"Subscription {subscription.id} cancelled immediately")
            return "Subscription cancelled immediately"

        raise ValidationError(f"Unknown cancel type: {cancel_type}")

    async def set_on_hold(self, kind: PaymentProductType, subscription_id: uuid.UUID):
        """Stop automatic charges. The membership is left as it is."""
        subscription = await get_subscription(self.db, kind, subscription_id)
        if subscription.status in TERMINAL_SUBSCRIPTION_STATUSES:
            raise ConflictError(f"Subscription is already {subscription.status.value}")

        subscription.status = SubscriptionStatusType.ON_HOLD
        subscription.scheduled_cancellation_date = None
        subscription.payment_failure_count = 0
        subscription.last_payment_failure_reason = None
        subscription.last_payment_attempt_date = None
        await self.db.commit()
        await self.db.refresh(subscription)

        logger.info(f"Subscription {subscription.id} set on hold")
        return subscription

    async def retry_payment(self, kind: PaymentProductType, subscription_id: uuid.UUID):
        """Charge an on-hold subscription again after a failed payment."""
        subscription = await get_subscription(self.db, kind, subscription_id)
        if subscription.status != SubscriptionStatusType.ON_HOLD:
            raise ConflictError("Only subscriptions on hold can be retried")
        if not subscription.payment_failure_count:
            raise ConflictError("Subscription has no failed payment to retry")
        if subscription.remaining_payments <= 0:
            raise ConflictError("Subscription has no remaining payments")
        if self.stripe is None:
            raise GatewayError("Stripe gateway not available")

        succeeded = await charge_subscription(self.db, kind, subscription, self.stripe)
        await self.db.refresh(subscription)
        return succeeded, subscription

    async def reschedule_payment(
        self,
        kind: PaymentProductType,
        subscription_id: uuid.UUID,
        new_payment_date: datetime,
    ):
        subscription = await get_subscription(self.db, kind, subscription_id)
        if subscription.status != SubscriptionStatusType.ACTIVE:
            raise ConflictError("Only active subscriptions can be rescheduled")
        if subscription.scheduled_cancellation_date:
            raise ConflictError("Subscription has a scheduled cancellation")
        if new_payment_date.tzinfo is not None:
            new_payment_date = new_payment_date.astimezone(timezone.utc).replace(tzinfo=None)
        if new_payment_date <= dates_service.utcnow():
            raise ValidationError("New payment date must be in the future")

        subscription.next_payment_date = new_payment_date
        await self.db.commit()
        await self.db.refresh(subscription)
        return subscription

    async def generate_update_payment_token(self, kind: PaymentProductType, subscription_id: uuid.UUID) -> dict:
        """
        Create a one-time link token for the customer to replace the card.

        Only the SHA-256 of the token is stored; the raw token is returned once.
        """
        subscription = await get_subscription(self.db, kind, subscription_id)
        if subscription.payment_method_type != PaymentMethodType.CARD:
            raise ValidationError("Only card subscriptions can update their payment method")
        if subscription.status in TERMINAL_SUBSCRIPTION_STATUSES:
            raise ConflictError(f"Subscription is already {subscription.status.value}")

        token, token_hash = generate_update_payment_token()
        expires_at = dates_service.create_update_payment_token_expires_at()
        subscription.update_payment_token = token_hash
        subscription.update_payment_token_expires_at = expires_at
        await self.db.commit()

        logger.info(f"Update payment token generated for subscription {subscription.id}")
        return {"token": token, "expires_at": expires_at}

    async def validate_update_token(
        self,
        kind: PaymentProductType,
        subscription_id: uuid.UUID,
        token: str,
    ) -> SubscriptionSummary:
        subscription = await self._get_by_token(kind, subscription_id, token)
        return SubscriptionSummary(
            id=subscription.id,
            customer_email=subscription.customer_email,
            customer_name=subscription.customer_name,
            product_name=subscription.product_name,
        )

    async def create_setup_intent(self, kind: PaymentProductType, subscription_id: uuid.UUID, token: str) -> dict:
        """SetupIntent used by the update-card page to collect the new card."""
        subscription = await self._get_by_token(kind, subscription_id, token)
        if self.stripe is None:
            raise GatewayError("Stripe gateway not available")

        customer_id, _ = await _stored_card(self.db, kind, subscription, self.stripe)
        await self.db.commit()
        return await self.stripe.create_setup_intent(
            customer_id,
            metadata={"subscription_id": str(subscription.id), "payment_product_type": kind.value},
        )

    async def update_payment_method(
        self,
        kind: PaymentProductType,
        subscription_id: uuid.UUID,
        token: str,
        setup_intent_id: str,
    ):
        """Store the card from a confirmed SetupIntent and consume the token."""
        subscription = await self._get_by_token(kind, subscription_id, token)
        if self.stripe is None:
            raise GatewayError("Stripe gateway not available")

        customer_id, _ = await _stored_card(self.db, kind, subscription, self.stripe)
        payment_method_id = await self.stripe.get_setup_intent_payment_method(setup_intent_id)
        await self.stripe.set_default_payment_method(customer_id, payment_method_id)

        model = SUBSCRIPTION_MODELS[kind]
        result = await self.db.execute(
            update(model)
            .where(model.id == subscription.id, model.update_payment_token == hash_token(token))
            .values(
                stripe_payment_method_id=payment_method_id,
                update_payment_token=None,
                update_payment_token_expires_at=None,
                updated_at=dates_service.utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            await self.db.rollback()
            raise NotFoundError("Invalid or expired update link")
        await self.db.commit()
        await self.db.refresh(subscription)

        logger.info(f"✅ Payment method updated for subscription {subscription.id}")
        return subscription

    async def _get_by_token(self, kind: PaymentProductType, subscription_id: uuid.UUID, token: str):
        model = SUBSCRIPTION_MODELS[kind]
        result = await self.db.execute(
            select(model).where(
                model.id == subscription_id,
                model.update_payment_token == hash_token(token),
                model.update_payment_token_expires_at > dates_service.utcnow(),
                model.deleted_at.is_(None),
            )
        )
        subscription = result.scalar_one_or_none()
        if not subscription:
            raise NotFoundError("Invalid or expired update link")
        return subscription
