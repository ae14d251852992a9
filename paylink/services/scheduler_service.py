"""
Periodic jobs: expired link cancellation, deferred charges and scheduled cancellations.

Each job takes a session factory so it can run from the cron endpoints, from
the in-process scheduler or from a test. Every item is processed in its own
session; one failing item is reported in the result and never stops the batch.
"""
import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field

from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from paylink.config import settings
from paylink.core.errors import GatewayError, PaymentEngineError
from paylink.models.enums import (
    OPEN_PAYMENT_STATUSES,
    MembershipStatusType,
    OrderStatusType,
    PaymentMethodType,
    PaymentProductType,
    PaymentStatusType,
    SubscriptionStatusType,
)
from paylink.models.order import ORDER_MODELS
from paylink.models.payment_link import PAYMENT_LINK_MODELS
from paylink.models.subscription import SUBSCRIPTION_MODELS
from paylink.services import dates_service
from paylink.services.stripe_service import StripeService
from paylink.services.subscription_service import charge_subscription, set_membership_status
from paylink.services.tbi_service import TbiService

logger = logging.getLogger(__name__)


@dataclass
class JobResult:
    processed_count: int = 0
    success_count: int = 0
    errors: list[dict] = field(default_factory=list)
    duration_ms: int = 0

    def to_response(self) -> dict:
        return {
            "processedCount": self.processed_count,
            "successCount": self.success_count,
            "errors": self.errors,
            "duration": f"{self.duration_ms}ms",
            "timestamp": dates_service.utcnow(),
        }


async def _run_batch(job_name: str, items: list[tuple[PaymentProductType, uuid.UUID]], handler, concurrency: int):
    """Run handler(kind, item_id) for every item, at most `concurrency` at a time."""
    started = time.monotonic()
    result = JobResult(processed_count=len(items))
    semaphore = asyncio.Semaphore(max(concurrency, 1))

    async def run_one(kind: PaymentProductType, item_id: uuid.UUID):
        async with semaphore:
            try:
                if await handler(kind, item_id):
                    result.success_count += 1
            except Exception as e:
                logger.error(f"❌ {job_name}: {kind.value} {item_id} failed: {e}", exc_info=True)
                message = e.message if isinstance(e, PaymentEngineError) else str(e)
                result.errors.append({"id": str(item_id), "type": kind.value, "error": message})

    await asyncio.gather(*(run_one(kind, item_id) for kind, item_id in items))

    result.duration_ms = int((time.monotonic() - started) * 1000)
    logger.info(
        f"{job_name}: processed {result.processed_count}, succeeded {result.success_count}, "
        f"failed {len(result.errors)} in {result.duration_ms}ms"
    )
    return result


async def cancel_expired_payments(
    session_factory: async_sessionmaker[AsyncSession],
    stripe_gateway: StripeService,
    tbi_gateway: TbiService | None = None,
    concurrency: int | None = None,
) -> JobResult:
    """Cancel unpaid payment links past their expiry, along with their gateway intents."""
    now = dates_service.utcnow()
    items = []
    async with session_factory() as db:
        for kind, model in PAYMENT_LINK_MODELS.items():
            result = await db.execute(
                select(model.id).where(
                    model.status.in_(OPEN_PAYMENT_STATUSES),
                    model.expires_at < now,
                    model.deleted_at.is_(None),
                )
            )
            items.extend((kind, link_id) for link_id in result.scalars().all())

    async def cancel_one(kind: PaymentProductType, link_id: uuid.UUID) -> bool:
        model = PAYMENT_LINK_MODELS[kind]
        async with session_factory() as db:
            link = await db.get(model, link_id)
            if link is None or link.status not in OPEN_PAYMENT_STATUSES:
                return False

            if link.payment_method_type == PaymentMethodType.TBI:
                if link.tbi_order_id:
                    if tbi_gateway is None:
                        raise GatewayError("TBI gateway not available")
                    await tbi_gateway.cancel_application(link.tbi_order_id)
            elif link.stripe_payment_intent_id:
                intent_status = await stripe_gateway.cancel_payment_intent(link.stripe_payment_intent_id)
                if intent_status == "succeeded":
                    # Paid before expiry, the payment_intent.succeeded webhook fulfills it
                    logger.warning(
                        f"⚠️ Expired {kind.value} payment link {link_id} was already paid "
                        f"({link.stripe_payment_intent_id}), leaving it open"
                    )
                    return False

            result = await db.execute(
                update(model)
                .where(model.id == link_id, model.status.in_(OPEN_PAYMENT_STATUSES))
                .values(status=PaymentStatusType.CANCELED, updated_at=dates_service.utcnow())
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                await db.rollback()
                return False

            # Bank transfers that were never confirmed
            order_model = ORDER_MODELS[kind]
            await db.execute(
                update(order_model)
                .where(
                    order_model.payment_link_id == link_id,
                    order_model.status == OrderStatusType.PENDING_BANK_TRANSFER_PAYMENT,
                )
                .values(status=OrderStatusType.CANCELLED, updated_at=dates_service.utcnow())
                .execution_options(synchronize_session=False)
            )
            await db.commit()

        logger.info(f"Expired {kind.value} payment link {link_id} canceled")
        return True

    return await _run_batch(
        "cancel-expired-payments",
        items,
        cancel_one,
        concurrency or settings.cron_batch_concurrency,
    )


async def charge_deferred_payments(
    session_factory: async_sessionmaker[AsyncSession],
    stripe_gateway: StripeService,
    concurrency: int | None = None,
) -> JobResult:
    """Charge card subscriptions whose next payment is due."""
    now = dates_service.utcnow()
    items = []
    async with session_factory() as db:
        for kind, model in SUBSCRIPTION_MODELS.items():
            result = await db.execute(
                select(model.id).where(
                    model.status == SubscriptionStatusType.ACTIVE,
                    model.payment_method_type == PaymentMethodType.CARD,
                    model.next_payment_date <= now,
                    model.remaining_payments > 0,
                    or_(
                        model.scheduled_cancellation_date.is_(None),
                        model.scheduled_cancellation_date > model.next_payment_date,
                    ),
                    model.deleted_at.is_(None),
                )
            )
            items.extend((kind, subscription_id) for subscription_id in result.scalars().all())

    async def charge_one(kind: PaymentProductType, subscription_id: uuid.UUID) -> bool:
        model = SUBSCRIPTION_MODELS[kind]
        async with session_factory() as db:
            subscription = await db.get(model, subscription_id)
            if subscription is None or subscription.status != SubscriptionStatusType.ACTIVE:
                return False

            succeeded = await charge_subscription(db, kind, subscription, stripe_gateway)
            if not succeeded:
                raise GatewayError(subscription.last_payment_failure_reason or "Charge failed")
            return True

    return await _run_batch(
        "charge-deferred-payments",
        items,
        charge_one,
        concurrency or settings.cron_batch_concurrency,
    )


async def process_scheduled_cancellations(
    session_factory: async_sessionmaker[AsyncSession],
    concurrency: int | None = None,
) -> JobResult:
    """Cancel subscriptions whose graceful cancellation date has been reached."""
    now = dates_service.utcnow()
    items = []
    async with session_factory() as db:
        for kind, model in SUBSCRIPTION_MODELS.items():
            result = await db.execute(
                select(model.id).where(
                    model.status == SubscriptionStatusType.ACTIVE,
                    model.scheduled_cancellation_date.is_not(None),
                    model.scheduled_cancellation_date <= now,
                    model.deleted_at.is_(None),
                )
            )
            items.extend((kind, subscription_id) for subscription_id in result.scalars().all())

    async def cancel_one(kind: PaymentProductType, subscription_id: uuid.UUID) -> bool:
        model = SUBSCRIPTION_MODELS[kind]
        async with session_factory() as db:
            subscription = await db.get(model, subscription_id)
            if subscription is None:
                return False

            result = await db.execute(
                update(model)
                .where(model.id == subscription_id, model.status == SubscriptionStatusType.ACTIVE)
                .values(
                    status=SubscriptionStatusType.CANCELLED,
                    scheduled_cancellation_date=None,
                    updated_at=dates_service.utcnow(),
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                await db.rollback()
                return False

            await set_membership_status(db, subscription.membership_id, MembershipStatusType.CANCELLED)
            await db.commit()

        logger.info(f"Subscription {subscription_id} cancelled on its scheduled date")
        return True

    return await _run_batch(
        "process-scheduled-cancellations",
        items,
        cancel_one,
        concurrency or settings.cron_batch_concurrency,
    )
