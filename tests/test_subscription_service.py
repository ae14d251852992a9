"""Tests for subscription charges and staff/customer initiated changes."""
import uuid
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import update

from paylink.core.errors import ConflictError, GatewayError, NotFoundError, ValidationError
from paylink.core.security import hash_token
from paylink.models.enums import (
    MembershipStatusType,
    OrderStatusType,
    OrderType,
    PaymentLinkType,
    PaymentMethodType,
    PaymentProductType,
    SubscriptionStatusType,
)
from paylink.models.membership import Membership
from paylink.models.subscription import ProductSubscription
from paylink.services import dates_service
from paylink.services.bank_transfer_service import BankTransferService
from paylink.services.subscription_service import (
    GRACEFUL_CANCEL,
    IMMEDIATE_CANCEL,
    SubscriptionService,
    charge_subscription,
)
from tests.helpers import create_link, create_subscription, get_orders, get_subscriptions, reload

PRODUCT = PaymentProductType.PRODUCT


async def membership_status(db, membership_id):
    membership = await db.get(Membership, membership_id, populate_existing=True)
    return membership.status


async def fail_charge(db, subscription, stripe_gateway, reason="Your card was declined."):
    stripe_gateway.charge_off_session.side_effect = GatewayError(reason)
    succeeded = await charge_subscription(db, PRODUCT, subscription, stripe_gateway)
    stripe_gateway.charge_off_session.side_effect = None
    return succeeded


class TestCharge:
    async def test_successful_charge_moves_schedule(self, db, catalog, stripe_gateway):
        link, subscription = await create_subscription(db, catalog)
        due = subscription.next_payment_date

        assert await charge_subscription(db, PRODUCT, subscription, stripe_gateway) is True

        await reload(db, subscription)
        assert subscription.status == SubscriptionStatusType.ACTIVE
        assert subscription.remaining_payments == 1
        assert subscription.next_payment_date == dates_service.add_months(due, 1)
        assert subscription.last_payment_attempt_date is not None

        renewals = [o for o in await get_orders(db, PRODUCT, link.id) if o.type == OrderType.RENEWAL_ORDER]
        assert len(renewals) == 1
        assert renewals[0].subscription_id == subscription.id
        assert renewals[0].stripe_payment_intent_id == "pi_renewal_1"
        assert renewals[0].status == OrderStatusType.COMPLETED

        kwargs = stripe_gateway.charge_off_session.await_args.kwargs
        assert kwargs["customer_id"] == "cus_test_1"
        assert kwargs["payment_method_id"] == "pm_card_1"
        assert kwargs["amount_in_cents"] == 47600
        assert kwargs["currency"] == "EUR"

    async def test_last_payment_completes_subscription(self, db, catalog, stripe_gateway):
        _, subscription = await create_subscription(db, catalog, link_type=PaymentLinkType.DEPOSIT)
        assert await membership_status(db, subscription.membership_id) == MembershipStatusType.DELAYED

        await charge_subscription(db, PRODUCT, subscription, stripe_gateway)

        await reload(db, subscription)
        assert subscription.status == SubscriptionStatusType.COMPLETED
        assert subscription.remaining_payments == 0
        assert subscription.next_payment_date is None
        assert await membership_status(db, subscription.membership_id) == MembershipStatusType.ACTIVE

    async def test_failed_charge_puts_subscription_on_hold(self, db, catalog, stripe_gateway):
        _, subscription = await create_subscription(db, catalog)

        assert await fail_charge(db, subscription, stripe_gateway) is False

        await reload(db, subscription)
        assert subscription.status == SubscriptionStatusType.ON_HOLD
        assert subscription.payment_failure_count == 1
        assert subscription.last_payment_failure_reason == "Your card was declined."
        assert subscription.remaining_payments == 2
        assert await membership_status(db, subscription.membership_id) == MembershipStatusType.PAUSED

    async def test_charge_is_recorded_when_subscription_changes_meanwhile(self, db, catalog, stripe_gateway):
        link, subscription = await create_subscription(db, catalog)
        subscription_id = subscription.id

        async def cancel_then_charge(**kwargs):
            await db.execute(
                update(ProductSubscription)
                .where(ProductSubscription.id == subscription_id)
                .values(status=SubscriptionStatusType.CANCELLED)
                .execution_options(synchronize_session=False)
            )
            return {"id": "pi_renewal_1", "status": "succeeded"}

        stripe_gateway.charge_off_session.side_effect = cancel_then_charge

        with pytest.raises(ConflictError, match="pi_renewal_1"):
            await charge_subscription(db, PRODUCT, subscription, stripe_gateway)

        await reload(db, subscription)
        assert subscription.status == SubscriptionStatusType.CANCELLED
        assert subscription.remaining_payments == 2
        renewals = [o for o in await get_orders(db, PRODUCT, link.id) if o.type == OrderType.RENEWAL_ORDER]
        assert [o.stripe_payment_intent_id for o in renewals] == ["pi_renewal_1"]

    async def test_missing_card_is_read_from_first_payment(self, db, catalog, stripe_gateway):
        _, subscription = await create_subscription(db, catalog)
        subscription.stripe_customer_id = None
        subscription.stripe_payment_method_id = None
        await db.commit()

        await charge_subscription(db, PRODUCT, subscription, stripe_gateway)

        stripe_gateway.retrieve_payment_intent.assert_awaited_once()
        await reload(db, subscription)
        assert subscription.stripe_customer_id == "cus_test_1"
        assert subscription.stripe_payment_method_id == "pm_card_1"

    async def test_bank_transfer_subscription_is_not_charged(self, db, catalog, stripe_gateway):
        link = await create_link(
            db, catalog, link_type=PaymentLinkType.DEPOSIT, payment_method_type=PaymentMethodType.BANK_TRANSFER
        )
        service = BankTransferService(db)
        order = await service.initiate(PRODUCT, link.id, {"first_name": "Ana", "last_name": "P", "email": "a@b.c"})
        await service.confirm(PRODUCT, order.id)
        [subscription] = await get_subscriptions(db, PRODUCT)

        with pytest.raises(ValidationError):
            await charge_subscription(db, PRODUCT, subscription, stripe_gateway)
        stripe_gateway.charge_off_session.assert_not_awaited()


class TestCancel:
    async def test_graceful_cancel_schedules_at_next_payment(self, db, catalog):
        _, subscription = await create_subscription(db, catalog)

        message = await SubscriptionService(db).cancel_subscription(PRODUCT, subscription.id, GRACEFUL_CANCEL)

        assert "end of the current billing period" in message
        await reload(db, subscription)
        assert subscription.status == SubscriptionStatusType.ACTIVE
        assert subscription.scheduled_cancellation_date == subscription.next_payment_date
        assert await membership_status(db, subscription.membership_id) == MembershipStatusType.ACTIVE

    async def test_graceful_cancel_twice(self, db, catalog):
        _, subscription = await create_subscription(db, catalog)
        service = SubscriptionService(db)
        await service.cancel_subscription(PRODUCT, subscription.id, GRACEFUL_CANCEL)

        with pytest.raises(ConflictError, match="already scheduled"):
            await service.cancel_subscription(PRODUCT, subscription.id, GRACEFUL_CANCEL)

    async def test_graceful_cancel_requires_active(self, db, catalog, stripe_gateway):
        _, subscription = await create_subscription(db, catalog)
        await fail_charge(db, subscription, stripe_gateway)

        with pytest.raises(ConflictError):
            await SubscriptionService(db).cancel_subscription(PRODUCT, subscription.id, GRACEFUL_CANCEL)

    async def test_immediate_cancel(self, db, catalog):
        _, subscription = await create_subscription(db, catalog)

        await SubscriptionService(db).cancel_subscription(PRODUCT, subscription.id, IMMEDIATE_CANCEL)

        await reload(db, subscription)
        assert subscription.status == SubscriptionStatusType.CANCELLED
        assert subscription.scheduled_cancellation_date is None
        assert await membership_status(db, subscription.membership_id) == MembershipStatusType.CANCELLED

    async def test_immediate_cancel_of_scheduled_subscription(self, db, catalog):
        _, subscription = await create_subscription(db, catalog)
        service = SubscriptionService(db)
        await service.cancel_subscription(PRODUCT, subscription.id, GRACEFUL_CANCEL)

        await service.cancel_subscription(PRODUCT, subscription.id, IMMEDIATE_CANCEL)

        await reload(db, subscription)
        assert subscription.status == SubscriptionStatusType.CANCELLED
        assert subscription.scheduled_cancellation_date is None

    async def test_cancelled_subscription_conflicts(self, db, catalog):
        _, subscription = await create_subscription(db, catalog)
        service = SubscriptionService(db)
        await service.cancel_subscription(PRODUCT, subscription.id, IMMEDIATE_CANCEL)

        with pytest.raises(ConflictError, match="already cancelled"):
            await service.cancel_subscription(PRODUCT, subscription.id, IMMEDIATE_CANCEL)

    async def test_completed_subscription_conflicts(self, db, catalog, stripe_gateway):
        _, subscription = await create_subscription(db, catalog, link_type=PaymentLinkType.DEPOSIT)
        await charge_subscription(db, PRODUCT, subscription, stripe_gateway)

        with pytest.raises(ConflictError, match="already completed"):
            await SubscriptionService(db).cancel_subscription(PRODUCT, subscription.id, GRACEFUL_CANCEL)

    async def test_unknown_cancel_type(self, db, catalog):
        _, subscription = await create_subscription(db, catalog)

        with pytest.raises(ValidationError):
            await SubscriptionService(db).cancel_subscription(PRODUCT, subscription.id, "whenever")

    async def test_unknown_subscription(self, db, catalog):
        with pytest.raises(NotFoundError):
            await SubscriptionService(db).cancel_subscription(PRODUCT, uuid.uuid4(), IMMEDIATE_CANCEL)


class TestOnHold:
    async def test_set_on_hold_keeps_membership(self, db, catalog):
        _, subscription = await create_subscription(db, catalog)

        updated = await SubscriptionService(db).set_on_hold(PRODUCT, subscription.id)

        assert updated.status == SubscriptionStatusType.ON_HOLD
        assert updated.payment_failure_count == 0
        assert await membership_status(db, subscription.membership_id) == MembershipStatusType.ACTIVE

    async def test_set_on_hold_clears_scheduled_cancellation(self, db, catalog):
        _, subscription = await create_subscription(db, catalog)
        service = SubscriptionService(db)
        await service.cancel_subscription(PRODUCT, subscription.id, GRACEFUL_CANCEL)

        updated = await service.set_on_hold(PRODUCT, subscription.id)

        assert updated.scheduled_cancellation_date is None

    async def test_cancelled_subscription_cannot_be_held(self, db, catalog):
        _, subscription = await create_subscription(db, catalog)
        service = SubscriptionService(db)
        await service.cancel_subscription(PRODUCT, subscription.id, IMMEDIATE_CANCEL)

        with pytest.raises(ConflictError):
            await service.set_on_hold(PRODUCT, subscription.id)


class TestRetryPayment:
    async def test_retry_after_failure(self, db, catalog, stripe_gateway):
        _, subscription = await create_subscription(db, catalog)
        await fail_charge(db, subscription, stripe_gateway)

        succeeded, updated = await SubscriptionService(db, stripe_gateway).retry_payment(PRODUCT, subscription.id)

        assert succeeded is True
        assert updated.status == SubscriptionStatusType.ACTIVE
        assert updated.payment_failure_count == 0
        assert updated.last_payment_failure_reason is None
        assert updated.remaining_payments == 1
        assert await membership_status(db, subscription.membership_id) == MembershipStatusType.ACTIVE

    async def test_retry_failing_again(self, db, catalog, stripe_gateway):
        _, subscription = await create_subscription(db, catalog)
        await fail_charge(db, subscription, stripe_gateway)
        stripe_gateway.charge_off_session.side_effect = GatewayError("Insufficient funds")

        succeeded, updated = await SubscriptionService(db, stripe_gateway).retry_payment(PRODUCT, subscription.id)

        assert succeeded is False
        assert updated.status == SubscriptionStatusType.ON_HOLD
        assert updated.payment_failure_count == 2
        assert updated.last_payment_failure_reason == "Insufficient funds"

    async def test_retry_requires_failed_payment(self, db, catalog, stripe_gateway):
        _, subscription = await create_subscription(db, catalog)
        service = SubscriptionService(db, stripe_gateway)

        with pytest.raises(ConflictError, match="on hold"):
            await service.retry_payment(PRODUCT, subscription.id)

        await service.set_on_hold(PRODUCT, subscription.id)
        with pytest.raises(ConflictError, match="no failed payment"):
            await service.retry_payment(PRODUCT, subscription.id)
        stripe_gateway.charge_off_session.assert_not_awaited()


class TestReschedule:
    async def test_reschedule_to_future_date(self, db, catalog):
        _, subscription = await create_subscription(db, catalog)
        new_date = dates_service.utcnow() + timedelta(days=10)

        updated = await SubscriptionService(db).reschedule_payment(PRODUCT, subscription.id, new_date)

        assert updated.next_payment_date == new_date

    async def test_aware_date_is_stored_as_utc(self, db, catalog):
        _, subscription = await create_subscription(db, catalog)
        new_date = datetime.now(timezone(timedelta(hours=2))) + timedelta(days=3)

        updated = await SubscriptionService(db).reschedule_payment(PRODUCT, subscription.id, new_date)

        assert updated.next_payment_date == new_date.astimezone(timezone.utc).replace(tzinfo=None)

    async def test_past_date_rejected(self, db, catalog):
        _, subscription = await create_subscription(db, catalog)

        with pytest.raises(ValidationError):
            await SubscriptionService(db).reschedule_payment(
                PRODUCT, subscription.id, dates_service.utcnow() - timedelta(days=1)
            )

    async def test_scheduled_cancellation_blocks_reschedule(self, db, catalog):
        _, subscription = await create_subscription(db, catalog)
        service = SubscriptionService(db)
        await service.cancel_subscription(PRODUCT, subscription.id, GRACEFUL_CANCEL)

        with pytest.raises(ConflictError):
            await service.reschedule_payment(PRODUCT, subscription.id, dates_service.utcnow() + timedelta(days=5))


class TestUpdatePaymentMethod:
    async def test_token_is_stored_hashed(self, db, catalog):
        _, subscription = await create_subscription(db, catalog)

        result = await SubscriptionService(db).generate_update_payment_token(PRODUCT, subscription.id)

        await reload(db, subscription)
        assert len(result["token"]) == 64
        assert subscription.update_payment_token == hash_token(result["token"])
        assert subscription.update_payment_token_expires_at == result["expires_at"]

    async def test_full_update_flow(self, db, catalog, stripe_gateway):
        _, subscription = await create_subscription(db, catalog)
        service = SubscriptionService(db, stripe_gateway)
        token = (await service.generate_update_payment_token(PRODUCT, subscription.id))["token"]

        summary = await service.validate_update_token(PRODUCT, subscription.id, token)
        setup_intent = await service.create_setup_intent(PRODUCT, subscription.id, token)
        updated = await service.update_payment_method(PRODUCT, subscription.id, token, "seti_1")

        assert summary.customer_email == "client@example.com"
        assert setup_intent["id"] == "seti_1"
        assert stripe_gateway.create_setup_intent.await_args.args[0] == "cus_test_1"
        stripe_gateway.set_default_payment_method.assert_awaited_once_with("cus_test_1", "pm_card_2")
        assert updated.stripe_payment_method_id == "pm_card_2"
        assert updated.update_payment_token is None

    async def test_token_is_single_use(self, db, catalog, stripe_gateway):
        _, subscription = await create_subscription(db, catalog)
        service = SubscriptionService(db, stripe_gateway)
        token = (await service.generate_update_payment_token(PRODUCT, subscription.id))["token"]
        await service.update_payment_method(PRODUCT, subscription.id, token, "seti_1")

        with pytest.raises(NotFoundError):
            await service.validate_update_token(PRODUCT, subscription.id, token)
        with pytest.raises(NotFoundError):
            await service.update_payment_method(PRODUCT, subscription.id, token, "seti_1")

    async def test_expired_token(self, db, catalog):
        _, subscription = await create_subscription(db, catalog)
        service = SubscriptionService(db)
        token = (await service.generate_update_payment_token(PRODUCT, subscription.id))["token"]
        await reload(db, subscription)
        subscription.update_payment_token_expires_at = dates_service.utcnow() - timedelta(minutes=1)
        await db.commit()

        with pytest.raises(NotFoundError):
            await service.validate_update_token(PRODUCT, subscription.id, token)

    async def test_wrong_token(self, db, catalog):
        _, subscription = await create_subscription(db, catalog)
        service = SubscriptionService(db)
        await service.generate_update_payment_token(PRODUCT, subscription.id)

        with pytest.raises(NotFoundError):
            await service.validate_update_token(PRODUCT, subscription.id, "0" * 64)

    async def test_cancelled_subscription_gets_no_token(self, db, catalog):
        _, subscription = await create_subscription(db, catalog)
        service = SubscriptionService(db)
        await service.cancel_subscription(PRODUCT, subscription.id, IMMEDIATE_CANCEL)

        with pytest.raises(ConflictError):
            await service.generate_update_payment_token(PRODUCT, subscription.id)
