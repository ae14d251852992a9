"""Tests for bank transfer checkout and confirmation."""
import uuid
from datetime import timedelta

import pytest

from paylink.core.errors import ConflictError, NotFoundError, ValidationError
from paylink.models.enums import (
    MembershipStatusType,
    OrderStatusType,
    OrderType,
    PaymentLinkType,
    PaymentMethodType,
    PaymentProductType,
    PaymentStatusType,
)
from paylink.services import dates_service
from paylink.services.bank_transfer_service import BankTransferService
from tests.helpers import create_link, get_orders, get_subscriptions, membership_for

PRODUCT = PaymentProductType.PRODUCT

BILLING = {"first_name": "Ana", "last_name": "Popescu", "email": "client@example.com", "city": "Cluj"}


async def bank_transfer_link(db, catalog, link_type=PaymentLinkType.INTEGRAL):
    return await create_link(db, catalog, link_type=link_type, payment_method_type=PaymentMethodType.BANK_TRANSFER)


class TestInitiate:
    async def test_creates_pending_order(self, db, catalog):
        link = await bank_transfer_link(db, catalog)

        order = await BankTransferService(db).initiate(PRODUCT, link.id, BILLING)

        assert order.status == OrderStatusType.PENDING_BANK_TRANSFER_PAYMENT
        assert order.type == OrderType.ONE_TIME_PAYMENT_ORDER
        assert order.billing_data["city"] == "Cluj"
        await db.refresh(link)
        assert link.status == PaymentStatusType.PROCESSING
        assert link.billing_data == BILLING

    async def test_repeated_initiation_returns_same_order(self, db, catalog):
        link = await bank_transfer_link(db, catalog)
        service = BankTransferService(db)

        first = await service.initiate(PRODUCT, link.id, BILLING)
        second = await service.initiate(PRODUCT, link.id, BILLING)

        assert first.id == second.id
        assert len(await get_orders(db, PRODUCT, link.id)) == 1

    async def test_recurring_link_creates_parent_order(self, db, catalog):
        link = await bank_transfer_link(db, catalog, link_type=PaymentLinkType.INSTALLMENTS)

        order = await BankTransferService(db).initiate(PRODUCT, link.id, BILLING)

        assert order.type == OrderType.PARENT_ORDER

    async def test_card_link_rejected(self, db, catalog):
        link = await create_link(db, catalog)

        with pytest.raises(ValidationError):
            await BankTransferService(db).initiate(PRODUCT, link.id, BILLING)

    async def test_expired_link_rejected(self, db, catalog):
        link = await bank_transfer_link(db, catalog)
        link.expires_at = dates_service.utcnow() - timedelta(minutes=5)
        await db.commit()

        with pytest.raises(ConflictError, match="expired"):
            await BankTransferService(db).initiate(PRODUCT, link.id, BILLING)

    async def test_unknown_link(self, db, catalog):
        with pytest.raises(NotFoundError):
            await BankTransferService(db).initiate(PRODUCT, uuid.uuid4(), BILLING)


class TestConfirm:
    async def test_confirm_fulfills_link(self, db, catalog):
        link = await bank_transfer_link(db, catalog)
        service = BankTransferService(db)
        pending = await service.initiate(PRODUCT, link.id, BILLING)

        order = await service.confirm(PRODUCT, pending.id)

        assert order.id == pending.id
        assert order.status == OrderStatusType.COMPLETED
        assert order.completed_at is not None
        await db.refresh(link)
        assert link.status == PaymentStatusType.SUCCEEDED
        assert len(await get_orders(db, PRODUCT, link.id)) == 1

    async def test_confirm_installments_creates_subscription_without_card(self, db, catalog):
        link = await bank_transfer_link(db, catalog, link_type=PaymentLinkType.DEPOSIT)
        service = BankTransferService(db)
        pending = await service.initiate(PRODUCT, link.id, BILLING)

        await service.confirm(PRODUCT, pending.id)

        [subscription] = await get_subscriptions(db, PRODUCT)
        assert subscription.payment_method_type == PaymentMethodType.BANK_TRANSFER
        assert subscription.stripe_customer_id is None
        assert subscription.remaining_payments == 1

    async def test_second_confirmation_conflicts(self, db, catalog):
        link = await bank_transfer_link(db, catalog)
        service = BankTransferService(db)
        pending = await service.initiate(PRODUCT, link.id, BILLING)
        order_id = pending.id
        await service.confirm(PRODUCT, order_id)

        with pytest.raises(ConflictError):
            await service.confirm(PRODUCT, order_id)

    async def test_confirm_after_link_canceled(self, db, catalog):
        link = await bank_transfer_link(db, catalog)
        service = BankTransferService(db)
        pending = await service.initiate(PRODUCT, link.id, BILLING)
        order_id = pending.id
        await db.refresh(link)
        link.status = PaymentStatusType.CANCELED
        await db.commit()

        with pytest.raises(ConflictError, match="no longer open"):
            await service.confirm(PRODUCT, order_id)

    async def test_unknown_order(self, db, catalog):
        with pytest.raises(NotFoundError):
            await BankTransferService(db).confirm(PRODUCT, uuid.uuid4())

    async def test_membership_is_active_after_confirmation(self, db, catalog):
        link = await bank_transfer_link(db, catalog)
        service = BankTransferService(db)
        pending = await service.initiate(PRODUCT, link.id, BILLING)

        order = await service.confirm(PRODUCT, pending.id)

        membership = await membership_for(db, order)
        assert membership.status == MembershipStatusType.ACTIVE
