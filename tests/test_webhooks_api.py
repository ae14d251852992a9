"""Tests for the Stripe, TBI and Calendly webhook endpoints."""
import hashlib
import hmac
import json
import time

from paylink.models.enums import PaymentLinkType, PaymentMethodType, PaymentProductType, PaymentStatusType
from paylink.services.tbi_service import encrypt_data
from tests.helpers import create_link, get_subscriptions, membership_count, reload

STRIPE_SECRET = "whsec_test_123"
CALENDLY_KEY = "calendly-test-key"


def signature_header(secret: str, payload: str, timestamp: int | None = None) -> str:
    timestamp = timestamp or int(time.time())
    digest = hmac.new(secret.encode("utf-8"), f"{timestamp}.{payload}".encode("utf-8"), hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={digest}"


def intent_event(link, event_type="payment_intent.succeeded", metadata=None) -> str:
    if metadata is None:
        metadata = {"payment_link_id": str(link.id), "payment_product_type": "Product"}
    return json.dumps({
        "id": "evt_1",
        "type": event_type,
        "data": {
            "object": {
                "id": link.stripe_payment_intent_id,
                "customer": "cus_test_1",
                "payment_method": {"id": "pm_card_1"},
                "metadata": metadata,
            }
        },
    })


async def post_stripe(client, payload: str, secret: str = STRIPE_SECRET):
    return await client.post(
        "/webhooks/stripe",
        content=payload,
        headers={"Stripe-Signature": signature_header(secret, payload), "Content-Type": "application/json"},
    )


class TestStripeWebhook:
    async def test_payment_succeeded_fulfills_link(self, client, db, catalog):
        link = await create_link(db, catalog, link_type=PaymentLinkType.INSTALLMENTS)

        response = await post_stripe(client, intent_event(link))

        assert response.status_code == 200
        assert response.json() == {"received": True}
        await reload(db, link)
        assert link.status == PaymentStatusType.SUCCEEDED
        [subscription] = await get_subscriptions(db, PaymentProductType.PRODUCT)
        assert subscription.stripe_payment_method_id == "pm_card_1"

    async def test_redelivery_is_acknowledged(self, client, db, catalog):
        link = await create_link(db, catalog)
        payload = intent_event(link)

        first = await post_stripe(client, payload)
        second = await post_stripe(client, payload)

        assert first.status_code == 200
        assert second.status_code == 200
        assert await membership_count(db) == 1

    async def test_invalid_signature(self, client, db, catalog):
        link = await create_link(db, catalog)

        response = await post_stripe(client, intent_event(link), secret="whsec_wrong")

        assert response.status_code == 400
        await reload(db, link)
        assert link.status == PaymentStatusType.CREATED

    async def test_missing_signature(self, client):
        response = await client.post("/webhooks/stripe", content=b"{}")

        assert response.status_code == 400

    async def test_renewal_payment_is_skipped(self, client, db, catalog):
        link = await create_link(db, catalog)
        metadata = {
            "payment_link_id": str(link.id),
            "payment_product_type": "Product",
            "is_renewal_payment": "true",
        }

        response = await post_stripe(client, intent_event(link, metadata=metadata))

        assert response.status_code == 200
        await reload(db, link)
        assert link.status == PaymentStatusType.CREATED

    async def test_intent_without_metadata_is_ignored(self, client, db, catalog):
        link = await create_link(db, catalog)

        response = await post_stripe(client, intent_event(link, metadata={}))

        assert response.status_code == 200
        assert await membership_count(db) == 0

    async def test_invalid_metadata(self, client, db, catalog):
        link = await create_link(db, catalog)
        metadata = {"payment_link_id": "not-a-uuid", "payment_product_type": "Product"}

        response = await post_stripe(client, intent_event(link, metadata=metadata))

        assert response.status_code == 400

    async def test_payment_failed_is_acknowledged(self, client, db, catalog):
        link = await create_link(db, catalog)

        response = await post_stripe(client, intent_event(link, event_type="payment_intent.payment_failed"))

        assert response.status_code == 200
        await reload(db, link)
        assert link.status == PaymentStatusType.CREATED


class TestTbiWebhook:
    async def tbi_link(self, db, catalog, tbi_order_id="TBI-1001"):
        link = await create_link(db, catalog, payment_method_type=PaymentMethodType.TBI)
        link.tbi_order_id = tbi_order_id
        link.status = PaymentStatusType.PROCESSING
        await db.commit()
        return link

    async def post_status(self, client, public_pem, **payload):
        order_data = encrypt_data(json.dumps(payload), public_pem)
        return await client.post("/webhooks/tbi", data={"order_data": order_data})

    async def test_approval_fulfills_link(self, client, db, catalog, tbi_keys):
        link = await self.tbi_link(db, catalog)

        response = await self.post_status(client, tbi_keys[1], order_id="TBI-1001", status_id=1)

        assert response.status_code == 200
        assert response.json() == {"success": True}
        await reload(db, link)
        assert link.status == PaymentStatusType.SUCCEEDED
        assert await membership_count(db) == 1

    async def test_rejection_with_reason(self, client, db, catalog, tbi_keys):
        link = await self.tbi_link(db, catalog)

        response = await self.post_status(
            client, tbi_keys[1], order_id="TBI-1001", status_id="0", motiv="Credit score too low"
        )

        assert response.status_code == 200
        await reload(db, link)
        assert link.status == PaymentStatusType.PAYMENT_FAILED

    async def test_unknown_status_is_acknowledged(self, client, db, catalog, tbi_keys):
        link = await self.tbi_link(db, catalog)

        response = await self.post_status(client, tbi_keys[1], order_id="TBI-1001", status_id=7)

        assert response.status_code == 200
        await reload(db, link)
        assert link.status == PaymentStatusType.PROCESSING

    async def test_missing_order_data(self, client):
        response = await client.post("/webhooks/tbi", data={"other": "x"})

        assert response.status_code == 400

    async def test_undecryptable_order_data(self, client):
        response = await client.post("/webhooks/tbi", data={"order_data": "bm90IGVuY3J5cHRlZA=="})

        assert response.status_code == 400

    async def test_unknown_order_asks_for_retry(self, client, tbi_keys):
        response = await self.post_status(client, tbi_keys[1], order_id="TBI-unknown", status_id=1)

        assert response.status_code == 500


class TestCalendlyWebhook:
    async def test_valid_signature(self, client):
        body = json.dumps({"event": "invitee.created", "payload": {}})

        response = await client.post(
            "/webhooks/calendly",
            content=body,
            headers={"Calendly-Webhook-Signature": signature_header(CALENDLY_KEY, body)},
        )

        assert response.status_code == 200
        assert response.json() == {"received": True}

    async def test_invalid_signature(self, client):
        body = json.dumps({"event": "invitee.created"})

        response = await client.post(
            "/webhooks/calendly",
            content=body,
            headers={"Calendly-Webhook-Signature": signature_header("wrong-key", body)},
        )

        assert response.status_code == 401

    async def test_stale_timestamp(self, client):
        body = json.dumps({"event": "invitee.created"})
        header = signature_header(CALENDLY_KEY, body, timestamp=int(time.time()) - 3600)

        response = await client.post("/webhooks/calendly", content=body, headers={"Calendly-Webhook-Signature": header})

        assert response.status_code == 401

    async def test_future_timestamp(self, client):
        body = json.dumps({"event": "invitee.created"})
        header = signature_header(CALENDLY_KEY, body, timestamp=int(time.time()) + 3600)

        response = await client.post("/webhooks/calendly", content=body, headers={"Calendly-Webhook-Signature": header})

        assert response.status_code == 401
