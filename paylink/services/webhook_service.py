"""Inbound gateway events: Stripe, TBI Bank and Calendly."""
import json
import logging
import uuid

import stripe
from sqlalchemy.ext.asyncio import AsyncSession

from paylink.config import EngineSecrets, settings
from paylink.core.errors import UnauthorizedError, ValidationError
from paylink.core.security import verify_calendly_signature
from paylink.models.enums import PaymentProductType
from paylink.services.fulfillment_service import FulfillmentService
from paylink.services.stripe_service import RENEWAL_PAYMENT_METADATA_KEY
from paylink.services.tbi_service import (
    TBI_STATUS_APPROVED,
    TBI_STATUS_PENDING,
    TBI_STATUS_REJECTED,
    parse_status_update,
)

logger = logging.getLogger(__name__)


class WebhookService:
    """
    Verifies and dispatches gateway events.

    Verification and payload errors are raised as ValidationError (the
    provider should not retry); anything raised afterwards is an internal
    failure and the provider retries the delivery.
    """

    def __init__(self, db: AsyncSession, secrets: EngineSecrets):
        self.db = db
        self.secrets = secrets
        self.fulfillment = FulfillmentService(db)

    async def handle_stripe_event(self, payload: bytes, signature_header: str | None) -> dict:
        if not signature_header:
            raise ValidationError("Missing Stripe-Signature header")
        try:
            stripe.WebhookSignature.verify_header(
                payload.decode("utf-8"),
                signature_header,
                self.secrets.stripe_webhook_secret,
                tolerance=settings.stripe_webhook_tolerance_seconds,
            )
        except (stripe.SignatureVerificationError, UnicodeDecodeError) as e:
            logger.warning(f"⚠️ Stripe webhook signature verification failed: {e}")
            raise ValidationError("Invalid signature") from e

        try:
            event = json.loads(payload)
            event_type = event["type"]
            data_object = event["data"]["object"]
        except (ValueError, KeyError, TypeError) as e:
            raise ValidationError("Invalid payload") from e

        logger.info(f"Stripe event {event.get('id')}: {event_type}")

        if event_type == "payment_intent.succeeded":
            await self._handle_payment_intent_succeeded(data_object)
        elif event_type == "payment_intent.payment_failed":
            error = data_object.get("last_payment_error") or {}
            logger.warning(
                f"⚠️ PaymentIntent {data_object.get('id')} failed: {error.get('message', 'unknown reason')}"
            )
        else:
            logger.info(f"Unhandled Stripe event type: {event_type}")

        return {"received": True}

    async def _handle_payment_intent_succeeded(self, intent: dict):
        metadata = intent.get("metadata") or {}

        # Renewal charges are recorded by the charge job itself
        if metadata.get(RENEWAL_PAYMENT_METADATA_KEY) == "true":
            logger.info(f"Skipping renewal PaymentIntent {intent.get('id')}")
            return

        link_id = metadata.get("payment_link_id")
        product_type = metadata.get("payment_product_type")
        if not link_id or not product_type:
            logger.warning(f"⚠️ PaymentIntent {intent.get('id')} has no payment link metadata, ignoring")
            return

        try:
            kind = PaymentProductType(product_type)
            payment_link_id = uuid.UUID(link_id)
        except ValueError as e:
            raise ValidationError(f"Invalid payment link metadata: {e}") from e

        fulfilled = await self.fulfillment.fulfill_stripe_payment(
            kind,
            payment_link_id,
            {
                "id": intent["id"],
                "customer": _object_id(intent.get("customer")),
                "payment_method": _object_id(intent.get("payment_method")),
            },
        )
        if fulfilled:
            logger.info(f"✅ PaymentIntent {intent['id']} fulfilled")

    async def handle_tbi_callback(self, order_data: str | None) -> dict:
        if not order_data:
            raise ValidationError("Missing order_data")

        update = parse_status_update(order_data, self.secrets.tbi_private_key)
        logger.info(f"TBI status update for order {update.order_id}: {update.status_id}")

        if update.status_id == TBI_STATUS_APPROVED:
            await self.fulfillment.fulfill_tbi_approval(update.order_id)
        elif update.status_id == TBI_STATUS_REJECTED:
            await self.fulfillment.mark_tbi_rejected(update.order_id, update.motiv)
        elif update.status_id == TBI_STATUS_PENDING:
            await self.fulfillment.mark_tbi_pending(update.order_id)
        else:
            logger.warning(f"⚠️ Unknown TBI status {update.status_id} for order {update.order_id}")

        return {"success": True}


def verify_calendly_event(body: bytes, signature_header: str | None) -> dict:
    """Check the Calendly signature and return the decoded event."""
    if not verify_calendly_signature(
        body,
        signature_header,
        settings.calendly_webhook_signing_key,
        settings.calendly_webhook_tolerance_seconds,
    ):
        raise UnauthorizedError("Invalid signature")

    try:
        event = json.loads(body)
    except ValueError as e:
        raise ValidationError("Invalid payload") from e

    logger.info(f"Calendly event received: {event.get('event') if isinstance(event, dict) else 'unknown'}")
    return event


def _object_id(value):
    if isinstance(value, dict):
        return value.get("id")
    return value
