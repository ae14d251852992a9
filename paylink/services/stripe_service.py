"""Stripe gateway."""
import logging

import stripe

from paylink.config import settings
from paylink.core.errors import GatewayError

logger = logging.getLogger(__name__)

RENEWAL_PAYMENT_METADATA_KEY = "is_renewal_payment"


class StripeService:
    """
    Calls to the Stripe API used by the engine.

    Every Stripe failure is raised as GatewayError.
    """

    def __init__(self, api_key: str | None = None):
        self.api_key = api_key if api_key is not None else settings.stripe_secret_key

    def _ensure_configured(self):
        if not self.api_key:
            raise GatewayError("Stripe secret key not configured")
        stripe.api_key = self.api_key

    async def create_payment_intent(
        self,
        amount_in_cents: int,
        currency: str,
        customer_email: str,
        customer_name: str | None,
        metadata: dict[str, str],
    ) -> dict:
        """
        Create a customer and a PaymentIntent that saves the card for later charges.

        Returns:
            {"id": "pi_...", "client_secret": "pi_..._secret_...", "customer_id": "cus_..."}
        """
        self._ensure_configured()
        try:
            customer = await stripe.Customer.create_async(
                email=customer_email,
                name=customer_name or None,
                metadata=metadata,
            )
            intent = await stripe.PaymentIntent.create_async(
                amount=amount_in_cents,
                currency=currency.lower(),
                customer=customer.id,
                setup_future_usage="off_session",
                payment_method_types=["card"],
                metadata=metadata,
            )
        except stripe.StripeError as e:
            logger.error(f"❌ Stripe PaymentIntent creation failed: {e}")
            raise GatewayError(f"Stripe PaymentIntent creation failed: {e}") from e

        logger.info(f"✅ Stripe PaymentIntent created: {intent.id} ({amount_in_cents} {currency})")
        return {"id": intent.id, "client_secret": intent.client_secret, "customer_id": customer.id}

    async def cancel_payment_intent(self, payment_intent_id: str) -> str:
        """Cancel an intent. Intents that already reached a final state are left alone."""
        self._ensure_configured()
        try:
            intent = await stripe.PaymentIntent.retrieve_async(payment_intent_id)
            if intent.status in ("succeeded", "canceled"):
                logger.info(f"PaymentIntent {payment_intent_id} already {intent.status}, nothing to cancel")
                return intent.status
            intent = await stripe.PaymentIntent.cancel_async(payment_intent_id)
        except stripe.StripeError as e:
            raise GatewayError(f"Failed to cancel PaymentIntent {payment_intent_id}: {e}") from e
        return intent.status

    async def retrieve_payment_intent(self, payment_intent_id: str) -> dict:
        """Return the customer and payment method used by an intent."""
        self._ensure_configured()
        try:
            intent = await stripe.PaymentIntent.retrieve_async(payment_intent_id)
        except stripe.StripeError as e:
            raise GatewayError(f"Failed to retrieve PaymentIntent {payment_intent_id}: {e}") from e
        return {
            "id": intent.id,
            "status": intent.status,
            "customer": _object_id(intent.customer),
            "payment_method": _object_id(intent.payment_method),
        }

    async def charge_off_session(
        self,
        customer_id: str,
        payment_method_id: str,
        amount_in_cents: int,
        currency: str,
        metadata: dict[str, str],
        idempotency_key: str | None = None,
    ) -> dict:
        """
        Charge a saved card without the customer present.

        The idempotency key makes overlapping runs for the same installment
        reuse one PaymentIntent. Raises GatewayError with the decline reason
        if the charge does not succeed.
        """
        self._ensure_configured()
        try:
            intent = await stripe.PaymentIntent.create_async(
                amount=amount_in_cents,
                currency=currency.lower(),
                customer=customer_id,
                payment_method=payment_method_id,
                off_session=True,
                confirm=True,
                metadata={**metadata, RENEWAL_PAYMENT_METADATA_KEY: "true"},
                idempotency_key=idempotency_key,
            )
        except stripe.CardError as e:
            reason = e.user_message or str(e)
            logger.warning(f"⚠️ Off-session charge declined for customer {customer_id}: {reason}")
            raise GatewayError(reason) from e
        except stripe.StripeError as e:
            logger.error(f"❌ Off-session charge failed for customer {customer_id}: {e}")
            raise GatewayError(str(e)) from e

        if intent.status != "succeeded":
            raise GatewayError(f"Payment not completed, status: {intent.status}")

        logger.info(f"✅ Off-session charge succeeded: {intent.id} ({amount_in_cents} {currency})")
        return {"id": intent.id, "status": intent.status}

    async def create_setup_intent(self, customer_id: str, metadata: dict[str, str]) -> dict:
        self._ensure_configured()
        try:
            intent = await stripe.SetupIntent.create_async(
                customer=customer_id,
                payment_method_types=["card"],
                usage="off_session",
                metadata=metadata,
            )
        except stripe.StripeError as e:
            raise GatewayError(f"Failed to create SetupIntent: {e}") from e
        return {"id": intent.id, "client_secret": intent.client_secret}

    async def get_setup_intent_payment_method(self, setup_intent_id: str) -> str:
        """Return the payment method collected by a succeeded SetupIntent."""
        self._ensure_configured()
        try:
            intent = await stripe.SetupIntent.retrieve_async(setup_intent_id)
        except stripe.StripeError as e:
            raise GatewayError(f"Failed to retrieve SetupIntent {setup_intent_id}: {e}") from e

        payment_method = _object_id(intent.payment_method)
        if intent.status != "succeeded" or not payment_method:
            raise GatewayError(f"SetupIntent {setup_intent_id} has no confirmed payment method")
        return payment_method

    async def set_default_payment_method(self, customer_id: str, payment_method_id: str) -> None:
        self._ensure_configured()
        try:
            await stripe.Customer.modify_async(
                customer_id,
                invoice_settings={"default_payment_method": payment_method_id},
            )
        except stripe.StripeError as e:
            raise GatewayError(f"Failed to update default payment method for {customer_id}: {e}") from e


def _object_id(value) -> str | None:
    """Stripe returns either an id or an expanded object."""
    if value is None or isinstance(value, str):
        return value
    return value.id


def get_stripe_gateway() -> StripeService:
    """Dependency returning the Stripe gateway."""
    return StripeService()
