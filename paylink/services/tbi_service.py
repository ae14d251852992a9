"""TBI Bank gateway: loan applications and encrypted status callbacks."""
import base64
import binascii
import json
import logging
from dataclasses import dataclass
from decimal import Decimal

import httpx
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa

from paylink.config import settings
from paylink.core.errors import GatewayError, ValidationError

logger = logging.getLogger(__name__)

# status_id values sent by TBI
TBI_STATUS_REJECTED = 0
TBI_STATUS_APPROVED = 1
TBI_STATUS_PENDING = 2

# PKCS#1 v1.5 padding takes 11 bytes of every encrypted block
PKCS1_PADDING_OVERHEAD = 11


@dataclass(frozen=True)
class TbiStatusUpdate:
    order_id: str
    status_id: int | None
    motiv: str | None


def encrypt_data(plaintext: str, public_key_pem: str) -> str:
    """RSA-encrypt in blocks of key_size/8 - 11 bytes, base64 of the joined blocks."""
    public_key = serialization.load_pem_public_key(public_key_pem.encode("utf-8"))
    if not isinstance(public_key, rsa.RSAPublicKey):
        raise ValueError("TBI public key is not an RSA key")

    chunk_size = public_key.key_size // 8 - PKCS1_PADDING_OVERHEAD
    data = plaintext.encode("utf-8")
    encrypted = b"".join(
        public_key.encrypt(data[i:i + chunk_size], padding.PKCS1v15())
        for i in range(0, len(data), chunk_size)
    )
    return base64.b64encode(encrypted).decode("ascii")


def decrypt_data(encrypted_b64: str, private_key_pem: str) -> str:
    """Reverse of encrypt_data: decrypt every key_size/8 byte block with the private key."""
    private_key = serialization.load_pem_private_key(private_key_pem.encode("utf-8"), password=None)
    if not isinstance(private_key, rsa.RSAPrivateKey):
        raise ValueError("TBI private key is not an RSA key")

    chunk_size = private_key.key_size // 8
    data = base64.b64decode(encrypted_b64, validate=False)
    decrypted = b"".join(
        private_key.decrypt(data[i:i + chunk_size], padding.PKCS1v15())
        for i in range(0, len(data), chunk_size)
    )
    return decrypted.decode("utf-8")


def parse_status_update(encrypted_order_data: str, private_key_pem: str) -> TbiStatusUpdate:
    """
    Decrypt the order_data field of a TBI callback.

    Raises ValidationError when the payload cannot be decrypted or parsed,
    so the caller can answer 400.
    """
    try:
        payload = json.loads(decrypt_data(encrypted_order_data, private_key_pem))
    except (ValueError, TypeError, binascii.Error) as e:
        raise ValidationError(f"Failed to decrypt TBI order data: {e}") from e

    if not isinstance(payload, dict) or not payload.get("order_id"):
        raise ValidationError("TBI order data has no order_id")

    status_id = payload.get("status_id")
    try:
        status_id = int(status_id) if status_id is not None else None
    except (TypeError, ValueError):
        status_id = None

    motiv = payload.get("motiv")
    return TbiStatusUpdate(
        order_id=str(payload["order_id"]),
        status_id=status_id,
        motiv=str(motiv) if motiv is not None else None,
    )


class TbiService:
    """TBI eCommerce API client."""

    def __init__(self, transport: httpx.AsyncBaseTransport | None = None):
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            transport=self._transport,
            timeout=30.0,
            follow_redirects=False,
            verify=settings.tbi_verify_ssl,
        )

    def _ensure_configured(self):
        if not settings.tbi_public_key or not settings.tbi_store_id:
            raise GatewayError("TBI gateway not configured")

    def build_order_data(
        self,
        order_id: str,
        order_total: Decimal,
        product_name: str,
        billing_data: dict,
        back_ref: str,
    ) -> dict:
        return {
            "store_id": settings.tbi_store_id,
            "order_id": order_id,
            "back_ref": back_ref,
            "order_total": str(order_total),
            "username": settings.tbi_username,
            "password": settings.tbi_password,
            "customer": {
                "fname": billing_data.get("first_name", ""),
                "lname": billing_data.get("last_name", ""),
                "email": billing_data.get("email", ""),
                "phone": billing_data.get("phone") or "",
                "billing_address": billing_data.get("address") or "",
                "billing_city": billing_data.get("city") or "",
                "billing_county": billing_data.get("county") or "",
                "shipping_address": billing_data.get("address") or "",
                "shipping_city": billing_data.get("city") or "",
                "shipping_county": billing_data.get("county") or "",
                "promo": 0,
            },
            "items": [
                {
                    "name": product_name,
                    "qty": "1",
                    "price": str(order_total),
                    "category": settings.tbi_default_category,
                    "sku": order_id,
                    "ImageLink": "",
                }
            ],
        }

    async def create_loan_application(
        self,
        order_id: str,
        order_total: Decimal,
        product_name: str,
        billing_data: dict,
        back_ref: str,
    ) -> str:
        """
        Register a loan application and return the TBI landing page URL.

        TBI answers with a redirect whose Location header is the page where
        the customer fills in the credit application.
        """
        self._ensure_configured()
        order_data = self.build_order_data(order_id, order_total, product_name, billing_data, back_ref)
        encrypted = encrypt_data(json.dumps(order_data), settings.tbi_public_key)

        try:
            async with self._client() as client:
                response = await client.post(
                    settings.tbi_finalize_url,
                    data={"order_data": encrypted, "providerCode": settings.tbi_provider_code},
                )
        except httpx.HTTPError as e:
            raise GatewayError(f"TBI API request failed: {e}") from e

        if response.status_code in (301, 302, 303):
            redirect_url = response.headers.get("location")
            if not redirect_url:
                raise GatewayError("TBI API returned a redirect without Location header")
            logger.info(f"✅ TBI loan application created for order {order_id}")
            return redirect_url

        if response.status_code == 401:
            raise GatewayError("TBI API authentication failed")

        raise GatewayError(f"TBI API error: {response.status_code} - {response.text}")

    async def cancel_application(self, order_id: str) -> None:
        """Cancel a loan application that TBI has not approved yet."""
        self._ensure_configured()
        cancel_data = {
            "orderId": order_id,
            "statusId": "1",
            "username": settings.tbi_username,
            "password": settings.tbi_password,
        }
        encrypted = encrypt_data(json.dumps(cancel_data), settings.tbi_public_key)

        try:
            async with self._client() as client:
                response = await client.post(
                    settings.tbi_cancel_url,
                    data={"orderData": encrypted, "encryptCode": settings.tbi_provider_code},
                )
        except httpx.HTTPError as e:
            raise GatewayError(f"TBI cancel request failed: {e}") from e

        if response.status_code != 200:
            raise GatewayError(f"TBI cancel API error: {response.status_code} - {response.text}")

        result = response.json()
        if not result.get("isSuccess"):
            raise GatewayError(f"TBI refused to cancel order {order_id}: {result.get('error')}")

        logger.info(f"TBI application {order_id} canceled")


def get_tbi_gateway() -> TbiService:
    """Dependency returning the TBI gateway."""
    return TbiService()
