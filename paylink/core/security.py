"""Tokens and signatures."""
import hashlib
import hmac
import secrets
import time
from datetime import timedelta
from typing import Any

from jose import JWTError, jwt

from paylink.config import settings
from paylink.services.dates_service import utcnow


def create_access_token(data: dict[str, Any], expires_delta: timedelta | None = None) -> str:
    """Create a JWT access token for a staff user."""
    to_encode = data.copy()
    if expires_delta:
        expire = utcnow() + expires_delta
    else:
        expire = utcnow() + timedelta(hours=settings.access_token_expire_hours)
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.secret_key, algorithm="HS256")


def decode_access_token(token: str) -> dict[str, Any] | None:
    """Decode a JWT access token, None if it is invalid or expired."""
    try:
        return jwt.decode(token, settings.secret_key, algorithms=["HS256"])
    except JWTError:
        return None


def generate_update_payment_token() -> tuple[str, str]:
    """Return a random token and its SHA-256 hex digest."""
    token = secrets.token_hex(32)
    return token, hash_token(token)


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def verify_calendly_signature(
    body: bytes,
    signature_header: str | None,
    signing_key: str,
    tolerance_seconds: int,
    now: float | None = None,
) -> bool:
    """
    Verify a Calendly-Webhook-Signature header.

    The header looks like ``t=1492774577,v1=5257a869...``. The signed payload
    is ``"{t}.{body}"``. Timestamps further than the tolerance from now, in
    either direction, are rejected.
    """
    if not signature_header or not signing_key:
        return False

    parts = {}
    for item in signature_header.split(","):
        key, _, value = item.strip().partition("=")
        parts[key] = value

    timestamp = parts.get("t")
    signature = parts.get("v1")
    if not timestamp or not signature or not timestamp.isdecimal():
        return False

    current = now if now is not None else time.time()
    if abs(current - int(timestamp)) > tolerance_seconds:
        return False

    signed_payload = f"{timestamp}.".encode("utf-8") + body
    expected = hmac.new(signing_key.encode("utf-8"), signed_payload, hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected.encode("utf-8"), signature.encode("utf-8"))
