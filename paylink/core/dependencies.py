"""Dependencies for FastAPI."""
import hmac
import logging
import uuid

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from paylink.config import EngineSecrets, load_engine_secrets
from paylink.core.security import decode_access_token
from paylink.services.stripe_service import get_stripe_gateway
from paylink.services.tbi_service import get_tbi_gateway

logger = logging.getLogger(__name__)

security = HTTPBearer()
cron_security = HTTPBearer(auto_error=False)

STAFF_ROLES = ("admin", "staff")

__all__ = [
    "get_current_staff",
    "get_engine_secrets",
    "require_cron_secret",
    "get_stripe_gateway",
    "get_tbi_gateway",
]


def _is_uuid(value) -> bool:
    try:
        uuid.UUID(str(value))
    except ValueError:
        return False
    return True


async def get_current_staff(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> dict:
    """
    Check the staff JWT and return its payload.

    The payload carries the user id in "sub" and the role in "role".
    """
    payload = decode_access_token(credentials.credentials)

    if payload is None or not _is_uuid(payload.get("sub")):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token",
        )

    if payload.get("role") not in STAFF_ROLES:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Insufficient permissions",
        )

    return payload


def get_engine_secrets(request: Request) -> EngineSecrets:
    """Secrets validated at startup and stored on the application state."""
    secrets = getattr(request.app.state, "secrets", None)
    if secrets is None:
        secrets = load_engine_secrets()
        request.app.state.secrets = secrets
    return secrets


async def require_cron_secret(
    credentials: HTTPAuthorizationCredentials | None = Depends(cron_security),
    secrets: EngineSecrets = Depends(get_engine_secrets),
) -> None:
    if not secrets.cron_secret:
        logger.error("❌ CRON_SECRET not configured")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Cron job not configured",
        )

    if credentials is None or not hmac.compare_digest(
        credentials.credentials.encode("utf-8"), secrets.cron_secret.encode("utf-8")
    ):
        logger.warning("⚠️ Unauthorized cron job attempt")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
        )
