"""Domain errors and their HTTP mapping."""
import logging

from fastapi import HTTPException, status

logger = logging.getLogger(__name__)


class PaymentEngineError(Exception):
    """Base class for errors raised by the services."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    code: str = "INTERNAL_SERVER_ERROR"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(PaymentEngineError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "BAD_REQUEST"


class NotFoundError(PaymentEngineError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "NOT_FOUND"


class ConflictError(PaymentEngineError):
    status_code = status.HTTP_409_CONFLICT
    code = "CONFLICT"


class UnauthorizedError(PaymentEngineError):
    status_code = status.HTTP_401_UNAUTHORIZED
    code = "UNAUTHORIZED"


class ForbiddenError(PaymentEngineError):
    status_code = status.HTTP_403_FORBIDDEN
    code = "FORBIDDEN"


class GatewayError(PaymentEngineError):
    """A Stripe or TBI call failed."""

    status_code = status.HTTP_502_BAD_GATEWAY
    code = "GATEWAY_ERROR"


class InternalError(PaymentEngineError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    code = "INTERNAL_SERVER_ERROR"


# Errors whose message is safe to show to the caller
CLIENT_ERRORS = (ValidationError, NotFoundError, ConflictError, UnauthorizedError, ForbiddenError)


def to_http_exception(error: Exception, fallback_message: str = "Internal server error") -> HTTPException:
    """
    Convert a service error into an HTTPException.

    Client errors keep their message. Gateway and unexpected errors are
    logged and replaced by a generic 500 response.
    """
    if isinstance(error, CLIENT_ERRORS):
        return HTTPException(status_code=error.status_code, detail=error.message)

    logger.error(f"❌ {fallback_message}: {error!r}", exc_info=error)
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail=fallback_message,
    )
