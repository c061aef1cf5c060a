import logging

from fastapi import HTTPException, status

from app.services.billing_exceptions import (
    AuthenticationError,
    BillingError,
    BusinessRuleError,
    PlanNotFoundError,
    ProviderRequestError,
    TransientDependencyError,
)

logger = logging.getLogger(__name__)


def billing_http_exception(e: BillingError) -> HTTPException:
    """Translate a billing failure into the response a user-facing route returns."""
    if isinstance(e, PlanNotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    if isinstance(e, (BusinessRuleError, AuthenticationError)):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    if isinstance(e, TransientDependencyError):
        return HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Billing is temporarily unavailable, please try again",
        )
    if isinstance(e, ProviderRequestError):
        return HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e))

    logger.error(f"[Billing] Unhandled billing error: {e}")
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Billing error")
