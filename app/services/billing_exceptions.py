"""
Billing exceptions.

Routers map these to HTTP responses; the webhook endpoint relies on the
distinction between a rejected delivery (400), a dropped one (200) and a
failed one (500, Stripe redelivers).
"""
from typing import Optional


class BillingError(Exception):
    """Base class for billing failures."""
    pass


class AuthenticationError(BillingError):
    """Webhook signature did not verify. The delivery is rejected unprocessed."""
    pass


class CorrelationError(BillingError):
    """Event references a Stripe customer that has no billing profile."""

    def __init__(self, message: str, stripe_customer_id: Optional[str] = None):
        super().__init__(message)
        self.stripe_customer_id = stripe_customer_id


class TransientDependencyError(BillingError):
    """Stripe or the database failed for infrastructure reasons. Safe to retry."""
    pass


class ProviderRequestError(BillingError):
    """Stripe rejected the request itself (bad parameters, missing object)."""
    pass


class CatalogInconsistencyError(BillingError):
    """A Stripe price matched no plan in the catalog."""

    def __init__(self, message: str, stripe_price_id: Optional[str] = None):
        super().__init__(message)
        self.stripe_price_id = stripe_price_id


class BusinessRuleError(BillingError):
    """Request is not allowed by billing rules. Not retryable."""
    pass


class PlanNotFoundError(BusinessRuleError):
    pass
