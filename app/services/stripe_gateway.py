"""
Stripe Gateway

Thin wrapper over the Stripe API used by the plan synchronizer, the checkout
service and the webhook processor. Components receive a gateway instance
instead of touching a global ``stripe.api_key``, so tests can hand them a fake.

Every method returns plain dicts. Stripe errors are translated into the
billing exception taxonomy.
"""
import json
import logging
from typing import Any, Callable, Dict, List, Optional

import stripe

from app.core.config import settings
from app.services.billing_exceptions import (
    AuthenticationError,
    ProviderRequestError,
    TransientDependencyError,
)

logger = logging.getLogger(__name__)

RECURRING_INTERVAL = "month"

_TRANSIENT_ERRORS = (
    stripe.APIConnectionError,
    stripe.RateLimitError,
    stripe.APIError,
)


def _to_dict(obj: Any) -> Dict[str, Any]:
    if obj is None:
        return {}
    if isinstance(obj, dict) and not hasattr(obj, "to_dict"):
        return obj
    return obj.to_dict()


class StripeGateway:
    """Capability object over the Stripe endpoints the billing core needs."""

    def __init__(
        self,
        api_key: str,
        webhook_secret: str = "",
        timeout_seconds: int = 10,
        max_network_retries: int = 2,
        api_version: Optional[str] = None,
        webhook_tolerance_seconds: int = 300,
    ):
        self.webhook_secret = webhook_secret
        self.webhook_tolerance_seconds = webhook_tolerance_seconds
        self.client = stripe.StripeClient(
            api_key,
            stripe_version=api_version,
            max_network_retries=max_network_retries,
            http_client=stripe.RequestsClient(timeout=timeout_seconds),
        )

    @classmethod
    def from_settings(cls) -> "StripeGateway":
        return cls(
            api_key=settings.STRIPE_SECRET_KEY,
            webhook_secret=settings.STRIPE_WEBHOOK_SECRET,
            timeout_seconds=settings.STRIPE_TIMEOUT_SECONDS,
            max_network_retries=settings.STRIPE_MAX_NETWORK_RETRIES,
            api_version=settings.STRIPE_API_VERSION,
            webhook_tolerance_seconds=settings.STRIPE_WEBHOOK_TOLERANCE_SECONDS,
        )

    def _request(self, operation: str, call: Callable[[], Any]) -> Any:
        try:
            return call()
        except _TRANSIENT_ERRORS as e:
            logger.error(f"[StripeGateway] {operation} failed (transient): {e}")
            raise TransientDependencyError(f"Stripe {operation} failed: {e}") from e
        except stripe.StripeError as e:
            logger.error(f"[StripeGateway] {operation} rejected: {e}")
            raise ProviderRequestError(f"Stripe {operation} rejected: {e}") from e

    # ------------------------------------------------------------------
    # Webhooks
    # ------------------------------------------------------------------

    def verify_event(self, payload: bytes, signature: Optional[str]) -> Dict[str, Any]:
        """
        Verify a webhook delivery against the signing secret and decode it.

        The raw body must be passed untouched; re-serialised JSON will not verify.

        Raises:
            AuthenticationError: missing secret, missing or bad signature, or
                a body that is not a JSON object
        """
        if not self.webhook_secret:
            raise AuthenticationError("Webhook secret is not configured")
        if not signature:
            raise AuthenticationError("Missing Stripe-Signature header")

        body = payload.decode("utf-8") if isinstance(payload, bytes) else payload
        try:
            stripe.WebhookSignature.verify_header(
                body, signature, self.webhook_secret, self.webhook_tolerance_seconds
            )
        except stripe.SignatureVerificationError as e:
            raise AuthenticationError(f"Invalid signature: {e}") from e

        try:
            event = json.loads(body)
        except ValueError as e:
            raise AuthenticationError(f"Invalid payload: {e}") from e
        if not isinstance(event, dict):
            raise AuthenticationError("Invalid payload: expected a JSON object")
        return event

    # ------------------------------------------------------------------
    # Products and prices
    # ------------------------------------------------------------------

    def search_products_by_plan(self, plan_id: str) -> List[Dict[str, Any]]:
        result = self._request(
            "products.search",
            lambda: self.client.products.search(params={"query": f"metadata['plan_id']:'{plan_id}'"}),
        )
        return [_to_dict(p) for p in result.data]

    def create_product(self, name: str, description: Optional[str], metadata: Dict[str, str]) -> Dict[str, Any]:
        params: Dict[str, Any] = {"name": name, "metadata": metadata}
        if description:
            params["description"] = description
        product = self._request("products.create", lambda: self.client.products.create(params=params))
        logger.info(f"[StripeGateway] Created product {product.id} for plan {metadata.get('plan_id')}")
        return _to_dict(product)

    def update_product(self, product_id: str, **fields: Any) -> Dict[str, Any]:
        product = self._request(
            "products.update", lambda: self.client.products.update(product_id, params=fields)
        )
        return _to_dict(product)

    def deactivate_product(self, product_id: str) -> Dict[str, Any]:
        return self.update_product(product_id, active=False)

    def list_active_recurring_prices(self, product_id: str) -> List[Dict[str, Any]]:
        result = self._request(
            "prices.list",
            lambda: self.client.prices.list(
                params={"product": product_id, "active": True, "type": "recurring", "limit": 100}
            ),
        )
        return [_to_dict(p) for p in result.data]

    def retrieve_price(self, price_id: str) -> Dict[str, Any]:
        return _to_dict(self._request("prices.retrieve", lambda: self.client.prices.retrieve(price_id)))

    def create_price(
        self,
        product_id: str,
        unit_amount: int,
        currency: str,
        metadata: Dict[str, str],
        interval: str = RECURRING_INTERVAL,
    ) -> Dict[str, Any]:
        params = {
            "product": product_id,
            "unit_amount": unit_amount,
            "currency": currency.lower(),
            "recurring": {"interval": interval},
            "metadata": metadata,
        }
        price = self._request("prices.create", lambda: self.client.prices.create(params=params))
        logger.info(f"[StripeGateway] Created price {price.id} ({unit_amount} {currency}) on {product_id}")
        return _to_dict(price)

    def deactivate_price(self, price_id: str) -> Dict[str, Any]:
        # Prices are immutable apart from `active`, `metadata` and `nickname`
        price = self._request(
            "prices.update", lambda: self.client.prices.update(price_id, params={"active": False})
        )
        return _to_dict(price)

    # ------------------------------------------------------------------
    # Customers and subscriptions
    # ------------------------------------------------------------------

    def create_customer(self, email: str, metadata: Dict[str, str]) -> Dict[str, Any]:
        customer = self._request(
            "customers.create",
            lambda: self.client.customers.create(params={"email": email, "metadata": metadata}),
        )
        return _to_dict(customer)

    def retrieve_subscription(self, subscription_id: str) -> Dict[str, Any]:
        return _to_dict(
            self._request("subscriptions.retrieve", lambda: self.client.subscriptions.retrieve(subscription_id))
        )

    def update_subscription(self, subscription_id: str, **fields: Any) -> Dict[str, Any]:
        return _to_dict(
            self._request(
                "subscriptions.update",
                lambda: self.client.subscriptions.update(subscription_id, params=fields),
            )
        )

    # ------------------------------------------------------------------
    # Hosted sessions
    # ------------------------------------------------------------------

    def create_checkout_session(self, params: Dict[str, Any]) -> Dict[str, Any]:
        return _to_dict(
            self._request("checkout.sessions.create", lambda: self.client.checkout.sessions.create(params=params))
        )

    def retrieve_checkout_session(self, session_id: str) -> Dict[str, Any]:
        return _to_dict(
            self._request(
                "checkout.sessions.retrieve",
                lambda: self.client.checkout.sessions.retrieve(session_id, params={"expand": ["subscription"]}),
            )
        )

    def create_portal_session(self, customer_id: str, return_url: str) -> Dict[str, Any]:
        return _to_dict(
            self._request(
                "billing_portal.sessions.create",
                lambda: self.client.billing_portal.sessions.create(
                    params={"customer": customer_id, "return_url": return_url}
                ),
            )
        )
