"""
Checkout and customer portal sessions.

Thin wrappers that ask Stripe for hosted URLs. The metadata written here
(``user_id``, ``plan_id`` on both the session and the subscription) is what the
webhook processor reads back to correlate events before the customer id has
been stored locally.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from app.core.config import settings
from app.schemas.billing_events import epoch_to_datetime
from app.services import subscription_service
from app.services.billing_profile_service import (
    ENDED_SUBSCRIPTION_STATUSES,
    get_current_subscription,
    get_profile,
)
from app.services.billing_exceptions import BusinessRuleError

logger = logging.getLogger(__name__)


@dataclass
class CheckoutSessionResult:
    session_id: str
    url: str


def create_checkout_session(
    db: Session,
    gateway,
    user_id: int,
    plan_id: str,
    trial_days: Optional[int] = None,
    success_url: Optional[str] = None,
    cancel_url: Optional[str] = None,
) -> CheckoutSessionResult:
    """
    Start a hosted subscription checkout.

    Raises:
        PlanNotFoundError: unknown plan
        BusinessRuleError: plan not purchasable, free, without a Stripe price,
            or the user has no Stripe customer yet
    """
    plan = subscription_service.get_plan_or_404(db, plan_id)
    if not plan.is_active:
        raise BusinessRuleError(f"Plan '{plan_id}' is not available for purchase")
    if plan.is_free:
        raise BusinessRuleError("Free plan does not require checkout")
    if not plan.stripe_price_id:
        raise BusinessRuleError(f"Plan '{plan_id}' has no Stripe price; run a catalog sync first")

    profile = get_profile(db, user_id)
    if profile is None or not profile.stripe_customer_id:
        raise BusinessRuleError("No Stripe customer is linked to this account")

    metadata = {"user_id": str(user_id), "plan_id": plan.id}
    params = {
        "customer": profile.stripe_customer_id,
        "mode": "subscription",
        "line_items": [{"price": plan.stripe_price_id, "quantity": 1}],
        "subscription_data": {
            "trial_period_days": settings.CHECKOUT_TRIAL_DAYS if trial_days is None else trial_days,
            "metadata": metadata,
        },
        "allow_promotion_codes": True,
        "billing_address_collection": "auto",
        "success_url": success_url or f"{settings.FRONTEND_URL}/dashboard?session_id={{CHECKOUT_SESSION_ID}}",
        "cancel_url": cancel_url or f"{settings.FRONTEND_URL}/subscribe",
        "metadata": metadata,
    }
    if params["subscription_data"]["trial_period_days"] == 0:
        # Stripe rejects a zero-day trial
        del params["subscription_data"]["trial_period_days"]

    session = gateway.create_checkout_session(params)
    logger.info(f"[Checkout] Created session {session['id']} for user {user_id} on plan {plan.id}")
    return CheckoutSessionResult(session_id=session["id"], url=session["url"])


def create_portal_session(db: Session, gateway, user_id: int, return_url: Optional[str] = None) -> str:
    """Self-service billing portal URL. Has no local side effects."""
    profile = get_profile(db, user_id)
    if profile is None or not profile.stripe_customer_id:
        raise BusinessRuleError("No subscription found for this account")

    session = gateway.create_portal_session(
        profile.stripe_customer_id, return_url or f"{settings.FRONTEND_URL}/dashboard/billing"
    )
    return session["url"]


def change_plan(db: Session, gateway, user_id: int, new_plan_id: str) -> dict:
    """
    Move the current Stripe subscription to another plan's price, prorated.

    Local state follows through the customer.subscription.updated webhook.
    """
    plan = subscription_service.get_plan_or_404(db, new_plan_id)
    if not plan.is_active or plan.is_free or not plan.stripe_price_id:
        raise BusinessRuleError(f"Plan '{new_plan_id}' cannot be subscribed to")

    current = get_current_subscription(db, user_id)
    if current is None or current.status in ENDED_SUBSCRIPTION_STATUSES:
        raise BusinessRuleError("No active subscription")

    remote = gateway.retrieve_subscription(current.stripe_subscription_id)
    items = (remote.get("items") or {}).get("data") or []
    if not items:
        raise BusinessRuleError("Subscription has no items to change")

    updated = gateway.update_subscription(
        current.stripe_subscription_id,
        items=[{"id": items[0]["id"], "price": plan.stripe_price_id}],
        proration_behavior="create_prorations",
        metadata={"user_id": str(user_id), "plan_id": plan.id},
    )
    logger.info(f"[Checkout] User {user_id} moved subscription {current.stripe_subscription_id} to {plan.id}")
    return updated


def cancel_subscription(db: Session, gateway, user_id: int) -> Optional[datetime]:
    """Cancel at period end. Returns when access ends."""
    current = get_current_subscription(db, user_id)
    if current is None or current.status in ENDED_SUBSCRIPTION_STATUSES:
        raise BusinessRuleError("No active subscription")

    updated = gateway.update_subscription(current.stripe_subscription_id, cancel_at_period_end=True)
    logger.info(f"[Checkout] User {user_id} scheduled cancellation of {current.stripe_subscription_id}")
    return epoch_to_datetime(updated.get("cancel_at"))
