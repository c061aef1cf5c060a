"""
Billing profiles: the per-user row the usage gate and the webhook processor read.
"""
import logging
from typing import Optional

from sqlalchemy.orm import Session

from app.core.config import settings
from app.models.billing_profile import UserBillingProfile, SubscriptionStatus
from app.models.subscription import Subscription
from app.models.user import User
from app.services.billing_exceptions import BusinessRuleError

logger = logging.getLogger(__name__)

ENDED_SUBSCRIPTION_STATUSES = ("canceled", "incomplete_expired")


def get_profile(db: Session, user_id: int) -> Optional[UserBillingProfile]:
    return db.query(UserBillingProfile).filter(UserBillingProfile.user_id == user_id).first()


def bootstrap_profile(db: Session, user_id: int, gateway=None) -> UserBillingProfile:
    """
    Make sure ``user_id`` has a billing profile, and a Stripe customer when a
    gateway is given.

    New profiles start in trial on the free plan. Safe to call repeatedly;
    an existing customer id is never replaced.
    """
    user = db.get(User, user_id)
    if user is None:
        raise BusinessRuleError(f"User {user_id} not found")

    profile = get_profile(db, user_id)
    if profile is None:
        profile = UserBillingProfile(
            user_id=user_id,
            subscription_status=SubscriptionStatus.trial.value,
            subscription_plan_id=settings.FREE_PLAN_ID,
        )
        db.add(profile)
        db.flush()
        logger.info(f"[BillingProfile] Created profile for user {user_id}")

    if gateway is not None and not profile.stripe_customer_id:
        customer = gateway.create_customer(email=user.email, metadata={"user_id": str(user_id)})
        profile.stripe_customer_id = customer["id"]
        logger.info(f"[BillingProfile] Linked user {user_id} to Stripe customer {customer['id']}")

    db.commit()
    db.refresh(profile)
    return profile


def get_current_subscription(db: Session, user_id: int) -> Optional[Subscription]:
    """The user's live subscription mirror, or the most recent one if none is live."""
    records = (
        db.query(Subscription)
        .filter(Subscription.user_id == user_id)
        .order_by(Subscription.last_event_created.desc(), Subscription.id.desc())
        .all()
    )
    for record in records:
        if record.status not in ENDED_SUBSCRIPTION_STATUSES:
            return record
    return records[0] if records else None
