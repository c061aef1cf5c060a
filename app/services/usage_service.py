"""
Usage Limit Gate

Request-time check of whether a user may generate another article this month.

The check is read-only: it counts the articles already recorded and does not
reserve anything. Two requests racing at the quota boundary can therefore both
be allowed, letting a user exceed the quota by the number of concurrent
requests. Exact enforcement would need a conditional increment on a counter row.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.config import settings
from app.models.article import Article
from app.models.billing_profile import UserBillingProfile, BLOCKING_STATUSES
from app.services import subscription_service
from app.services.billing_exceptions import BillingError

logger = logging.getLogger(__name__)


@dataclass
class UsageCheck:
    allowed: bool
    used: int
    limit: int
    plan: str

    @property
    def percentage_used(self) -> int:
        # A zero quota reads as 0% instead of dividing by zero
        if self.limit <= 0:
            return 0
        return round(self.used / self.limit * 100)


def start_of_month(now: Optional[datetime] = None) -> datetime:
    """Start of the current calendar month in UTC. Quotas reset on the 1st, not on the billing anchor."""
    now = now or datetime.now(timezone.utc)
    return now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


def count_articles_since(db: Session, user_id: int, since: datetime) -> int:
    return (
        db.query(func.count(Article.id))
        .filter(Article.user_id == user_id, Article.created_at >= since)
        .scalar()
        or 0
    )


def check_usage(db: Session, user_id: int, now: Optional[datetime] = None) -> UsageCheck:
    """
    Decide whether ``user_id`` may perform one more metered action.

    past_due and canceled users are refused outright with limit 0, whatever
    their count. A user without a billing profile gets the free plan's quota.
    """
    profile = db.query(UserBillingProfile).filter(UserBillingProfile.user_id == user_id).first()
    plan_id = profile.subscription_plan_id if profile else settings.FREE_PLAN_ID

    if profile and profile.subscription_status in BLOCKING_STATUSES:
        return UsageCheck(allowed=False, used=0, limit=0, plan=plan_id)

    plan = subscription_service.get_plan(db, plan_id)
    if plan is None:
        logger.warning(f"[UsageGate] User {user_id} is on unknown plan {plan_id!r}; using free quota")
        plan = subscription_service.get_free_plan(db)

    used = count_articles_since(db, user_id, start_of_month(now))
    limit = plan.articles_per_month or 0
    return UsageCheck(allowed=used < limit, used=used, limit=limit, plan=plan_id)


def check_usage_or_deny(db: Session, user_id: int, now: Optional[datetime] = None) -> UsageCheck:
    """
    ``check_usage`` that fails closed: if the gate itself cannot answer, the
    metered action is refused rather than let through.
    """
    try:
        return check_usage(db, user_id, now)
    except (SQLAlchemyError, BillingError) as e:
        logger.error(f"[UsageGate] Usage check failed for user {user_id}, denying: {e}")
        return UsageCheck(allowed=False, used=0, limit=0, plan=settings.FREE_PLAN_ID)


def record_article(db: Session, user_id: int, title: Optional[str] = None) -> Article:
    """Log one metered action. Callers run the gate first."""
    article = Article(user_id=user_id, title=title)
    db.add(article)
    db.commit()
    db.refresh(article)
    return article
