"""
User Billing Profile Model

One row per user. Written only by the Stripe webhook processor and by the
signup bootstrap; UI actions never update it directly.
"""
import enum

from sqlalchemy import Column, Integer, String, DateTime, BigInteger, ForeignKey
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from app.core.database import Base


class SubscriptionStatus(str, enum.Enum):
    trial = "trial"
    active = "active"
    past_due = "past_due"
    canceled = "canceled"


BLOCKING_STATUSES = {SubscriptionStatus.past_due.value, SubscriptionStatus.canceled.value}


class UserBillingProfile(Base):
    __tablename__ = "user_billing_profiles"

    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    subscription_status = Column(String(20), nullable=False, default=SubscriptionStatus.trial.value)
    subscription_plan_id = Column(String(64), ForeignKey("subscription_plans.id"), nullable=False, default="free")
    stripe_customer_id = Column(String, nullable=True, unique=True, index=True)

    # `created` (epoch seconds) of the newest Stripe event applied to each field.
    # Invoice events move the status only, subscription events move both.
    status_event_created = Column(BigInteger, nullable=True)
    plan_event_created = Column(BigInteger, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    user = relationship("User", back_populates="billing_profile")
    plan = relationship("SubscriptionPlan")

    def __repr__(self):
        return f"<UserBillingProfile(user_id={self.user_id}, status={self.subscription_status}, plan={self.subscription_plan_id})>"
