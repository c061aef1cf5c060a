"""
Subscription Model

Local mirror of a Stripe subscription so billing questions can be answered
without a live Stripe call. Stripe stays the source of truth.
"""
from sqlalchemy import Column, Integer, String, DateTime, BigInteger, ForeignKey, UniqueConstraint, Index
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from app.core.database import Base


class Subscription(Base):
    __tablename__ = "subscriptions"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    stripe_subscription_id = Column(String, nullable=False, index=True)
    stripe_price_id = Column(String, nullable=True)
    plan_id = Column(String(64), ForeignKey("subscription_plans.id"), nullable=False)

    status = Column(String(32), nullable=False)  # raw Stripe status
    current_period_start = Column(DateTime(timezone=True), nullable=True)
    current_period_end = Column(DateTime(timezone=True), nullable=True)
    cancel_at = Column(DateTime(timezone=True), nullable=True)
    canceled_at = Column(DateTime(timezone=True), nullable=True)

    last_event_created = Column(BigInteger, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    user = relationship("User", back_populates="subscriptions")
    plan = relationship("SubscriptionPlan")

    __table_args__ = (
        UniqueConstraint("user_id", "stripe_subscription_id", name="uq_subscriptions_user_stripe_subscription"),
        Index("ix_subscriptions_user_period_end", "user_id", "current_period_end"),
    )

    def __repr__(self):
        return f"<Subscription(id={self.id}, stripe_id={self.stripe_subscription_id}, status={self.status})>"
