"""
Plan Price Model

Every Stripe price a plan has pointed at. The plan row only holds the current
price; retired prices stay here so subscriptions still billed on them keep
resolving to their plan.
"""
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from app.core.database import Base


class PlanPrice(Base):
    __tablename__ = "plan_prices"

    stripe_price_id = Column(String, primary_key=True)
    plan_id = Column(String(64), ForeignKey("subscription_plans.id", ondelete="CASCADE"), nullable=False, index=True)
    unit_amount = Column(Integer, nullable=False)
    currency = Column(String(3), nullable=False)
    retired_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    plan = relationship("SubscriptionPlan")

    def __repr__(self):
        return f"<PlanPrice(stripe_price_id={self.stripe_price_id}, plan={self.plan_id}, retired={self.retired_at is not None})>"
