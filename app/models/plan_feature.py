from sqlalchemy import Column, Integer, String, ForeignKey
from sqlalchemy.orm import relationship
from app.core.database import Base

class PlanFeature(Base):
    """Display-only bullet on the pricing page. Billing logic never reads it."""
    __tablename__ = "plan_features"

    id = Column(Integer, primary_key=True, index=True)
    plan_id = Column(String(64), ForeignKey("subscription_plans.id", ondelete="CASCADE"), nullable=False, index=True)
    feature_text = Column(String, nullable=False)
    sort_order = Column(Integer, nullable=False, default=0)

    plan = relationship("SubscriptionPlan", back_populates="features")
