"""
Subscription Plan Model

The catalog of sellable plans. Product copy and quotas are owned here; the
chargeable price is owned by Stripe and referenced through the stripe_* columns.
"""
import enum

from sqlalchemy import Column, Integer, String, Boolean, DateTime, Text, Enum
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from app.core.database import Base


class PlanCtaType(str, enum.Enum):
    checkout = "checkout"
    contact = "contact"
    free_signup = "free_signup"


class SubscriptionPlan(Base):
    __tablename__ = "subscription_plans"

    # Stable business key ("free", "pro", "enterprise"), also written to Stripe metadata
    id = Column(String(64), primary_key=True, index=True)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    price_cents = Column(Integer, nullable=False, default=0)
    currency = Column(String(3), nullable=False, default="usd")
    articles_per_month = Column(Integer, nullable=False, default=0)

    is_active = Column(Boolean, default=True)  # purchasable; False is a soft delete
    is_visible = Column(Boolean, default=True)  # shown on the public pricing page
    is_highlighted = Column(Boolean, default=False)
    sort_order = Column(Integer, default=0)
    cta_text = Column(String, nullable=True)
    cta_type = Column(Enum(PlanCtaType, name="plan_cta_type"), default=PlanCtaType.checkout, nullable=False)

    # Never set on free plans. A price id is replaced, never edited.
    stripe_product_id = Column(String, nullable=True, index=True)
    stripe_price_id = Column(String, nullable=True, unique=True, index=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    features = relationship(
        "PlanFeature",
        back_populates="plan",
        order_by="PlanFeature.sort_order",
        cascade="all, delete-orphan",
    )

    @property
    def is_free(self) -> bool:
        return (self.price_cents or 0) == 0

    def __repr__(self):
        return f"<SubscriptionPlan(id={self.id}, price_cents={self.price_cents}, active={self.is_active})>"
