"""
Billing Alert Model

Conditions an operator must look at: webhook events that matched no customer,
Stripe prices that matched no plan, and provider clean-up calls that failed.
"""
from sqlalchemy import Column, Integer, String, DateTime, Text, Boolean, Index
from sqlalchemy.sql import func
from app.core.database import Base


class BillingAlert(Base):
    """
    Alert types:
    - uncorrelated_event: webhook for a customer we have no profile for
    - catalog_drift: subscription price matched no plan, free plan was used
    - provider_deactivation_failed: soft-deleted plan is still active at Stripe
    - malformed_event: signed event whose payload lacks required fields
    """
    __tablename__ = "billing_alerts"

    id = Column(Integer, primary_key=True, index=True)
    alert_type = Column(String(50), nullable=False, index=True)

    stripe_event_id = Column(String, nullable=True)
    stripe_event_type = Column(String(100), nullable=True)
    stripe_customer_id = Column(String, nullable=True)
    stripe_price_id = Column(String, nullable=True)
    plan_id = Column(String(64), nullable=True)
    message = Column(Text, nullable=True)

    resolved = Column(Boolean, default=False)
    resolved_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)

    __table_args__ = (
        Index('ix_billing_alerts_type_resolved', 'alert_type', 'resolved'),
    )

    def __repr__(self):
        return f"<BillingAlert(id={self.id}, type={self.alert_type}, resolved={self.resolved})>"
