"""
Billing Alert Service

Persists billing conditions that need an operator: dropped webhook events,
catalog drift and failed provider clean-up.
"""
import logging
from typing import Optional, List
from datetime import datetime, timezone
from sqlalchemy.orm import Session
from sqlalchemy import desc

from app.models.billing_alert import BillingAlert

logger = logging.getLogger(__name__)

UNCORRELATED_EVENT = "uncorrelated_event"
CATALOG_DRIFT = "catalog_drift"
PROVIDER_DEACTIVATION_FAILED = "provider_deactivation_failed"
MALFORMED_EVENT = "malformed_event"


def record_alert(
    db: Session,
    alert_type: str,
    message: str,
    stripe_event_id: Optional[str] = None,
    stripe_event_type: Optional[str] = None,
    stripe_customer_id: Optional[str] = None,
    stripe_price_id: Optional[str] = None,
    plan_id: Optional[str] = None,
    commit: bool = False,
) -> BillingAlert:
    """
    Add an alert to the session.

    By default the alert is only flushed so it commits (or rolls back)
    together with the caller's unit of work.
    """
    alert = BillingAlert(
        alert_type=alert_type,
        message=message,
        stripe_event_id=stripe_event_id,
        stripe_event_type=stripe_event_type,
        stripe_customer_id=stripe_customer_id,
        stripe_price_id=stripe_price_id,
        plan_id=plan_id,
    )
    db.add(alert)
    if commit:
        db.commit()
        db.refresh(alert)
    else:
        db.flush()

    logger.warning(f"[BillingAlert] {alert_type}: {message}")
    return alert


def get_alerts(
    db: Session,
    resolved: Optional[bool] = False,
    alert_type: Optional[str] = None,
    skip: int = 0,
    limit: int = 100
) -> List[BillingAlert]:
    query = db.query(BillingAlert)
    if resolved is not None:
        query = query.filter(BillingAlert.resolved == resolved)
    if alert_type:
        query = query.filter(BillingAlert.alert_type == alert_type)
    return query.order_by(desc(BillingAlert.created_at), desc(BillingAlert.id)).offset(skip).limit(limit).all()


def resolve_alert(db: Session, alert_id: int) -> Optional[BillingAlert]:
    alert = db.query(BillingAlert).filter(BillingAlert.id == alert_id).first()
    if alert and not alert.resolved:
        alert.resolved = True
        alert.resolved_at = datetime.now(timezone.utc)
        db.commit()
        db.refresh(alert)
    return alert
