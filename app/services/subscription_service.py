"""
Subscription plan catalog.

CRUD over plans and their display features, plus the single place that maps a
Stripe price id back to a plan.
"""
import logging
from typing import List, Optional

from sqlalchemy.orm import Session, selectinload

from app.core.config import settings
from app.models.plan_feature import PlanFeature
from app.models.plan_price import PlanPrice
from app.models.subscription_plan import SubscriptionPlan
from app.schemas import subscription_plan as schemas_subscription_plan
from app.services import billing_alert_service
from app.services.billing_exceptions import (
    BusinessRuleError,
    CatalogInconsistencyError,
    PlanNotFoundError,
)

logger = logging.getLogger(__name__)


def get_plan(db: Session, plan_id: str) -> Optional[SubscriptionPlan]:
    return db.query(SubscriptionPlan).filter(SubscriptionPlan.id == plan_id).first()


def get_plan_or_404(db: Session, plan_id: str) -> SubscriptionPlan:
    plan = get_plan(db, plan_id)
    if plan is None:
        raise PlanNotFoundError(f"Plan '{plan_id}' not found")
    return plan


def get_plans(db: Session, include_hidden: bool = False, include_inactive: bool = False) -> List[SubscriptionPlan]:
    """Plans ordered by sort_order, features eagerly loaded in display order."""
    query = db.query(SubscriptionPlan).options(selectinload(SubscriptionPlan.features))
    if not include_inactive:
        query = query.filter(SubscriptionPlan.is_active.is_(True))
    if not include_hidden:
        query = query.filter(SubscriptionPlan.is_visible.is_(True))
    return query.order_by(SubscriptionPlan.sort_order, SubscriptionPlan.id).all()


def get_plan_by_price_id(db: Session, price_id: str) -> Optional[SubscriptionPlan]:
    """
    The plan a Stripe price bills for: the plan currently selling it, else the
    plan it was retired from (subscribers keep their price until they change plan).
    """
    plan = db.query(SubscriptionPlan).filter(SubscriptionPlan.stripe_price_id == price_id).first()
    if plan is not None:
        return plan
    return (
        db.query(SubscriptionPlan)
        .join(PlanPrice, PlanPrice.plan_id == SubscriptionPlan.id)
        .filter(PlanPrice.stripe_price_id == price_id)
        .first()
    )


def get_free_plan(db: Session) -> SubscriptionPlan:
    plan = get_plan(db, settings.FREE_PLAN_ID)
    if plan is None:
        raise CatalogInconsistencyError(f"Free plan '{settings.FREE_PLAN_ID}' is missing from the catalog")
    return plan


def resolve_plan_or_default(
    db: Session,
    price_id: Optional[str],
    stripe_event_id: Optional[str] = None,
    stripe_event_type: Optional[str] = None,
    stripe_customer_id: Optional[str] = None,
) -> SubscriptionPlan:
    """
    Map a Stripe price id to a plan, falling back to the free plan.

    The fallback keeps a paying customer from being stranded, but it means the
    catalog and Stripe disagree, so every fallback is logged and recorded as a
    ``catalog_drift`` alert in the caller's transaction.
    """
    if price_id:
        plan = get_plan_by_price_id(db, price_id)
        if plan is not None:
            return plan

    drift = CatalogInconsistencyError(
        f"Stripe price {price_id!r} matches no plan; falling back to '{settings.FREE_PLAN_ID}'",
        stripe_price_id=price_id,
    )
    billing_alert_service.record_alert(
        db,
        billing_alert_service.CATALOG_DRIFT,
        message=str(drift),
        stripe_event_id=stripe_event_id,
        stripe_event_type=stripe_event_type,
        stripe_customer_id=stripe_customer_id,
        stripe_price_id=price_id,
    )
    return get_free_plan(db)


def create_plan(db: Session, plan: schemas_subscription_plan.SubscriptionPlanCreate) -> SubscriptionPlan:
    if get_plan(db, plan.id) is not None:
        raise BusinessRuleError(f"Plan '{plan.id}' already exists")

    db_plan = SubscriptionPlan(**plan.model_dump(exclude={"sync_to_stripe"}))
    db_plan.currency = db_plan.currency.lower()
    db.add(db_plan)
    db.commit()
    db.refresh(db_plan)
    logger.info(f"[PlanCatalog] Created plan {db_plan.id}")
    return db_plan


def apply_plan_update(db_plan: SubscriptionPlan, plan: schemas_subscription_plan.SubscriptionPlanUpdate) -> dict:
    """Copy the provided fields onto the row; returns the changed fields with their old values."""
    changed = {}
    for key, value in plan.model_dump(exclude_unset=True, exclude={"sync_to_stripe"}).items():
        if key == "currency" and value:
            value = value.lower()
        old = getattr(db_plan, key)
        if old != value:
            changed[key] = old
            setattr(db_plan, key, value)
    return changed


def soft_delete_plan(db: Session, plan_id: str) -> SubscriptionPlan:
    """Hide a plan from sale. Rows are kept for subscriptions that reference them."""
    db_plan = get_plan_or_404(db, plan_id)
    db_plan.is_active = False
    db_plan.is_visible = False
    db.commit()
    db.refresh(db_plan)
    logger.info(f"[PlanCatalog] Soft-deleted plan {plan_id}")
    return db_plan


# ----------------------------------------------------------------------
# Features
# ----------------------------------------------------------------------

def get_features(db: Session, plan_id: str) -> List[PlanFeature]:
    get_plan_or_404(db, plan_id)
    return db.query(PlanFeature).filter(PlanFeature.plan_id == plan_id).order_by(PlanFeature.sort_order).all()


def add_feature(db: Session, plan_id: str, feature: schemas_subscription_plan.PlanFeatureCreate) -> PlanFeature:
    get_plan_or_404(db, plan_id)
    sort_order = feature.sort_order
    if sort_order is None:
        last = (
            db.query(PlanFeature)
            .filter(PlanFeature.plan_id == plan_id)
            .order_by(PlanFeature.sort_order.desc())
            .first()
        )
        sort_order = (last.sort_order if last else 0) + 1

    db_feature = PlanFeature(plan_id=plan_id, feature_text=feature.feature_text.strip(), sort_order=sort_order)
    db.add(db_feature)
    db.commit()
    db.refresh(db_feature)
    return db_feature


def _get_plan_feature(db: Session, plan_id: str, feature_id: int) -> PlanFeature:
    db_feature = (
        db.query(PlanFeature)
        .filter(PlanFeature.plan_id == plan_id, PlanFeature.id == feature_id)
        .first()
    )
    if db_feature is None:
        raise PlanNotFoundError(f"Feature {feature_id} not found on plan '{plan_id}'")
    return db_feature


def update_feature(
    db: Session, plan_id: str, feature_id: int, feature: schemas_subscription_plan.PlanFeatureUpdate
) -> PlanFeature:
    db_feature = _get_plan_feature(db, plan_id, feature_id)
    for key, value in feature.model_dump(exclude_unset=True).items():
        if value is None:
            continue
        setattr(db_feature, key, value.strip() if isinstance(value, str) else value)
    db.commit()
    db.refresh(db_feature)
    return db_feature


def delete_feature(db: Session, plan_id: str, feature_id: int) -> None:
    db_feature = _get_plan_feature(db, plan_id, feature_id)
    db.delete(db_feature)
    db.commit()


def reorder_features(db: Session, plan_id: str, feature_ids: List[int]) -> List[PlanFeature]:
    """Renumber features 1..n in the given order. Every id must belong to the plan."""
    get_plan_or_404(db, plan_id)
    existing = {
        f.id: f
        for f in db.query(PlanFeature).filter(PlanFeature.plan_id == plan_id, PlanFeature.id.in_(feature_ids)).all()
    }
    invalid = [fid for fid in feature_ids if fid not in existing]
    if invalid:
        raise BusinessRuleError(
            f"Features not found or don't belong to this plan: {', '.join(str(i) for i in invalid)}"
        )

    for index, feature_id in enumerate(feature_ids, start=1):
        existing[feature_id].sort_order = index
    db.commit()
    return get_features(db, plan_id)
