"""
Plan administration.

Create, update and retire catalog plans, pushing the change to Stripe when
asked. Callers are expected to have passed the admin check already.
"""
import logging
from typing import Optional, Tuple

from sqlalchemy.orm import Session

from app.models.subscription_plan import SubscriptionPlan
from app.schemas import subscription_plan as schemas_subscription_plan
from app.schemas.billing import PlanSyncResult
from app.services import billing_alert_service, subscription_service
from app.services.billing_exceptions import BillingError
from app.services.plan_sync_service import PlanCatalogSynchronizer

logger = logging.getLogger(__name__)


def create_plan(
    db: Session, gateway, plan_in: schemas_subscription_plan.SubscriptionPlanCreate
) -> Tuple[SubscriptionPlan, Optional[PlanSyncResult]]:
    db_plan = subscription_service.create_plan(db, plan_in)
    sync_result = None
    if plan_in.sync_to_stripe and not db_plan.is_free:
        sync_result = PlanCatalogSynchronizer(db, gateway).sync_plan(db_plan)
        db.refresh(db_plan)
    return db_plan, sync_result


def update_plan(
    db: Session, gateway, plan_id: str, plan_in: schemas_subscription_plan.SubscriptionPlanUpdate
) -> Tuple[SubscriptionPlan, Optional[PlanSyncResult]]:
    """
    Apply a partial update. With ``sync_to_stripe`` only this plan is synced:
    its price ref is re-checked against the stored amount and currency (so an
    earlier unsynced price change is caught up too), a mismatch mints a new
    price and deactivates the old one, and a changed name, description or
    reactivation is pushed to the product.
    """
    db_plan = subscription_service.get_plan_or_404(db, plan_id)
    changed = subscription_service.apply_plan_update(db_plan, plan_in)

    # Free plans never carry Stripe references
    orphaned_price_id = None
    if db_plan.is_free and (db_plan.stripe_product_id or db_plan.stripe_price_id):
        orphaned_price_id = db_plan.stripe_price_id
        db_plan.stripe_product_id = None
        db_plan.stripe_price_id = None

    db.commit()
    db.refresh(db_plan)
    if changed:
        logger.info(f"[PlanCatalog] Updated plan {plan_id}: {sorted(changed)}")

    if not plan_in.sync_to_stripe:
        return db_plan, None

    synchronizer = PlanCatalogSynchronizer(db, gateway)
    if orphaned_price_id:
        synchronizer.retire_price(db_plan, orphaned_price_id)
        return db_plan, PlanSyncResult(plan_id=db_plan.id, name=db_plan.name, status="skipped")

    sync_result = synchronizer.sync_plan(
        db_plan,
        resync_price=True,
        refresh_product=bool(changed.keys() & {"name", "description", "is_active"}),
    )
    db.refresh(db_plan)
    return db_plan, sync_result


def delete_plan(db: Session, gateway, plan_id: str) -> SubscriptionPlan:
    """
    Soft delete: the plan stops being purchasable and disappears from pricing.

    Deactivating the Stripe product is best effort; the local flags already
    stop new checkouts, so a Stripe failure only raises an alert.
    """
    db_plan = subscription_service.soft_delete_plan(db, plan_id)
    if db_plan.stripe_product_id:
        try:
            gateway.deactivate_product(db_plan.stripe_product_id)
        except BillingError as e:
            logger.error(f"[PlanCatalog] Failed to deactivate Stripe product {db_plan.stripe_product_id}: {e}")
            billing_alert_service.record_alert(
                db,
                billing_alert_service.PROVIDER_DEACTIVATION_FAILED,
                message=f"Could not deactivate product {db_plan.stripe_product_id} of plan {plan_id}: {e}",
                plan_id=plan_id,
                commit=True,
            )
    return db_plan
