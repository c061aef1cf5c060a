from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session
from typing import List, Optional

from app.core.dependencies import get_db, get_stripe_gateway, require_admin
from app.core.errors import billing_http_exception
from app.schemas import billing as schemas_billing, subscription_plan as schemas_subscription_plan
from app.services import billing_alert_service, plan_admin_service, subscription_service
from app.services.billing_exceptions import BillingError
from app.services.plan_sync_service import PlanCatalogSynchronizer

router = APIRouter(dependencies=[Depends(require_admin)])


@router.get("/", response_model=List[schemas_subscription_plan.SubscriptionPlan])
def read_subscription_plans(
    include_inactive: bool = True,
    db: Session = Depends(get_db)
):
    """
    All plans, hidden ones included, in pricing-page order.
    """
    return subscription_service.get_plans(db, include_hidden=True, include_inactive=include_inactive)


@router.post("/", response_model=schemas_billing.PlanWithSync, status_code=status.HTTP_201_CREATED)
def create_subscription_plan(
    plan: schemas_subscription_plan.SubscriptionPlanCreate,
    db: Session = Depends(get_db),
    gateway=Depends(get_stripe_gateway),
):
    try:
        db_plan, sync_result = plan_admin_service.create_plan(db, gateway, plan)
    except BillingError as e:
        raise billing_http_exception(e)
    return schemas_billing.PlanWithSync(
        plan=schemas_subscription_plan.SubscriptionPlan.model_validate(db_plan), sync=sync_result
    )


@router.post("/sync", response_model=schemas_billing.PlanSyncReport)
def sync_subscription_plans(
    resync_price: bool = False,
    dry_run: bool = False,
    db: Session = Depends(get_db),
    gateway=Depends(get_stripe_gateway),
):
    """
    Push every active paid plan to Stripe. Per-plan failures are reported, not raised.

    - resync_price: re-check existing price refs against the catalog amounts
    - dry_run: only report what would change
    """
    return PlanCatalogSynchronizer(db, gateway).synchronize(resync_price=resync_price, dry_run=dry_run)


@router.get("/alerts", response_model=List[schemas_billing.BillingAlert])
def read_billing_alerts(
    resolved: Optional[bool] = False,
    alert_type: Optional[str] = None,
    skip: int = 0,
    limit: int = 100,
    db: Session = Depends(get_db),
):
    return billing_alert_service.get_alerts(db, resolved=resolved, alert_type=alert_type, skip=skip, limit=limit)


@router.post("/alerts/{alert_id}/resolve", response_model=schemas_billing.BillingAlert)
def resolve_billing_alert(alert_id: int, db: Session = Depends(get_db)):
    alert = billing_alert_service.resolve_alert(db, alert_id)
    if alert is None:
        raise HTTPException(status_code=404, detail="Alert not found")
    return alert


@router.get("/{plan_id}", response_model=schemas_subscription_plan.SubscriptionPlan)
def read_subscription_plan(plan_id: str, db: Session = Depends(get_db)):
    db_plan = subscription_service.get_plan(db, plan_id)
    if db_plan is None:
        raise HTTPException(status_code=404, detail="Subscription plan not found")
    return db_plan


@router.patch("/{plan_id}", response_model=schemas_billing.PlanWithSync)
def update_subscription_plan(
    plan_id: str,
    plan: schemas_subscription_plan.SubscriptionPlanUpdate,
    db: Session = Depends(get_db),
    gateway=Depends(get_stripe_gateway),
):
    try:
        db_plan, sync_result = plan_admin_service.update_plan(db, gateway, plan_id, plan)
    except BillingError as e:
        raise billing_http_exception(e)
    return schemas_billing.PlanWithSync(
        plan=schemas_subscription_plan.SubscriptionPlan.model_validate(db_plan), sync=sync_result
    )


@router.delete("/{plan_id}", response_model=schemas_subscription_plan.SubscriptionPlan)
def delete_subscription_plan(
    plan_id: str,
    db: Session = Depends(get_db),
    gateway=Depends(get_stripe_gateway),
):
    try:
        return plan_admin_service.delete_plan(db, gateway, plan_id)
    except BillingError as e:
        raise billing_http_exception(e)


# Features

@router.get("/{plan_id}/features", response_model=List[schemas_subscription_plan.PlanFeature])
def read_plan_features(plan_id: str, db: Session = Depends(get_db)):
    try:
        return subscription_service.get_features(db, plan_id)
    except BillingError as e:
        raise billing_http_exception(e)


@router.post(
    "/{plan_id}/features",
    response_model=schemas_subscription_plan.PlanFeature,
    status_code=status.HTTP_201_CREATED,
)
def create_plan_feature(
    plan_id: str,
    feature: schemas_subscription_plan.PlanFeatureCreate,
    db: Session = Depends(get_db),
):
    try:
        return subscription_service.add_feature(db, plan_id, feature)
    except BillingError as e:
        raise billing_http_exception(e)


@router.put("/{plan_id}/features/reorder", response_model=List[schemas_subscription_plan.PlanFeature])
def reorder_plan_features(
    plan_id: str,
    reorder: schemas_subscription_plan.PlanFeatureReorder,
    db: Session = Depends(get_db),
):
    try:
        return subscription_service.reorder_features(db, plan_id, reorder.feature_ids)
    except BillingError as e:
        raise billing_http_exception(e)


@router.patch("/{plan_id}/features/{feature_id}", response_model=schemas_subscription_plan.PlanFeature)
def update_plan_feature(
    plan_id: str,
    feature_id: int,
    feature: schemas_subscription_plan.PlanFeatureUpdate,
    db: Session = Depends(get_db),
):
    try:
        return subscription_service.update_feature(db, plan_id, feature_id, feature)
    except BillingError as e:
        raise billing_http_exception(e)


@router.delete("/{plan_id}/features/{feature_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_plan_feature(plan_id: str, feature_id: int, db: Session = Depends(get_db)):
    try:
        subscription_service.delete_feature(db, plan_id, feature_id)
    except BillingError as e:
        raise billing_http_exception(e)
    return None
