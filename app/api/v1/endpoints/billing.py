import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.concurrency import run_in_threadpool
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.dependencies import get_db, get_current_active_user, get_stripe_gateway
from app.core.errors import billing_http_exception
from app.models.billing_profile import SubscriptionStatus
from app.models.user import User
from app.schemas import billing as schemas_billing
from app.schemas.subscription_plan import SubscriptionPlan
from app.services import (
    billing_profile_service,
    checkout_service,
    subscription_service,
    usage_service,
)
from app.services.billing_exceptions import AuthenticationError, BillingError
from app.services.billing_webhook_service import BillingWebhookProcessor

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/plans", response_model=List[SubscriptionPlan])
def get_subscription_plans(db: Session = Depends(get_db)):
    """
    Fetch the plans shown on the pricing page, features included.
    """
    return subscription_service.get_plans(db)


@router.get("/status", response_model=schemas_billing.BillingStatus)
def get_billing_status(
    db: Session = Depends(get_db), current_user: User = Depends(get_current_active_user)
):
    profile = billing_profile_service.get_profile(db, current_user.id)
    subscription = billing_profile_service.get_current_subscription(db, current_user.id)
    return schemas_billing.BillingStatus(
        plan=profile.subscription_plan_id if profile else settings.FREE_PLAN_ID,
        status=profile.subscription_status if profile else SubscriptionStatus.trial.value,
        stripe_customer_id=profile.stripe_customer_id if profile else None,
        subscription=schemas_billing.SubscriptionRecord.model_validate(subscription) if subscription else None,
    )


@router.post("/customer", response_model=schemas_billing.BillingStatus)
def ensure_billing_customer(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
    gateway=Depends(get_stripe_gateway),
):
    """
    Make sure the user has a billing profile and a Stripe customer.
    Called once onboarding finishes; repeated calls are no-ops.
    """
    try:
        profile = billing_profile_service.bootstrap_profile(db, current_user.id, gateway=gateway)
    except BillingError as e:
        db.rollback()
        raise billing_http_exception(e)
    return schemas_billing.BillingStatus(
        plan=profile.subscription_plan_id,
        status=profile.subscription_status,
        stripe_customer_id=profile.stripe_customer_id,
    )


@router.post("/checkout", response_model=schemas_billing.CheckoutResponse)
def create_checkout_session(
    checkout_in: schemas_billing.CheckoutRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
    gateway=Depends(get_stripe_gateway),
):
    """
    Create a Stripe Checkout session for a given plan.
    """
    try:
        result = checkout_service.create_checkout_session(
            db,
            gateway,
            user_id=current_user.id,
            plan_id=checkout_in.plan_id,
            trial_days=checkout_in.trial_days,
            success_url=checkout_in.success_url,
            cancel_url=checkout_in.cancel_url,
        )
    except BillingError as e:
        raise billing_http_exception(e)
    return schemas_billing.CheckoutResponse(session_id=result.session_id, url=result.url)


@router.post("/portal", response_model=schemas_billing.PortalResponse)
def create_portal_session(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
    gateway=Depends(get_stripe_gateway),
):
    try:
        url = checkout_service.create_portal_session(db, gateway, current_user.id)
    except BillingError as e:
        raise billing_http_exception(e)
    return schemas_billing.PortalResponse(url=url)


@router.post("/verify-session", response_model=schemas_billing.VerifySessionResponse)
def verify_checkout_session(
    verify_in: schemas_billing.VerifySessionRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
    gateway=Depends(get_stripe_gateway),
):
    """
    Apply a completed checkout right away, for when the success page loads
    before the webhook has arrived.
    """
    processor = BillingWebhookProcessor(db, gateway)
    try:
        sub_status, plan_id = processor.reconcile_checkout_session(current_user.id, verify_in.session_id)
    except BillingError as e:
        raise billing_http_exception(e)

    if sub_status == "pending":
        return schemas_billing.VerifySessionResponse(
            success=False, status=sub_status, message="Payment has not been confirmed yet"
        )
    return schemas_billing.VerifySessionResponse(
        success=True, status=sub_status, plan=plan_id, message="Subscription activated"
    )


@router.post("/change-plan")
def change_plan(
    change_in: schemas_billing.ChangePlanRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
    gateway=Depends(get_stripe_gateway),
):
    try:
        checkout_service.change_plan(db, gateway, current_user.id, change_in.new_plan_id)
    except BillingError as e:
        raise billing_http_exception(e)
    return {"success": True, "plan": change_in.new_plan_id}


@router.delete("/subscription", response_model=schemas_billing.CancelSubscriptionResponse)
def cancel_subscription(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
    gateway=Depends(get_stripe_gateway),
):
    try:
        cancel_at = checkout_service.cancel_subscription(db, gateway, current_user.id)
    except BillingError as e:
        raise billing_http_exception(e)
    return schemas_billing.CancelSubscriptionResponse(success=True, cancel_at=cancel_at)


@router.get("/usage", response_model=schemas_billing.UsageResponse)
def get_usage(
    db: Session = Depends(get_db), current_user: User = Depends(get_current_active_user)
):
    usage = usage_service.check_usage_or_deny(db, current_user.id)
    return schemas_billing.UsageResponse(
        plan=usage.plan,
        used=usage.used,
        limit=usage.limit,
        percentage_used=usage.percentage_used,
        allowed=usage.allowed,
    )


@router.post("/webhook", response_model=schemas_billing.WebhookAck)
async def stripe_webhook(
    request: Request,
    db: Session = Depends(get_db),
    gateway=Depends(get_stripe_gateway),
):
    """
    Handle webhooks from Stripe.

    400 rejects a delivery that failed verification. Any 5xx makes Stripe
    redeliver, so it is only returned when applying the event failed.

    The raw body is read on the event loop; processing uses the blocking
    session and Stripe client, so it runs in the threadpool.
    """
    payload = await request.body()
    sig_header = request.headers.get("stripe-signature")
    processor = BillingWebhookProcessor(db, gateway)

    try:
        outcome = await run_in_threadpool(processor.handle, payload, sig_header)
    except AuthenticationError as e:
        logger.warning(f"[BillingWebhook] Rejected delivery: {e}")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except BillingError as e:
        logger.error(f"[BillingWebhook] Delivery failed, Stripe will retry: {e}")
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Webhook processing failed")

    return schemas_billing.WebhookAck(outcome=outcome.value)
