from pydantic import BaseModel, Field
from typing import Optional, List
import datetime

from app.schemas.subscription_plan import SubscriptionPlan


class CheckoutRequest(BaseModel):
    plan_id: str
    trial_days: Optional[int] = Field(None, ge=0, le=730)
    success_url: Optional[str] = None
    cancel_url: Optional[str] = None

class CheckoutResponse(BaseModel):
    session_id: str
    url: str

class PortalResponse(BaseModel):
    url: str

class VerifySessionRequest(BaseModel):
    session_id: str

class VerifySessionResponse(BaseModel):
    success: bool
    status: str
    plan: Optional[str] = None
    message: Optional[str] = None

class ChangePlanRequest(BaseModel):
    new_plan_id: str

class CancelSubscriptionResponse(BaseModel):
    success: bool
    cancel_at: Optional[datetime.datetime] = None


class UsageResponse(BaseModel):
    plan: str
    used: int
    limit: int
    percentage_used: int
    allowed: bool


class SubscriptionRecord(BaseModel):
    stripe_subscription_id: str
    stripe_price_id: Optional[str] = None
    plan_id: str
    status: str
    current_period_start: Optional[datetime.datetime] = None
    current_period_end: Optional[datetime.datetime] = None
    cancel_at: Optional[datetime.datetime] = None
    canceled_at: Optional[datetime.datetime] = None

    class Config:
        from_attributes = True

class BillingStatus(BaseModel):
    plan: str
    status: str
    stripe_customer_id: Optional[str] = None
    subscription: Optional[SubscriptionRecord] = None


class PlanSyncResult(BaseModel):
    plan_id: str
    name: str
    status: str  # synced | skipped | error | planned (dry run)
    stripe_product_id: Optional[str] = None
    stripe_price_id: Optional[str] = None
    error: Optional[str] = None
    actions: List[str] = []

class PlanSyncReport(BaseModel):
    message: str
    synced: int
    skipped: int
    errors: int
    planned: int = 0
    dry_run: bool = False
    results: List[PlanSyncResult]

class PlanWithSync(BaseModel):
    plan: SubscriptionPlan
    sync: Optional[PlanSyncResult] = None


class BillingAlert(BaseModel):
    id: int
    alert_type: str
    stripe_event_id: Optional[str] = None
    stripe_event_type: Optional[str] = None
    stripe_customer_id: Optional[str] = None
    stripe_price_id: Optional[str] = None
    plan_id: Optional[str] = None
    message: Optional[str] = None
    resolved: bool
    resolved_at: Optional[datetime.datetime] = None
    created_at: Optional[datetime.datetime] = None

    class Config:
        from_attributes = True

class WebhookAck(BaseModel):
    received: bool = True
    outcome: str
