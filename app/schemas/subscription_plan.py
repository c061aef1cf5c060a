from pydantic import BaseModel, Field, field_validator
from typing import Optional, List
import datetime

from app.models.subscription_plan import PlanCtaType

CURRENCY_PATTERN = r"^[A-Za-z]{3}$"


class PlanFeatureBase(BaseModel):
    feature_text: str = Field(..., min_length=1)
    sort_order: Optional[int] = None

class PlanFeatureCreate(PlanFeatureBase):
    pass

class PlanFeatureUpdate(BaseModel):
    feature_text: Optional[str] = Field(None, min_length=1)
    sort_order: Optional[int] = None

class PlanFeature(PlanFeatureBase):
    id: int
    plan_id: str
    sort_order: int

    class Config:
        from_attributes = True

class PlanFeatureReorder(BaseModel):
    feature_ids: List[int] = Field(..., min_length=1)


class SubscriptionPlanBase(BaseModel):
    name: str
    description: Optional[str] = None
    price_cents: int = Field(0, ge=0)
    currency: str = Field("usd", pattern=CURRENCY_PATTERN)
    articles_per_month: int = Field(..., ge=0)
    is_active: bool = True
    is_visible: bool = True
    is_highlighted: bool = False
    sort_order: int = 0
    cta_text: Optional[str] = None
    cta_type: PlanCtaType = PlanCtaType.checkout

class SubscriptionPlanCreate(SubscriptionPlanBase):
    id: str = Field(..., min_length=1, max_length=64, pattern=r"^[a-z0-9_-]+$")
    sync_to_stripe: bool = True

class SubscriptionPlanUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    price_cents: Optional[int] = Field(None, ge=0)
    currency: Optional[str] = Field(None, pattern=CURRENCY_PATTERN)
    articles_per_month: Optional[int] = Field(None, ge=0)
    is_active: Optional[bool] = None
    is_visible: Optional[bool] = None
    is_highlighted: Optional[bool] = None
    sort_order: Optional[int] = None
    cta_text: Optional[str] = None
    cta_type: Optional[PlanCtaType] = None
    sync_to_stripe: bool = False

    @field_validator(
        "name", "price_cents", "currency", "articles_per_month", "is_active",
        "is_visible", "is_highlighted", "sort_order", "cta_type",
        mode="before",
    )
    @classmethod
    def not_null(cls, value):
        # These columns are NOT NULL; leave a field out to keep its value
        if value is None:
            raise ValueError("may be omitted but not set to null")
        return value

class SubscriptionPlan(SubscriptionPlanBase):
    id: str
    stripe_product_id: Optional[str] = None
    stripe_price_id: Optional[str] = None
    features: List[PlanFeature] = []
    created_at: Optional[datetime.datetime] = None
    updated_at: Optional[datetime.datetime] = None

    class Config:
        from_attributes = True
