from app.schemas.article import Article, ArticleCreate
from app.schemas.billing import BillingStatus, CheckoutRequest, CheckoutResponse, UsageResponse
from app.schemas.subscription_plan import (
    PlanFeature,
    PlanFeatureCreate,
    PlanFeatureUpdate,
    SubscriptionPlan,
    SubscriptionPlanCreate,
    SubscriptionPlanUpdate,
)
