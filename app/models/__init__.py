from app.models.article import Article
from app.models.billing_alert import BillingAlert
from app.models.billing_profile import UserBillingProfile, SubscriptionStatus
from app.models.plan_feature import PlanFeature
from app.models.plan_price import PlanPrice
from app.models.subscription import Subscription
from app.models.subscription_plan import SubscriptionPlan, PlanCtaType
from app.models.user import User
