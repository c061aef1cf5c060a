import logging

from app.core.database import SessionLocal
from app.models.subscription_plan import PlanCtaType
from app.schemas import subscription_plan as schemas_subscription_plan
from app.services import subscription_service

logger = logging.getLogger(__name__)

DEFAULT_PLANS = [
    {
        "plan": schemas_subscription_plan.SubscriptionPlanCreate(
            id="free",
            name="Starter",
            description="Try the article generator",
            price_cents=0,
            articles_per_month=2,
            sort_order=1,
            cta_text="Get Started",
            cta_type=PlanCtaType.free_signup,
            sync_to_stripe=False,
        ),
        "features": ["2 articles per month", "Basic style learning", "Email delivery"],
    },
    {
        "plan": schemas_subscription_plan.SubscriptionPlanCreate(
            id="pro",
            name="Pro",
            description="For serious content creators",
            price_cents=7000,
            currency="usd",
            articles_per_month=20,
            sort_order=2,
            is_highlighted=True,
            cta_text="Start Free Trial",
            cta_type=PlanCtaType.checkout,
            sync_to_stripe=False,
        ),
        "features": [
            "20 articles per month",
            "Advanced style learning",
            "Priority delivery",
            "Custom topics",
            "SEO optimization",
        ],
    },
    {
        "plan": schemas_subscription_plan.SubscriptionPlanCreate(
            id="enterprise",
            name="Enterprise",
            description="For teams and agencies",
            price_cents=29900,
            currency="usd",
            articles_per_month=100,
            sort_order=3,
            cta_text="Contact Sales",
            cta_type=PlanCtaType.contact,
            sync_to_stripe=False,
        ),
        "features": [
            "100 articles per month",
            "Team collaboration",
            "API access",
            "Dedicated support",
        ],
    },
]


def create_default_plans(db):
    """Insert the default catalog plans that are missing. Existing plans are left untouched."""
    for entry in DEFAULT_PLANS:
        plan_in = entry["plan"]
        if subscription_service.get_plan(db, plan_in.id):
            continue
        logger.info(f"Creating default plan '{plan_in.id}'...")
        subscription_service.create_plan(db, plan_in)
        for text in entry["features"]:
            subscription_service.add_feature(
                db, plan_in.id, schemas_subscription_plan.PlanFeatureCreate(feature_text=text)
            )


def create_initial_data():
    db = SessionLocal()
    try:
        create_default_plans(db)
    finally:
        db.close()
