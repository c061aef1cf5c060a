import os

# Settings are read at import time
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["STRIPE_SECRET_KEY"] = "sk_test_fake"
os.environ["STRIPE_WEBHOOK_SECRET"] = "whsec_test_secret"
os.environ["SECRET_KEY"] = "test-secret-key"
os.environ["CATALOG_SYNC_INTERVAL_MINUTES"] = "0"

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.database import Base
from app.initial_data import create_default_plans
from app.models.billing_profile import UserBillingProfile
from app.models.subscription_plan import SubscriptionPlan
from app.models.user import User

from stripe_fakes import FakeStripeGateway

engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db():
    Base.metadata.create_all(bind=engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def plans(db):
    create_default_plans(db)
    return {plan.id: plan for plan in db.query(SubscriptionPlan).all()}


@pytest.fixture
def pro_plan(db, plans):
    """The pro plan as if a catalog sync had already run."""
    plan = plans["pro"]
    plan.stripe_product_id = "prod_pro"
    plan.stripe_price_id = "price_pro"
    db.commit()
    return plan


@pytest.fixture
def gateway():
    return FakeStripeGateway()


@pytest.fixture
def user(db):
    db_user = User(email="writer@example.com", first_name="Test", last_name="Writer")
    db.add(db_user)
    db.commit()
    db.refresh(db_user)
    return db_user


@pytest.fixture
def admin_user(db):
    db_user = User(email="admin@example.com", is_admin=True)
    db.add(db_user)
    db.commit()
    db.refresh(db_user)
    return db_user


@pytest.fixture
def make_profile(db):
    def _make_profile(user, status="active", plan_id="free", customer_id="cus_writer"):
        profile = UserBillingProfile(
            user_id=user.id,
            subscription_status=status,
            subscription_plan_id=plan_id,
            stripe_customer_id=customer_id,
        )
        db.add(profile)
        db.commit()
        db.refresh(profile)
        return profile
    return _make_profile
