import pytest

from app.models.billing_profile import UserBillingProfile
from app.models.subscription import Subscription
from app.services import billing_profile_service, checkout_service
from app.services.billing_exceptions import BusinessRuleError, PlanNotFoundError

from stripe_fakes import subscription_object


@pytest.fixture
def customer(user, make_profile):
    make_profile(user, status="trial", plan_id="free", customer_id="cus_writer")
    return user


def add_subscription_record(db, user, status="active", subscription_id="sub_writer", plan_id="pro"):
    record = Subscription(
        user_id=user.id,
        stripe_subscription_id=subscription_id,
        stripe_price_id="price_pro",
        plan_id=plan_id,
        status=status,
        last_event_created=1760000100,
    )
    db.add(record)
    db.commit()
    return record


def test_checkout_for_plan_without_price_is_refused_before_stripe(db, user, plans, gateway):
    # pro exists but has never been synced, and the user has no customer
    with pytest.raises(BusinessRuleError, match="no Stripe price"):
        checkout_service.create_checkout_session(db, gateway, user.id, "pro")

    assert gateway.calls_to("create_checkout_session") == []


def test_checkout_for_unknown_plan(db, customer, plans, gateway):
    with pytest.raises(PlanNotFoundError):
        checkout_service.create_checkout_session(db, gateway, customer.id, "platinum")


def test_checkout_for_free_plan_is_refused(db, customer, plans, gateway):
    with pytest.raises(BusinessRuleError):
        checkout_service.create_checkout_session(db, gateway, customer.id, "free")


def test_checkout_for_inactive_plan_is_refused(db, customer, pro_plan, gateway):
    pro_plan.is_active = False
    db.commit()

    with pytest.raises(BusinessRuleError, match="not available"):
        checkout_service.create_checkout_session(db, gateway, customer.id, "pro")


def test_checkout_requires_stripe_customer(db, user, pro_plan, gateway):
    with pytest.raises(BusinessRuleError, match="No Stripe customer"):
        checkout_service.create_checkout_session(db, gateway, user.id, "pro")


def test_checkout_session_carries_correlation_metadata_and_trial(db, customer, pro_plan, gateway):
    result = checkout_service.create_checkout_session(db, gateway, customer.id, "pro")

    assert result.url.startswith("https://checkout.stripe.test/")
    (params,) = gateway.calls_to("create_checkout_session")[0][1]
    assert params["customer"] == "cus_writer"
    assert params["mode"] == "subscription"
    assert params["line_items"] == [{"price": "price_pro", "quantity": 1}]
    assert params["subscription_data"]["trial_period_days"] == 7
    assert params["subscription_data"]["metadata"] == {"user_id": str(customer.id), "plan_id": "pro"}
    assert params["metadata"] == {"user_id": str(customer.id), "plan_id": "pro"}
    assert "{CHECKOUT_SESSION_ID}" in params["success_url"]


def test_checkout_without_trial(db, customer, pro_plan, gateway):
    checkout_service.create_checkout_session(db, gateway, customer.id, "pro", trial_days=0)

    (params,) = gateway.calls_to("create_checkout_session")[0][1]
    assert "trial_period_days" not in params["subscription_data"]


def test_portal_session_needs_customer(db, user, gateway):
    with pytest.raises(BusinessRuleError):
        checkout_service.create_portal_session(db, gateway, user.id)


def test_portal_session_url(db, customer, gateway):
    url = checkout_service.create_portal_session(db, gateway, customer.id, return_url="https://app.test/billing")

    assert url == "https://billing.stripe.test/p/session/cus_writer"
    assert gateway.calls_to("create_portal_session")[0][1] == ("cus_writer", "https://app.test/billing")


def test_change_plan_swaps_price_with_proration(db, customer, pro_plan, plans, gateway):
    plans["enterprise"].stripe_price_id = "price_enterprise"
    db.commit()
    add_subscription_record(db, customer)
    gateway.subscriptions["sub_writer"] = subscription_object()

    checkout_service.change_plan(db, gateway, customer.id, "enterprise")

    _, args, fields = gateway.calls_to("update_subscription")[0]
    assert args == ("sub_writer",)
    assert fields["items"] == [{"id": "si_sub_writer", "price": "price_enterprise"}]
    assert fields["proration_behavior"] == "create_prorations"


def test_change_plan_without_subscription(db, customer, pro_plan, gateway):
    with pytest.raises(BusinessRuleError, match="No active subscription"):
        checkout_service.change_plan(db, gateway, customer.id, "pro")


def test_cancel_subscription_at_period_end(db, customer, pro_plan, gateway):
    add_subscription_record(db, customer)
    gateway.subscriptions["sub_writer"] = subscription_object()
    gateway.subscriptions["sub_writer"]["current_period_end"] = 1762592000

    cancel_at = checkout_service.cancel_subscription(db, gateway, customer.id)

    assert gateway.calls_to("update_subscription")[0][2] == {"cancel_at_period_end": True}
    assert cancel_at is not None
    assert int(cancel_at.timestamp()) == 1762592000


def test_cancel_ignores_already_canceled_subscription(db, customer, pro_plan, gateway):
    add_subscription_record(db, customer, status="canceled")

    with pytest.raises(BusinessRuleError):
        checkout_service.cancel_subscription(db, gateway, customer.id)


def test_bootstrap_creates_trial_profile_and_customer(db, user, plans, gateway):
    profile = billing_profile_service.bootstrap_profile(db, user.id, gateway=gateway)

    assert profile.subscription_status == "trial"
    assert profile.subscription_plan_id == "free"
    assert profile.stripe_customer_id.startswith("cus_")
    assert gateway.calls_to("create_customer")[0][2] == {
        "email": "writer@example.com",
        "metadata": {"user_id": str(user.id)},
    }


def test_bootstrap_is_repeatable(db, user, plans, gateway):
    first = billing_profile_service.bootstrap_profile(db, user.id, gateway=gateway)
    second = billing_profile_service.bootstrap_profile(db, user.id, gateway=gateway)

    assert first.stripe_customer_id == second.stripe_customer_id
    assert len(gateway.calls_to("create_customer")) == 1
    assert db.query(UserBillingProfile).count() == 1


def test_bootstrap_without_gateway_skips_customer(db, user, plans):
    profile = billing_profile_service.bootstrap_profile(db, user.id)

    assert profile.stripe_customer_id is None


def test_current_subscription_prefers_live_record(db, customer, pro_plan):
    add_subscription_record(db, customer, status="canceled", subscription_id="sub_old")
    add_subscription_record(db, customer, status="active", subscription_id="sub_new")

    assert billing_profile_service.get_current_subscription(db, customer.id).stripe_subscription_id == "sub_new"
