from unittest.mock import patch

import pytest

from app.models.billing_alert import BillingAlert
from app.models.plan_price import PlanPrice
from app.schemas.subscription_plan import SubscriptionPlanCreate, SubscriptionPlanUpdate
from app.services import plan_admin_service
from app.services.billing_exceptions import ProviderRequestError, TransientDependencyError
from app.services.plan_sync_service import PlanCatalogSynchronizer, price_matches_plan
from scripts import sync_stripe_plans


@pytest.fixture
def synchronizer(db, gateway):
    return PlanCatalogSynchronizer(db, gateway)


def test_first_sync_creates_product_and_price_for_paid_plans(plans, gateway, synchronizer):
    report = synchronizer.synchronize()

    assert (report.synced, report.skipped, report.errors) == (2, 1, 0)
    assert len(gateway.calls_to("create_product")) == 2
    assert len(gateway.calls_to("create_price")) == 2

    pro = plans["pro"]
    price = gateway.prices[pro.stripe_price_id]
    assert price["product"] == pro.stripe_product_id
    assert price["unit_amount"] == 7000
    assert price["currency"] == "usd"
    assert price["recurring"]["interval"] == "month"
    assert gateway.products[pro.stripe_product_id]["metadata"]["plan_id"] == "pro"


def test_second_sync_on_unchanged_catalog_creates_nothing(plans, gateway, synchronizer):
    synchronizer.synchronize()
    creations = len(gateway.calls_to("create_product")) + len(gateway.calls_to("create_price"))

    report = synchronizer.synchronize()

    assert report.errors == 0
    assert len(gateway.calls_to("create_product")) + len(gateway.calls_to("create_price")) == creations


def test_free_plan_is_skipped_without_calling_stripe(plans, gateway, synchronizer):
    result = synchronizer.sync_plan(plans["free"])

    assert result.status == "skipped"
    assert gateway.calls == []
    assert plans["free"].stripe_product_id is None
    assert plans["free"].stripe_price_id is None


def test_existing_product_and_matching_price_are_adopted(plans, gateway, synchronizer):
    product = gateway.add_product("pro")
    price = gateway.add_price(product["id"], 7000, "usd")

    result = synchronizer.sync_plan(plans["pro"])

    assert result.status == "synced"
    assert result.stripe_product_id == product["id"]
    assert result.stripe_price_id == price["id"]
    assert gateway.calls_to("create_product") == []
    assert gateway.calls_to("create_price") == []


def test_mismatched_existing_price_is_not_adopted(plans, gateway, synchronizer):
    product = gateway.add_product("pro")
    stale = gateway.add_price(product["id"], 5000, "usd")
    yearly = gateway.add_price(product["id"], 7000, "usd", interval="year")

    result = synchronizer.sync_plan(plans["pro"])

    assert result.stripe_product_id == product["id"]
    assert result.stripe_price_id not in (stale["id"], yearly["id"])
    assert len(gateway.calls_to("create_price")) == 1


def test_price_change_mints_new_price_and_retires_old(db, plans, gateway, synchronizer):
    synchronizer.sync_plan(plans["pro"])
    old_price_id = plans["pro"].stripe_price_id

    plan, result = plan_admin_service.update_plan(
        db, gateway, "pro", SubscriptionPlanUpdate(price_cents=9000, sync_to_stripe=True)
    )

    assert result.status == "synced"
    assert plan.stripe_price_id != old_price_id
    assert gateway.prices[plan.stripe_price_id]["unit_amount"] == 9000
    # The old price object is deactivated but its amount is never edited
    assert gateway.prices[old_price_id]["active"] is False
    assert gateway.prices[old_price_id]["unit_amount"] == 7000
    assert gateway.calls_to("deactivate_price") == [("deactivate_price", (old_price_id,), {})]


def test_update_without_sync_flag_leaves_stripe_alone(db, plans, gateway, synchronizer):
    synchronizer.sync_plan(plans["pro"])
    calls_before = len(gateway.calls)

    plan, result = plan_admin_service.update_plan(db, gateway, "pro", SubscriptionPlanUpdate(price_cents=9000))

    assert result is None
    assert plan.price_cents == 9000
    assert len(gateway.calls) == calls_before


def test_renaming_plan_pushes_name_to_product(db, plans, gateway, synchronizer):
    synchronizer.sync_plan(plans["pro"])

    plan, _ = plan_admin_service.update_plan(
        db, gateway, "pro", SubscriptionPlanUpdate(name="Pro Plus", sync_to_stripe=True)
    )

    assert gateway.products[plan.stripe_product_id]["name"] == "Pro Plus"
    assert len(gateway.calls_to("create_price")) == 1


def test_making_plan_free_clears_refs_and_retires_price(db, plans, gateway, synchronizer):
    synchronizer.sync_plan(plans["enterprise"])
    old_price_id = plans["enterprise"].stripe_price_id

    plan, result = plan_admin_service.update_plan(
        db, gateway, "enterprise", SubscriptionPlanUpdate(price_cents=0, sync_to_stripe=True)
    )

    assert result.status == "skipped"
    assert plan.stripe_product_id is None
    assert plan.stripe_price_id is None
    assert gateway.prices[old_price_id]["active"] is False


def test_failing_plan_keeps_product_ref_and_batch_continues(db, plans, gateway, synchronizer):
    create_price = gateway.create_price

    def flaky_create_price(product_id, unit_amount, currency, metadata, interval="month"):
        if metadata["plan_id"] == "pro":
            raise TransientDependencyError("Stripe prices.create failed: timeout")
        return create_price(product_id, unit_amount, currency, metadata, interval)

    gateway.create_price = flaky_create_price

    report = synchronizer.synchronize()

    assert (report.synced, report.skipped, report.errors) == (1, 1, 1)
    failed = next(r for r in report.results if r.plan_id == "pro")
    assert failed.status == "error"
    assert "timeout" in failed.error

    pro = plans["pro"]
    db.refresh(pro)
    assert pro.stripe_product_id is not None
    assert pro.stripe_price_id is None

    # Next run reuses the saved product instead of creating another one
    gateway.create_price = create_price
    products_before = len(gateway.calls_to("create_product"))
    result = synchronizer.sync_plan(pro)
    assert result.status == "synced"
    assert len(gateway.calls_to("create_product")) == products_before


def test_failed_price_deactivation_raises_alert(db, plans, gateway, synchronizer):
    synchronizer.sync_plan(plans["pro"])
    gateway.fail_on["deactivate_price"] = ProviderRequestError("Stripe prices.update rejected")

    plan, result = plan_admin_service.update_plan(
        db, gateway, "pro", SubscriptionPlanUpdate(price_cents=9900, sync_to_stripe=True)
    )

    assert result.status == "synced"
    alert = db.query(BillingAlert).one()
    assert alert.alert_type == "provider_deactivation_failed"
    assert alert.plan_id == "pro"


def test_create_plan_syncs_when_asked(db, plans, gateway):
    plan_in = SubscriptionPlanCreate(
        id="agency", name="Agency", price_cents=15000, articles_per_month=60, sync_to_stripe=True
    )

    plan, result = plan_admin_service.create_plan(db, gateway, plan_in)

    assert result.status == "synced"
    assert plan.stripe_price_id is not None
    assert gateway.prices[plan.stripe_price_id]["unit_amount"] == 15000


def test_delete_plan_hides_it_and_deactivates_product(db, plans, gateway, synchronizer):
    synchronizer.sync_plan(plans["pro"])

    plan = plan_admin_service.delete_plan(db, gateway, "pro")

    assert plan.is_active is False
    assert plan.is_visible is False
    assert gateway.products[plan.stripe_product_id]["active"] is False


def test_delete_plan_survives_stripe_failure(db, plans, gateway, synchronizer):
    synchronizer.sync_plan(plans["pro"])
    gateway.fail_on["deactivate_product"] = TransientDependencyError("Stripe products.update failed")

    plan = plan_admin_service.delete_plan(db, gateway, "pro")

    assert plan.is_active is False
    assert db.query(BillingAlert).one().alert_type == "provider_deactivation_failed"


def test_price_matches_plan(plans):
    pro = plans["pro"]
    base = {"unit_amount": 7000, "currency": "USD", "recurring": {"interval": "month", "interval_count": 1}}

    assert price_matches_plan(base, pro)
    assert not price_matches_plan({**base, "unit_amount": 6999}, pro)
    assert not price_matches_plan({**base, "currency": "eur"}, pro)
    assert not price_matches_plan({**base, "recurring": {"interval": "month", "interval_count": 3}}, pro)
    assert not price_matches_plan({**base, "recurring": None}, pro)


def test_sync_flag_catches_up_an_earlier_unsynced_price_change(db, plans, gateway, synchronizer):
    synchronizer.synchronize()
    old_price_id = plans["pro"].stripe_price_id
    plan_admin_service.update_plan(db, gateway, "pro", SubscriptionPlanUpdate(price_cents=9000))

    plan, result = plan_admin_service.update_plan(db, gateway, "pro", SubscriptionPlanUpdate(sync_to_stripe=True))

    assert result.status == "synced"
    assert plan.stripe_price_id != old_price_id
    assert gateway.prices[plan.stripe_price_id]["unit_amount"] == 9000
    assert gateway.prices[old_price_id]["active"] is False

    # A later full sync has nothing left to do
    prices_before = len(gateway.calls_to("create_price"))
    synchronizer.synchronize()
    assert len(gateway.calls_to("create_price")) == prices_before


def test_sync_flag_on_matching_plan_keeps_price(db, plans, gateway, synchronizer):
    synchronizer.sync_plan(plans["pro"])
    price_id = plans["pro"].stripe_price_id

    plan, result = plan_admin_service.update_plan(db, gateway, "pro", SubscriptionPlanUpdate(sync_to_stripe=True))

    assert result.status == "synced"
    assert plan.stripe_price_id == price_id
    assert gateway.calls_to("deactivate_price") == []


def test_full_sync_with_price_resync_replaces_stale_prices(db, plans, gateway, synchronizer):
    synchronizer.synchronize()
    old_price_id = plans["pro"].stripe_price_id
    plan_admin_service.update_plan(db, gateway, "pro", SubscriptionPlanUpdate(price_cents=9000))

    assert synchronizer.synchronize().results[1].stripe_price_id == old_price_id

    report = synchronizer.synchronize(resync_price=True)

    assert report.errors == 0
    pro = next(r for r in report.results if r.plan_id == "pro")
    assert pro.stripe_price_id != old_price_id
    assert gateway.prices[pro.stripe_price_id]["unit_amount"] == 9000
    assert f"retired price {old_price_id}" in pro.actions


def test_dry_run_reports_planned_actions_without_writing(db, plans, gateway, synchronizer):
    report = synchronizer.synchronize(dry_run=True)

    assert report.dry_run is True
    assert (report.planned, report.skipped, report.errors) == (2, 1, 0)
    pro = next(r for r in report.results if r.plan_id == "pro")
    assert pro.status == "planned"
    assert pro.actions == ["create product 'Pro'", "create price 7000 usd/month"]

    for method in ("create_product", "create_price", "update_product", "deactivate_price"):
        assert gateway.calls_to(method) == []
    db.refresh(plans["pro"])
    assert plans["pro"].stripe_product_id is None
    assert db.query(PlanPrice).count() == 0


def test_dry_run_previews_price_replacement(db, plans, gateway, synchronizer):
    synchronizer.sync_plan(plans["pro"])
    old_price_id = plans["pro"].stripe_price_id
    plan_admin_service.update_plan(db, gateway, "pro", SubscriptionPlanUpdate(price_cents=9000))

    report = synchronizer.synchronize(plans=[plans["pro"]], resync_price=True, dry_run=True)

    assert report.results[0].actions == ["create price 9000 usd/month", f"retire price {old_price_id}"]
    assert plans["pro"].stripe_price_id == old_price_id
    assert gateway.prices[old_price_id]["active"] is True


def test_synced_prices_are_recorded_and_retired_in_history(db, plans, gateway, synchronizer):
    synchronizer.sync_plan(plans["pro"])
    old_price_id = plans["pro"].stripe_price_id

    plan, _ = plan_admin_service.update_plan(
        db, gateway, "pro", SubscriptionPlanUpdate(price_cents=9000, sync_to_stripe=True)
    )

    old = db.get(PlanPrice, old_price_id)
    new = db.get(PlanPrice, plan.stripe_price_id)
    assert (old.plan_id, old.unit_amount) == ("pro", 7000)
    assert old.retired_at is not None
    assert (new.unit_amount, new.retired_at) == (9000, None)


def test_inactive_product_is_reactivated_on_adoption(plans, gateway, synchronizer):
    product = gateway.add_product("pro")
    product["active"] = False

    result = synchronizer.sync_plan(plans["pro"])

    assert result.stripe_product_id == product["id"]
    assert gateway.products[product["id"]]["active"] is True
    assert gateway.calls_to("create_product") == []


def test_active_product_is_preferred_over_inactive_one(plans, gateway, synchronizer):
    stale = gateway.add_product("pro")
    stale["active"] = False
    live = gateway.add_product("pro")

    result = synchronizer.sync_plan(plans["pro"])

    assert result.stripe_product_id == live["id"]
    assert gateway.calls_to("update_product") == []


def test_reactivating_deleted_plan_reactivates_its_product(db, plans, gateway, synchronizer):
    synchronizer.sync_plan(plans["pro"])
    plan_admin_service.delete_plan(db, gateway, "pro")
    product_id = plans["pro"].stripe_product_id
    assert gateway.products[product_id]["active"] is False

    plan, result = plan_admin_service.update_plan(
        db, gateway, "pro", SubscriptionPlanUpdate(is_active=True, is_visible=True, sync_to_stripe=True)
    )

    assert result.status == "synced"
    assert plan.stripe_product_id == product_id
    assert gateway.products[product_id]["active"] is True


def test_cli_dry_run_and_force_flags(db, plans, gateway, capsys):
    with patch.object(sync_stripe_plans, "SessionLocal", return_value=db), \
            patch.object(sync_stripe_plans.StripeGateway, "from_settings", return_value=gateway):
        with pytest.raises(SystemExit) as exit_info:
            sync_stripe_plans.main(["--dry-run", "--force"])

    assert exit_info.value.code == 0
    assert "Dry run: 2 plans need changes" in capsys.readouterr().out
    assert gateway.calls_to("create_product") == []


def test_cli_unknown_plan_exits_with_usage_error(db, plans, gateway):
    with patch.object(sync_stripe_plans, "SessionLocal", return_value=db), \
            patch.object(sync_stripe_plans.StripeGateway, "from_settings", return_value=gateway):
        with pytest.raises(SystemExit) as exit_info:
            sync_stripe_plans.main(["--plan", "platinum"])

    assert exit_info.value.code == 2
