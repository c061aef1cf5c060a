import json
from datetime import datetime, timezone
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient
from jose import jwt

from app.api.v1.endpoints import billing as billing_endpoint
from app.core.dependencies import get_db, get_stripe_gateway
from app.main import app
from app.models.article import Article
from app.models.billing_profile import UserBillingProfile
from app.models.subscription_plan import SubscriptionPlan

from stripe_fakes import make_event, sign_payload, subscription_object

API = "/api/v1"


def auth_headers(user):
    token = jwt.encode({"sub": user.email}, "test-secret-key", algorithm="HS256")
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def client(db, gateway):
    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_stripe_gateway] = lambda: gateway
    yield TestClient(app)
    app.dependency_overrides.clear()


def test_public_plans_list_features(client, plans):
    response = client.get(f"{API}/billing/plans")

    assert response.status_code == 200
    body = response.json()
    assert [p["id"] for p in body] == ["free", "pro", "enterprise"]
    assert body[1]["features"][0]["feature_text"] == "20 articles per month"


def test_status_requires_token(client, plans):
    assert client.get(f"{API}/billing/status").status_code == 401


def test_status_defaults_to_free_trial(client, user, plans):
    response = client.get(f"{API}/billing/status", headers=auth_headers(user))

    assert response.status_code == 200
    assert response.json() == {"plan": "free", "status": "trial", "stripe_customer_id": None, "subscription": None}


def test_customer_bootstrap(client, db, user, plans, gateway):
    response = client.post(f"{API}/billing/customer", headers=auth_headers(user))

    assert response.status_code == 200
    assert response.json()["stripe_customer_id"].startswith("cus_")
    assert db.query(UserBillingProfile).count() == 1


def test_checkout_for_unsynced_plan_is_a_bad_request(client, user, plans, make_profile, gateway):
    make_profile(user, status="trial")

    response = client.post(f"{API}/billing/checkout", json={"plan_id": "pro"}, headers=auth_headers(user))

    assert response.status_code == 400
    assert "no Stripe price" in response.json()["detail"]
    assert gateway.calls_to("create_checkout_session") == []


def test_checkout_for_unknown_plan_is_not_found(client, user, plans, make_profile):
    make_profile(user, status="trial")

    response = client.post(f"{API}/billing/checkout", json={"plan_id": "platinum"}, headers=auth_headers(user))

    assert response.status_code == 404


def test_checkout_returns_session_url(client, user, pro_plan, make_profile):
    make_profile(user, status="trial")

    response = client.post(f"{API}/billing/checkout", json={"plan_id": "pro"}, headers=auth_headers(user))

    assert response.status_code == 200
    assert response.json()["url"].startswith("https://checkout.stripe.test/")


def test_usage_reports_quota(client, db, user, pro_plan, make_profile):
    make_profile(user, status="active", plan_id="pro")
    db.add(Article(user_id=user.id, title="Draft", created_at=datetime.now(timezone.utc)))
    db.commit()

    response = client.get(f"{API}/billing/usage", headers=auth_headers(user))

    assert response.json() == {"plan": "pro", "used": 1, "limit": 20, "percentage_used": 5, "allowed": True}


def test_article_over_quota_is_forbidden(client, db, user, plans, make_profile):
    make_profile(user, status="active", plan_id="free")
    for i in range(2):
        db.add(Article(user_id=user.id, title=f"Draft {i}", created_at=datetime.now(timezone.utc)))
    db.commit()

    response = client.post(f"{API}/articles/", json={"title": "One more"}, headers=auth_headers(user))

    assert response.status_code == 403
    assert response.json()["detail"]["limit"] == 2
    assert db.query(Article).count() == 2


def test_article_within_quota_is_recorded(client, db, user, plans, make_profile):
    make_profile(user, status="trial", plan_id="free")

    response = client.post(f"{API}/articles/", json={"title": "First"}, headers=auth_headers(user))

    assert response.status_code == 201
    assert response.json()["title"] == "First"
    assert db.query(Article).filter(Article.user_id == user.id).count() == 1


def test_webhook_applies_signed_event(client, db, user, pro_plan, make_profile):
    make_profile(user, status="trial", plan_id="free")
    payload = json.dumps(make_event("customer.subscription.updated", subscription_object(), created=1760000100))

    response = client.post(
        f"{API}/billing/webhook",
        content=payload,
        headers={"stripe-signature": sign_payload(payload), "content-type": "application/json"},
    )

    assert response.status_code == 200
    assert response.json() == {"received": True, "outcome": "applied"}
    db.expire_all()
    profile = db.query(UserBillingProfile).filter_by(user_id=user.id).one()
    assert (profile.subscription_status, profile.subscription_plan_id) == ("active", "pro")


def test_webhook_with_bad_signature_is_rejected(client, db, user, pro_plan, make_profile):
    make_profile(user, status="trial", plan_id="free")
    payload = json.dumps(make_event("customer.subscription.updated", subscription_object(), created=1760000100))

    response = client.post(
        f"{API}/billing/webhook",
        content=payload,
        headers={"stripe-signature": sign_payload(payload, secret="whsec_wrong")},
    )

    assert response.status_code == 400
    db.expire_all()
    assert db.query(UserBillingProfile).filter_by(user_id=user.id).one().subscription_plan_id == "free"


def test_admin_routes_reject_regular_users(client, user, plans):
    assert client.get(f"{API}/admin/plans/", headers=auth_headers(user)).status_code == 403
    assert client.post(f"{API}/admin/plans/sync", headers=auth_headers(user)).status_code == 403


def test_admin_lists_hidden_plans(client, db, admin_user, plans):
    plans["enterprise"].is_visible = False
    db.commit()

    response = client.get(f"{API}/admin/plans/", headers=auth_headers(admin_user))

    assert [p["id"] for p in response.json()] == ["free", "pro", "enterprise"]


def test_admin_creates_and_syncs_plan(client, admin_user, plans, gateway):
    response = client.post(
        f"{API}/admin/plans/",
        json={"id": "agency", "name": "Agency", "price_cents": 15000, "articles_per_month": 60},
        headers=auth_headers(admin_user),
    )

    assert response.status_code == 201
    body = response.json()
    assert body["sync"]["status"] == "synced"
    assert body["plan"]["stripe_price_id"] in gateway.prices


def test_admin_sync_reports_counts(client, admin_user, plans):
    response = client.post(f"{API}/admin/plans/sync", headers=auth_headers(admin_user))

    assert response.status_code == 200
    assert (response.json()["synced"], response.json()["skipped"], response.json()["errors"]) == (2, 1, 0)


def test_admin_reorders_features(client, admin_user, plans):
    features = client.get(f"{API}/admin/plans/pro/features", headers=auth_headers(admin_user)).json()
    reversed_ids = [f["id"] for f in reversed(features)]

    response = client.put(
        f"{API}/admin/plans/pro/features/reorder",
        json={"feature_ids": reversed_ids},
        headers=auth_headers(admin_user),
    )

    assert response.status_code == 200
    assert [f["id"] for f in response.json()] == reversed_ids
    assert response.json()[0]["sort_order"] == 1


def test_admin_feature_of_unknown_plan(client, admin_user, plans):
    response = client.post(
        f"{API}/admin/plans/platinum/features",
        json={"feature_text": "Priority support"},
        headers=auth_headers(admin_user),
    )

    assert response.status_code == 404


def test_webhook_processing_runs_in_threadpool(client, user, pro_plan, make_profile):
    make_profile(user, status="trial", plan_id="free")
    payload = json.dumps(make_event("customer.subscription.updated", subscription_object(), created=1760000100))
    offloaded = []

    async def passthrough(func, *args, **kwargs):
        offloaded.append(func.__name__)
        return func(*args, **kwargs)

    with patch.object(billing_endpoint, "run_in_threadpool", new=passthrough):
        response = client.post(
            f"{API}/billing/webhook",
            content=payload,
            headers={"stripe-signature": sign_payload(payload), "content-type": "application/json"},
        )

    assert response.status_code == 200
    assert offloaded == ["handle"]


@pytest.mark.parametrize("field", ["name", "price_cents", "currency", "articles_per_month", "is_active"])
def test_admin_patch_rejects_null_for_required_fields(client, db, admin_user, plans, field):
    response = client.patch(f"{API}/admin/plans/pro", json={field: None}, headers=auth_headers(admin_user))

    assert response.status_code == 422
    db.expire_all()
    pro = db.query(SubscriptionPlan).filter_by(id="pro").one()
    assert (pro.name, pro.price_cents, pro.currency, pro.is_active) == ("Pro", 7000, "usd", True)


def test_admin_patch_rejects_malformed_currency(client, admin_user, plans):
    response = client.patch(f"{API}/admin/plans/pro", json={"currency": "dollars"}, headers=auth_headers(admin_user))

    assert response.status_code == 422


def test_admin_sync_dry_run_changes_nothing(client, admin_user, plans, gateway):
    response = client.post(f"{API}/admin/plans/sync?dry_run=true", headers=auth_headers(admin_user))

    assert response.status_code == 200
    body = response.json()
    assert body["dry_run"] is True
    assert body["planned"] == 2
    assert {r["status"] for r in body["results"]} == {"planned", "skipped"}
    assert gateway.calls_to("create_product") == []
    assert gateway.calls_to("create_price") == []
