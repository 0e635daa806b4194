import json
from types import SimpleNamespace

import stripe

from conftest import auth_headers, sign_payload
from flashcard_svc.models.user import User
from flashcard_svc.routers import stripe_router
from flashcard_svc.stripe_integration import StripeIntegration


def create_user(db, user_id, customer_id=None, status="unsubscribed"):
    db.add(User(user_id=user_id, stripe_customer_id=customer_id, subscription_status=status))
    db.commit()


def post_webhook(client, payload, header=None):
    headers = {"Content-Type": "application/json"}
    if header is not None:
        headers["Stripe-Signature"] = header
    return client.post("/api/stripe/webhook", content=payload, headers=headers)


def status_of(db, user_id):
    db.expire_all()
    user = db.query(User).filter(User.user_id == user_id).first()
    return user.subscription_status if user else None


def test_webhook_checkout_completed(client, db_session):
    payload = json.dumps({"type": "checkout.session.completed", "data": {"object": {"client_reference_id": "u1"}}})
    response = post_webhook(client, payload, sign_payload(payload))
    assert response.status_code == 200
    assert response.json() == {"received": True}
    assert status_of(db_session, "u1") == "subscribed"


def test_webhook_redelivery_is_idempotent(client, db_session):
    payload = json.dumps({"id": "evt_1", "type": "checkout.session.completed",
                          "data": {"object": {"client_reference_id": "u1", "customer": "cus_1"}}})
    header = sign_payload(payload)
    assert post_webhook(client, payload, header).status_code == 200
    assert post_webhook(client, payload, header).status_code == 200
    assert status_of(db_session, "u1") == "subscribed"
    assert db_session.query(User).count() == 1


def test_webhook_subscription_deleted(client, db_session):
    create_user(db_session, "u1", customer_id="cus_123", status="subscribed")
    payload = json.dumps({"type": "customer.subscription.deleted", "data": {"object": {"customer": "cus_123"}}})
    response = post_webhook(client, payload, sign_payload(payload))
    assert response.status_code == 200
    assert status_of(db_session, "u1") == "unsubscribed"


def test_webhook_subscription_deleted_unknown_customer_acknowledged(client, db_session):
    payload = json.dumps({"type": "customer.subscription.deleted", "data": {"object": {"customer": "cus_nobody"}}})
    response = post_webhook(client, payload, sign_payload(payload))
    assert response.status_code == 200
    assert response.json() == {"received": True}
    assert db_session.query(User).count() == 0


def test_webhook_unknown_event_acknowledged(client, db_session):
    payload = json.dumps({"type": "invoice.payment_succeeded", "data": {"object": {}}})
    response = post_webhook(client, payload, sign_payload(payload))
    assert response.status_code == 200
    assert db_session.query(User).count() == 0


def test_webhook_missing_signature(client):
    response = post_webhook(client, '{"type": "checkout.session.completed"}')
    assert response.status_code == 400
    assert "Missing Stripe-Signature header" in response.json()["detail"]


def test_webhook_missing_body(client):
    response = post_webhook(client, b"", "t=1,v1=abc")
    assert response.status_code == 400
    assert "No raw body available" in response.json()["detail"]


def test_webhook_invalid_signature_does_not_mutate(client, db_session):
    payload = json.dumps({"type": "checkout.session.completed", "data": {"object": {"client_reference_id": "u1"}}})
    response = post_webhook(client, payload, sign_payload(payload, secret="whsec_wrong"))
    assert response.status_code == 400
    assert response.json()["detail"].startswith("Webhook Error")
    assert status_of(db_session, "u1") is None


def test_webhook_secret_not_configured(client, settings):
    settings.stripe_webhook_secret = None
    payload = json.dumps({"type": "checkout.session.completed"})
    response = post_webhook(client, payload, sign_payload(payload))
    assert response.status_code == 500
    assert "Webhook secret not configured" in response.json()["detail"]


def test_webhook_store_failure_returns_server_error(client, db_session, monkeypatch):
    def failing_commit():
        raise Exception("Commit failed")

    monkeypatch.setattr(db_session, "commit", failing_commit)
    payload = json.dumps({"type": "checkout.session.completed", "data": {"object": {"client_reference_id": "u1"}}})
    response = post_webhook(client, payload, sign_payload(payload))
    assert response.status_code == 500
    assert response.json()["detail"] == "Failed to update subscription status"


def test_checkout_session_creates_customer_once(client, db_session, monkeypatch):
    calls = []

    def fake_find_or_create_customer(self, email, user_id):
        calls.append((email, user_id))
        return "cus_new"

    def fake_create_checkout_session(self, customer_id, user_id, price_id, success_url, cancel_url):
        assert customer_id == "cus_new"
        assert user_id == "u1"
        assert price_id == "price_test"
        return SimpleNamespace(id="cs_1", url="https://checkout.stripe.test/cs_1")

    monkeypatch.setattr(StripeIntegration, "find_or_create_customer", fake_find_or_create_customer)
    monkeypatch.setattr(StripeIntegration, "create_checkout_session", fake_create_checkout_session)

    for _ in range(2):
        response = client.post("/api/stripe/checkout-session", headers=auth_headers("u1"))
        assert response.status_code == 200
        assert response.json() == {"sessionId": "cs_1", "url": "https://checkout.stripe.test/cs_1"}

    assert calls == [("u1@example.com", "u1")]
    user = db_session.query(User).filter(User.user_id == "u1").first()
    assert user.stripe_customer_id == "cus_new"
    assert user.subscription_status == "unsubscribed"


def test_checkout_session_customer_owned_by_other_user(client, db_session, monkeypatch):
    create_user(db_session, "u_old", customer_id="cus_shared")
    created = []

    def fake_create_customer(self, email, user_id):
        created.append(user_id)
        return "cus_fresh"

    monkeypatch.setattr(StripeIntegration, "find_or_create_customer", lambda self, email, user_id: "cus_shared")
    monkeypatch.setattr(StripeIntegration, "create_customer", fake_create_customer)
    monkeypatch.setattr(
        StripeIntegration,
        "create_checkout_session",
        lambda self, customer_id, user_id, price_id, success_url, cancel_url: SimpleNamespace(id="cs_2", url=customer_id),
    )

    response = client.post("/api/stripe/checkout-session", headers=auth_headers("u_new"))

    assert response.status_code == 200
    assert response.json() == {"sessionId": "cs_2", "url": "cus_fresh"}
    assert created == ["u_new"]
    users = {u.user_id: u.stripe_customer_id for u in db_session.query(User).all()}
    assert users == {"u_old": "cus_shared", "u_new": "cus_fresh"}


def test_checkout_session_rejected_when_already_subscribed(client, db_session, monkeypatch):
    calls = []
    monkeypatch.setattr(
        StripeIntegration,
        "create_checkout_session",
        lambda self, *args, **kwargs: calls.append(kwargs),
    )
    for status_value in ("subscribed", "pending_cancellation"):
        uid = f"u_{status_value}"
        create_user(db_session, uid, customer_id=f"cus_{status_value}", status=status_value)

        response = client.post("/api/stripe/checkout-session", headers=auth_headers(uid))

        assert response.status_code == 400
        assert status_value in response.json()["detail"]
    assert calls == []


def test_webhook_reconciles_off_the_event_loop(client, db_session, monkeypatch):
    offloaded = []

    async def recording_run_in_threadpool(func, *args):
        offloaded.append(func.__name__)
        return func(*args)

    monkeypatch.setattr(stripe_router, "run_in_threadpool", recording_run_in_threadpool)
    payload = json.dumps({"type": "checkout.session.completed", "data": {"object": {"client_reference_id": "u1"}}})

    response = post_webhook(client, payload, sign_payload(payload))

    assert response.status_code == 200
    assert offloaded == ["_verify_and_reconcile"]
    assert status_of(db_session, "u1") == "subscribed"


def test_checkout_session_requires_auth(client):
    assert client.post("/api/stripe/checkout-session").status_code == 401
    response = client.post("/api/stripe/checkout-session", headers={"Authorization": "Bearer bogus"})
    assert response.status_code == 401


def test_checkout_session_price_not_configured(client, settings):
    settings.stripe_price_id = None
    response = client.post("/api/stripe/checkout-session", headers=auth_headers("u1"))
    assert response.status_code == 500


def test_checkout_session_upstream_error_status_preserved(client, monkeypatch):
    def failing_find_or_create_customer(self, email, user_id):
        raise stripe.RateLimitError("Too many requests", http_status=429)

    monkeypatch.setattr(StripeIntegration, "find_or_create_customer", failing_find_or_create_customer)
    response = client.post("/api/stripe/checkout-session", headers=auth_headers("u1"))
    assert response.status_code == 429


def test_get_subscription_defaults_to_unsubscribed(client):
    response = client.get("/api/stripe/subscription", headers=auth_headers("u1"))
    assert response.status_code == 200
    assert response.json() == {"userId": "u1", "stripeCustomerId": None, "subscriptionStatus": "unsubscribed"}


def fake_subscription_calls(monkeypatch, subscription=SimpleNamespace(id="sub_1")):
    updates = []

    monkeypatch.setattr(StripeIntegration, "find_active_subscription", lambda self, customer_id: subscription)
    monkeypatch.setattr(
        StripeIntegration,
        "set_cancel_at_period_end",
        lambda self, subscription_id, cancel: updates.append((subscription_id, cancel)),
    )
    return updates


def test_cancel_then_reactivate(client, db_session, monkeypatch):
    create_user(db_session, "u1", customer_id="cus_1", status="subscribed")
    updates = fake_subscription_calls(monkeypatch)

    response = client.post("/api/stripe/subscription/cancel", headers=auth_headers("u1"))
    assert response.status_code == 200
    assert response.json()["subscriptionStatus"] == "pending_cancellation"
    assert status_of(db_session, "u1") == "pending_cancellation"

    response = client.post("/api/stripe/subscription/reactivate", headers=auth_headers("u1"))
    assert response.status_code == 200
    assert status_of(db_session, "u1") == "subscribed"

    assert updates == [("sub_1", True), ("sub_1", False)]


def test_cancel_requires_subscription(client, db_session, monkeypatch):
    updates = fake_subscription_calls(monkeypatch)
    response = client.post("/api/stripe/subscription/cancel", headers=auth_headers("u1"))
    assert response.status_code == 400
    assert updates == []


def test_reactivate_requires_pending_cancellation(client, db_session, monkeypatch):
    create_user(db_session, "u1", customer_id="cus_1", status="subscribed")
    updates = fake_subscription_calls(monkeypatch)
    response = client.post("/api/stripe/subscription/reactivate", headers=auth_headers("u1"))
    assert response.status_code == 400
    assert updates == []


def test_cancel_without_active_provider_subscription(client, db_session, monkeypatch):
    create_user(db_session, "u1", customer_id="cus_1", status="subscribed")
    fake_subscription_calls(monkeypatch, subscription=None)
    response = client.post("/api/stripe/subscription/cancel", headers=auth_headers("u1"))
    assert response.status_code == 404
    assert status_of(db_session, "u1") == "subscribed"
