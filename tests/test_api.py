from conftest import WEBHOOK_SECRET, build_event, build_stripe_signature, subscription_object


def _create(client, **body):
    payload = {"userId": "U1", "planId": "basic"}
    payload.update(body)
    return client.post("/api/subscriptions", json=payload)


def _post_webhook(client, payload, secret=WEBHOOK_SECRET):
    return client.post(
        "/api/webhooks/stripe",
        content=payload,
        headers={
            "Stripe-Signature": build_stripe_signature(payload, secret),
            "Content-Type": "application/json",
        },
    )


# ==================== Health ====================

def test_health(client):
    resp = client.get("/health")

    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] == "healthy"
    assert "uptime" in body


def test_ready_reports_store_state(client):
    assert client.get("/ready").status_code == 200

    client.app.state.container.persistence.close()

    resp = client.get("/ready")
    assert resp.status_code == 503
    assert resp.json()["status"] == "not ready"


def test_unknown_route_uses_envelope(client):
    resp = client.get("/api/nothing-here")

    assert resp.status_code == 404
    assert resp.json() == {"success": False, "error": "Route not found"}


# ==================== Subscriptions ====================

def test_create_subscription_requires_ids(client):
    resp = client.post("/api/subscriptions", json={"planId": "basic", "businessId": "biz-1"})

    assert resp.status_code == 400
    assert resp.json() == {"success": False, "error": "User ID and Plan ID are required"}


def test_create_subscription_unknown_plan(client):
    resp = _create(client, planId="missing")

    assert resp.status_code == 404
    assert resp.json() == {"success": False, "error": "Plan not found"}


def test_create_local_subscription(client, billing):
    resp = _create(client, businessId="biz-1")

    assert resp.status_code == 201
    body = resp.json()
    assert body["success"] is True
    data = body["data"]
    assert data["userId"] == "U1"
    assert data["businessId"] == "biz-1"
    assert data["status"] == "active"
    assert data["isActive"] is True
    assert data["stripeSubscriptionId"] is None
    assert data["limits"]["apiCalls"] == 1000
    assert data["features"] == [{"name": "forms", "included": True, "limit": 5.0}]
    assert billing.calls == []


def test_create_paid_subscription_goes_through_billing(client, billing):
    resp = _create(client, planId="pro", stripeCustomerId="cus_1", paymentMethodId="pm_1")

    assert resp.status_code == 201
    assert resp.json()["data"]["stripeSubscriptionId"] == "sub_1"
    assert billing.calls == [("create", "cus_1", "price_pro", "pm_1")]


def test_create_duplicate_active_subscription_conflicts(client):
    assert _create(client).status_code == 201

    resp = _create(client, planId="pro")

    assert resp.status_code == 409
    assert resp.json()["success"] is False


def test_upstream_failure_is_reported_generically(client, billing, upstream_failure):
    billing.fail_with = upstream_failure

    resp = _create(client, planId="pro", stripeCustomerId="cus_1", paymentMethodId="pm_1")

    assert resp.status_code == 500
    assert resp.json() == {"success": False, "error": "Billing provider request failed"}


def test_get_user_subscription_includes_plan(client):
    _create(client)

    resp = client.get("/api/subscriptions/user/U1")

    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["planId"] == "basic"
    assert data["plan"]["name"] == "Basic"
    assert data["plan"]["limits"]["forms"] == 5


def test_get_user_subscription_missing(client):
    resp = client.get("/api/subscriptions/user/nobody")

    assert resp.status_code == 404
    assert resp.json() == {"success": False, "error": "No active subscription found"}


def test_update_subscription(client):
    subscription_id = _create(client).json()["data"]["id"]

    resp = client.put(
        f"/api/subscriptions/{subscription_id}",
        json={"planId": "pro", "cancelAtPeriodEnd": True},
    )

    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["planId"] == "pro"
    assert data["price"] == 49.0
    assert data["cancelAtPeriodEnd"] is True
    assert data["plan"]["stripePriceId"] == "price_pro"
    assert data["status"] == "active"


def test_update_subscription_can_clear_cancel_flag(client):
    subscription_id = _create(client).json()["data"]["id"]
    client.put(f"/api/subscriptions/{subscription_id}", json={"cancelAtPeriodEnd": True})

    resp = client.put(f"/api/subscriptions/{subscription_id}", json={"cancelAtPeriodEnd": False})

    assert resp.json()["data"]["cancelAtPeriodEnd"] is False


def test_update_unknown_subscription(client):
    resp = client.put("/api/subscriptions/999", json={"status": "past_due"})

    assert resp.status_code == 404
    assert resp.json() == {"success": False, "error": "Subscription not found"}


def test_update_rejects_invalid_status(client):
    subscription_id = _create(client).json()["data"]["id"]

    resp = client.put(f"/api/subscriptions/{subscription_id}", json={"status": "frozen"})

    assert resp.status_code == 400
    assert resp.json()["success"] is False


def test_cancel_subscription(client, billing):
    subscription_id = _create(client).json()["data"]["id"]

    resp = client.delete(f"/api/subscriptions/{subscription_id}")

    assert resp.status_code == 200
    assert resp.json() == {"success": True, "message": "Subscription canceled successfully"}
    assert client.get("/api/subscriptions/user/U1").status_code == 404
    assert billing.calls == []


def test_cancel_unknown_subscription(client):
    assert client.delete("/api/subscriptions/999").status_code == 404


def test_start_free_trial(client):
    resp = client.post(
        "/api/subscriptions/free-trial",
        json={"userId": "U2", "planId": "pro", "trialDays": 7},
    )

    assert resp.status_code == 201
    data = resp.json()["data"]
    assert data["status"] == "trialing"
    assert data["trialStart"] is not None
    assert data["trialEnd"] is not None
    assert data["stripeSubscriptionId"] is None


def test_start_free_trial_validation(client):
    resp = client.post("/api/subscriptions/free-trial", json={"userId": "U2"})

    assert resp.status_code == 400


# ==================== Webhooks ====================

def test_webhook_applies_subscription_update(client):
    _create(client, planId="pro", stripeCustomerId="cus_1", paymentMethodId="pm_1")
    payload = build_event("customer.subscription.updated", subscription_object("sub_1", status="past_due"))

    resp = _post_webhook(client, payload)

    assert resp.status_code == 200
    assert resp.json() == {"received": True}
    data = client.get("/api/subscriptions/user/U1").json()["data"]
    assert data["status"] == "past_due"
    assert data["cancelAtPeriodEnd"] is True


def test_webhook_replay_is_harmless(client):
    _create(client, planId="pro", stripeCustomerId="cus_1", paymentMethodId="pm_1")
    payload = build_event("customer.subscription.updated", subscription_object("sub_1", status="unpaid"))

    first = _post_webhook(client, payload)
    second = _post_webhook(client, payload)

    assert first.status_code == second.status_code == 200
    assert client.get("/api/subscriptions/user/U1").json()["data"]["status"] == "unpaid"


def test_webhook_deleted_event_cancels(client):
    _create(client, planId="pro", stripeCustomerId="cus_1", paymentMethodId="pm_1")
    payload = build_event("customer.subscription.deleted", subscription_object("sub_1", status="canceled"))

    assert _post_webhook(client, payload).status_code == 200
    assert client.get("/api/subscriptions/user/U1").status_code == 404


def test_webhook_rejects_bad_signature_without_processing(client):
    _create(client, planId="pro", stripeCustomerId="cus_1", paymentMethodId="pm_1")
    payload = build_event("customer.subscription.deleted", subscription_object("sub_1"))

    resp = _post_webhook(client, payload, secret="whsec_forged")

    assert resp.status_code == 400
    assert "error" in resp.json()
    assert client.get("/api/subscriptions/user/U1").json()["data"]["status"] == "active"


def test_webhook_requires_signature_header(client):
    payload = build_event("customer.subscription.deleted", subscription_object("sub_1"))

    resp = client.post("/api/webhooks/stripe", content=payload)

    assert resp.status_code == 400


def test_webhook_accepts_unknown_event_types(client):
    payload = build_event("invoice.finalized", {"id": "in_1", "object": "invoice"})

    resp = _post_webhook(client, payload)

    assert resp.status_code == 200
    assert resp.json() == {"received": True}


def test_webhook_for_unknown_subscription_is_acknowledged(client):
    payload = build_event("customer.subscription.deleted", subscription_object("sub_ghost"))

    assert _post_webhook(client, payload).status_code == 200


def test_put_canceled_on_paid_subscription_cancels_in_stripe(client, billing):
    subscription_id = _create(
        client, planId="pro", stripeCustomerId="cus_1", paymentMethodId="pm_1"
    ).json()["data"]["id"]

    resp = client.put(f"/api/subscriptions/{subscription_id}", json={"status": "canceled"})

    assert resp.status_code == 200
    assert resp.json()["data"]["isActive"] is False
    assert billing.calls[-1] == ("cancel", "sub_1")

    follow_up = client.put(f"/api/subscriptions/{subscription_id}", json={"cancelAtPeriodEnd": True})
    assert follow_up.status_code == 400
