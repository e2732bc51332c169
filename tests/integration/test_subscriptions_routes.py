def test_manage_requires_authentication(client):
    r = client.post("/api/v1/subscriptions/manage", json={"action": "pause", "subscriptionId": "s-1"})
    assert r.status_code == 401
    assert r.json() == {"detail": "Unauthorized"}


def test_manage_unknown_action_422(authenticated_user_client):
    r = authenticated_user_client.post("/api/v1/subscriptions/manage", json={"action": "explode", "subscriptionId": "s-1"})
    assert r.status_code == 422


def test_manage_forwards_user_and_action(authenticated_user_client, monkeypatch):
    seen = {}

    def _fake(user, subscription_id, action, data, stripe_key=None):
        seen.update(user=user["id"], id=subscription_id, action=action, data=data)
        return {"success": True, "action": action, "status": "paused"}

    monkeypatch.setattr("billing.subscriptions.service.manage_subscription", _fake)
    r = authenticated_user_client.post("/api/v1/subscriptions/manage", json={"action": "pause", "subscriptionId": "s-1"})
    assert r.status_code == 200
    assert r.json()["status"] == "paused"
    assert seen == {"user": "user-1", "id": "s-1", "action": "pause", "data": None}


def test_manage_other_users_subscription_forbidden(authenticated_user_client, fake_ledger):
    sub = fake_ledger.add_subscription(status="active", user_id="someone-else", payment_provider="stripe", provider_subscription_id="sub_1")
    r = authenticated_user_client.post("/api/v1/subscriptions/manage", json={"action": "pause", "subscriptionId": sub["id"]})
    assert r.status_code == 403
    assert r.json() == {"error": "Not allowed to manage this subscription"}


def test_manage_cancelled_subscription_rejected(authenticated_user_client, fake_ledger):
    sub = fake_ledger.add_subscription(status="cancelled", user_id="user-1", payment_provider="stripe", provider_subscription_id="sub_1")
    r = authenticated_user_client.post("/api/v1/subscriptions/manage", json={"action": "resume", "subscriptionId": sub["id"]})
    assert r.status_code == 400
    assert r.json() == {"error": "Subscription is cancelled"}


def test_owner_cannot_reprice_own_subscription(authenticated_user_client, fake_ledger):
    sub = fake_ledger.add_subscription(status="active", user_id="user-1", amount=20, payment_provider="stripe", provider_subscription_id="sub_1")
    r = authenticated_user_client.post(
        "/api/v1/subscriptions/manage",
        json={"action": "update_price", "subscriptionId": sub["id"], "data": {"amount": 0.5}},
    )
    assert r.status_code == 403
    assert r.json() == {"error": "Only an admin can change the price or coupon of a subscription"}
    assert fake_ledger.subscriptions[sub["id"]]["amount"] == 20
