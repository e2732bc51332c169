from billing.errors import NotFound, ProviderRejected


def test_create_subscription_route(client, monkeypatch):
    seen = {}

    def _fake(body, stripe_key=None):
        seen.update(body)
        return {"subscriptionId": "sub_1", "clientSecret": "cs", "status": "pending", "dbSubscriptionId": "s-1"}

    monkeypatch.setattr("billing.checkout.service.create_subscription", _fake)
    r = client.post("/api/v1/checkout/create-subscription", json={"productId": "p1", "email": "a@b.co"})
    assert r.status_code == 200
    assert r.json()["subscriptionId"] == "sub_1"
    assert seen["paymentMethod"] == "card"
    assert seen["email"] == "a@b.co"


def test_create_subscription_invalid_body(client):
    r = client.post("/api/v1/checkout/create-subscription", json={"productId": "p1", "email": "not-an-email"})
    assert r.status_code == 422

    r = client.post("/api/v1/checkout/create-subscription", json={"productId": "p1", "email": "a@b.co", "paymentMethod": "cash"})
    assert r.status_code == 422


def test_payment_intent_requires_products(client):
    r = client.post("/api/v1/checkout/create-payment-intent", json={"productIds": [], "email": "a@b.co"})
    assert r.status_code == 422


def test_billing_errors_map_to_status_and_error_body(client, monkeypatch):
    def _missing(body, stripe_key=None):
        raise NotFound("Product not found")

    monkeypatch.setattr("billing.checkout.service.create_payment_intent", _missing)
    r = client.post("/api/v1/checkout/create-payment-intent", json={"productIds": ["x"], "email": "a@b.co"})
    assert r.status_code == 404
    assert r.json() == {"error": "Product not found"}


def test_provider_rejection_is_402(client, monkeypatch):
    def _declined(body, stripe_key=None):
        raise ProviderRejected("Your card was declined", provider="stripe")

    monkeypatch.setattr("billing.checkout.service.complete_one_time_payment", _declined)
    r = client.post("/api/v1/checkout/complete-one-time-payment", json={"paymentIntentId": "pi_1"})
    assert r.status_code == 402
    assert r.json()["error"] == "Your card was declined"


def test_activate_wallet_route(client, monkeypatch):
    monkeypatch.setattr(
        "billing.checkout.service.activate_wallet_subscription",
        lambda body, stripe_key=None: {"success": True, "subscriptionId": body["dbSubscriptionId"], "userId": "u1"},
    )
    r = client.post("/api/v1/checkout/activate-wallet-subscription", json={"subscriptionId": "I-1", "dbSubscriptionId": "s-1"})
    assert r.status_code == 200
    assert r.json()["subscriptionId"] == "s-1"


def test_free_trial_route(client, monkeypatch):
    monkeypatch.setattr(
        "billing.checkout.service.create_free_trial_subscription",
        lambda body, stripe_key=None: {"success": True, "subscriptionId": "sub_t", "courseIds": ["c1"]},
    )
    r = client.post("/api/v1/checkout/create-free-trial-subscription", json={"productId": "p1", "email": "a@b.co"})
    assert r.status_code == 200
    assert r.json()["courseIds"] == ["c1"]


def test_create_wallet_order_route(client, monkeypatch):
    seen = {}

    def _fake(body, stripe_key=None):
        seen.update(body)
        return {"orderId": "ORDER-1", "approveUrl": "https://paypal.test/approve", "amount": 100.0}

    monkeypatch.setattr("billing.checkout.service.create_wallet_order", _fake)
    r = client.post(
        "/api/v1/checkout/create-wallet-order",
        json={"productIds": ["p1", "p2"], "email": "a@b.co", "returnUrl": "https://shop.test/ok"},
    )
    assert r.status_code == 200
    assert r.json()["approveUrl"] == "https://paypal.test/approve"
    assert seen["productIds"] == ["p1", "p2"]
    assert seen["returnUrl"] == "https://shop.test/ok"


def test_create_wallet_order_requires_products(client):
    r = client.post("/api/v1/checkout/create-wallet-order", json={"productIds": [], "email": "a@b.co"})
    assert r.status_code == 422


def test_capture_wallet_order_route(client, monkeypatch):
    monkeypatch.setattr(
        "billing.checkout.service.capture_wallet_order",
        lambda body, stripe_key=None: {"success": True, "orderId": body["orderId"], "captureId": "CAP-1", "courseIds": ["c1"]},
    )
    r = client.post("/api/v1/checkout/capture-wallet-order", json={"orderId": "ORDER-1"})
    assert r.status_code == 200
    assert r.json()["captureId"] == "CAP-1"


def test_capture_rejected_by_paypal_is_402(client, monkeypatch):
    def _rejected(body, stripe_key=None):
        raise ProviderRejected("ORDER_NOT_APPROVED", provider="paypal", code="422")

    monkeypatch.setattr("billing.checkout.service.capture_wallet_order", _rejected)
    r = client.post("/api/v1/checkout/capture-wallet-order", json={"orderId": "ORDER-1"})
    assert r.status_code == 402
    assert r.json()["error"] == "ORDER_NOT_APPROVED"
