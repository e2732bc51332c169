import json

import httpx
import pytest

from billing.errors import ProviderRejected, RefundFailed
from billing.providers.wallet import WalletAdapter, order_breakdown, split_name, transaction_breakdown

BASE = "https://api-m.sandbox.paypal.com"


def _adapter(routes, calls=None):
    """routes: {(méthode, chemin): (status, body)}"""
    calls = calls if calls is not None else []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        if request.url.path == "/v1/oauth2/token":
            return httpx.Response(200, json={"access_token": "tok"})
        status, body = routes.get((request.method, request.url.path), (404, {"name": "RESOURCE_NOT_FOUND"}))
        return httpx.Response(status, json=body)

    client = httpx.Client(transport=httpx.MockTransport(handler))
    return WalletAdapter(BASE, "cid", "secret", http_client=client)


def _tx(tx_id, gross="20.00", fee="1.20"):
    return {
        "id": tx_id,
        "status": "COMPLETED",
        "time": "2026-01-01T00:00:00Z",
        "amount_with_breakdown": {
            "gross_amount": {"value": gross, "currency_code": "USD"},
            "fee_amount": {"value": fee, "currency_code": "USD"},
            "net_amount": {"value": "18.80", "currency_code": "USD"},
        },
    }


def test_missing_credentials_rejected():
    with pytest.raises(ProviderRejected):
        WalletAdapter(BASE, "", "")


def test_split_name():
    assert split_name("Ada Lovelace King") == {"given_name": "Ada", "surname": "Lovelace King"}
    assert split_name(None) == {"given_name": "Customer", "surname": ""}


def test_transaction_breakdown():
    assert transaction_breakdown(_tx("TX1")) == {
        "id": "TX1", "status": "COMPLETED", "time": "2026-01-01T00:00:00Z",
        "gross": 20.0, "fee": 1.2, "net": 18.8, "currency": "USD",
    }


def test_subscription_creation_returns_approval_link():
    adapter = _adapter({
        ("POST", "/v1/billing/subscriptions"): (201, {
            "id": "I-ABC",
            "status": "APPROVAL_PENDING",
            "links": [{"rel": "approve", "href": "https://paypal.test/approve"}],
        }),
    })
    result = adapter.activate_recurring_plan("P-1", {"email": "a@b.c", "fullName": "Ada L"})
    assert result == {"id": "I-ABC", "status": "APPROVAL_PENDING", "approveUrl": "https://paypal.test/approve"}


def test_token_is_cached():
    calls = []
    adapter = _adapter({("GET", "/v1/billing/subscriptions/I-1"): (200, {"status": "ACTIVE"})}, calls)
    adapter.get_subscription("I-1")
    adapter.get_subscription("I-1")
    assert sum(1 for c in calls if c.url.path == "/v1/oauth2/token") == 1
    assert calls[-1].headers["Authorization"] == "Bearer tok"


def test_error_response_becomes_provider_rejected():
    adapter = _adapter({
        ("GET", "/v1/billing/subscriptions/I-1"): (422, {"name": "UNPROCESSABLE", "message": "Bad", "details": [{"description": "nope"}]}),
    })
    with pytest.raises(ProviderRejected, match="Bad: nope") as exc:
        adapter.get_subscription("I-1")
    assert exc.value.code == "422"


def test_refund_of_subscription_uses_latest_transaction():
    calls = []
    adapter = _adapter({
        ("GET", "/v1/billing/subscriptions/I-ABC/transactions"): (200, {"transactions": [_tx("TX1"), _tx("TX2")]}),
        ("POST", "/v2/payments/captures/TX2/refund"): (201, {"id": "RF1", "status": "COMPLETED", "amount": {"value": "5.00"}}),
    }, calls)
    result = adapter.issue_refund("I-ABC", 5, "usd", reason="asked")
    assert result["capture_id"] == "TX2"
    assert result["amount"] == 5.0
    body = json.loads(calls[-1].content)
    assert body["amount"] == {"value": "5.00", "currency_code": "USD"}


def test_refund_of_subscription_without_transaction_fails():
    adapter = _adapter({("GET", "/v1/billing/subscriptions/I-ABC/transactions"): (200, {"transactions": []})})
    with pytest.raises(RefundFailed, match="No PayPal transaction"):
        adapter.issue_refund("I-ABC", None, "usd")


def test_refund_rejection_is_refund_failed():
    adapter = _adapter({("POST", "/v2/payments/captures/CAP1/refund"): (422, {"message": "CAPTURE_FULLY_REFUNDED"})})
    with pytest.raises(RefundFailed, match="CAPTURE_FULLY_REFUNDED"):
        adapter.issue_refund("CAP1", None, "usd")


def test_capture_fee_lookup():
    adapter = _adapter({
        ("GET", "/v2/payments/captures/CAP1"): (200, {
            "id": "CAP1",
            "seller_receivable_breakdown": {"paypal_fee": {"value": "0.88"}, "net_amount": {"value": "19.12"}},
        }),
    })
    assert adapter.fetch_transaction_detail("CAP1") == {"fee": 0.88, "net": 19.12, "transaction_id": "CAP1"}


def test_update_price_requires_buyer_approval():
    adapter = _adapter({
        ("GET", "/v1/catalogs/products/PROD-p1"): (200, {"id": "PROD-p1"}),
        ("GET", "/v1/billing/plans"): (200, {"plans": []}),
        ("POST", "/v1/billing/plans"): (201, {"id": "P-NEW"}),
        ("POST", "/v1/billing/subscriptions/I-1/revise"): (200, {"links": [{"rel": "approve", "href": "https://paypal.test/revise"}]}),
    })
    result = adapter.update_price("I-1", {"id": "p1", "name": "Guitar"}, 15, "usd", "monthly")
    assert result == {"applied": False, "approvalUrl": "https://paypal.test/revise", "planId": "P-NEW"}


def test_pause_skips_already_suspended():
    calls = []
    adapter = _adapter({("GET", "/v1/billing/subscriptions/I-1"): (200, {"status": "SUSPENDED"})}, calls)
    assert adapter.pause("I-1") == {"applied": False}
    assert not any(c.url.path.endswith("/suspend") for c in calls)


def test_verify_webhook_signature():
    adapter = _adapter({("POST", "/v1/notifications/verify-webhook-signature"): (200, {"verification_status": "SUCCESS"})})
    assert adapter.verify_webhook_signature({"PAYPAL-AUTH-ALGO": "SHA256"}, {"id": "WH-1"}, "wh-id") is True


def _captured_order(status="COMPLETED"):
    return {
        "id": "ORDER-1",
        "status": status,
        "payer": {"email_address": "payer@paypal.test", "name": {"given_name": "Ada", "surname": "L"}},
        "purchase_units": [{
            "custom_id": '{"email":"a@b.c","coupon_code":"SAVE10"}',
            "amount": {
                "currency_code": "USD",
                "value": "90.00",
                "breakdown": {"item_total": {"currency_code": "USD", "value": "100.00"}, "discount": {"currency_code": "USD", "value": "10.00"}},
            },
            "items": [
                {"name": "Guitar", "sku": "p1", "quantity": "1", "unit_amount": {"currency_code": "USD", "value": "90.00"}},
                {"name": "Drums", "sku": "p2", "quantity": "1", "unit_amount": {"currency_code": "USD", "value": "10.00"}},
            ],
            "payments": {"captures": [{
                "id": "CAP-1",
                "status": status,
                "amount": {"currency_code": "USD", "value": "90.00"},
                "seller_receivable_breakdown": {
                    "paypal_fee": {"currency_code": "USD", "value": "3.00"},
                    "net_amount": {"currency_code": "USD", "value": "87.00"},
                },
            }]},
        }],
    }


def test_order_breakdown():
    assert order_breakdown(_captured_order()) == {
        "order_id": "ORDER-1",
        "status": "COMPLETED",
        "capture_id": "CAP-1",
        "capture_status": "COMPLETED",
        "gross": 90.0,
        "fee": 3.0,
        "net": 87.0,
        "currency": "USD",
        "discount": 10.0,
        "custom_id": '{"email":"a@b.c","coupon_code":"SAVE10"}',
        "items": [
            {"product_id": "p1", "name": "Guitar", "amount": 90.0},
            {"product_id": "p2", "name": "Drums", "amount": 10.0},
        ],
        "payer_email": "payer@paypal.test",
        "payer_name": "Ada L",
    }


def test_one_time_order_lists_each_product():
    calls = []
    adapter = _adapter({
        ("POST", "/v2/checkout/orders"): (201, {
            "id": "ORDER-1",
            "status": "CREATED",
            "links": [{"rel": "approve", "href": "https://paypal.test/checkoutnow"}],
        }),
    }, calls)

    result = adapter.create_one_time_charge(
        90.0,
        "usd",
        {"email": "a@b.c"},
        [{"id": "p1", "name": "Guitar", "amount": 90}, {"id": "p2", "name": "Drums", "amount": 10}],
        metadata={"custom_id": "{}", "discount": 10.0, "return_url": "https://shop.test/ok"},
    )

    assert result == {"id": "ORDER-1", "approveUrl": "https://paypal.test/checkoutnow"}
    unit = json.loads(calls[-1].content)["purchase_units"][0]
    assert unit["amount"]["value"] == "90.00"
    assert unit["amount"]["breakdown"]["item_total"]["value"] == "100.00"
    assert unit["amount"]["breakdown"]["discount"]["value"] == "10.00"
    assert [(i["sku"], i["unit_amount"]["value"]) for i in unit["items"]] == [("p1", "90.00"), ("p2", "10.00")]
    assert unit["custom_id"] == "{}"
    assert json.loads(calls[-1].content)["application_context"]["return_url"] == "https://shop.test/ok"


def test_one_time_order_without_approval_link_rejected():
    adapter = _adapter({("POST", "/v2/checkout/orders"): (201, {"id": "ORDER-1", "links": []})})
    with pytest.raises(ProviderRejected):
        adapter.create_one_time_charge(10.0, "USD", {"email": "a@b.c"}, [{"id": "p2", "name": "Drums", "amount": 10}])


def test_capture_order_returns_breakdown():
    calls = []
    adapter = _adapter({("POST", "/v2/checkout/orders/ORDER-1/capture"): (201, _captured_order())}, calls)

    result = adapter.capture_order("ORDER-1")

    assert result["capture_id"] == "CAP-1"
    assert result["fee"] == 3.0
    assert calls[-1].headers["Prefer"] == "return=representation"


def test_capture_of_already_captured_order_reads_it_back():
    adapter = _adapter({
        ("POST", "/v2/checkout/orders/ORDER-1/capture"): (422, {"name": "UNPROCESSABLE_ENTITY", "message": "ORDER_ALREADY_CAPTURED"}),
        ("GET", "/v2/checkout/orders/ORDER-1"): (200, _captured_order()),
    })

    assert adapter.capture_order("ORDER-1")["capture_id"] == "CAP-1"


def test_capture_of_unapproved_order_is_rejected():
    adapter = _adapter({
        ("POST", "/v2/checkout/orders/ORDER-1/capture"): (422, {"name": "UNPROCESSABLE_ENTITY", "message": "ORDER_NOT_APPROVED"}),
        ("GET", "/v2/checkout/orders/ORDER-1"): (200, {"id": "ORDER-1", "status": "CREATED"}),
    })

    with pytest.raises(ProviderRejected):
        adapter.capture_order("ORDER-1")
