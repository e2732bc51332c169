from unittest.mock import MagicMock

import pytest

from billing.errors import NotFound, RefundFailed
from billing.refunds import service


@pytest.fixture
def adapter(monkeypatch):
    fake = MagicMock()
    fake.issue_refund.return_value = {"id": "re_1", "status": "succeeded"}
    monkeypatch.setattr("billing.providers.get_adapter", lambda provider, key=None: fake)
    monkeypatch.setattr("billing.pricing.get_product", lambda pid: {"id": pid, "purchase_tag_id": "t1", "refund_remove_tag": True})
    return fake


@pytest.fixture
def crm_calls(monkeypatch):
    calls = []
    monkeypatch.setattr("billing.crm.after_refund", lambda user_id, email, product: calls.append((user_id, email, product["id"])))
    return calls


def _order(fake_ledger, **fields):
    row = {
        "payment_provider": "stripe",
        "provider_payment_id": "pi_1",
        "product_id": "p1",
        "amount": 50,
        "currency": "USD",
        "status": "completed",
        "user_id": "u1",
        "email": "buyer@example.com",
    }
    row.update(fields)
    return fake_ledger.add_order(**row)


def test_partial_refund(fake_ledger, fake_enrollments, adapter, crm_calls):
    order = _order(fake_ledger)
    result = service.process_refund(order["id"], 20, "requested")
    assert result["success"] is True
    assert result["refundId"] == "re_1"
    assert result["refundAmount"] == 20
    assert result["isFullRefund"] is False
    assert result["order"]["status"] == "partial_refund"
    adapter.issue_refund.assert_called_once_with("pi_1", 20, "USD", "requested")
    assert crm_calls == []


def test_full_refund_cancels_linked_subscription(fake_ledger, fake_enrollments, adapter, crm_calls):
    fake_enrollments.product_courses["p1"] = "c1"
    fake_enrollments.upsert_enrollments([{"user_id": "u1", "course_id": "c1", "is_active": True, "enrollment_type": "subscription"}])
    sub = fake_ledger.add_subscription(status="active", user_id="u1", product_id="p1", provider_subscription_id="sub_1")
    order = _order(fake_ledger, subscription_id=sub["id"])

    result = service.process_refund(order["id"])

    assert result["isFullRefund"] is True
    assert result["refundAmount"] == 50
    assert fake_ledger.orders[order["id"]]["status"] == "refunded"
    assert fake_ledger.subscriptions[sub["id"]]["status"] == "cancelled"
    assert fake_enrollments.rows[("u1", "c1")]["is_active"] is False
    assert crm_calls == [("u1", "buyer@example.com", "p1")]


def test_provider_rejection_leaves_order_untouched(fake_ledger, adapter, crm_calls):
    order = _order(fake_ledger)
    adapter.issue_refund.side_effect = RefundFailed("charge already refunded")
    with pytest.raises(RefundFailed):
        service.process_refund(order["id"])
    assert fake_ledger.orders[order["id"]]["status"] == "completed"
    assert "refund_amount" not in fake_ledger.orders[order["id"]]


def test_over_refund_rejected_before_provider_call(fake_ledger, adapter):
    order = _order(fake_ledger, status="partial_refund", refund_amount=40)
    with pytest.raises(RefundFailed):
        service.process_refund(order["id"], 20)
    adapter.issue_refund.assert_not_called()


def test_unknown_order_404(fake_ledger, adapter):
    with pytest.raises(NotFound):
        service.process_refund("ord-missing")


def test_wallet_subscription_refund_uses_known_transaction(fake_ledger, fake_enrollments, adapter, crm_calls):
    order = _order(fake_ledger, payment_provider="paypal", provider_payment_id="I-ABC", provider_transaction_id="TX9")
    service.process_refund(order["id"], 10)
    assert adapter.issue_refund.call_args.args[0] == "TX9"


def test_wallet_subscription_refund_without_transaction_passes_subscription_id(fake_ledger, fake_enrollments, adapter, crm_calls):
    order = _order(fake_ledger, payment_provider="paypal", provider_payment_id="I-ABC")
    service.process_refund(order["id"], 10)
    assert adapter.issue_refund.call_args.args[0] == "I-ABC"
