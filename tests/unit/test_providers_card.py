from unittest.mock import MagicMock

import pytest
import stripe

from billing.errors import ProviderRejected, RefundFailed, ValidationError
from billing.providers import CardAdapter, WalletAdapter, get_adapter, normalize_provider
from billing.providers.card import price_lookup_key


@pytest.fixture
def adapter():
    return CardAdapter("sk_test_123")


def test_missing_key_is_rejected():
    with pytest.raises(ProviderRejected):
        CardAdapter("")


def test_normalize_provider_aliases():
    assert normalize_provider("card") == "stripe"
    assert normalize_provider("Wallet") == "paypal"
    with pytest.raises(ValidationError):
        normalize_provider("bitcoin")


def test_get_adapter_dispatches_on_provider(monkeypatch):
    monkeypatch.setattr("billing.config.PAYPAL_CLIENT_ID", "cid")
    monkeypatch.setattr("billing.config.PAYPAL_SECRET", "secret")
    assert isinstance(get_adapter("stripe", "sk_test_1"), CardAdapter)
    wallet = get_adapter("paypal", "sk_test_1")
    assert isinstance(wallet, WalletAdapter)
    assert "sandbox" in wallet.base_url


def test_price_lookup_key_is_deterministic():
    assert price_lookup_key("p1", "month", "USD", 19.99) == "sub_p1_month_usd_1999"


def test_refund_payment_intent_in_cents(monkeypatch, adapter):
    create = MagicMock(return_value={"id": "re_1", "amount": 2000, "status": "succeeded"})
    monkeypatch.setattr(stripe.Refund, "create", create)

    result = adapter.issue_refund("pi_123", 20, "usd", reason="duplicate")

    assert result == {"id": "re_1", "amount": 20.0, "status": "succeeded"}
    kwargs = create.call_args.kwargs
    assert kwargs["payment_intent"] == "pi_123"
    assert kwargs["amount"] == 2000
    assert kwargs["reason"] == "duplicate"
    assert kwargs["api_key"] == "sk_test_123"


def test_refund_full_charge_has_no_amount(monkeypatch, adapter):
    create = MagicMock(return_value={"id": "re_2", "amount": 5000, "status": "succeeded"})
    monkeypatch.setattr(stripe.Refund, "create", create)
    adapter.issue_refund("ch_9", None, "usd")
    assert create.call_args.kwargs["charge"] == "ch_9"
    assert "amount" not in create.call_args.kwargs
    assert create.call_args.kwargs["reason"] == "requested_by_customer"


def test_refund_rejects_subscription_id(adapter):
    with pytest.raises(RefundFailed):
        adapter.issue_refund("sub_1", 10, "usd")


def test_refund_stripe_error_becomes_refund_failed(monkeypatch, adapter):
    monkeypatch.setattr(stripe.Refund, "create", MagicMock(side_effect=stripe.InvalidRequestError("charge already refunded", "charge")))
    with pytest.raises(RefundFailed, match="already refunded"):
        adapter.issue_refund("pi_1", None, "usd")


def test_stripe_error_becomes_provider_rejected(monkeypatch, adapter):
    monkeypatch.setattr(stripe.Customer, "list", MagicMock(side_effect=stripe.CardError("Your card was declined", None, "card_declined")))
    with pytest.raises(ProviderRejected) as exc:
        adapter.find_or_create_customer("a@b.c")
    assert exc.value.status_code == 402
    assert exc.value.provider == "stripe"


def test_customer_reused_when_found(monkeypatch, adapter):
    monkeypatch.setattr(stripe.Customer, "list", MagicMock(return_value={"data": [{"id": "cus_1"}]}))
    create = MagicMock()
    monkeypatch.setattr(stripe.Customer, "create", create)
    assert adapter.find_or_create_customer("a@b.c") == "cus_1"
    create.assert_not_called()


def test_recurring_plan_reuses_lookup_key(monkeypatch, adapter):
    key = price_lookup_key("p1", "month", "usd", 10)
    monkeypatch.setattr(stripe.Price, "list", MagicMock(return_value={"data": [{"id": "price_1", "lookup_key": key}]}))
    create = MagicMock()
    monkeypatch.setattr(stripe.Price, "create", create)
    assert adapter.create_recurring_plan({"id": "p1"}, "monthly", 10, "usd") == "price_1"
    create.assert_not_called()


def test_recurring_plan_ignores_legacy_price_with_other_amount(monkeypatch, adapter):
    legacy = {"id": "price_old", "lookup_key": "sub_p1_month", "unit_amount": 500, "currency": "usd"}
    monkeypatch.setattr(stripe.Price, "list", MagicMock(return_value={"data": [legacy]}))
    monkeypatch.setattr(stripe.Product, "search", MagicMock(return_value={"data": [{"id": "prod_1"}]}))
    create = MagicMock(return_value={"id": "price_new"})
    monkeypatch.setattr(stripe.Price, "create", create)

    assert adapter.create_recurring_plan({"id": "p1"}, "monthly", 10, "usd") == "price_new"
    assert create.call_args.kwargs["unit_amount"] == 1000
    assert create.call_args.kwargs["recurring"] == {"interval": "month"}


def test_fee_from_balance_transaction(monkeypatch, adapter):
    intent = {"latest_charge": {"id": "ch_1", "balance_transaction": {"fee": 175, "net": 4825}}}
    monkeypatch.setattr(stripe.PaymentIntent, "retrieve", MagicMock(return_value=intent))
    assert adapter.fetch_transaction_detail("pi_1") == {"fee": 1.75, "net": 48.25, "transaction_id": "ch_1"}


def test_fee_unknown_when_balance_not_expanded(monkeypatch, adapter):
    monkeypatch.setattr(stripe.Charge, "retrieve", MagicMock(return_value={"id": "ch_1", "balance_transaction": "txn_1"}))
    assert adapter.fetch_transaction_detail("ch_1")["fee"] is None


def test_cancel_at_period_end(monkeypatch, adapter):
    monkeypatch.setattr(stripe.Subscription, "retrieve", MagicMock(return_value={"status": "active", "cancel_at_period_end": False}))
    modify = MagicMock()
    monkeypatch.setattr(stripe.Subscription, "modify", modify)
    assert adapter.cancel("sub_1") == {"applied": True, "status": "pending_cancellation"}
    assert modify.call_args.kwargs["cancel_at_period_end"] is True


def test_cancel_already_cancelled_is_noop(monkeypatch, adapter):
    monkeypatch.setattr(stripe.Subscription, "retrieve", MagicMock(return_value={"status": "canceled"}))
    cancel = MagicMock()
    monkeypatch.setattr(stripe.Subscription, "cancel", cancel)
    assert adapter.cancel("sub_1", at_period_end=False)["applied"] is False
    cancel.assert_not_called()


def test_construct_event_bad_signature(monkeypatch, adapter):
    def _bad(payload, sig, secret):
        raise stripe.SignatureVerificationError("bad sig", sig)

    monkeypatch.setattr(stripe.Webhook, "construct_event", _bad)
    with pytest.raises(ValidationError, match="Invalid Stripe signature"):
        adapter.construct_event(b"{}", "t=1,v1=x", "whsec_1")


def test_charge_now_pays_an_off_cycle_invoice(monkeypatch, adapter):
    monkeypatch.setattr(stripe.Subscription, "retrieve", MagicMock(return_value={"id": "sub_1", "customer": "cus_1"}))
    create = MagicMock(return_value={"id": "in_1"})
    finalize = MagicMock()
    monkeypatch.setattr(stripe.Invoice, "create", create)
    monkeypatch.setattr(stripe.Invoice, "finalize_invoice", finalize)
    monkeypatch.setattr(stripe.Invoice, "pay", MagicMock(return_value={
        "id": "in_1", "payment_intent": "pi_9", "amount_paid": 2000, "currency": "usd", "status": "paid",
    }))

    result = adapter.charge_now("sub_1")

    assert result == {"invoice_id": "in_1", "payment_id": "pi_9", "amount_paid": 20.0, "currency": "USD", "status": "paid"}
    assert create.call_args.kwargs["customer"] == "cus_1"
    assert create.call_args.kwargs["subscription"] == "sub_1"
    finalize.assert_called_once_with("in_1", api_key="sk_test_123")


def test_charge_now_declined_card_becomes_provider_rejected(monkeypatch, adapter):
    monkeypatch.setattr(stripe.Subscription, "retrieve", MagicMock(return_value={"id": "sub_1", "customer": "cus_1"}))
    monkeypatch.setattr(stripe.Invoice, "create", MagicMock(return_value={"id": "in_1"}))
    monkeypatch.setattr(stripe.Invoice, "finalize_invoice", MagicMock())
    monkeypatch.setattr(stripe.Invoice, "pay", MagicMock(side_effect=stripe.CardError("Your card was declined", None, "card_declined")))

    with pytest.raises(ProviderRejected):
        adapter.charge_now("sub_1")
