from datetime import datetime, timedelta, timezone

import pytest

from billing.pricing import service


@pytest.fixture
def no_region(monkeypatch):
    monkeypatch.setattr("billing.pricing.repository.get_region_for_country", lambda cc: "default")
    monkeypatch.setattr("billing.pricing.repository.get_regional_price", lambda pid, region: None)


@pytest.fixture
def no_coupon(monkeypatch):
    monkeypatch.setattr("billing.coupons.repository.get_active_coupon", lambda code: None)


def _product(**extra):
    base = {"id": "p1", "base_price_usd": 100, "product_type": "course"}
    base.update(extra)
    return base


def test_coupon_discount_applied_once(monkeypatch, no_region):
    # produit à 100$ et coupon fixe de 20$: 80$ facturés, remise 20
    monkeypatch.setattr(
        "billing.coupons.repository.get_active_coupon",
        lambda code: {"code": "SAVE20", "discount_type": "fixed", "amount_off": 20, "currency": "usd"},
    )
    quote = service.resolve_price(_product(), coupon_code="SAVE20")
    assert quote.amount == 80
    assert quote.discount == 20
    assert quote.base_amount == 100
    assert quote.coupon_code == "SAVE20"
    assert quote.currency == "USD"


def test_regional_price_sets_amount_and_currency(monkeypatch, no_coupon):
    monkeypatch.setattr("billing.pricing.repository.get_region_for_country", lambda cc: "eu")
    monkeypatch.setattr(
        "billing.pricing.repository.get_regional_price",
        lambda pid, region: {"fixed_price": 79, "currency": "eur"} if region == "eu" else None,
    )
    quote = service.resolve_price(_product(), country_code="fr")
    assert quote.amount == 79
    assert quote.currency == "EUR"
    assert quote.region == "eu"


def test_base_price_in_reference_currency_without_region(no_region, no_coupon):
    quote = service.resolve_price(_product(), country_code="ZZ")
    assert quote.amount == 100
    assert quote.currency == "USD"


def test_active_sale_price_wins_over_base(no_region, no_coupon):
    ends = (datetime.now(timezone.utc) + timedelta(days=2)).isoformat()
    quote = service.resolve_price(_product(sale_price_usd=60, sale_ends_at=ends))
    assert quote.amount == 60


def test_expired_sale_is_ignored(no_region, no_coupon):
    ends = (datetime.now(timezone.utc) - timedelta(days=2)).isoformat()
    quote = service.resolve_price(_product(sale_price_usd=60, sale_ends_at=ends))
    assert quote.amount == 100


def test_pwyf_amount_within_band_is_accepted(no_region, no_coupon):
    product = _product(is_pwyf=True, min_price=20, max_price=200, suggested_price=50)
    assert service.resolve_price(product, requested_amount=19).amount == 19
    assert service.resolve_price(product, requested_amount=210).amount == 210


def test_pwyf_out_of_band_falls_back_to_suggested(no_region, no_coupon):
    product = _product(is_pwyf=True, min_price=20, max_price=200, suggested_price=50)
    assert service.resolve_price(product, requested_amount=5).amount == 50
    assert service.resolve_price(product, requested_amount=1000).amount == 50


def test_clamp_pwyf_uses_minimum_when_no_suggestion():
    assert service.clamp_pwyf(1, 30, None, None, fallback=30) == 30


def test_is_subscription_product():
    assert service.is_subscription_product({"product_type": "membership"})
    assert not service.is_subscription_product({"product_type": "course"})
