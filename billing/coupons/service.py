"""
Cas d'usage 'coupons': validation, calcul de remise, miroir Stripe.
"""
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional
import logging

from billing.errors import ValidationError
from . import repository

logger = logging.getLogger(__name__)

SUBSCRIPTION_TYPES = ("subscription", "membership")


def _parse_ts(value: Any) -> Optional[datetime]:
    if not value:
        return None
    try:
        dt = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None
    return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)


def check_coupon(
    coupon: Dict[str, Any],
    *,
    product_ids: Iterable[str] = (),
    product_types: Iterable[str] = (),
    now: Optional[datetime] = None,
) -> None:
    """
    Vérifie qu'un coupon est utilisable; lève ValidationError avec le motif sinon.
    - dates valid_from / valid_until
    - max_redemptions vs times_redeemed
    - restriction produits (applies_to_products)
    - one-time vs abonnement (applies_to_one_time / applies_to_subscriptions)
    """
    now = now or datetime.now(timezone.utc)
    valid_from = _parse_ts(coupon.get("valid_from"))
    valid_until = _parse_ts(coupon.get("valid_until"))
    if valid_from and valid_from > now:
        raise ValidationError("This coupon is not yet active")
    if valid_until and valid_until < now:
        raise ValidationError("This coupon has expired")

    max_redemptions = coupon.get("max_redemptions")
    if max_redemptions and int(coupon.get("times_redeemed") or 0) >= int(max_redemptions):
        raise ValidationError("This coupon has reached its maximum usage")

    product_ids = [str(p) for p in product_ids]
    scoped = coupon.get("applies_to_products") or []
    if scoped:
        if not product_ids or not any(p in scoped for p in product_ids):
            raise ValidationError("This coupon does not apply to the selected products")

    types = list(product_types)
    has_subscription = any(t in SUBSCRIPTION_TYPES for t in types)
    has_one_time = any(t not in SUBSCRIPTION_TYPES for t in types)
    if has_one_time and coupon.get("applies_to_one_time") is False:
        raise ValidationError("This coupon only applies to subscriptions")
    if has_subscription and coupon.get("applies_to_subscriptions") is False:
        raise ValidationError("This coupon only applies to one-time purchases")


def compute_discount(coupon: Optional[Dict[str, Any]], amount: float, currency: Optional[str] = None) -> float:
    """
    Remise absolue pour un montant donné, plafonnée au montant.
    - percentage: amount * percent_off / 100
    - fixed: amount_off (ignoré si la devise du coupon diffère de celle du montant)
    """
    if not coupon or amount <= 0:
        return 0.0
    kind = coupon.get("discount_type")
    if kind == "percentage" and coupon.get("percent_off"):
        discount = amount * float(coupon["percent_off"]) / 100
    elif kind == "fixed" and coupon.get("amount_off"):
        coupon_currency = (coupon.get("currency") or "").upper()
        if currency and coupon_currency and coupon_currency != currency.upper():
            logger.info("coupons.service fixed coupon currency mismatch coupon=%s amount=%s", coupon_currency, currency)
            return 0.0
        discount = float(coupon["amount_off"])
    else:
        return 0.0
    return round(min(discount, amount), 2)


def find_applicable_coupon(code: Optional[str], product: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """Coupon applicable à un produit, ou None (coupon absent/invalide => aucune remise, pas d'erreur)."""
    if not code:
        return None
    coupon = repository.get_active_coupon(code)
    if not coupon:
        return None
    try:
        check_coupon(coupon, product_ids=[str(product.get("id"))], product_types=[product.get("product_type") or ""])
    except ValidationError as e:
        logger.info("coupons.service coupon %s ignored: %s", code, e.message)
        return None
    return coupon


def validate_coupon(code: str, products: List[Dict[str, Any]]) -> Dict[str, Any]:
    """Validation publique (checkout): lève ValidationError ou retourne le coupon normalisé."""
    normalized = (code or "").strip()
    if not normalized:
        raise ValidationError("Missing couponCode")
    coupon = repository.get_active_coupon(normalized)
    if not coupon:
        raise ValidationError("Invalid coupon code")
    check_coupon(
        coupon,
        product_ids=[str(p.get("id")) for p in products],
        product_types=[p.get("product_type") or "" for p in products],
    )
    return {
        "code": coupon.get("code"),
        "discountType": coupon.get("discount_type"),
        "percentOff": coupon.get("percent_off"),
        "amountOff": coupon.get("amount_off"),
        "currency": coupon.get("currency"),
    }


def redeem(coupon: Dict[str, Any]) -> bool:
    return repository.increment_redemptions(coupon)
