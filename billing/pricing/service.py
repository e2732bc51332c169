# module billing.pricing.service
"""
Résolution prix/devise d'une ligne d'achat.

Règles:
- Un prix régional (région du pays acheteur) fait foi pour la devise et, hors PWYF, pour le montant
- PWYF: le montant choisi est accepté dans [min*0.9, max*1.1], sinon repli sur max(min, prix suggéré)
- Sans prix régional: prix de base du produit, en devise de référence (USD)
- Le coupon est calculé ici, une seule fois: PriceQuote.amount est déjà remisé
"""
import logging
import math
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from billing.coupons import service as coupons_service
from . import repository

logger = logging.getLogger(__name__)

REFERENCE_CURRENCY = "USD"
PWYF_LOWER_TOLERANCE = 0.9
PWYF_UPPER_TOLERANCE = 1.1
SUBSCRIPTION_TYPES = ("subscription", "membership")


@dataclass
class PriceQuote:
    base_amount: float
    discount: float
    amount: float
    currency: str
    coupon_code: Optional[str] = None
    region: Optional[str] = None
    coupon: Optional[Dict[str, Any]] = None


def is_subscription_product(product: Dict[str, Any]) -> bool:
    return (product.get("product_type") or "") in SUBSCRIPTION_TYPES


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


def _sale_price(product: Dict[str, Any]) -> Optional[float]:
    sale = product.get("sale_price_usd")
    if not _is_number(sale) or sale <= 0:
        return None
    ends = product.get("sale_ends_at")
    if ends:
        try:
            end_dt = datetime.fromisoformat(str(ends).replace("Z", "+00:00"))
            if end_dt.tzinfo is None:
                end_dt = end_dt.replace(tzinfo=timezone.utc)
            if end_dt <= datetime.now(timezone.utc):
                return None
        except ValueError:
            return None
    return float(sale)


def clamp_pwyf(amount: Any, minimum: float, maximum: Optional[float], suggested: Optional[float], fallback: float) -> float:
    """
    Applique la bande PWYF à un montant choisi par l'acheteur.
    Hors bande (ou montant absent): max(minimum, suggéré).
    """
    if not _is_number(amount):
        amount = fallback
    upper = maximum if _is_number(maximum) and maximum > 0 else math.inf
    if amount < minimum * PWYF_LOWER_TOLERANCE or amount > upper * PWYF_UPPER_TOLERANCE:
        logger.info("pricing.service PWYF amount out of range amount=%s min=%s max=%s", amount, minimum, maximum)
        return float(max(minimum, suggested or minimum))
    return float(amount)


def resolve_price(
    product: Dict[str, Any],
    *,
    country_code: Optional[str] = None,
    requested_amount: Any = None,
    coupon_code: Optional[str] = None,
) -> PriceQuote:
    """Calcule {montant, devise, remise} pour un produit."""
    region = None
    regional = None
    if country_code:
        region = repository.get_region_for_country(country_code)
        regional = repository.get_regional_price(str(product.get("id")), region)

    currency = (regional.get("currency") if regional else None) or REFERENCE_CURRENCY
    currency = currency.upper()
    base_price = float(product.get("base_price_usd") or 0)

    if product.get("is_pwyf"):
        minimum = float(regional["fixed_price"]) if regional else float(product.get("min_price") or 0)
        base = clamp_pwyf(
            requested_amount,
            minimum,
            product.get("max_price"),
            product.get("suggested_price"),
            fallback=base_price,
        )
    elif regional:
        base = float(regional["fixed_price"])
    else:
        sale = _sale_price(product)
        base = sale if sale is not None else base_price

    coupon = coupons_service.find_applicable_coupon(coupon_code, product)
    discount = coupons_service.compute_discount(coupon, base, currency)
    amount = round(base - discount, 2)
    logger.info(
        "pricing.service resolved product_id=%s region=%s base=%s discount=%s amount=%s currency=%s",
        product.get("id"), region, base, discount, amount, currency,
    )
    return PriceQuote(
        base_amount=round(base, 2),
        discount=discount,
        amount=amount,
        currency=currency,
        coupon_code=(coupon or {}).get("code") if coupon else None,
        region=region,
        coupon=coupon,
    )
