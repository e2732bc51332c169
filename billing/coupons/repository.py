"""
Accès aux données pour la feature 'coupons'.
"""
from typing import Any, Dict, Optional
import logging

import billing.infra.supabase_client as supabase_client

logger = logging.getLogger(__name__)

# module billing.coupons.repository
def get_active_coupon(code: str) -> Optional[dict]:
    """
    Coupon actif par code (insensible à la casse).
    - Retourne None si absent ou en cas d'erreur.
    """
    normalized = (code or "").strip()
    if not normalized:
        return None
    try:
        res = (
            supabase_client.get_service_supabase()
            .table("coupons")
            .select("*")
            .ilike("code", normalized)
            .eq("is_active", True)
            .limit(1)
            .execute()
        )
        rows = res.data or []
        return rows[0] if rows else None
    except Exception:
        logger.exception("coupons.repository.get_active_coupon failed code=%s", normalized)
        return None


def increment_redemptions(coupon: Dict[str, Any]) -> bool:
    try:
        (
            supabase_client.get_service_supabase()
            .table("coupons")
            .update({"times_redeemed": int(coupon.get("times_redeemed") or 0) + 1})
            .eq("id", coupon["id"])
            .execute()
        )
        return True
    except Exception:
        logger.exception("coupons.repository.increment_redemptions failed id=%s", coupon.get("id"))
        return False


def set_stripe_coupon_id(coupon_id: str, stripe_coupon_id: str) -> bool:
    try:
        (
            supabase_client.get_service_supabase()
            .table("coupons")
            .update({"stripe_coupon_id": stripe_coupon_id})
            .eq("id", coupon_id)
            .execute()
        )
        return True
    except Exception:
        logger.exception("coupons.repository.set_stripe_coupon_id failed id=%s", coupon_id)
        return False
