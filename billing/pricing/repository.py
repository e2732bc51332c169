"""
Accès aux données de référence tarifaires (produits, prix régionaux).
"""
from typing import Dict, List, Optional
import logging

import billing.infra.supabase_client as supabase_client

logger = logging.getLogger(__name__)

# module billing.pricing.repository
def get_product(product_id: str) -> Optional[dict]:
    if not product_id:
        return None
    try:
        res = (
            supabase_client.get_service_supabase()
            .table("products")
            .select("*")
            .eq("id", product_id)
            .limit(1)
            .execute()
        )
        rows = res.data or []
        return rows[0] if rows else None
    except Exception:
        logger.exception("pricing.repository.get_product failed id=%s", product_id)
        return None


def get_products(ids: List[str]) -> List[dict]:
    if not ids:
        return []
    try:
        res = (
            supabase_client.get_service_supabase()
            .table("products")
            .select("*")
            .in_("id", [str(i) for i in ids])
            .execute()
        )
        return res.data or []
    except Exception:
        logger.exception("pricing.repository.get_products failed ids=%s", ids)
        return []


def get_products_map(ids: List[str]) -> Dict[str, dict]:
    return {str(p.get("id")): p for p in get_products(ids)}


def get_region_for_country(country_code: str) -> str:
    """Région tarifaire d'un pays; 'default' si inconnue."""
    try:
        res = (
            supabase_client.get_service_supabase()
            .table("country_region_mapping")
            .select("region")
            .eq("country_code", country_code.upper())
            .limit(1)
            .execute()
        )
        rows = res.data or []
        return (rows[0].get("region") if rows else None) or "default"
    except Exception:
        logger.exception("pricing.repository.get_region_for_country failed country=%s", country_code)
        return "default"


def get_regional_price(product_id: str, region: str) -> Optional[dict]:
    try:
        res = (
            supabase_client.get_service_supabase()
            .table("product_regional_pricing")
            .select("fixed_price, currency")
            .eq("product_id", product_id)
            .eq("region", region)
            .limit(1)
            .execute()
        )
        rows = res.data or []
        row = rows[0] if rows else None
        if row and row.get("fixed_price") is not None:
            return row
        return None
    except Exception:
        logger.exception("pricing.repository.get_regional_price failed product_id=%s region=%s", product_id, region)
        return None
