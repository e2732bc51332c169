from typing import Any, Dict, List
import logging

import billing.infra.supabase_client as supabase_client

logger = logging.getLogger(__name__)

# module billing.entitlements.repository
def get_bundle_items(product_id: str) -> List[dict]:
    """Contenu configuré d'un produit: [{item_type, item_id}] depuis subscription_items."""
    try:
        res = (
            supabase_client.get_service_supabase()
            .table("subscription_items")
            .select("item_type, item_id")
            .eq("subscription_product_id", product_id)
            .execute()
        )
        return res.data or []
    except Exception:
        logger.exception("entitlements.repository.get_bundle_items failed product_id=%s", product_id)
        return []


def get_group_course_ids(group_id: str) -> List[str]:
    try:
        res = (
            supabase_client.get_service_supabase()
            .table("course_group_courses")
            .select("course_id")
            .eq("group_id", group_id)
            .execute()
        )
        return [str(r["course_id"]) for r in (res.data or []) if r.get("course_id")]
    except Exception:
        logger.exception("entitlements.repository.get_group_course_ids failed group_id=%s", group_id)
        return []


def get_product_course_id(product_id: str) -> str | None:
    try:
        res = (
            supabase_client.get_service_supabase()
            .table("products")
            .select("course_id")
            .eq("id", product_id)
            .limit(1)
            .execute()
        )
        rows = res.data or []
        return str(rows[0]["course_id"]) if rows and rows[0].get("course_id") else None
    except Exception:
        logger.exception("entitlements.repository.get_product_course_id failed product_id=%s", product_id)
        return None


def upsert_enrollments(rows: List[Dict[str, Any]]) -> int:
    """Upsert idempotent sur (user_id, course_id); relève en cas d'échec."""
    if not rows:
        return 0
    res = (
        supabase_client.get_service_supabase()
        .table("course_enrollments")
        .upsert(rows, on_conflict="user_id,course_id")
        .execute()
    )
    return len(res.data or [])


def set_enrollments_active(user_id: str, course_ids: List[str], is_active: bool) -> int:
    if not course_ids:
        return 0
    res = (
        supabase_client.get_service_supabase()
        .table("course_enrollments")
        .update({"is_active": is_active})
        .eq("user_id", user_id)
        .in_("course_id", course_ids)
        .execute()
    )
    return len(res.data or [])
