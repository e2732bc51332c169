"""
Attribution des accès (inscriptions aux cours) issus d'un achat ou d'un abonnement.

- Un produit peut être l'alias d'un cours (products.course_id) et/ou regrouper des éléments
  (subscription_items: course, course_group, product)
- Un course_group s'étend en ses cours (course_group_courses)
- L'attribution est un upsert idempotent sur (user_id, course_id); la révocation passe is_active à False
- Un échec n'est jamais propagé: le paiement reste acquis, la prochaine réconciliation réessaie
"""
from typing import Any, Dict, Iterable, List, Optional, Set
import logging

from . import repository

logger = logging.getLogger(__name__)

MAX_DEPTH = 3


def expand_items(items: Iterable[Dict[str, Any]], depth: int = 0, seen: Optional[Set[str]] = None) -> List[str]:
    """[{item_type|itemType, item_id|itemId}] -> liste ordonnée et dédoublonnée d'ids de cours."""
    seen = seen if seen is not None else set()
    courses: List[str] = []

    def add(course_id: Optional[str]):
        if course_id and course_id not in courses:
            courses.append(course_id)

    for item in items:
        kind = item.get("item_type") or item.get("itemType")
        item_id = str(item.get("item_id") or item.get("itemId") or "")
        if not item_id:
            continue
        if kind == "course":
            add(item_id)
        elif kind == "course_group":
            for cid in repository.get_group_course_ids(item_id):
                add(cid)
        elif kind == "product" and depth < MAX_DEPTH and item_id not in seen:
            seen.add(item_id)
            for cid in resolve_course_ids(item_id, depth=depth + 1, seen=seen):
                add(cid)
    return courses


def resolve_course_ids(product_id: str, course_id: Optional[str] = None, depth: int = 0, seen: Optional[Set[str]] = None) -> List[str]:
    """Cours couverts par un produit: alias direct + contenu du bundle."""
    seen = seen if seen is not None else {str(product_id)}
    courses: List[str] = []
    alias = course_id or repository.get_product_course_id(product_id)
    if alias:
        courses.append(str(alias))
    for cid in expand_items(repository.get_bundle_items(product_id), depth=depth, seen=seen):
        if cid not in courses:
            courses.append(cid)
    return courses


# module billing.entitlements.service
def grant_courses(user_id: str, course_ids: List[str], source: str = "purchase") -> List[str]:
    if not user_id or not course_ids:
        return []
    rows = [
        {"user_id": user_id, "course_id": cid, "is_active": True, "enrollment_type": source}
        for cid in course_ids
    ]
    try:
        repository.upsert_enrollments(rows)
    except Exception:
        logger.exception("entitlements.service.grant_courses failed user_id=%s courses=%s", user_id, course_ids)
        return []
    logger.info("entitlements.service granted user_id=%s courses=%s source=%s", user_id, course_ids, source)
    return list(course_ids)


def grant_for_product(user_id: str, product: Dict[str, Any], source: str = "purchase") -> List[str]:
    """Accorde les cours d'un produit. Retourne les ids accordés ([] si échec, jamais d'exception)."""
    try:
        course_ids = resolve_course_ids(str(product.get("id")), product.get("course_id"))
    except Exception:
        logger.exception("entitlements.service.grant_for_product resolve failed product_id=%s", product.get("id"))
        return []
    return grant_courses(user_id, course_ids, source=source)


def revoke_for_product(user_id: str, product_id: str) -> List[str]:
    """Désactive (is_active=False) les inscriptions issues d'un produit; aucune suppression."""
    if not user_id or not product_id:
        return []
    try:
        course_ids = resolve_course_ids(str(product_id))
        repository.set_enrollments_active(user_id, course_ids, False)
    except Exception:
        logger.exception("entitlements.service.revoke_for_product failed user_id=%s product_id=%s", user_id, product_id)
        return []
    logger.info("entitlements.service revoked user_id=%s courses=%s", user_id, course_ids)
    return course_ids
