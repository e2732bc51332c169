"""
Module 'entitlements': inscriptions aux cours accordées/révoquées par le ledger.
"""

from .service import expand_items, resolve_course_ids, grant_courses, grant_for_product, revoke_for_product

__all__ = [
    "expand_items",
    "resolve_course_ids",
    "grant_courses",
    "grant_for_product",
    "revoke_for_product",
]
