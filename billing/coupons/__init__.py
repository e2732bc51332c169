"""
Module 'coupons': validation et calcul des remises.
"""

from .service import check_coupon, compute_discount, find_applicable_coupon, validate_coupon, redeem

__all__ = [
    "check_coupon",
    "compute_discount",
    "find_applicable_coupon",
    "validate_coupon",
    "redeem",
]
