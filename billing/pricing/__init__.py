"""
Module 'pricing': produits de référence et résolution prix/devise/remise.
"""

from .repository import get_product, get_products, get_products_map
from .service import PriceQuote, resolve_price, clamp_pwyf, is_subscription_product

__all__ = [
    "get_product",
    "get_products",
    "get_products_map",
    "PriceQuote",
    "resolve_price",
    "clamp_pwyf",
    "is_subscription_product",
]
