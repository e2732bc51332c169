"""
Module 'admin': listes et suppressions définitives (commandes, abonnements).
"""

from .service import list_orders, list_subscriptions, delete_order, delete_subscription

__all__ = [
    "list_orders",
    "list_subscriptions",
    "delete_order",
    "delete_subscription",
]
