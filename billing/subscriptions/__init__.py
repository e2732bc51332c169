"""
Module 'subscriptions': machine à états et actions de gestion (pause, reprise, annulation, prix, coupon).

Le service et les vues sont importés explicitement (billing.subscriptions.service / .views):
le ledger dépend de la machine à états, le service dépend du ledger.
"""

from .state import STATES, can_transition, ensure_transition, from_paypal, from_stripe

__all__ = [
    "STATES",
    "can_transition",
    "ensure_transition",
    "from_paypal",
    "from_stripe",
]
