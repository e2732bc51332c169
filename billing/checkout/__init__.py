"""
Module 'checkout': orchestrateurs d'achat (abonnement, essai gratuit, paiement unique carte ou PayPal, activation PayPal).
"""

from .service import (
    create_subscription,
    create_free_trial_subscription,
    create_payment_intent,
    complete_one_time_payment,
    create_wallet_order,
    capture_wallet_order,
    activate_wallet_subscription,
)

__all__ = [
    "create_subscription",
    "create_free_trial_subscription",
    "create_payment_intent",
    "complete_one_time_payment",
    "create_wallet_order",
    "capture_wallet_order",
    "activate_wallet_subscription",
]
