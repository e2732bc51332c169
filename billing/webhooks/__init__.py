"""
Module 'webhooks': événements Stripe et PayPal, crédit de parrainage.
"""

from .service import process_stripe_webhook, process_paypal_webhook
from .referrals import award_for_payment, referral_credit_amount

__all__ = [
    "process_stripe_webhook",
    "process_paypal_webhook",
    "award_for_payment",
    "referral_credit_amount",
]
