"""
Module 'sync': réconciliation admin des abonnements avec Stripe et PayPal.
"""

from .service import sync_subscription_payments

__all__ = ["sync_subscription_payments"]
