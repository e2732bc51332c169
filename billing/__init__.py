"""
Service de facturation: achats, abonnements et réconciliation Stripe / PayPal.
"""

__version__ = "0.1.0"
