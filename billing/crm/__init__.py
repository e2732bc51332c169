"""
Module 'crm': tags et séquences email déclenchés par les achats.
"""

from .service import after_purchase, after_refund

__all__ = ["after_purchase", "after_refund"]
