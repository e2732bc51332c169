"""
Module 'refunds': remboursements admin (carte ou PayPal) et répercussion sur le ledger.
"""

from .service import process_refund

__all__ = ["process_refund"]
