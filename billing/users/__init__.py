"""
Module 'users': comptes acheteurs (recherche, création, session).
"""

from .service import BuyerAccount, find_user_id, resolve_buyer, issue_access_token

__all__ = [
    "BuyerAccount",
    "find_user_id",
    "resolve_buyer",
    "issue_access_token",
]
