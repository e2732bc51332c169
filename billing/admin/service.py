"""
Surface admin: listes et suppressions définitives.
"""
from typing import Any, Dict, List, Optional
import logging

from billing import ledger, providers
from billing.ledger import repository as ledger_repository
from billing.subscriptions import state
from . import repository as admin_repository

logger = logging.getLogger(__name__)


def list_orders(limit: int = 100, offset: int = 0, status: Optional[str] = None) -> Dict[str, Any]:
    return {
        "items": ledger_repository.list_orders(limit=limit, offset=offset, status=status),
        "total": admin_repository.count_table_rows("orders"),
    }


def list_subscriptions(limit: int = 100, offset: int = 0, status: Optional[str] = None) -> Dict[str, Any]:
    statuses: Optional[List[str]] = [status] if status else None
    return {
        "items": ledger_repository.list_subscriptions(statuses, limit=limit, offset=offset),
        "total": admin_repository.count_table_rows("subscriptions"),
    }


def delete_order(order_id: str) -> Dict[str, Any]:
    order = ledger.get_order_or_404(order_id)
    return {"success": ledger.hard_delete_order(order), "id": order_id}

# module billing.admin.service
def delete_subscription(subscription_id: str, *, stripe_key: Optional[str] = None) -> Dict[str, Any]:
    """
    Suppression définitive d'un abonnement.
    Annulation immédiate chez le prestataire si l'abonnement n'est pas déjà annulé
    (un refus du prestataire interrompt la suppression), puis révocation et suppression.
    """
    subscription = ledger.get_subscription_or_404(subscription_id)
    provider_id = subscription.get("provider_subscription_id") or ""
    provider = providers.normalize_provider(subscription.get("payment_provider"))
    provider_cancelled = False
    if subscription.get("status") != state.CANCELLED and provider_id and not provider_id.startswith("pi_"):
        providers.get_adapter(provider, stripe_key).cancel(provider_id, at_period_end=False)
        provider_cancelled = True
    deleted = ledger.hard_delete_subscription(subscription)
    logger.info("admin.service subscription deleted id=%s provider_cancelled=%s", subscription_id, provider_cancelled)
    return {"success": deleted, "id": subscription_id, "providerCancelled": provider_cancelled}
