"""
Traitement des événements PayPal (après vérification via verify-webhook-signature).
"""
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional
import logging

from billing import ledger
from billing.ledger import repository as ledger_repository
from billing.subscriptions import state
from billing.sync.service import is_renewal, send_renewal
from billing.utils.best_effort import best_effort

logger = logging.getLogger(__name__)


def _parse_ts(value: Any) -> Optional[datetime]:
    if not value:
        return None
    try:
        dt = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None
    return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)


def _money(value: Any) -> Optional[float]:
    if value in (None, ""):
        return None
    try:
        return round(float(value), 2)
    except (TypeError, ValueError):
        return None


def _subscription_for(provider_subscription_id: Optional[str]) -> Optional[Dict[str, Any]]:
    if not provider_subscription_id:
        return None
    subscription = ledger_repository.get_subscription_by_provider_id(provider_subscription_id)
    if not subscription:
        logger.info("webhooks.paypal unknown subscription=%s", provider_subscription_id)
    return subscription


def handle_activated(resource: Dict[str, Any]) -> Dict[str, Any]:
    subscription = _subscription_for(resource.get("id"))
    if not subscription:
        return {"handled": False, "reason": "unknown subscription"}
    trial_end = _parse_ts(subscription.get("trial_end"))
    target = state.TRIALING if trial_end and trial_end > datetime.now(timezone.utc) else state.ACTIVE
    fields = {}
    next_billing = (resource.get("billing_info") or {}).get("next_billing_time")
    if next_billing:
        fields["current_period_end"] = next_billing
    if resource.get("start_time") and not subscription.get("current_period_start"):
        fields["current_period_start"] = resource["start_time"]
    ledger.apply_provider_status(subscription, target, fields)
    return {"handled": True, "status": target}


def _status_handler(target: str) -> Callable[[Dict[str, Any]], Dict[str, Any]]:
    def _handle(resource: Dict[str, Any]) -> Dict[str, Any]:
        subscription = _subscription_for(resource.get("id"))
        if not subscription:
            return {"handled": False, "reason": "unknown subscription"}
        ledger.apply_provider_status(subscription, target)
        return {"handled": True, "status": target}
    return _handle


def handle_sale_completed(resource: Dict[str, Any]) -> Dict[str, Any]:
    """Paiement d'un cycle: commande avec frais (insert-or-backfill sur l'id de transaction)."""
    subscription = _subscription_for(resource.get("billing_agreement_id"))
    if not subscription:
        return {"handled": False, "reason": "unknown subscription"}
    amount = resource.get("amount") or {}
    tx = {
        "id": resource.get("id"),
        "gross": _money(amount.get("total")),
        "fee": _money((resource.get("transaction_fee") or {}).get("value")),
        "currency": amount.get("currency"),
    }
    order, created = ledger.record_wallet_transaction(subscription, tx)
    if order and created and is_renewal(subscription, _parse_ts(resource.get("create_time"))):
        best_effort("notifications.renewal_email", send_renewal, subscription, order)
    return {"handled": True, "orderCreated": created}


HANDLERS: Dict[str, Callable[[Dict[str, Any]], Dict[str, Any]]] = {
    "BILLING.SUBSCRIPTION.ACTIVATED": handle_activated,
    "BILLING.SUBSCRIPTION.SUSPENDED": _status_handler(state.PAUSED),
    "BILLING.SUBSCRIPTION.CANCELLED": _status_handler(state.CANCELLED),
    "BILLING.SUBSCRIPTION.EXPIRED": _status_handler(state.CANCELLED),
    "PAYMENT.SALE.COMPLETED": handle_sale_completed,
}

# module billing.webhooks.paypal_events
def handle_paypal_event(event: Dict[str, Any]) -> Dict[str, Any]:
    event_type = event.get("event_type")
    handler = HANDLERS.get(event_type or "")
    logger.info("webhooks.paypal event id=%s type=%s", event.get("id"), event_type)
    if not handler:
        return {"handled": False, "reason": "ignored"}
    return handler(event.get("resource") or {})
