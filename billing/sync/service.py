"""
Synchronisation manuelle (admin) du ledger avec les prestataires.

Pour chaque abonnement en cours:
- carte: statut et période relus chez Stripe, factures payées -> commandes (insert-or-backfill)
- PayPal: statut relu, transactions des 90 derniers jours -> commandes
Un renouvellement nouvellement enregistré déclenche l'email de renouvellement.
Les accès d'un abonnement active/trialing sont réaccordés à chaque passage (upsert idempotent):
une attribution échouée au checkout est ainsi rattrapée.
"""
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional
import logging

from billing import entitlements, ledger, notifications, providers
from billing.errors import BillingError
from billing.ledger import repository as ledger_repository
from billing.providers.card import invoice_payment_handle
from billing.subscriptions import state
from billing.utils.best_effort import best_effort
from billing.utils.money import from_cents

logger = logging.getLogger(__name__)

SYNC_STATUSES = (state.ACTIVE, state.TRIALING, state.PENDING, state.PENDING_CANCELLATION, "past_due")
WALLET_LOOKBACK_DAYS = 90
RENEWAL_GRACE = timedelta(days=1)


def _iso_from_epoch(value: Any) -> Optional[str]:
    if not value:
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc).isoformat()


def _parse_ts(value: Any) -> Optional[datetime]:
    if not value:
        return None
    try:
        dt = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None
    return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)


def is_renewal(subscription: Dict[str, Any], charged_at: Optional[datetime]) -> bool:
    """Paiement postérieur de plus d'un jour à la création de l'abonnement."""
    created = _parse_ts(subscription.get("created_at"))
    if not created or not charged_at:
        return False
    return charged_at - created > RENEWAL_GRACE


def send_renewal(subscription: Dict[str, Any], order: Dict[str, Any]) -> None:
    email = subscription.get("customer_email") or order.get("email")
    if not email:
        return
    notifications.send_renewal_email(email, {
        "customerName": subscription.get("customer_name") or email,
        "productName": subscription.get("product_name"),
        "amount": order.get("amount"),
        "currency": order.get("currency"),
        "nextBillingDate": subscription.get("current_period_end"),
    })


def ensure_access(subscription: Dict[str, Any]) -> List[str]:
    if subscription.get("status") not in (state.ACTIVE, state.TRIALING):
        return []
    user_id = subscription.get("user_id")
    product_id = subscription.get("product_id")
    if not user_id or not product_id:
        return []
    return entitlements.grant_for_product(user_id, {"id": product_id}, source="subscription")


def sync_card_subscription(adapter, subscription: Dict[str, Any]) -> Dict[str, int]:
    provider_id = subscription.get("provider_subscription_id") or ""
    if not provider_id.startswith("sub_"):
        return {"updated": 0, "created": 0}
    remote = adapter.retrieve_subscription(provider_id)
    target = state.from_stripe(remote.get("status"), bool(remote.get("cancel_at_period_end")))
    fields = {
        "current_period_start": _iso_from_epoch(remote.get("current_period_start")),
        "current_period_end": _iso_from_epoch(remote.get("current_period_end")),
    }
    fields = {k: v for k, v in fields.items() if v and v != subscription.get(k)}
    updated = 0
    if target != subscription.get("status") or fields:
        subscription = ledger.apply_provider_status(subscription, target, fields)
        updated = 1
    ensure_access(subscription)

    created = 0
    for invoice in adapter.list_invoices(provider_id):
        if invoice.get("status") != "paid" or not invoice.get("amount_paid"):
            continue
        handle = invoice_payment_handle(invoice)
        existing = ledger_repository.find_order(handle, subscription.get("product_id"), "stripe")
        if existing and existing.get("stripe_fee") is not None:
            continue
        detail = {}
        if handle.startswith(("pi_", "ch_")):
            detail = best_effort("stripe.fee_lookup", adapter.fetch_transaction_detail, handle) or {}
        row = ledger.order_from_subscription(
            subscription,
            provider_payment_id=handle,
            amount=from_cents(invoice.get("amount_paid")),
            currency=(invoice.get("currency") or subscription.get("currency") or "USD").upper(),
            fee=detail.get("fee"),
            provider_transaction_id=detail.get("transaction_id"),
        )
        order, was_created = ledger.record_order(row)
        if order and was_created:
            created += 1
            charged_at = datetime.fromtimestamp(int(invoice["created"]), tz=timezone.utc) if invoice.get("created") else None
            if is_renewal(subscription, charged_at):
                best_effort("notifications.renewal_email", send_renewal, subscription, order)
    return {"updated": updated, "created": created}


def sync_wallet_subscription(adapter, subscription: Dict[str, Any], now: Optional[datetime] = None) -> Dict[str, int]:
    provider_id = subscription.get("provider_subscription_id") or ""
    if not provider_id.startswith("I-"):
        return {"updated": 0, "created": 0}
    now = now or datetime.now(timezone.utc)
    remote = adapter.get_subscription(provider_id)
    target = state.from_paypal(remote.get("status"))
    updated = 0
    if target != subscription.get("status"):
        subscription = ledger.apply_provider_status(subscription, target)
        updated = 1
    ensure_access(subscription)

    created = 0
    for tx in adapter.list_transactions(provider_id, now - timedelta(days=WALLET_LOOKBACK_DAYS), now):
        if (tx.get("status") or "").upper() != "COMPLETED" or not tx.get("id"):
            continue
        order, was_created = ledger.record_wallet_transaction(subscription, tx)
        if order and was_created:
            created += 1
            if is_renewal(subscription, _parse_ts(tx.get("time"))):
                best_effort("notifications.renewal_email", send_renewal, subscription, order)
    return {"updated": updated, "created": created}


# module billing.sync.service
def sync_subscription_payments(*, stripe_key: Optional[str] = None, now: Optional[datetime] = None) -> Dict[str, Any]:
    """
    Réconciliation de tous les abonnements en cours.
    Un abonnement en erreur est journalisé puis ignoré: les autres sont tout de même traités.
    """
    totals = {"stripeUpdated": 0, "paypalUpdated": 0, "stripeOrdersCreated": 0, "paypalOrdersCreated": 0}
    subscriptions = ledger_repository.list_subscriptions(SYNC_STATUSES)
    adapters: Dict[str, Any] = {}
    for subscription in subscriptions:
        try:
            provider = providers.normalize_provider(subscription.get("payment_provider"))
            if provider not in adapters:
                adapters[provider] = providers.get_adapter(provider, stripe_key)
            if provider == "stripe":
                result = sync_card_subscription(adapters[provider], subscription)
                totals["stripeUpdated"] += result["updated"]
                totals["stripeOrdersCreated"] += result["created"]
            else:
                result = sync_wallet_subscription(adapters[provider], subscription, now=now)
                totals["paypalUpdated"] += result["updated"]
                totals["paypalOrdersCreated"] += result["created"]
        except BillingError as e:
            logger.warning("sync.service subscription id=%s skipped: %s", subscription.get("id"), e.message)
        except Exception:
            logger.exception("sync.service subscription id=%s failed", subscription.get("id"))
    logger.info("sync.service done subscriptions=%s totals=%s", len(subscriptions), totals)
    return {"success": True, **totals}
