"""
Traitement des événements Stripe (après vérification de signature).

Chaque handler est idempotent: commandes en insert-or-backfill, statuts via la machine à états.
"""
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional
import logging

from billing import ledger
from billing.ledger import repository as ledger_repository
from billing.subscriptions import state
from billing.sync.service import invoice_payment_handle, is_renewal, send_renewal
from billing.utils.best_effort import best_effort
from billing.utils.money import from_cents
from . import referrals

logger = logging.getLogger(__name__)


def _iso_from_epoch(value: Any) -> Optional[str]:
    if not value:
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc).isoformat()


def _subscription_id_of(invoice: Dict[str, Any]) -> Optional[str]:
    """Id d'abonnement d'une facture (champ historique, puis parent.subscription_details)."""
    sub_id = invoice.get("subscription")
    if isinstance(sub_id, dict):
        sub_id = sub_id.get("id")
    if sub_id:
        return sub_id
    parent = invoice.get("parent") or {}
    details = parent.get("subscription_details") or {}
    return details.get("subscription")


def _period_fields(obj: Dict[str, Any]) -> Dict[str, Any]:
    fields = {
        "current_period_start": _iso_from_epoch(obj.get("current_period_start")),
        "current_period_end": _iso_from_epoch(obj.get("current_period_end")),
    }
    return {k: v for k, v in fields.items() if v}


def _invoice_period(invoice: Dict[str, Any]) -> Dict[str, Any]:
    lines = (invoice.get("lines") or {}).get("data") or []
    period = (lines[0].get("period") if lines else None) or {}
    return _period_fields({"current_period_start": period.get("start"), "current_period_end": period.get("end")})


def handle_checkout_session_completed(adapter, obj: Dict[str, Any]) -> Dict[str, Any]:
    is_subscription = obj.get("mode") == "subscription"
    email = obj.get("customer_email") or (obj.get("customer_details") or {}).get("email")
    if is_subscription and obj.get("subscription"):
        subscription = ledger_repository.get_subscription_by_provider_id(obj["subscription"])
        if subscription and subscription.get("status") == state.PENDING:
            remote = adapter.retrieve_subscription(obj["subscription"])
            ledger.apply_provider_status(
                subscription,
                state.from_stripe(remote.get("status"), bool(remote.get("cancel_at_period_end"))),
                _period_fields(remote),
            )
    best_effort(
        "webhooks.referral_credit",
        referrals.award_for_payment,
        email=email,
        amount_cents=int(obj.get("amount_total") or 0),
        payment_id=obj.get("id"),
        is_subscription=is_subscription,
        is_first_payment=is_subscription,
    )
    return {"handled": True}


def handle_invoice_payment_succeeded(adapter, invoice: Dict[str, Any]) -> Dict[str, Any]:
    """Paiement de facture d'abonnement: commande (renouvellement), période suivante, crédit de parrainage."""
    provider_subscription_id = _subscription_id_of(invoice)
    if not provider_subscription_id:
        return {"handled": False, "reason": "not a subscription invoice"}
    first_payment = invoice.get("billing_reason") == "subscription_create"
    best_effort(
        "webhooks.referral_credit",
        referrals.award_for_payment,
        email=invoice.get("customer_email"),
        amount_cents=int(invoice.get("amount_paid") or 0),
        payment_id=invoice.get("id"),
        is_subscription=True,
        is_first_payment=first_payment,
    )

    subscription = ledger_repository.get_subscription_by_provider_id(provider_subscription_id)
    if not subscription:
        logger.info("webhooks.stripe invoice for unknown subscription=%s", provider_subscription_id)
        return {"handled": False, "reason": "unknown subscription"}
    if not invoice.get("amount_paid"):
        return {"handled": True, "orderCreated": False}

    target = state.ACTIVE if subscription.get("status") in (state.PENDING, state.TRIALING) else subscription.get("status")
    subscription = ledger.apply_provider_status(subscription, target, _invoice_period(invoice))

    handle = invoice_payment_handle(invoice)
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
    order, created = ledger.record_order(row)
    if order and created and not first_payment:
        charged_at = datetime.fromtimestamp(int(invoice["created"]), tz=timezone.utc) if invoice.get("created") else None
        if is_renewal(subscription, charged_at):
            best_effort("notifications.renewal_email", send_renewal, subscription, order)
    return {"handled": True, "orderCreated": created}


def handle_subscription_updated(adapter, obj: Dict[str, Any]) -> Dict[str, Any]:
    subscription = ledger_repository.get_subscription_by_provider_id(obj.get("id") or "")
    if not subscription:
        return {"handled": False, "reason": "unknown subscription"}
    target = state.from_stripe(obj.get("status"), bool(obj.get("cancel_at_period_end")))
    if target == state.ACTIVE and obj.get("pause_collection"):
        target = state.PAUSED
    ledger.apply_provider_status(subscription, target, _period_fields(obj))
    return {"handled": True, "status": target}


def handle_subscription_deleted(adapter, obj: Dict[str, Any]) -> Dict[str, Any]:
    subscription = ledger_repository.get_subscription_by_provider_id(obj.get("id") or "")
    if not subscription:
        return {"handled": False, "reason": "unknown subscription"}
    ledger.apply_provider_status(subscription, state.CANCELLED)
    return {"handled": True, "status": state.CANCELLED}


HANDLERS: Dict[str, Callable[[Any, Dict[str, Any]], Dict[str, Any]]] = {
    "checkout.session.completed": handle_checkout_session_completed,
    "invoice.payment_succeeded": handle_invoice_payment_succeeded,
    "customer.subscription.updated": handle_subscription_updated,
    "customer.subscription.deleted": handle_subscription_deleted,
}

# module billing.webhooks.stripe_events
def handle_stripe_event(adapter, event: Dict[str, Any]) -> Dict[str, Any]:
    event_type = event.get("type")
    handler = HANDLERS.get(event_type or "")
    logger.info("webhooks.stripe event id=%s type=%s", event.get("id"), event_type)
    if not handler:
        return {"handled": False, "reason": "ignored"}
    obj = (event.get("data") or {}).get("object") or {}
    return handler(adapter, obj)
