"""
Cas d'usage 'manage-subscription': actions admin/titulaire sur un abonnement.

Chaque action appelle d'abord le prestataire, puis le ledger: un refus du prestataire
laisse l'état précédent intact.
"""
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional
import logging

from billing import coupons, ledger, pricing, providers
from billing.config import FRONTEND_URL
from billing.coupons import repository as coupons_repository
from billing.errors import Forbidden, ValidationError
from billing.utils.best_effort import best_effort
from . import state

logger = logging.getLogger(__name__)


def _parse_ts(value: Any) -> Optional[datetime]:
    if not value:
        return None
    try:
        dt = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None
    return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)


ADMIN_ACTIONS = {"update_price", "apply_coupon", "remove_coupon", "charge_now"}


def authorize(user: Dict[str, Any], subscription: Dict[str, Any], action: str) -> None:
    """Admin: toutes les actions. Titulaire: cycle de vie et moyen de paiement; prix, coupons et débit manuel restent admin."""
    if user.get("role") == "admin":
        return
    if action in ADMIN_ACTIONS:
        raise Forbidden("Only an admin can change the price or coupon of a subscription")
    if subscription.get("user_id") and subscription.get("user_id") == user.get("id"):
        return
    raise Forbidden("Not allowed to manage this subscription")


def _product_for(subscription: Dict[str, Any]) -> Dict[str, Any]:
    product = pricing.get_product(subscription.get("product_id")) or {}
    return product or {"id": subscription.get("product_id"), "name": subscription.get("product_name")}


# --- Actions ---

def _pause(ctx: Dict[str, Any]) -> Dict[str, Any]:
    sub = ctx["subscription"]
    if sub.get("status") == state.PAUSED:
        return {"status": state.PAUSED}
    state.ensure_transition(sub.get("status"), state.PAUSED)
    ctx["adapter"].pause(sub["provider_subscription_id"])
    updated = ledger.transition_subscription(sub, state.PAUSED, {"paused_at": ledger.service.now_iso()})
    return {"status": updated.get("status", state.PAUSED)}


def _resume(ctx: Dict[str, Any]) -> Dict[str, Any]:
    sub = ctx["subscription"]
    if sub.get("status") == state.ACTIVE:
        return {"status": state.ACTIVE}
    if sub.get("status") != state.PAUSED:
        raise ValidationError(f"Cannot resume a subscription in status {sub.get('status')}")
    ctx["adapter"].resume(sub["provider_subscription_id"])
    updated = ledger.transition_subscription(sub, state.ACTIVE, {"paused_at": None})
    return {"status": updated.get("status", state.ACTIVE)}


def _cancel(ctx: Dict[str, Any]) -> Dict[str, Any]:
    """
    Carte: annulation en fin de période (pending_cancellation).
    Portefeuille: annulation immédiate chez PayPal; pending_cancellation si la période payée court encore.
    """
    sub = ctx["subscription"]
    if sub.get("status") in (state.PENDING_CANCELLATION, state.CANCELLED):
        return {"status": sub.get("status")}
    if sub.get("status") == state.PENDING:
        return _cancel_immediately(ctx)
    ctx["adapter"].cancel(sub["provider_subscription_id"], at_period_end=True)
    target = state.PENDING_CANCELLATION
    if ctx["provider"] == "paypal":
        period_end = _parse_ts(sub.get("current_period_end"))
        if not period_end or period_end <= datetime.now(timezone.utc):
            target = state.CANCELLED
    updated = ledger.transition_subscription(sub, target, force=target == state.CANCELLED)
    return {"status": updated.get("status", target)}


def _cancel_immediately(ctx: Dict[str, Any]) -> Dict[str, Any]:
    sub = ctx["subscription"]
    if sub.get("status") == state.CANCELLED:
        return {"status": state.CANCELLED}
    ctx["adapter"].cancel(sub["provider_subscription_id"], at_period_end=False)
    ledger.transition_subscription(sub, state.CANCELLED, force=True)
    return {"status": state.CANCELLED}


def _reactivate(ctx: Dict[str, Any]) -> Dict[str, Any]:
    sub = ctx["subscription"]
    if sub.get("status") != state.PENDING_CANCELLATION:
        raise ValidationError("Only subscriptions pending cancellation can be reactivated")
    result = ctx["adapter"].reactivate(sub["provider_subscription_id"])
    updated = ledger.transition_subscription(sub, state.ACTIVE, {"cancelled_at": None})
    return {"status": updated.get("status", state.ACTIVE), "approvalUrl": result.get("approvalUrl")}


def _update_price(ctx: Dict[str, Any]) -> Dict[str, Any]:
    sub, data = ctx["subscription"], ctx["data"]
    try:
        amount = round(float(data.get("amount") if data.get("amount") is not None else data.get("newAmount")), 2)
    except (TypeError, ValueError):
        raise ValidationError("A valid amount is required")
    if amount <= 0:
        raise ValidationError("Amount must be greater than zero")
    currency = (data.get("currency") or sub.get("currency") or "USD").upper()
    interval = data.get("interval") or sub.get("interval") or "monthly"
    result = ctx["adapter"].update_price(sub["provider_subscription_id"], _product_for(sub), amount, currency, interval)
    ledger.update_subscription_terms(sub, {"amount": amount, "currency": currency, "interval": interval})
    return {"status": sub.get("status"), "approvalUrl": result.get("approvalUrl"), "amount": amount}


def _apply_coupon(ctx: Dict[str, Any]) -> Dict[str, Any]:
    """Remise récurrente: enregistrée aussi chez Stripe pour s'appliquer aux renouvellements."""
    sub, data = ctx["subscription"], ctx["data"]
    code = (data.get("couponCode") or data.get("coupon_code") or "").strip()
    if not code:
        raise ValidationError("Missing couponCode")
    coupon = coupons_repository.get_active_coupon(code)
    if not coupon:
        raise ValidationError("Invalid coupon code")
    product = _product_for(sub)
    coupons.check_coupon(coupon, product_ids=[str(product.get("id"))], product_types=[product.get("product_type") or "subscription"])
    discount = coupons.compute_discount(coupon, float(sub.get("amount") or 0), sub.get("currency"))

    if ctx["provider"] == "stripe":
        adapter = ctx["adapter"]
        stripe_coupon_id = adapter.ensure_coupon(coupon)
        if stripe_coupon_id != coupon.get("stripe_coupon_id"):
            best_effort("coupons.cache_stripe_id", coupons_repository.set_stripe_coupon_id, coupon["id"], stripe_coupon_id)
        adapter.apply_coupon(sub["provider_subscription_id"], stripe_coupon_id)

    ledger.update_subscription_terms(sub, {"coupon_code": coupon.get("code"), "coupon_discount": discount})
    best_effort("coupons.redeem", coupons.redeem, coupon)
    return {"status": sub.get("status"), "couponCode": coupon.get("code"), "couponDiscount": discount}


def _remove_coupon(ctx: Dict[str, Any]) -> Dict[str, Any]:
    sub = ctx["subscription"]
    if ctx["provider"] == "stripe" and sub.get("coupon_code"):
        ctx["adapter"].remove_coupon(sub["provider_subscription_id"])
    ledger.update_subscription_terms(sub, {"coupon_code": None, "coupon_discount": None})
    return {"status": sub.get("status"), "couponCode": None, "couponDiscount": None}


def _update_payment_method(ctx: Dict[str, Any]) -> Dict[str, Any]:
    sub, data = ctx["subscription"], ctx["data"]
    result = ctx["adapter"].update_payment_method(
        sub["provider_subscription_id"],
        sub.get("provider_customer_id"),
        data.get("paymentMethodId"),
        return_url=f"{FRONTEND_URL}/account/subscriptions",
    )
    return {"status": sub.get("status"), **result}


def _charge_now(ctx: Dict[str, Any]) -> Dict[str, Any]:
    """
    Débit immédiat hors cycle (carte uniquement): facture payée, commande enregistrée,
    abonnement actif sur une nouvelle période à partir de maintenant.
    """
    sub = ctx["subscription"]
    if ctx["provider"] != "stripe":
        raise ValidationError("Only card subscriptions can be charged manually")
    if sub.get("status") not in (state.ACTIVE, state.TRIALING):
        raise ValidationError(f"Cannot charge a subscription in status {sub.get('status')}")
    charge = ctx["adapter"].charge_now(sub["provider_subscription_id"])

    now = datetime.now(timezone.utc)
    next_billing = now + timedelta(days=state.period_days(sub.get("interval")))
    updated = ledger.transition_subscription(sub, state.ACTIVE, {
        "current_period_start": now.isoformat(),
        "current_period_end": next_billing.isoformat(),
        "trial_end": None,
    })
    if charge.get("amount_paid"):
        payment_id = charge["payment_id"]
        detail = {}
        if payment_id.startswith(("pi_", "ch_")):
            detail = best_effort("stripe.fee_lookup", ctx["adapter"].fetch_transaction_detail, payment_id) or {}
        ledger.record_order(ledger.order_from_subscription(
            updated,
            provider_payment_id=payment_id,
            amount=charge["amount_paid"],
            currency=charge.get("currency") or sub.get("currency") or "USD",
            fee=detail.get("fee"),
            provider_transaction_id=detail.get("transaction_id"),
        ))
    return {
        "status": updated.get("status", state.ACTIVE),
        "charged": charge.get("amount_paid"),
        "currency": charge.get("currency"),
        "nextBilling": next_billing.isoformat(),
    }


ACTIONS: Dict[str, Callable[[Dict[str, Any]], Dict[str, Any]]] = {

    "pause": _pause,
    "resume": _resume,
    "cancel": _cancel,
    "cancel_immediately": _cancel_immediately,
    "reactivate": _reactivate,
    "update_price": _update_price,
    "apply_coupon": _apply_coupon,
    "remove_coupon": _remove_coupon,
    "update_payment_method": _update_payment_method,
    "charge_now": _charge_now,
}

TERMINAL_SAFE = {"cancel", "cancel_immediately"}


# module billing.subscriptions.service
def manage_subscription(
    user: Dict[str, Any],
    subscription_id: str,
    action: str,
    data: Optional[Dict[str, Any]] = None,
    *,
    stripe_key: Optional[str] = None,
) -> Dict[str, Any]:
    handler = ACTIONS.get(action or "")
    if not handler:
        raise ValidationError(f"Unknown action: {action}")
    if not subscription_id:
        raise ValidationError("Missing subscriptionId")

    subscription = ledger.get_subscription_or_404(subscription_id)
    authorize(user, subscription, action)

    if subscription.get("status") == state.CANCELLED:
        if action in TERMINAL_SAFE:
            return {"success": True, "action": action, "status": state.CANCELLED}
        raise ValidationError("Subscription is cancelled")

    provider = providers.normalize_provider(subscription.get("payment_provider"))
    provider_subscription_id = subscription.get("provider_subscription_id") or ""
    if not provider_subscription_id:
        raise ValidationError("Subscription has no provider reference")
    if provider == "stripe" and provider_subscription_id.startswith("pi_"):
        raise ValidationError("This record references a one-time payment, not a Stripe subscription")

    ctx = {
        "subscription": subscription,
        "provider": provider,
        "adapter": providers.get_adapter(provider, stripe_key),
        "data": data or {},
    }
    logger.info("subscriptions.service action=%s id=%s provider=%s by=%s", action, subscription_id, provider, user.get("id"))
    result = handler(ctx)
    return {"success": True, "action": action, **result}
