"""
Ledger Writer: unique chemin d'écriture des commandes et des abonnements.

Commandes:
- insert-or-backfill sur (provider_payment_id, product_id, payment_provider): une ligne existante
  ne reçoit que les champs encore nuls (frais, net, transaction)
- net_amount = amount - fee dès que les deux sont connus
- panier multi-articles: frais et remise répartis au prorata du brut avant remise
- remboursements cumulés; status=refunded si refund_amount >= amount

Abonnements:
- upsert sur provider_subscription_id
- changements de statut contrôlés par billing.subscriptions.state
- passage à cancelled => révocation des accès dans la même opération
"""
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple
import logging

from billing import entitlements
from billing.errors import BillingError, NotFound, RefundFailed, ValidationError
from billing.subscriptions import state
from billing.utils.money import allocate_proportionally, round2
from . import repository

logger = logging.getLogger(__name__)

FEE_COLUMNS = {
    "stripe": "stripe_fee",
    "paypal": "paypal_fee",
}

BACKFILL_FIELDS = ("net_amount", "provider_transaction_id", "user_id", "subscription_id")

COMPLETED = "completed"
REFUNDED = "refunded"
PARTIAL_REFUND = "partial_refund"


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def fee_column(provider: str) -> str:
    return FEE_COLUMNS.get(provider, "stripe_fee")


def net_amount(amount: Optional[float], fee: Optional[float]) -> Optional[float]:
    if amount is None or fee is None:
        return None
    return round2(float(amount) - float(fee))


# --- Commandes ---

def build_order(
    *,
    provider: str,
    provider_payment_id: str,
    product_id: Optional[str],
    amount: float,
    currency: str,
    email: Optional[str] = None,
    user_id: Optional[str] = None,
    customer_name: Optional[str] = None,
    fee: Optional[float] = None,
    status: str = COMPLETED,
    coupon_code: Optional[str] = None,
    coupon_discount: Optional[float] = None,
    subscription_id: Optional[str] = None,
    provider_transaction_id: Optional[str] = None,
) -> Dict[str, Any]:
    row: Dict[str, Any] = {
        "payment_provider": provider,
        "provider_payment_id": provider_payment_id,
        "product_id": product_id,
        "amount": round2(amount),
        "currency": (currency or "USD").upper(),
        "email": (email or "").lower() or None,
        "user_id": user_id,
        "customer_name": customer_name,
        "status": status,
        "coupon_code": coupon_code,
        "coupon_discount": round2(coupon_discount) if coupon_discount else None,
        "subscription_id": subscription_id,
        "provider_transaction_id": provider_transaction_id,
        fee_column(provider): round2(fee) if fee is not None else None,
        "net_amount": net_amount(amount, fee),
    }
    return row


# module billing.ledger.service
def record_order(row: Dict[str, Any]) -> Tuple[Optional[Dict[str, Any]], bool]:
    """
    Insert-or-backfill d'une commande.
    L'insertion s'appuie sur la contrainte unique: un écrivain concurrent qui a inséré en premier
    gagne, la ligne est relue puis complétée.
    Retour: (ligne, créée?) ; (None, False) si l'écriture échoue.
    """
    provider = row["payment_provider"]
    payment_id = row["provider_payment_id"]
    if not payment_id:
        raise ValidationError("provider_payment_id is required")
    existing = repository.find_order(payment_id, row.get("product_id"), provider)
    if not existing:
        created = repository.insert_order(row)
        if created:
            logger.info("ledger.service order created id=%s payment_id=%s amount=%s", created.get("id"), payment_id, row.get("amount"))
            return created, True
        existing = repository.find_order(payment_id, row.get("product_id"), provider)
        if not existing:
            return None, False
        logger.info("ledger.service order inserted concurrently id=%s payment_id=%s", existing.get("id"), payment_id)

    fields: Dict[str, Any] = {}
    column = fee_column(provider)
    if existing.get(column) is None and row.get(column) is not None:
        fields[column] = row[column]
    for name in BACKFILL_FIELDS:
        if existing.get(name) is None and row.get(name) is not None:
            fields[name] = row[name]
    fee = fields.get(column, existing.get(column))
    if existing.get("net_amount") is None and fee is not None:
        fields["net_amount"] = net_amount(existing.get("amount"), fee)
    if not fields:
        return existing, False
    updated = repository.update_order(existing["id"], fields)
    logger.info("ledger.service order backfilled id=%s fields=%s", existing.get("id"), sorted(fields))
    return (updated or {**existing, **fields}), False


def record_basket_orders(
    *,
    provider: str,
    provider_payment_id: str,
    items: List[Dict[str, Any]],
    currency: str,
    total_fee: Optional[float] = None,
    total_discount: float = 0.0,
    extra_discount: float = 0.0,
    coupon_code: Optional[str] = None,
    email: Optional[str] = None,
    user_id: Optional[str] = None,
    customer_name: Optional[str] = None,
) -> List[Dict[str, Any]]:
    """
    Une commande par article d'un paiement groupé.
    items: [{"product_id", "amount"}] avec amount = brut avant remise.
    Frais et remise sont répartis au prorata de ce brut (90/10 et 3 de frais -> 2.70/0.30).
    extra_discount (remise carte) réduit le montant sans être comptée comme remise coupon.
    """
    gross = [float(i.get("amount") or 0) for i in items]
    fees = allocate_proportionally(total_fee, gross) if total_fee is not None else [None] * len(items)
    discounts = allocate_proportionally(total_discount or 0.0, gross)
    extras = allocate_proportionally(extra_discount or 0.0, gross)
    orders: List[Dict[str, Any]] = []
    for item, item_gross, fee, discount, extra in zip(items, gross, fees, discounts, extras):
        charged = round2(item_gross - discount - extra)
        row = build_order(
            provider=provider,
            provider_payment_id=provider_payment_id,
            product_id=item.get("product_id"),
            amount=charged,
            currency=currency,
            email=email,
            user_id=user_id,
            customer_name=customer_name,
            fee=fee,
            coupon_code=coupon_code if discount else None,
            coupon_discount=discount or None,
        )
        order, _ = record_order(row)
        if order:
            orders.append(order)
    return orders


def backfill_fee(order: Dict[str, Any], fee: Optional[float], transaction_id: Optional[str] = None) -> Optional[Dict[str, Any]]:
    """Complète les frais d'une commande existante (uniquement s'ils sont encore nuls)."""
    provider = order.get("payment_provider") or "stripe"
    row = {
        "payment_provider": provider,
        "provider_payment_id": order.get("provider_payment_id"),
        "product_id": order.get("product_id"),
        fee_column(provider): round2(fee) if fee is not None else None,
        "provider_transaction_id": transaction_id,
    }
    result, _ = record_order(row)
    return result


def plan_refund(order: Dict[str, Any], amount: Optional[float]) -> float:
    """
    Montant à rembourser (reste dû si amount est None).
    RefundFailed si la commande n'est pas remboursable ou si le montant dépasse le reste.
    """
    if order.get("status") == REFUNDED:
        raise RefundFailed("Order is already fully refunded")
    if order.get("status") not in (COMPLETED, PARTIAL_REFUND):
        raise RefundFailed(f"Order cannot be refunded (status={order.get('status')})")
    total = float(order.get("amount") or 0)
    already = float(order.get("refund_amount") or 0)
    remaining = round2(total - already)
    refund = remaining if amount is None else round2(float(amount))
    if refund <= 0:
        raise RefundFailed("Refund amount must be positive")
    if refund > remaining + 0.001:
        raise RefundFailed(f"Refund amount exceeds refundable balance ({remaining:.2f})")
    return refund


def apply_refund(
    order: Dict[str, Any],
    refund_amount: float,
    *,
    refund_id: Optional[str] = None,
    reason: Optional[str] = None,
) -> Tuple[Dict[str, Any], bool]:
    """
    Enregistre un remboursement (cumulatif).
    Remboursement total: commande refunded, abonnement lié annulé, accès révoqués.
    Retour: (commande mise à jour, remboursement total?)
    """
    total = float(order.get("amount") or 0)
    cumulative = round2(float(order.get("refund_amount") or 0) + float(refund_amount))
    is_full = cumulative >= total
    fields = {
        "refund_amount": cumulative,
        "status": REFUNDED if is_full else PARTIAL_REFUND,
        "refund_reason": reason,
        "refund_id": refund_id,
        "refunded_at": now_iso(),
    }
    updated = repository.update_order(order["id"], fields)
    if updated is None:
        logger.error(
            "ledger.service refund not recorded order_id=%s refund_id=%s amount=%s cumulative=%s",
            order.get("id"), refund_id, refund_amount, cumulative,
        )
        updated = {**order, **fields}
    logger.info("ledger.service refund applied order_id=%s cumulative=%s full=%s", order.get("id"), cumulative, is_full)

    if is_full:
        subscription_id = order.get("subscription_id")
        subscription = repository.get_subscription(subscription_id) if subscription_id else None
        if subscription:
            transition_subscription(subscription, state.CANCELLED, force=True)
        elif order.get("user_id") and order.get("product_id"):
            entitlements.revoke_for_product(order["user_id"], order["product_id"])
    return updated, is_full


# --- Abonnements ---

def create_subscription_record(row: Dict[str, Any]) -> Dict[str, Any]:
    """Crée (ou rejoint) la ligne d'abonnement pour provider_subscription_id."""
    state.ensure_transition(None, row.get("status") or state.PENDING)
    existing = repository.get_subscription_by_provider_id(row["provider_subscription_id"]) if row.get("provider_subscription_id") else None
    if existing:
        logger.info("ledger.service subscription already recorded id=%s", existing.get("id"))
        return existing
    saved = repository.upsert_subscription(row)
    if not saved:
        raise BillingError("Failed to record subscription")
    logger.info("ledger.service subscription recorded id=%s status=%s", saved.get("id"), saved.get("status"))
    return saved


def transition_subscription(
    subscription: Dict[str, Any],
    target: str,
    fields: Optional[Dict[str, Any]] = None,
    *,
    force: bool = False,
) -> Dict[str, Any]:
    """
    Change le statut d'un abonnement selon la machine à états.
    - même statut: seuls les champs fournis sont mis à jour
    - cancelled est terminal: aucune transition sortante, même forcée
    - force autorise l'annulation depuis tout état non terminal
    - passage à cancelled: révocation des accès
    """
    current = subscription.get("status")
    if current == state.CANCELLED and target != state.CANCELLED:
        raise ValidationError("Subscription is cancelled")
    if not (force and target == state.CANCELLED):
        state.ensure_transition(current, target)

    updates = dict(fields or {})
    if current != target:
        updates["status"] = target
        if target == state.CANCELLED:
            updates.setdefault("cancelled_at", now_iso())
    if not updates:
        return subscription
    updated = repository.update_subscription(subscription["id"], updates)
    if updated is None:
        raise BillingError("Failed to update subscription")
    logger.info("ledger.service subscription id=%s %s -> %s", subscription.get("id"), current, target)

    if target == state.CANCELLED and current != state.CANCELLED:
        user_id = subscription.get("user_id")
        product_id = subscription.get("product_id")
        if user_id and product_id:
            entitlements.revoke_for_product(user_id, product_id)
    return updated


def update_subscription_terms(subscription: Dict[str, Any], fields: Dict[str, Any]) -> Dict[str, Any]:
    """Montant / coupon sans changement de statut; refusé sur un abonnement annulé."""
    if subscription.get("status") == state.CANCELLED:
        raise ValidationError("Subscription is cancelled")
    updated = repository.update_subscription(subscription["id"], fields)
    if updated is None:
        raise BillingError("Failed to update subscription")
    return updated


def get_subscription_or_404(subscription_id: str) -> Dict[str, Any]:
    sub = repository.get_subscription(subscription_id)
    if not sub:
        raise NotFound("Subscription not found")
    return sub


def get_order_or_404(order_id: str) -> Dict[str, Any]:
    order = repository.get_order(order_id)
    if not order:
        raise NotFound("Order not found")
    return order


def hard_delete_subscription(subscription: Dict[str, Any]) -> bool:
    """Suppression définitive: révocation, détachement des commandes (pas de cascade), puis suppression."""
    user_id = subscription.get("user_id")
    product_id = subscription.get("product_id")
    if user_id and product_id:
        entitlements.revoke_for_product(user_id, product_id)
    if not repository.unlink_subscription_orders(subscription["id"]):
        raise BillingError("Failed to unlink orders from subscription")
    deleted = repository.delete_subscription(subscription["id"])
    logger.info("ledger.service subscription hard-deleted id=%s ok=%s", subscription.get("id"), deleted)
    return deleted


def hard_delete_order(order: Dict[str, Any]) -> bool:
    deleted = repository.delete_order(order["id"])
    logger.info("ledger.service order hard-deleted id=%s ok=%s", order.get("id"), deleted)
    return deleted


def order_from_subscription(subscription: Dict[str, Any], **overrides: Any) -> Dict[str, Any]:
    """Ligne de commande d'un paiement d'abonnement (montant, devise, coupon repris de l'abonnement)."""
    params: Dict[str, Any] = {
        "provider": subscription.get("payment_provider") or "stripe",
        "provider_payment_id": subscription.get("provider_subscription_id"),
        "product_id": subscription.get("product_id"),
        "amount": float(subscription.get("amount") or 0),
        "currency": subscription.get("currency") or "USD",
        "email": subscription.get("customer_email"),
        "user_id": subscription.get("user_id"),
        "customer_name": subscription.get("customer_name"),
        "coupon_code": subscription.get("coupon_code"),
        "coupon_discount": subscription.get("coupon_discount"),
        "subscription_id": subscription.get("id"),
    }
    params.update(overrides)
    return build_order(**params)


def record_wallet_transaction(subscription: Dict[str, Any], tx: Dict[str, Any]) -> Tuple[Optional[Dict[str, Any]], bool]:
    """
    Paiement PayPal d'un abonnement (transaction normalisée {id, gross, fee, currency}).
    - transaction déjà connue (payment id ou transaction id): complétée
    - commande initiale enregistrée sous l'id I-...: rattachée à cette transaction
    - sinon: nouvelle commande
    """
    tx_id = tx.get("id")
    if not tx_id:
        raise ValidationError("transaction id is required")
    column = fee_column("paypal")
    existing = repository.find_order_by_transaction(tx_id, "paypal")
    if existing is None:
        existing = repository.find_unresolved_subscription_order(subscription["id"], subscription.get("provider_subscription_id") or "")
    if existing:
        fields: Dict[str, Any] = {}
        if existing.get("provider_transaction_id") is None and existing.get("provider_payment_id") != tx_id:
            fields["provider_transaction_id"] = tx_id
        if existing.get(column) is None and tx.get("fee") is not None:
            fields[column] = round2(tx["fee"])
            if existing.get("net_amount") is None:
                fields["net_amount"] = net_amount(existing.get("amount"), tx["fee"])
        if fields:
            existing = repository.update_order(existing["id"], fields) or {**existing, **fields}
        return existing, False

    amount = tx.get("gross") if tx.get("gross") is not None else subscription.get("amount")
    row = order_from_subscription(
        subscription,
        provider_payment_id=tx_id,
        amount=float(amount or 0),
        currency=tx.get("currency") or subscription.get("currency") or "USD",
        fee=tx.get("fee"),
    )
    return record_order(row)


def apply_provider_status(
    subscription: Dict[str, Any],
    target: str,
    fields: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """
    Aligne l'abonnement sur le statut rapporté par le prestataire (webhook ou synchronisation).
    - annulation côté prestataire: toujours appliquée (forcée)
    - transition interdite: statut inchangé, seuls les champs sont mis à jour
    - pending -> active/trialing: accès accordés
    """
    current = subscription.get("status")
    if current == state.CANCELLED:
        return subscription
    if target == state.CANCELLED:
        return transition_subscription(subscription, target, fields, force=True)
    if not state.can_transition(current, target):
        logger.warning("ledger.service ignored provider status id=%s %s -> %s", subscription.get("id"), current, target)
        target = current
    updated = transition_subscription(subscription, target, fields)
    if current == state.PENDING and target in (state.ACTIVE, state.TRIALING):
        user_id = updated.get("user_id") or subscription.get("user_id")
        if user_id and subscription.get("product_id"):
            entitlements.grant_for_product(user_id, {"id": subscription["product_id"]}, source="subscription")
    return updated
