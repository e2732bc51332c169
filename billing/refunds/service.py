"""
Cas d'usage 'process-refund' (admin).

Ordre des étapes: contrôle du montant sur le ledger, remboursement chez le prestataire,
puis écriture du ledger. Un refus du prestataire ne modifie pas la commande.
"""
from typing import Any, Dict, Optional
import logging

from billing import crm, ledger, pricing, providers
from billing.utils.best_effort import best_effort

logger = logging.getLogger(__name__)


def _refund_handle(order: Dict[str, Any], provider: str) -> str:
    """Identifiant à rembourser: la transaction PayPal connue prime sur l'id d'abonnement I-..."""
    payment_id = order.get("provider_payment_id") or ""
    if provider == "paypal" and payment_id.startswith("I-") and order.get("provider_transaction_id"):
        return order["provider_transaction_id"]
    return payment_id

# module billing.refunds.service
def process_refund(
    order_id: str,
    amount: Optional[float] = None,
    reason: Optional[str] = None,
    *,
    stripe_key: Optional[str] = None,
) -> Dict[str, Any]:
    order = ledger.get_order_or_404(order_id)
    refund_amount = ledger.plan_refund(order, amount)
    provider = providers.normalize_provider(order.get("payment_provider"))
    adapter = providers.get_adapter(provider, stripe_key)
    handle = _refund_handle(order, provider)
    logger.info("refunds.service order_id=%s provider=%s handle=%s amount=%s", order_id, provider, handle, refund_amount)

    refund = adapter.issue_refund(handle, refund_amount, order.get("currency"), reason)

    updated, is_full = ledger.apply_refund(order, refund_amount, refund_id=refund.get("id"), reason=reason)
    if is_full:
        product = pricing.get_product(order.get("product_id")) if order.get("product_id") else None
        best_effort("crm.after_refund", crm.after_refund, order.get("user_id"), order.get("email"), product)
    return {
        "success": True,
        "refundId": refund.get("id"),
        "refundAmount": refund_amount,
        "isFullRefund": is_full,
        "order": updated,
    }
