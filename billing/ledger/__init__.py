"""
Module 'ledger': commandes et abonnements (unique chemin d'écriture).
"""

from .service import (
    build_order,
    record_order,
    record_basket_orders,
    backfill_fee,
    plan_refund,
    apply_refund,
    create_subscription_record,
    transition_subscription,
    update_subscription_terms,
    hard_delete_subscription,
    hard_delete_order,
    order_from_subscription,
    record_wallet_transaction,
    get_subscription_or_404,
    get_order_or_404,
    fee_column,
    net_amount,
    apply_provider_status,
)

__all__ = [
    "build_order",
    "record_order",
    "record_basket_orders",
    "backfill_fee",
    "plan_refund",
    "apply_refund",
    "create_subscription_record",
    "transition_subscription",
    "update_subscription_terms",
    "hard_delete_subscription",
    "hard_delete_order",
    "order_from_subscription",
    "record_wallet_transaction",
    "get_subscription_or_404",
    "get_order_or_404",
    "fee_column",
    "net_amount",
    "apply_provider_status",
]
