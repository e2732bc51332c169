from typing import Any, Dict, Iterable, List, Optional
import logging

import billing.infra.supabase_client as supabase_client

logger = logging.getLogger(__name__)


def _client():
    return supabase_client.get_service_supabase()


def _first(res) -> Optional[dict]:
    rows = getattr(res, "data", None) or []
    return rows[0] if rows else None

# module billing.ledger.repository
# --- orders ---

def get_order(order_id: str) -> Optional[dict]:
    try:
        return _first(_client().table("orders").select("*").eq("id", order_id).limit(1).execute())
    except Exception:
        logger.exception("ledger.repository.get_order failed id=%s", order_id)
        return None


def find_order(provider_payment_id: str, product_id: Optional[str], provider: str) -> Optional[dict]:
    """Commande existante pour la clé d'idempotence (provider_payment_id, product_id, provider)."""
    try:
        q = (
            _client()
            .table("orders")
            .select("*")
            .eq("provider_payment_id", provider_payment_id)
            .eq("payment_provider", provider)
        )
        q = q.eq("product_id", product_id) if product_id else q.is_("product_id", "null")
        return _first(q.limit(1).execute())
    except Exception:
        logger.exception("ledger.repository.find_order failed payment_id=%s product_id=%s", provider_payment_id, product_id)
        return None


ORDER_CONFLICT_KEY = "provider_payment_id,product_id,payment_provider"


def insert_order(row: Dict[str, Any]) -> Optional[dict]:
    """
    Insertion protégée par la contrainte unique (provider_payment_id, product_id, payment_provider).
    Ligne déjà présente (écrivain concurrent): rien n'est écrit, retour None.
    """
    try:
        res = (
            _client()
            .table("orders")
            .upsert(row, on_conflict=ORDER_CONFLICT_KEY, ignore_duplicates=True)
            .execute()
        )
        return _first(res)
    except Exception:
        logger.exception("ledger.repository.insert_order failed payment_id=%s", row.get("provider_payment_id"))
        return None


def update_order(order_id: str, fields: Dict[str, Any]) -> Optional[dict]:
    try:
        return _first(_client().table("orders").update(fields).eq("id", order_id).execute())
    except Exception:
        logger.exception("ledger.repository.update_order failed id=%s", order_id)
        return None


def list_orders(limit: int = 100, offset: int = 0, status: Optional[str] = None) -> List[dict]:
    try:
        q = _client().table("orders").select("*").order("created_at", desc=True)
        if status:
            q = q.eq("status", status)
        return q.range(offset, offset + limit - 1).execute().data or []
    except Exception:
        logger.exception("ledger.repository.list_orders failed")
        return []


def list_subscription_orders(subscription_id: str) -> List[dict]:
    try:
        res = _client().table("orders").select("*").eq("subscription_id", subscription_id).execute()
        return res.data or []
    except Exception:
        logger.exception("ledger.repository.list_subscription_orders failed subscription_id=%s", subscription_id)
        return []


def unlink_subscription_orders(subscription_id: str) -> bool:
    try:
        _client().table("orders").update({"subscription_id": None}).eq("subscription_id", subscription_id).execute()
        return True
    except Exception:
        logger.exception("ledger.repository.unlink_subscription_orders failed subscription_id=%s", subscription_id)
        return False


def delete_order(order_id: str) -> bool:
    try:
        res = _client().table("orders").delete().eq("id", order_id).execute()
        return bool(res.data)
    except Exception:
        logger.exception("ledger.repository.delete_order failed id=%s", order_id)
        return False

# --- subscriptions ---

def get_subscription(subscription_id: str) -> Optional[dict]:
    try:
        return _first(_client().table("subscriptions").select("*").eq("id", subscription_id).limit(1).execute())
    except Exception:
        logger.exception("ledger.repository.get_subscription failed id=%s", subscription_id)
        return None


def get_subscription_by_provider_id(provider_subscription_id: str) -> Optional[dict]:
    try:
        return _first(
            _client()
            .table("subscriptions")
            .select("*")
            .eq("provider_subscription_id", provider_subscription_id)
            .limit(1)
            .execute()
        )
    except Exception:
        logger.exception("ledger.repository.get_subscription_by_provider_id failed id=%s", provider_subscription_id)
        return None


def upsert_subscription(row: Dict[str, Any]) -> Optional[dict]:
    """Upsert sur provider_subscription_id: deux écrivains concurrents convergent vers une ligne."""
    try:
        res = (
            _client()
            .table("subscriptions")
            .upsert(row, on_conflict="provider_subscription_id")
            .execute()
        )
        return _first(res)
    except Exception:
        logger.exception("ledger.repository.upsert_subscription failed provider_id=%s", row.get("provider_subscription_id"))
        return None


def update_subscription(subscription_id: str, fields: Dict[str, Any]) -> Optional[dict]:
    try:
        return _first(_client().table("subscriptions").update(fields).eq("id", subscription_id).execute())
    except Exception:
        logger.exception("ledger.repository.update_subscription failed id=%s", subscription_id)
        return None


def list_subscriptions(statuses: Optional[Iterable[str]] = None, limit: int = 500, offset: int = 0) -> List[dict]:
    try:
        q = _client().table("subscriptions").select("*").order("created_at", desc=True)
        if statuses:
            q = q.in_("status", list(statuses))
        return q.range(offset, offset + limit - 1).execute().data or []
    except Exception:
        logger.exception("ledger.repository.list_subscriptions failed")
        return []


def find_open_subscriptions(user_id: str, product_id: str) -> List[dict]:
    try:
        res = (
            _client()
            .table("subscriptions")
            .select("id, status, provider_subscription_id")
            .eq("user_id", user_id)
            .eq("product_id", product_id)
            .neq("status", "cancelled")
            .execute()
        )
        return res.data or []
    except Exception:
        logger.exception("ledger.repository.find_open_subscriptions failed user_id=%s product_id=%s", user_id, product_id)
        return []


def delete_subscription(subscription_id: str) -> bool:
    try:
        res = _client().table("subscriptions").delete().eq("id", subscription_id).execute()
        return bool(res.data)
    except Exception:
        logger.exception("ledger.repository.delete_subscription failed id=%s", subscription_id)
        return False


def find_order_by_transaction(transaction_id: str, provider: str) -> Optional[dict]:
    """Commande dont provider_payment_id ou provider_transaction_id vaut transaction_id."""
    try:
        return _first(
            _client()
            .table("orders")
            .select("*")
            .eq("payment_provider", provider)
            .or_(f"provider_payment_id.eq.{transaction_id},provider_transaction_id.eq.{transaction_id}")
            .limit(1)
            .execute()
        )
    except Exception:
        logger.exception("ledger.repository.find_order_by_transaction failed tx=%s", transaction_id)
        return None


def find_unresolved_subscription_order(subscription_id: str, provider_subscription_id: str) -> Optional[dict]:
    """Commande initiale enregistrée sous l'id d'abonnement, sans transaction encore rattachée."""
    try:
        return _first(
            _client()
            .table("orders")
            .select("*")
            .eq("subscription_id", subscription_id)
            .eq("provider_payment_id", provider_subscription_id)
            .is_("provider_transaction_id", "null")
            .limit(1)
            .execute()
        )
    except Exception:
        logger.exception("ledger.repository.find_unresolved_subscription_order failed subscription_id=%s", subscription_id)
        return None
