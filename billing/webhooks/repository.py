from typing import Any, Dict, Optional
import logging

import billing.infra.supabase_client as supabase_client

logger = logging.getLogger(__name__)


def _client():
    return supabase_client.get_service_supabase()

# module billing.webhooks.repository
def find_pending_referral(referred_user_id: str) -> Optional[dict]:
    """Parrainage au statut 'signed_up' pour l'utilisateur parrainé."""
    try:
        res = (
            _client()
            .table("referrals")
            .select("id, referrer_id")
            .eq("referred_user_id", referred_user_id)
            .eq("status", "signed_up")
            .limit(1)
            .execute()
        )
        rows = res.data or []
        return rows[0] if rows else None
    except Exception:
        logger.exception("webhooks.repository.find_pending_referral failed user_id=%s", referred_user_id)
        return None


def credit_already_awarded(reference_id: str) -> bool:
    """True si une transaction de crédit existe déjà pour ce paiement (ou si la lecture échoue)."""
    try:
        res = (
            _client()
            .table("credit_transactions")
            .select("id")
            .eq("reference_id", reference_id)
            .limit(1)
            .execute()
        )
        return bool(res.data)
    except Exception:
        logger.exception("webhooks.repository.credit_already_awarded failed reference_id=%s", reference_id)
        return True


def award_referral_credit(referrer_id: str, referred_user_id: str, amount: int, description: str, reference_id: str) -> Any:
    """RPC atomique award_referral_credit; lève en cas d'erreur (appelée via best_effort)."""
    res = _client().rpc("award_referral_credit", {
        "p_referrer_id": referrer_id,
        "p_referred_user_id": referred_user_id,
        "p_amount": amount,
        "p_description": description,
        "p_reference_id": reference_id,
    }).execute()
    return res.data
