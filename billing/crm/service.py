"""
Effets de bord CRM après un achat ou un remboursement. Tous non bloquants:
chaque étape passe par best_effort() et ne fait jamais échouer le paiement.
"""
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional
import logging

from billing.utils.best_effort import best_effort
from billing.utils.retry import SIDE_EFFECT_POLICY, retry_call
from . import repository

logger = logging.getLogger(__name__)


def _assign_purchase_tag(user_id: Optional[str], email: Optional[str], tag_id: str) -> bool:
    contact_id = repository.find_contact_id(user_id=user_id) or repository.find_contact_id(email=email)
    if not contact_id:
        logger.info("crm.service no contact for user_id=%s, tag skipped", user_id)
        return False
    retry_call(
        lambda: repository.upsert_contact_tag(contact_id, tag_id),
        attempts=SIDE_EFFECT_POLICY.attempts,
        delay=SIDE_EFFECT_POLICY.delay,
        label="crm.purchase_tag",
    )
    logger.info("crm.service purchase tag assigned contact_id=%s tag_id=%s", contact_id, tag_id)
    return True


def _enroll_purchase_sequences(user_id: Optional[str], email: str, product: Dict[str, Any]) -> int:
    sequences = repository.list_purchase_sequences()
    if not sequences:
        return 0
    contact_id = repository.find_contact_id(email=email)
    count = 0
    for seq in sequences:
        delay = repository.first_step_delay_minutes(seq["id"])
        repository.insert_sequence_enrollment({
            "sequence_id": seq["id"],
            "contact_id": contact_id,
            "user_id": user_id,
            "email": email.lower(),
            "status": "active",
            "current_step": 0,
            "next_email_at": (datetime.now(timezone.utc) + timedelta(minutes=delay)).isoformat(),
            "metadata": {
                "source": "purchase",
                "product_id": product.get("id"),
                "course_id": product.get("course_id"),
                "product_name": product.get("name"),
            },
        })
        count += 1
    return count


# module billing.crm.service
def after_purchase(user_id: Optional[str], email: Optional[str], product: Dict[str, Any]) -> None:
    """Panier récupéré, tag d'achat, séquences 'purchase'."""
    best_effort("crm.cart_recovered", repository.mark_cart_recovered, user_id, email)
    tag_id = product.get("purchase_tag_id")
    if tag_id:
        best_effort("crm.purchase_tag", _assign_purchase_tag, user_id, email, tag_id)
    if email:
        best_effort("crm.purchase_sequences", _enroll_purchase_sequences, user_id, email, product)


def after_refund(user_id: Optional[str], email: Optional[str], product: Optional[Dict[str, Any]]) -> None:
    """Retire le tag d'achat si le produit le demande (refund_remove_tag)."""
    if not product or not product.get("refund_remove_tag") or not product.get("purchase_tag_id"):
        return

    def _remove():
        contact_id = repository.find_contact_id(user_id=user_id) or repository.find_contact_id(email=email)
        if contact_id:
            repository.delete_contact_tag(contact_id, product["purchase_tag_id"])
            logger.info("crm.service purchase tag removed contact_id=%s", contact_id)

    best_effort("crm.remove_tag", _remove)
