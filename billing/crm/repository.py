"""
Tables du domaine email-marketing: contacts, tags, séquences, paniers abandonnés.
Les fonctions relèvent les erreurs: l'appelant les enveloppe dans best_effort().
"""
from datetime import datetime, timezone
from typing import List, Optional

import billing.infra.supabase_client as supabase_client


def _client():
    return supabase_client.get_service_supabase()

# module billing.crm.repository
def find_contact_id(user_id: Optional[str] = None, email: Optional[str] = None) -> Optional[str]:
    q = _client().table("email_contacts").select("id")
    if user_id:
        q = q.eq("user_id", user_id)
    elif email:
        q = q.eq("email", email.lower())
    else:
        return None
    rows = q.limit(1).execute().data or []
    return rows[0]["id"] if rows else None


def upsert_contact_tag(contact_id: str, tag_id: str) -> None:
    _client().table("contact_tags").upsert(
        {"contact_id": contact_id, "tag_id": tag_id},
        on_conflict="contact_id,tag_id",
    ).execute()


def delete_contact_tag(contact_id: str, tag_id: str) -> None:
    _client().table("contact_tags").delete().eq("contact_id", contact_id).eq("tag_id", tag_id).execute()


def list_purchase_sequences() -> List[dict]:
    res = (
        _client()
        .table("email_sequences")
        .select("id")
        .eq("trigger_type", "purchase")
        .eq("is_active", True)
        .execute()
    )
    return res.data or []


def first_step_delay_minutes(sequence_id: str) -> int:
    rows = (
        _client()
        .table("email_sequence_steps")
        .select("delay_minutes")
        .eq("sequence_id", sequence_id)
        .order("step_order")
        .limit(1)
        .execute()
        .data
        or []
    )
    return int(rows[0].get("delay_minutes") or 0) if rows else 0


def insert_sequence_enrollment(row: dict) -> None:
    _client().table("email_sequence_enrollments").insert(row).execute()


def mark_cart_recovered(user_id: Optional[str], email: Optional[str]) -> None:
    filters = []
    if user_id:
        filters.append(f"user_id.eq.{user_id}")
    if email:
        filters.append(f"email.eq.{email.lower()}")
    if not filters:
        return
    (
        _client()
        .table("cart_abandonment")
        .update({"recovered_at": datetime.now(timezone.utc).isoformat()})
        .or_(",".join(filters))
        .is_("recovered_at", "null")
        .execute()
    )
