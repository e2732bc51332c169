"""
Accès aux comptes acheteurs: auth Supabase (admin API) et table 'profiles'.
"""
from datetime import datetime, timezone
from typing import Any, Dict, Optional
import logging

import billing.infra.supabase_client as supabase_client

logger = logging.getLogger(__name__)


def _user_to_dict(user: Any) -> Dict[str, Any]:
    if isinstance(user, dict):
        return user
    return {
        "id": getattr(user, "id", None),
        "email": getattr(user, "email", None),
        "user_metadata": getattr(user, "user_metadata", None) or {},
    }


def has_admin_role(user_id: str) -> bool:
    """RPC has_role(_user_id, 'admin'); False en cas d'erreur."""
    try:
        res = (
            supabase_client.get_service_supabase()
            .rpc("has_role", {"_user_id": user_id, "_role": "admin"})
            .execute()
        )
        return res.data is True
    except Exception:
        logger.exception("users.repository.has_admin_role failed user_id=%s", user_id)
        return False


def get_user_from_token(access_token: str) -> Dict[str, Any]:
    """Récupère l'utilisateur depuis son access token et normalise {id, email, role, metadata}."""
    res = supabase_client.get_service_supabase().auth.get_user(access_token)
    user = _user_to_dict(getattr(res, "user", None) or {})
    if not user.get("id"):
        return {}
    metadata = user.get("user_metadata") or {}
    is_admin = str(metadata.get("role", "")).lower() == "admin" or has_admin_role(user["id"])
    return {
        "id": user["id"],
        "email": user.get("email"),
        "metadata": metadata,
        "role": "admin" if is_admin else "user",
    }


def get_profile_by_email(email: str) -> Optional[dict]:
    try:
        res = (
            supabase_client.get_service_supabase()
            .table("profiles")
            .select("id, email")
            .eq("email", email)
            .limit(1)
            .execute()
        )
        rows = res.data or []
        return rows[0] if rows else None
    except Exception:
        logger.exception("users.repository.get_profile_by_email failed email=%s", email)
        return None


def find_auth_user_by_email(email: str) -> Optional[dict]:
    """Parcourt la liste des comptes auth (comparaison insensible à la casse)."""
    target = (email or "").lower()
    if not target:
        return None
    try:
        users = supabase_client.get_service_supabase().auth.admin.list_users()
        for u in users or []:
            d = _user_to_dict(u)
            if (d.get("email") or "").lower() == target:
                return d
        return None
    except Exception:
        logger.exception("users.repository.find_auth_user_by_email failed email=%s", email)
        return None


def create_auth_user(email: str, password: str, full_name: Optional[str] = None) -> Dict[str, Any]:
    """Crée un compte auth confirmé. Les erreurs remontent à l'appelant."""
    res = supabase_client.get_service_supabase().auth.admin.create_user({
        "email": email,
        "password": password,
        "email_confirm": True,
        "user_metadata": {"full_name": full_name} if full_name else {},
    })
    return _user_to_dict(getattr(res, "user", None) or {})


def mark_email_verified(user_id: str) -> bool:
    """True si la ligne profiles existe et a été mise à jour."""
    res = (
        supabase_client.get_service_supabase()
        .table("profiles")
        .update({"email_verified": True, "email_verified_at": datetime.now(timezone.utc).isoformat()})
        .eq("id", user_id)
        .execute()
    )
    return bool(res.data)


def upsert_profile(user_id: str, email: str, display_name: Optional[str] = None, email_verified: bool = True) -> bool:
    try:
        payload: Dict[str, Any] = {"id": user_id, "email": (email or "").lower()}
        if display_name:
            payload["display_name"] = display_name
        if email_verified:
            payload["email_verified"] = True
            payload["email_verified_at"] = datetime.now(timezone.utc).isoformat()
        supabase_client.get_service_supabase().table("profiles").upsert(payload, on_conflict="id").execute()
        return True
    except Exception:
        logger.exception("users.repository.upsert_profile failed user_id=%s", user_id)
        return False


def sign_in(email: str, password: str) -> Optional[str]:
    """Ouvre une session (client anon) et retourne l'access token."""
    res = supabase_client.get_supabase().auth.sign_in_with_password({"email": email, "password": password})
    session = getattr(res, "session", None)
    return getattr(session, "access_token", None)
