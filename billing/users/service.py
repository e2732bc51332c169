# module billing.users.service
"""
Résolution du compte acheteur au moment de l'achat.

- Recherche par profiles.email, puis dans les comptes auth, sinon création du compte
- Mot de passe temporaire généré si l'acheteur n'en a pas fourni (renvoyé une seule fois)
- email_verified posé après création, en attendant le trigger qui crée la ligne profiles
"""
import logging
import secrets
from dataclasses import dataclass
from typing import Optional

from billing.errors import ValidationError
from billing.utils.best_effort import best_effort
from billing.utils.retry import PROFILE_TRIGGER_POLICY, retry_until
from . import repository

logger = logging.getLogger(__name__)


@dataclass
class BuyerAccount:
    user_id: str
    is_new: bool = False
    generated_password: Optional[str] = None


def find_user_id(email: str) -> Optional[str]:
    if not email:
        return None
    profile = repository.get_profile_by_email(email)
    if profile and profile.get("id"):
        return str(profile["id"])
    user = repository.find_auth_user_by_email(email)
    if user and user.get("id"):
        return str(user["id"])
    return None


def _verify_new_profile(user_id: str, email: str, full_name: Optional[str], sleep=None) -> None:
    kwargs = {"sleep": sleep} if sleep else {}
    ok = retry_until(
        lambda: repository.mark_email_verified(user_id),
        bool,
        attempts=PROFILE_TRIGGER_POLICY.attempts,
        delay=PROFILE_TRIGGER_POLICY.delay,
        label="profiles.email_verified",
        **kwargs,
    )
    if not ok:
        logger.info("users.service profile trigger not observed, upserting user_id=%s", user_id)
        repository.upsert_profile(user_id, email, display_name=full_name or email.split("@")[0])


def resolve_buyer(email: str, password: Optional[str] = None, full_name: Optional[str] = None, sleep=None) -> BuyerAccount:
    """
    Retourne le compte de l'acheteur, en le créant si nécessaire.
    La création de compte fait partie du chemin essentiel: ses erreurs remontent.
    """
    email = (email or "").strip()
    if not email:
        raise ValidationError("email is required")

    existing = find_user_id(email)
    if existing:
        logger.info("users.service existing user found user_id=%s", existing)
        return BuyerAccount(user_id=existing)

    generated = None
    if not password:
        generated = secrets.token_urlsafe(12)
        password = generated
    try:
        user = repository.create_auth_user(email, password, full_name)
    except Exception as e:
        raise ValidationError(f"Failed to create user: {e}")
    user_id = user.get("id")
    if not user_id:
        raise ValidationError("Failed to create user")
    logger.info("users.service new user created user_id=%s", user_id)

    best_effort("profiles.email_verified", _verify_new_profile, str(user_id), email, full_name, sleep)
    return BuyerAccount(user_id=str(user_id), is_new=True, generated_password=generated)


def issue_access_token(email: str, password: Optional[str]) -> Optional[str]:
    if not (email and password):
        return None
    return best_effort("auth.sign_in", repository.sign_in, email, password)
