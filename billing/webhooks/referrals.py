"""
Crédit de parrainage sur premier paiement.

- abonnement, premier paiement: 200% du montant
- achat unique: 30% du montant
- renouvellements: rien
Montants en centimes, idempotent sur credit_transactions.reference_id.
"""
from typing import Optional
import logging

from billing.users import repository as users_repository
from . import repository

logger = logging.getLogger(__name__)

SUBSCRIPTION_CREDIT_MULTIPLIER = 2.0
ONE_TIME_CREDIT_RATE = 0.30


def referral_credit_amount(amount_cents: int, is_subscription: bool, is_first_payment: bool) -> Optional[int]:
    if is_subscription:
        if not is_first_payment:
            return None
        return int(round(amount_cents * SUBSCRIPTION_CREDIT_MULTIPLIER))
    return int(round(amount_cents * ONE_TIME_CREDIT_RATE))


def award_for_payment(
    *,
    email: Optional[str],
    amount_cents: int,
    payment_id: str,
    is_subscription: bool,
    is_first_payment: bool,
    product_name: Optional[str] = None,
) -> Optional[int]:
    """Retourne le crédit accordé (centimes) ou None si rien n'est dû."""
    if not email or not payment_id or not amount_cents:
        return None
    credit = referral_credit_amount(amount_cents, is_subscription, is_first_payment)
    if not credit:
        return None
    profile = users_repository.get_profile_by_email(email.lower())
    if not profile:
        logger.info("webhooks.referrals no profile for email=%s", email)
        return None
    referral = repository.find_pending_referral(profile["id"])
    if not referral:
        return None
    if repository.credit_already_awarded(payment_id):
        logger.info("webhooks.referrals already awarded payment_id=%s", payment_id)
        return None

    if is_subscription:
        description = f"Referral reward: {product_name or 'Membership'} (200% first month)"
    else:
        description = f"Referral reward: {product_name or 'Course purchase'} (30%)"
    repository.award_referral_credit(referral["referrer_id"], profile["id"], credit, description, payment_id)
    logger.info("webhooks.referrals awarded referrer_id=%s amount=%s payment_id=%s", referral["referrer_id"], credit, payment_id)
    return credit
