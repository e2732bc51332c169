"""
Machine à états des abonnements.

pending -> trialing | active ; active <-> paused ; active -> pending_cancellation -> cancelled
active/trialing -> cancelled (remboursement total, suppression prestataire) ; tout état -> cancelled (annulation forcée)
cancelled est terminal.
"""
from typing import Dict, FrozenSet, Optional

from billing.errors import ValidationError

PENDING = "pending"
TRIALING = "trialing"
ACTIVE = "active"
PAUSED = "paused"
PENDING_CANCELLATION = "pending_cancellation"
CANCELLED = "cancelled"

STATES = frozenset({PENDING, TRIALING, ACTIVE, PAUSED, PENDING_CANCELLATION, CANCELLED})

TRANSITIONS: Dict[Optional[str], FrozenSet[str]] = {
    None: frozenset({PENDING, TRIALING, ACTIVE}),
    PENDING: frozenset({TRIALING, ACTIVE, CANCELLED}),
    TRIALING: frozenset({ACTIVE, PAUSED, PENDING_CANCELLATION, CANCELLED}),
    ACTIVE: frozenset({PAUSED, PENDING_CANCELLATION, CANCELLED}),
    PAUSED: frozenset({ACTIVE, PENDING_CANCELLATION, CANCELLED}),
    PENDING_CANCELLATION: frozenset({ACTIVE, CANCELLED}),
    CANCELLED: frozenset(),
}

# statuts Stripe -> statuts internes
STRIPE_STATUSES = {
    "trialing": TRIALING,
    "active": ACTIVE,
    "past_due": ACTIVE,
    "incomplete": PENDING,
    "paused": PAUSED,
    "canceled": CANCELLED,
    "incomplete_expired": CANCELLED,
    "unpaid": CANCELLED,
}

# statuts PayPal -> statuts internes
PAYPAL_STATUSES = {
    "APPROVAL_PENDING": PENDING,
    "APPROVED": PENDING,
    "ACTIVE": ACTIVE,
    "SUSPENDED": PAUSED,
    "CANCELLED": CANCELLED,
    "EXPIRED": CANCELLED,
}


def can_transition(current: Optional[str], target: str) -> bool:
    if current == target:
        return True
    return target in TRANSITIONS.get(current, frozenset())


def ensure_transition(current: Optional[str], target: str) -> None:
    """Lève ValidationError si la transition est interdite (ex: depuis cancelled)."""
    if target not in STATES:
        raise ValidationError(f"Unknown subscription status: {target}")
    if not can_transition(current, target):
        raise ValidationError(f"Cannot change subscription from {current} to {target}")


def from_stripe(status: Optional[str], cancel_at_period_end: bool = False) -> str:
    mapped = STRIPE_STATUSES.get(status or "", PENDING)
    if mapped in (ACTIVE, TRIALING) and cancel_at_period_end:
        return PENDING_CANCELLATION
    return mapped


def from_paypal(status: Optional[str]) -> str:
    return PAYPAL_STATUSES.get((status or "").upper(), PENDING)


# durée d'une période de facturation (jours), pour les dates calculées localement
INTERVAL_DAYS = {
    "daily": 1,
    "weekly": 7,
    "monthly": 30,
    "annual": 365,
    "yearly": 365,
}


def period_days(interval: Optional[str]) -> int:
    return INTERVAL_DAYS.get((interval or "monthly").lower(), 30)
