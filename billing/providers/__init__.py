"""
Module 'providers': adaptateurs de paiement (carte = Stripe, portefeuille = PayPal).

Sélection par le discriminant `payment_provider` stocké sur chaque commande/abonnement.
"""
from typing import Optional, Union

from billing import config
from billing.errors import ValidationError
from .card import CardAdapter
from .wallet import WalletAdapter

Adapter = Union[CardAdapter, WalletAdapter]

ALIASES = {
    "stripe": "stripe",
    "card": "stripe",
    "paypal": "paypal",
    "wallet": "paypal",
}


def normalize_provider(value: Optional[str]) -> str:
    provider = ALIASES.get((value or "").strip().lower())
    if not provider:
        raise ValidationError(f"Unsupported payment provider: {value}")
    return provider


def _card(stripe_key: Optional[str]) -> CardAdapter:
    return CardAdapter(stripe_key or config.resolve_stripe_secret_key())


def _wallet(stripe_key: Optional[str]) -> WalletAdapter:
    key = stripe_key or config.resolve_stripe_secret_key()
    return WalletAdapter(config.paypal_base_url(key), config.PAYPAL_CLIENT_ID, config.PAYPAL_SECRET)


FACTORIES = {
    "stripe": _card,
    "paypal": _wallet,
}


def get_adapter(provider: Optional[str], stripe_key: Optional[str] = None) -> Adapter:
    """Adaptateur du prestataire, construit pour la requête courante (clé résolue injectée)."""
    return FACTORIES[normalize_provider(provider)](stripe_key)


__all__ = [
    "CardAdapter",
    "WalletAdapter",
    "Adapter",
    "normalize_provider",
    "get_adapter",
]
