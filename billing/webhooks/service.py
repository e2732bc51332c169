"""
Réception des webhooks prestataires.

- signature invalide (ou non vérifiable): ValidationError -> 400
- toute autre erreur de traitement: journalisée, réponse 200 {"received": true}
"""
from typing import Any, Dict, Mapping, Optional
import json
import logging

from billing import config, providers
from billing.errors import ProviderRejected, ValidationError
from .paypal_events import handle_paypal_event
from .stripe_events import handle_stripe_event

logger = logging.getLogger(__name__)

RECEIVED = {"received": True}


def _processed(label: str, fn, *args) -> Dict[str, Any]:
    try:
        result = fn(*args)
    except Exception:
        logger.exception("webhooks.service %s processing failed", label)
        return dict(RECEIVED)
    return {**RECEIVED, **(result or {})}


# module billing.webhooks.service
def process_stripe_webhook(payload: bytes, signature: Optional[str], *, stripe_key: Optional[str] = None) -> Dict[str, Any]:
    secret = config.STRIPE_WEBHOOK_SECRET
    if not secret:
        raise ValidationError("Stripe webhook secret is not configured")
    if not signature:
        raise ValidationError("Missing Stripe-Signature header")
    adapter = providers.get_adapter("stripe", stripe_key)
    event = adapter.construct_event(payload, signature, secret)
    return _processed("stripe", handle_stripe_event, adapter, event)


def process_paypal_webhook(payload: bytes, headers: Mapping[str, str], *, stripe_key: Optional[str] = None) -> Dict[str, Any]:
    if not config.PAYPAL_WEBHOOK_ID:
        raise ValidationError("PayPal webhook id is not configured")
    try:
        event = json.loads(payload or b"{}")
    except ValueError as e:
        raise ValidationError("Invalid webhook payload") from e
    adapter = providers.get_adapter("paypal", stripe_key)
    try:
        verified = adapter.verify_webhook_signature(dict(headers), event, config.PAYPAL_WEBHOOK_ID)
    except ProviderRejected as e:
        logger.warning("webhooks.service paypal verification failed: %s", e.message)
        verified = False
    if not verified:
        raise ValidationError("Invalid PayPal webhook signature")
    return _processed("paypal", handle_paypal_event, event)
