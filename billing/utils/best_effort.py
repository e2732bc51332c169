"""
Wrapper « essayer, journaliser, continuer » pour les effets de bord non essentiels.

Tout appel passé par best_effort() peut échouer silencieusement (log warning).
Liste des étapes concernées: frais, tags CRM, séquences email, emails de confirmation,
crédit de parrainage, panier abandonné, jeton d'accès.
"""
import logging
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)


def best_effort(label: str, fn: Callable[..., Any], *args, **kwargs) -> Optional[Any]:
    try:
        return fn(*args, **kwargs)
    except Exception as e:
        logger.warning("best_effort %s failed: %s", label, e, exc_info=True)
        return None
