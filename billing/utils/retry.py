"""
Boucles de réessai bornées (nombre d'essais et délai fixes).

Utilisées aux endroits précis où l'on attend une cohérence éventuelle:
- frais PayPal pas encore disponibles juste après l'activation
- ligne 'profiles' créée par trigger après la création du compte auth
La politique est un paramètre explicite de chaque appel.
"""
import logging
import time
from typing import Any, Callable, NamedTuple, Optional, Tuple, Type

logger = logging.getLogger(__name__)


class RetryPolicy(NamedTuple):
    attempts: int
    delay: float


WALLET_FEE_POLICY = RetryPolicy(attempts=3, delay=2.0)
PROFILE_TRIGGER_POLICY = RetryPolicy(attempts=5, delay=0.5)
SIDE_EFFECT_POLICY = RetryPolicy(attempts=3, delay=0.3)


def retry_call(
    fn: Callable[[], Any],
    *,
    attempts: int,
    delay: float,
    label: str,
    retry_on: Tuple[Type[BaseException], ...] = (Exception,),
    sleep: Callable[[float], None] = time.sleep,
) -> Any:
    """
    Appelle fn() jusqu'à `attempts` fois, en attendant `delay` secondes entre deux essais.
    Retourne le premier résultat obtenu sans exception; relève la dernière exception sinon.
    """
    if attempts < 1:
        raise ValueError("attempts doit être >= 1")
    for attempt in range(1, attempts + 1):
        try:
            return fn()
        except retry_on as e:
            if attempt == attempts:
                logger.warning("retry %s abandoned after %s attempts: %s", label, attempts, e)
                raise
            logger.info("retry %s attempt=%s/%s failed: %s", label, attempt, attempts, e)
            sleep(delay)


def retry_until(
    fn: Callable[[], Any],
    predicate: Callable[[Any], bool],
    *,
    attempts: int,
    delay: float,
    label: str,
    sleep: Callable[[float], None] = time.sleep,
) -> Optional[Any]:
    """
    Appelle fn() jusqu'à ce que predicate(résultat) soit vrai.
    Les exceptions comptent comme un essai raté. Retourne None si aucun essai n'aboutit.
    """
    for attempt in range(1, attempts + 1):
        try:
            result = fn()
            if predicate(result):
                return result
            logger.info("retry %s attempt=%s/%s not ready", label, attempt, attempts)
        except Exception as e:
            logger.info("retry %s attempt=%s/%s failed: %s", label, attempt, attempts, e)
        if attempt < attempts:
            sleep(delay)
    logger.warning("retry %s gave up after %s attempts", label, attempts)
    return None
