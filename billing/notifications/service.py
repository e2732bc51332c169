"""
Emails transactionnels: appels « fire-and-forget » aux edge functions Supabase.
"""
from typing import Any, Dict
import logging

import billing.infra.supabase_client as supabase_client
from billing.utils.best_effort import best_effort

logger = logging.getLogger(__name__)

ORDER_CONFIRMATION = "send-order-confirmation"
RENEWAL = "send-renewal-email"


def _invoke(function_name: str, body: Dict[str, Any]) -> bool:
    supabase_client.get_service_supabase().functions.invoke(function_name, invoke_options={"body": body})
    logger.info("notifications.service %s sent to=%s", function_name, body.get("email"))
    return True

# module billing.notifications.service
def send_order_confirmation(email: str, payload: Dict[str, Any]) -> bool:
    if not email:
        return False
    return bool(best_effort("notifications.order_confirmation", _invoke, ORDER_CONFIRMATION, {"email": email, **payload}))


def send_renewal_email(email: str, payload: Dict[str, Any]) -> bool:
    if not email:
        return False
    return bool(best_effort("notifications.renewal", _invoke, RENEWAL, {"email": email, **payload}))
