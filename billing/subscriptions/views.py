from typing import Any, Dict, Literal, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from billing.config import resolve_stripe_secret_key
from billing.utils.rate_limit import optional_rate_limit
from billing.utils.security import require_user
from . import service

router = APIRouter(prefix="/api/v1/subscriptions", tags=["Subscriptions API"])

Action = Literal[
    "pause",
    "resume",
    "cancel",
    "cancel_immediately",
    "reactivate",
    "update_price",
    "apply_coupon",
    "remove_coupon",
    "update_payment_method",
    "charge_now",
]


class ManageSubscriptionRequest(BaseModel):
    action: Action
    subscriptionId: str
    data: Optional[Dict[str, Any]] = None

# module billing.subscriptions.views
@router.post("/manage", dependencies=[Depends(optional_rate_limit(times=30, seconds=60))])
def manage(req: ManageSubscriptionRequest, user: Dict[str, Any] = Depends(require_user)):
    return service.manage_subscription(
        user,
        req.subscriptionId,
        req.action,
        req.data,
        stripe_key=resolve_stripe_secret_key(),
    )
