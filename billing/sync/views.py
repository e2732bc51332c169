from typing import Any, Dict

from fastapi import APIRouter, Depends

from billing.config import resolve_stripe_secret_key
from billing.utils.security import require_admin
from . import service

router = APIRouter(prefix="/api/v1/sync", tags=["Sync API"])

# module billing.sync.views
@router.post("/subscription-payments")
def sync_subscription_payments(admin: Dict[str, Any] = Depends(require_admin)):
    return service.sync_subscription_payments(stripe_key=resolve_stripe_secret_key())
