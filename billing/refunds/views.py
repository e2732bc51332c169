from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from billing.config import resolve_stripe_secret_key
from billing.utils.rate_limit import optional_rate_limit
from billing.utils.security import require_admin
from . import service

router = APIRouter(prefix="/api/v1/refunds", tags=["Refunds API"])


class RefundRequest(BaseModel):
    orderId: str
    amount: Optional[float] = Field(default=None, gt=0)
    reason: Optional[str] = None

# module billing.refunds.views
@router.post("", dependencies=[Depends(optional_rate_limit(times=20, seconds=60))])
def process_refund(req: RefundRequest, admin: Dict[str, Any] = Depends(require_admin)):
    """Remboursement total (amount absent) ou partiel -> {success, refundId, refundAmount, isFullRefund}."""
    return service.process_refund(req.orderId, req.amount, req.reason, stripe_key=resolve_stripe_secret_key())
