from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query

from billing.config import resolve_stripe_secret_key
from billing.utils.security import require_admin
from . import service as admin_service

router = APIRouter(prefix="/api/v1/admin", tags=["Admin"])

# module billing.admin.views
@router.get("/orders")
def admin_list_orders(
    limit: int = Query(default=100, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    status: Optional[str] = None,
    user: Dict[str, Any] = Depends(require_admin),
):
    return admin_service.list_orders(limit=limit, offset=offset, status=status)


@router.delete("/orders/{order_id}")
def admin_delete_order(order_id: str, user: Dict[str, Any] = Depends(require_admin)):
    return admin_service.delete_order(order_id)


@router.get("/subscriptions")
def admin_list_subscriptions(
    limit: int = Query(default=100, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    status: Optional[str] = None,
    user: Dict[str, Any] = Depends(require_admin),
):
    return admin_service.list_subscriptions(limit=limit, offset=offset, status=status)


@router.delete("/subscriptions/{subscription_id}")
def admin_delete_subscription(subscription_id: str, user: Dict[str, Any] = Depends(require_admin)):
    return admin_service.delete_subscription(subscription_id, stripe_key=resolve_stripe_secret_key())
