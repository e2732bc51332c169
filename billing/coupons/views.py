from typing import List

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from billing import pricing
from billing.errors import ValidationError
from billing.utils.rate_limit import optional_rate_limit
from . import service

router = APIRouter(prefix="/api/v1/coupons", tags=["Coupons API"])


class ValidateCouponRequest(BaseModel):
    code: str = Field(min_length=1)
    productIds: List[str] = []

# module billing.coupons.views
@router.post("/validate", dependencies=[Depends(optional_rate_limit(times=20, seconds=60))])
def validate(req: ValidateCouponRequest):
    """
    Réponse {coupon: {...}} si le code est utilisable pour ces produits,
    sinon {success: false, error} (code 200: le front affiche simplement le message).
    """
    products = pricing.get_products(req.productIds) if req.productIds else []
    try:
        return {"coupon": service.validate_coupon(req.code, products)}
    except ValidationError as e:
        return {"success": False, "error": e.message}
