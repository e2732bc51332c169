from typing import List, Literal, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, EmailStr, Field

from billing.config import resolve_stripe_secret_key
from billing.utils.rate_limit import optional_rate_limit
from . import service

router = APIRouter(prefix="/api/v1/checkout", tags=["Checkout API"])


class CreateSubscriptionRequest(BaseModel):
    productId: str
    email: EmailStr
    fullName: Optional[str] = None
    password: Optional[str] = None
    paymentMethod: Literal["card", "wallet", "stripe", "paypal"] = "card"
    paymentMethodId: Optional[str] = None
    couponCode: Optional[str] = None
    amount: Optional[float] = None
    currency: Optional[str] = None
    countryCode: Optional[str] = Field(default=None, max_length=2)


class FreeTrialRequest(BaseModel):
    productId: str
    email: EmailStr
    fullName: Optional[str] = None
    password: Optional[str] = None
    paymentMethodId: Optional[str] = None
    couponCode: Optional[str] = None
    currency: Optional[str] = None
    amount: Optional[float] = None
    countryCode: Optional[str] = Field(default=None, max_length=2)


class PaymentIntentRequest(BaseModel):
    productIds: List[str] = Field(min_length=1)
    amounts: List[Optional[float]] = []
    email: EmailStr
    fullName: Optional[str] = None
    couponCode: Optional[str] = None
    currency: Optional[str] = None
    countryCode: Optional[str] = Field(default=None, max_length=2)


class CompletePaymentRequest(BaseModel):
    paymentIntentId: str
    password: Optional[str] = None


class WalletOrderRequest(BaseModel):
    productIds: List[str] = Field(min_length=1)
    amounts: List[Optional[float]] = []
    email: EmailStr
    fullName: Optional[str] = None
    couponCode: Optional[str] = None
    countryCode: Optional[str] = Field(default=None, max_length=2)
    returnUrl: Optional[str] = None
    cancelUrl: Optional[str] = None


class CaptureWalletOrderRequest(BaseModel):
    orderId: str
    password: Optional[str] = None


class ActivateWalletRequest(BaseModel):
    subscriptionId: str
    dbSubscriptionId: Optional[str] = None
    password: Optional[str] = None

# module billing.checkout.views
@router.post("/create-subscription", dependencies=[Depends(optional_rate_limit(times=10, seconds=60))])
def create_subscription(req: CreateSubscriptionRequest):
    """Abonnement carte -> {subscriptionId, clientSecret, status, dbSubscriptionId}; portefeuille -> approveUrl."""
    return service.create_subscription(req.model_dump(), stripe_key=resolve_stripe_secret_key())


@router.post("/create-free-trial-subscription", dependencies=[Depends(optional_rate_limit(times=5, seconds=60))])
def create_free_trial_subscription(req: FreeTrialRequest):
    return service.create_free_trial_subscription(req.model_dump(), stripe_key=resolve_stripe_secret_key())


@router.post("/create-payment-intent", dependencies=[Depends(optional_rate_limit(times=10, seconds=60))])
def create_payment_intent(req: PaymentIntentRequest):
    return service.create_payment_intent(req.model_dump(), stripe_key=resolve_stripe_secret_key())


@router.post("/complete-one-time-payment", dependencies=[Depends(optional_rate_limit(times=10, seconds=60))])
def complete_one_time_payment(req: CompletePaymentRequest):
    """
    Finalise un paiement carte réussi.
    Réponse: {success, userId, courseIds, isNewUser, password?, authToken?}
    """
    return service.complete_one_time_payment(req.model_dump(), stripe_key=resolve_stripe_secret_key())


@router.post("/activate-wallet-subscription", dependencies=[Depends(optional_rate_limit(times=10, seconds=60))])
def activate_wallet_subscription(req: ActivateWalletRequest):
    return service.activate_wallet_subscription(req.model_dump(), stripe_key=resolve_stripe_secret_key())


@router.post("/create-wallet-order", dependencies=[Depends(optional_rate_limit(times=10, seconds=60))])
def create_wallet_order(req: WalletOrderRequest):
    """Commande PayPal à paiement unique -> {orderId, approveUrl, amount, originalAmount, couponDiscount, currency}"""
    return service.create_wallet_order(req.model_dump(), stripe_key=resolve_stripe_secret_key())


@router.post("/capture-wallet-order", dependencies=[Depends(optional_rate_limit(times=10, seconds=60))])
def capture_wallet_order(req: CaptureWalletOrderRequest):
    return service.capture_wallet_order(req.model_dump(), stripe_key=resolve_stripe_secret_key())
