from fastapi import APIRouter, Request
from starlette.concurrency import run_in_threadpool

from billing.config import resolve_stripe_secret_key
from . import service

router = APIRouter(prefix="/api/v1/webhooks", tags=["Webhooks"])

# module billing.webhooks.views
@router.post("/stripe")
async def stripe_webhook(request: Request):
    payload = await request.body()
    signature = request.headers.get("stripe-signature")
    return await run_in_threadpool(
        service.process_stripe_webhook, payload, signature, stripe_key=resolve_stripe_secret_key()
    )


@router.post("/paypal")
async def paypal_webhook(request: Request):
    payload = await request.body()
    return await run_in_threadpool(
        service.process_paypal_webhook, payload, dict(request.headers), stripe_key=resolve_stripe_secret_key()
    )
