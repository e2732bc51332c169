"""
Registre central des routers.
- Checkout: abonnements, essai gratuit, paiement unique, activation PayPal
- Gestion: coupons, abonnements, remboursements, synchronisation
- Webhooks Stripe / PayPal
- Admin et health
"""
from fastapi import FastAPI

from billing.checkout import views as checkout_views
from billing.coupons import views as coupons_views
from billing.subscriptions import views as subscriptions_views
from billing.refunds import views as refunds_views
from billing.sync import views as sync_views
from billing.webhooks import views as webhooks_views
from billing.admin.views import router as admin_router
from billing.health.router import router as health_router


def register_routers(app: FastAPI) -> None:
    # API v1
    app.include_router(checkout_views.router)
    app.include_router(coupons_views.router)
    app.include_router(subscriptions_views.router)
    app.include_router(refunds_views.router)
    app.include_router(sync_views.router)
    app.include_router(webhooks_views.router)
    # Admin
    app.include_router(admin_router)
    # Health & monitoring
    app.include_router(health_router)
