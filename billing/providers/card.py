"""
Adaptateur Stripe (prestataire carte): centralise les appels au SDK Stripe.

- La clé API est injectée à la construction (résolue par requête) et passée à chaque appel (api_key=)
- Les erreurs SDK (stripe.StripeError) sont traduites en ProviderRejected / RefundFailed
- Les objets Stripe sont manipulés comme des dicts (get / [])
"""
from contextlib import contextmanager
from typing import Any, Dict, List, Optional
import logging

import stripe

from billing.errors import ProviderRejected, RefundFailed, ValidationError
from billing.utils.money import from_cents, to_cents

logger = logging.getLogger(__name__)

PROVIDER = "stripe"

INTERVALS = {
    "daily": "day",
    "weekly": "week",
    "monthly": "month",
    "annual": "year",
    "yearly": "year",
}

REFUND_REASONS = {
    "duplicate": "duplicate",
    "fraudulent": "fraudulent",
}


def to_stripe_interval(interval: Optional[str]) -> str:
    return INTERVALS.get((interval or "monthly").lower(), "month")


def price_lookup_key(product_id: str, interval: str, currency: str, amount: float) -> str:
    """Clé déterministe d'un prix récurrent: sub_{produit}_{intervalle}_{devise}_{centimes}."""
    return f"sub_{product_id}_{interval}_{currency.lower()}_{to_cents(amount)}"


def invoice_payment_handle(invoice: Dict[str, Any]) -> str:
    """Identifiant de paiement d'une facture: PaymentIntent, sinon Charge, sinon la facture."""
    for key in ("payment_intent", "charge"):
        value = invoice.get(key)
        if isinstance(value, dict):
            value = value.get("id")
        if value:
            return value
    return invoice["id"]


@contextmanager

def _provider_errors(step: str):
    try:
        yield
    except stripe.StripeError as e:
        message = getattr(e, "user_message", None) or str(e) or "Stripe error"
        logger.warning("providers.card %s rejected: %s", step, message)
        raise ProviderRejected(message, provider=PROVIDER, code=getattr(e, "code", None)) from e


# module billing.providers.card
class CardAdapter:
    provider = PROVIDER

    def __init__(self, api_key: str):
        if not api_key:
            raise ProviderRejected("Stripe is not configured", provider=PROVIDER)
        self.api_key = api_key

    # --- Clients / produits ---

    def find_or_create_customer(self, email: str, name: Optional[str] = None, metadata: Optional[Dict[str, Any]] = None) -> str:
        with _provider_errors("find_or_create_customer"):
            found = stripe.Customer.list(email=email, limit=1, api_key=self.api_key)
            rows = found.get("data") or []
            if rows:
                return rows[0]["id"]
            customer = stripe.Customer.create(email=email, name=name or None, metadata=metadata or {}, api_key=self.api_key)
            logger.info("providers.card customer created id=%s", customer["id"])
            return customer["id"]

    def ensure_product(self, product: Dict[str, Any]) -> str:
        """Produit Stripe lié via metadata.supabase_product_id; créé s'il n'existe pas."""
        product_id = str(product.get("id"))
        with _provider_errors("ensure_product"):
            found = stripe.Product.search(
                query=f"metadata['supabase_product_id']:'{product_id}'",
                limit=1,
                api_key=self.api_key,
            )
            rows = found.get("data") or []
            if rows:
                return rows[0]["id"]
            created = stripe.Product.create(
                name=product.get("name") or product_id,
                metadata={"supabase_product_id": product_id},
                api_key=self.api_key,
            )
            return created["id"]

    # --- Paiement unique ---

    def create_one_time_charge(
        self,
        amount: float,
        currency: str,
        buyer: Dict[str, Any],
        line_items: List[Dict[str, Any]],
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """
        Crée un PaymentIntent (confirmation côté client via client_secret).
        Retour: {"id": "pi_...", "client_secret": "..."}
        """
        customer_id = self.find_or_create_customer(buyer.get("email") or "", buyer.get("fullName") or buyer.get("full_name"))
        with _provider_errors("create_one_time_charge"):
            intent = stripe.PaymentIntent.create(
                amount=to_cents(amount),
                currency=currency.lower(),
                customer=customer_id,
                receipt_email=buyer.get("email") or None,
                automatic_payment_methods={"enabled": True},
                metadata=metadata or {},
                description=", ".join(str(li.get("name") or li.get("id")) for li in line_items)[:500] or None,
                api_key=self.api_key,
            )
        logger.info("providers.card payment intent created id=%s amount=%s %s", intent["id"], amount, currency)
        return {"id": intent["id"], "client_secret": intent.get("client_secret"), "customer_id": customer_id}

    def retrieve_payment_intent(self, payment_intent_id: str) -> Dict[str, Any]:
        with _provider_errors("retrieve_payment_intent"):
            return stripe.PaymentIntent.retrieve(payment_intent_id, api_key=self.api_key)

    # --- Abonnements ---

    def create_recurring_plan(
        self,
        product: Dict[str, Any],
        interval: str,
        amount: float,
        currency: str,
        trial_policy: Optional[Dict[str, Any]] = None,
    ) -> str:
        """
        Prix récurrent idempotent par (produit, intervalle, devise, montant).
        - Réutilise le prix portant la clé déterministe
        - Réutilise l'ancienne clé sub_{produit}_{intervalle} seulement si montant et devise concordent
        - Sinon crée un nouveau prix (les prix Stripe sont immuables)
        Le trial est porté par l'abonnement (trial_period_days), pas par le prix.
        """
        product_id = str(product.get("id"))
        stripe_interval = to_stripe_interval(interval)
        cents = to_cents(amount)
        key = price_lookup_key(product_id, stripe_interval, currency, amount)
        legacy_key = f"sub_{product_id}_{stripe_interval}"
        with _provider_errors("create_recurring_plan"):
            found = stripe.Price.list(lookup_keys=[key, legacy_key], active=True, limit=10, api_key=self.api_key)
            for price in found.get("data") or []:
                if price.get("lookup_key") == key:
                    return price["id"]
            for price in found.get("data") or []:
                if (
                    price.get("lookup_key") == legacy_key
                    and price.get("unit_amount") == cents
                    and (price.get("currency") or "").lower() == currency.lower()
                ):
                    logger.info("providers.card reusing legacy price %s", price["id"])
                    return price["id"]
            stripe_product_id = self.ensure_product(product)
            price = stripe.Price.create(
                product=stripe_product_id,
                unit_amount=cents,
                currency=currency.lower(),
                recurring={"interval": stripe_interval},
                lookup_key=key,
                metadata={"supabase_product_id": product_id},
                api_key=self.api_key,
            )
        logger.info("providers.card price created id=%s key=%s", price["id"], key)
        return price["id"]

    def attach_payment_method(self, customer_id: str, payment_method_id: str) -> None:
        with _provider_errors("attach_payment_method"):
            stripe.PaymentMethod.attach(payment_method_id, customer=customer_id, api_key=self.api_key)
            stripe.Customer.modify(
                customer_id,
                invoice_settings={"default_payment_method": payment_method_id},
                api_key=self.api_key,
            )

    def activate_recurring_plan(
        self,
        price_id: str,
        buyer: Dict[str, Any],
        payment_method_id: Optional[str] = None,
        *,
        trial_days: Optional[int] = None,
        coupon_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """
        Crée l'abonnement Stripe (synchrone).
        Sans essai: payment_behavior=default_incomplete, le client confirme via client_secret.
        Retour: {id, status, client_secret, customer_id, current_period_start, current_period_end, trial_end}
        """
        customer_id = self.find_or_create_customer(buyer.get("email") or "", buyer.get("fullName") or buyer.get("full_name"))
        if payment_method_id:
            self.attach_payment_method(customer_id, payment_method_id)

        params: Dict[str, Any] = {
            "customer": customer_id,
            "items": [{"price": price_id}],
            "metadata": metadata or {},
            "expand": ["latest_invoice.payment_intent"],
        }
        if trial_days:
            params["trial_period_days"] = int(trial_days)
        else:
            params["payment_behavior"] = "default_incomplete"
            params["payment_settings"] = {"save_default_payment_method": "on_subscription"}
        if payment_method_id:
            params["default_payment_method"] = payment_method_id
        if coupon_id:
            params["discounts"] = [{"coupon": coupon_id}]

        with _provider_errors("activate_recurring_plan"):
            sub = stripe.Subscription.create(api_key=self.api_key, **params)

        invoice = sub.get("latest_invoice") or {}
        intent = invoice.get("payment_intent") if isinstance(invoice, dict) else None
        client_secret = intent.get("client_secret") if isinstance(intent, dict) else None
        logger.info("providers.card subscription created id=%s status=%s", sub["id"], sub.get("status"))
        return {
            "id": sub["id"],
            "status": sub.get("status"),
            "client_secret": client_secret,
            "customer_id": customer_id,
            "current_period_start": sub.get("current_period_start"),
            "current_period_end": sub.get("current_period_end"),
            "trial_end": sub.get("trial_end"),
        }

    def retrieve_subscription(self, subscription_id: str) -> Dict[str, Any]:
        with _provider_errors("retrieve_subscription"):
            return stripe.Subscription.retrieve(subscription_id, api_key=self.api_key)

    def list_invoices(self, subscription_id: str, limit: int = 100) -> List[Dict[str, Any]]:
        with _provider_errors("list_invoices"):
            res = stripe.Invoice.list(subscription=subscription_id, limit=limit, api_key=self.api_key)
        return list(res.get("data") or [])

    def charge_now(self, subscription_id: str) -> Dict[str, Any]:
        """
        Facture hors cycle sur l'abonnement: création, finalisation puis paiement immédiat.
        Retour: {"invoice_id", "payment_id", "amount_paid", "currency", "status"}
        """
        with _provider_errors("charge_now"):
            sub = stripe.Subscription.retrieve(subscription_id, api_key=self.api_key)
            invoice = stripe.Invoice.create(
                customer=sub["customer"],
                subscription=subscription_id,
                auto_advance=True,
                api_key=self.api_key,
            )
            stripe.Invoice.finalize_invoice(invoice["id"], api_key=self.api_key)
            paid = stripe.Invoice.pay(invoice["id"], api_key=self.api_key)
        logger.info("providers.card manual charge invoice=%s amount_paid=%s", paid.get("id"), paid.get("amount_paid"))
        return {
            "invoice_id": paid.get("id"),
            "payment_id": invoice_payment_handle(paid),
            "amount_paid": from_cents(paid.get("amount_paid")),
            "currency": (paid.get("currency") or "usd").upper(),
            "status": paid.get("status"),
        }

    # --- Frais / transactions ---

    def fetch_transaction_detail(self, handle: str) -> Dict[str, Any]:
        """
        Frais et net d'un paiement (pi_ ou ch_) via la balance transaction de la charge.
        Retour: {"fee": float|None, "net": float|None, "transaction_id": "ch_..."|None}
        """
        with _provider_errors("fetch_transaction_detail"):
            if handle.startswith("pi_"):
                intent = stripe.PaymentIntent.retrieve(
                    handle, expand=["latest_charge.balance_transaction"], api_key=self.api_key
                )
                charge = intent.get("latest_charge")
            else:
                charge = stripe.Charge.retrieve(handle, expand=["balance_transaction"], api_key=self.api_key)
        if not isinstance(charge, dict):
            return {"fee": None, "net": None, "transaction_id": charge if isinstance(charge, str) else None}
        balance = charge.get("balance_transaction")
        if not isinstance(balance, dict):
            return {"fee": None, "net": None, "transaction_id": charge.get("id")}
        return {
            "fee": from_cents(balance.get("fee")),
            "net": from_cents(balance.get("net")),
            "transaction_id": charge.get("id"),
        }

    # --- Remboursements ---

    def issue_refund(self, payment_id: str, amount: Optional[float], currency: Optional[str], reason: Optional[str] = None) -> Dict[str, Any]:
        """
        Rembourse un PaymentIntent (pi_) ou une Charge (ch_).
        Tout autre format d'identifiant est refusé (RefundFailed).
        """
        params: Dict[str, Any] = {"reason": REFUND_REASONS.get(reason or "", "requested_by_customer")}
        if payment_id.startswith("pi_"):
            params["payment_intent"] = payment_id
        elif payment_id.startswith("ch_"):
            params["charge"] = payment_id
        else:
            raise RefundFailed(f"Unsupported Stripe payment id: {payment_id}")
        if amount is not None:
            params["amount"] = to_cents(amount)
        try:
            refund = stripe.Refund.create(api_key=self.api_key, **params)
        except stripe.StripeError as e:
            message = getattr(e, "user_message", None) or str(e)
            logger.warning("providers.card refund rejected payment_id=%s: %s", payment_id, message)
            raise RefundFailed(message) from e
        logger.info("providers.card refund created id=%s payment_id=%s", refund["id"], payment_id)
        return {"id": refund["id"], "amount": from_cents(refund.get("amount")), "status": refund.get("status")}

    # --- Gestion d'abonnement ---

    def update_price(self, subscription_id: str, product: Dict[str, Any], new_amount: float, currency: str, interval: str) -> Dict[str, Any]:
        """Nouveau prix appliqué au prochain cycle, sans action du client."""
        price_id = self.create_recurring_plan(product, interval, new_amount, currency)
        sub = self.retrieve_subscription(subscription_id)
        items = (sub.get("items") or {}).get("data") or []
        if not items:
            raise ProviderRejected("Subscription has no items", provider=PROVIDER)
        with _provider_errors("update_price"):
            stripe.Subscription.modify(
                subscription_id,
                items=[{"id": items[0]["id"], "price": price_id}],
                proration_behavior="none",
                api_key=self.api_key,
            )
        return {"applied": True, "approvalUrl": None, "priceId": price_id}

    def pause(self, subscription_id: str) -> Dict[str, Any]:
        sub = self.retrieve_subscription(subscription_id)
        if sub.get("pause_collection"):
            return {"applied": False}
        with _provider_errors("pause"):
            stripe.Subscription.modify(subscription_id, pause_collection={"behavior": "void"}, api_key=self.api_key)
        return {"applied": True}

    def resume(self, subscription_id: str) -> Dict[str, Any]:
        sub = self.retrieve_subscription(subscription_id)
        if not sub.get("pause_collection"):
            return {"applied": False}
        with _provider_errors("resume"):
            stripe.Subscription.modify(subscription_id, pause_collection="", api_key=self.api_key)
        return {"applied": True}

    def cancel(self, subscription_id: str, at_period_end: bool = True) -> Dict[str, Any]:
        sub = self.retrieve_subscription(subscription_id)
        if sub.get("status") == "canceled":
            return {"applied": False, "status": "cancelled"}
        with _provider_errors("cancel"):
            if at_period_end:
                if not sub.get("cancel_at_period_end"):
                    stripe.Subscription.modify(subscription_id, cancel_at_period_end=True, api_key=self.api_key)
                return {"applied": True, "status": "pending_cancellation"}
            stripe.Subscription.cancel(subscription_id, api_key=self.api_key)
        return {"applied": True, "status": "cancelled"}

    def reactivate(self, subscription_id: str) -> Dict[str, Any]:
        with _provider_errors("reactivate"):
            stripe.Subscription.modify(subscription_id, cancel_at_period_end=False, api_key=self.api_key)
        return {"applied": True, "approvalUrl": None}

    def ensure_coupon(self, coupon: Dict[str, Any]) -> str:
        """Coupon Stripe miroir (durée 'forever' pour s'appliquer aux renouvellements)."""
        if coupon.get("stripe_coupon_id"):
            return coupon["stripe_coupon_id"]
        params: Dict[str, Any] = {"duration": "forever", "name": coupon.get("code"), "metadata": {"coupon_id": str(coupon.get("id"))}}
        if coupon.get("discount_type") == "percentage":
            params["percent_off"] = float(coupon.get("percent_off") or 0)
        elif coupon.get("discount_type") == "fixed":
            params["amount_off"] = to_cents(float(coupon.get("amount_off") or 0))
            params["currency"] = (coupon.get("currency") or "usd").lower()
        else:
            raise ValidationError("Unsupported coupon type")
        with _provider_errors("ensure_coupon"):
            created = stripe.Coupon.create(api_key=self.api_key, **params)
        return created["id"]

    def apply_coupon(self, subscription_id: str, stripe_coupon_id: str) -> Dict[str, Any]:
        with _provider_errors("apply_coupon"):
            stripe.Subscription.modify(subscription_id, discounts=[{"coupon": stripe_coupon_id}], api_key=self.api_key)
        return {"applied": True}

    def remove_coupon(self, subscription_id: str) -> Dict[str, Any]:
        with _provider_errors("remove_coupon"):
            stripe.Subscription.modify(subscription_id, discounts="", api_key=self.api_key)
        return {"applied": True}

    def update_payment_method(
        self,
        subscription_id: str,
        customer_id: Optional[str],
        payment_method_id: Optional[str] = None,
        return_url: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Attache le moyen de paiement fourni, ou ouvre une session du portail client."""
        if not customer_id:
            customer_id = self.retrieve_subscription(subscription_id).get("customer")
        if payment_method_id:
            self.attach_payment_method(customer_id, payment_method_id)
            with _provider_errors("update_payment_method"):
                stripe.Subscription.modify(subscription_id, default_payment_method=payment_method_id, api_key=self.api_key)
            return {"applied": True}
        with _provider_errors("billing_portal"):
            session = stripe.billing_portal.Session.create(customer=customer_id, return_url=return_url, api_key=self.api_key)
        return {"applied": False, "portalUrl": session.get("url")}

    # --- Webhooks ---

    def construct_event(self, payload: bytes, sig_header: Optional[str], secret: str) -> Dict[str, Any]:
        try:
            return stripe.Webhook.construct_event(payload, sig_header or "", secret)
        except (ValueError, stripe.SignatureVerificationError) as e:
            raise ValidationError(f"Invalid Stripe signature: {e}") from e
