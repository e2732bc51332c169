"""
Adaptateur PayPal (prestataire portefeuille): API REST via httpx.

- Jeton OAuth2 client_credentials mis en cache sur l'instance
- Réponses non 2xx traduites en ProviderRejected (RefundFailed pour les remboursements)
- Abonnements à activation différée: la création renvoie une URL d'approbation
"""
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional
import logging

import httpx

from billing.config import BRAND_NAME, FRONTEND_URL
from billing.errors import ProviderRejected, RefundFailed

logger = logging.getLogger(__name__)

PROVIDER = "paypal"

INTERVAL_UNITS = {
    "daily": "DAY",
    "weekly": "WEEK",
    "monthly": "MONTH",
    "annual": "YEAR",
    "yearly": "YEAR",
}

REFUND_LOOKBACK_DAYS = 14


def _iso(dt: datetime) -> str:
    return dt.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.000Z")


def _money(value: Any) -> Optional[float]:
    if not isinstance(value, dict):
        return None
    raw = value.get("value")
    if raw in (None, ""):
        return None
    try:
        return round(float(raw), 2)
    except (TypeError, ValueError):
        return None


def _link(payload: Dict[str, Any], rel: str) -> Optional[str]:
    for link in payload.get("links") or []:
        if link.get("rel") == rel:
            return link.get("href")
    return None


def _error_message(resp: httpx.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        return resp.text or f"PayPal HTTP {resp.status_code}"
    details = body.get("details") or []
    if details and details[0].get("description"):
        return f"{body.get('message') or body.get('name')}: {details[0]['description']}"
    return body.get("message") or body.get("error_description") or body.get("name") or f"PayPal HTTP {resp.status_code}"


def split_name(full_name: Optional[str]) -> Dict[str, str]:
    parts = (full_name or "").strip().split(" ", 1)
    return {"given_name": parts[0] or "Customer", "surname": parts[1] if len(parts) > 1 else ""}


def transaction_breakdown(tx: Dict[str, Any]) -> Dict[str, Any]:
    """Normalise une transaction d'abonnement PayPal -> {id, status, time, gross, fee, net, currency}."""
    breakdown = tx.get("amount_with_breakdown") or {}
    gross = breakdown.get("gross_amount") or {}
    return {
        "id": tx.get("id"),
        "status": tx.get("status"),
        "time": tx.get("time"),
        "gross": _money(gross),
        "fee": _money(breakdown.get("fee_amount")),
        "net": _money(breakdown.get("net_amount")),
        "currency": gross.get("currency_code"),
    }


def order_breakdown(order: Dict[str, Any]) -> Dict[str, Any]:
    """Normalise une commande PayPal capturée (première purchase unit, première capture)."""
    unit = (order.get("purchase_units") or [{}])[0]
    captures = (unit.get("payments") or {}).get("captures") or []
    capture = captures[0] if captures else {}
    receivable = capture.get("seller_receivable_breakdown") or {}
    amount = unit.get("amount") or capture.get("amount") or {}
    payer = order.get("payer") or {}
    name = payer.get("name") or {}
    full_name = " ".join(p for p in (name.get("given_name"), name.get("surname")) if p) or None
    return {
        "order_id": order.get("id"),
        "status": order.get("status"),
        "capture_id": capture.get("id"),
        "capture_status": capture.get("status"),
        "gross": _money(capture.get("amount")),
        "fee": _money(receivable.get("paypal_fee")),
        "net": _money(receivable.get("net_amount")),
        "currency": (capture.get("amount") or amount).get("currency_code"),
        "discount": _money((amount.get("breakdown") or {}).get("discount")) or 0.0,
        "custom_id": capture.get("custom_id") or unit.get("custom_id"),
        "items": [
            {"product_id": item.get("sku"), "name": item.get("name"), "amount": _money(item.get("unit_amount"))}
            for item in unit.get("items") or []
            if item.get("sku")
        ],
        "payer_email": payer.get("email_address"),
        "payer_name": full_name,
    }


# module billing.providers.wallet
class WalletAdapter:
    provider = PROVIDER

    def __init__(self, base_url: str, client_id: str, secret: str, http_client: Optional[httpx.Client] = None):
        if not client_id or not secret:
            raise ProviderRejected("PayPal credentials not configured", provider=PROVIDER)
        self.base_url = base_url.rstrip("/")
        self.client_id = client_id
        self.secret = secret
        self.http = http_client or httpx.Client(base_url=self.base_url, timeout=20)
        self._token: Optional[str] = None

    # --- HTTP ---

    def access_token(self) -> str:
        if self._token:
            return self._token
        resp = self.http.post(
            f"{self.base_url}/v1/oauth2/token",
            data={"grant_type": "client_credentials"},
            auth=(self.client_id, self.secret),
            headers={"Accept": "application/json"},
        )
        if resp.status_code >= 300:
            raise ProviderRejected(f"PayPal authentication failed: {_error_message(resp)}", provider=PROVIDER)
        self._token = resp.json().get("access_token")
        if not self._token:
            raise ProviderRejected("PayPal authentication failed", provider=PROVIDER)
        return self._token

    def _request(self, method: str, path: str, *, json: Any = None, params: Optional[Dict[str, Any]] = None, headers: Optional[Dict[str, str]] = None, error_cls=ProviderRejected) -> Dict[str, Any]:
        merged = {
            "Authorization": f"Bearer {self.access_token()}",
            "Content-Type": "application/json",
            "Accept": "application/json",
            **(headers or {}),
        }
        resp = self.http.request(method, f"{self.base_url}{path}", json=json, params=params, headers=merged)
        if resp.status_code >= 300:
            message = _error_message(resp)
            logger.warning("providers.wallet %s %s failed status=%s: %s", method, path, resp.status_code, message)
            if error_cls is ProviderRejected:
                raise ProviderRejected(message, provider=PROVIDER, code=str(resp.status_code))
            raise error_cls(message)
        if resp.status_code == 204 or not resp.content:
            return {}
        return resp.json()

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
        Commande PayPal (intent CAPTURE), une ligne par produit (sku = id produit).
        metadata: custom_id, discount (remise coupon totale), return_url, cancel_url.
        Retour: {"id", "approveUrl"}
        """
        metadata = metadata or {}
        code = currency.upper()
        items = [{
            "name": str(li.get("name") or li.get("id"))[:127],
            "sku": str(li.get("id")),
            "quantity": "1",
            "unit_amount": {"currency_code": code, "value": f"{float(li.get('amount') or 0):.2f}"},
            "category": "DIGITAL_GOODS",
        } for li in line_items]
        item_total = sum(float(li.get("amount") or 0) for li in line_items)
        breakdown: Dict[str, Any] = {"item_total": {"currency_code": code, "value": f"{item_total:.2f}"}}
        if metadata.get("discount"):
            breakdown["discount"] = {"currency_code": code, "value": f"{float(metadata['discount']):.2f}"}
        body = {
            "intent": "CAPTURE",
            "purchase_units": [{
                "reference_id": str(line_items[0].get("id")) if line_items else None,
                "description": ", ".join(i["name"] for i in items)[:127],
                "custom_id": metadata.get("custom_id"),
                "amount": {"currency_code": code, "value": f"{amount:.2f}", "breakdown": breakdown},
                "items": items,
            }],
            "payer": {"email_address": buyer.get("email")},
            "application_context": {
                "brand_name": BRAND_NAME,
                "landing_page": "NO_PREFERENCE",
                "shipping_preference": "NO_SHIPPING",
                "user_action": "PAY_NOW",
                "return_url": metadata.get("return_url") or f"{FRONTEND_URL}/checkout/paypal-return",
                "cancel_url": metadata.get("cancel_url") or f"{FRONTEND_URL}/checkout/cancel",
            },
        }
        order = self._request("POST", "/v2/checkout/orders", json=body)
        approve_url = _link(order, "approve") or _link(order, "payer-action")
        if not approve_url:
            raise ProviderRejected("PayPal did not return an approval link", provider=PROVIDER)
        logger.info("providers.wallet order created id=%s amount=%s %s", order.get("id"), amount, code)
        return {"id": order.get("id"), "approveUrl": approve_url}

    def capture_order(self, order_id: str) -> Dict[str, Any]:
        """
        Capture une commande approuvée; une commande déjà capturée (422) est relue telle quelle.
        Retour normalisé: {order_id, status, capture_id, capture_status, gross, fee, net, currency,
        discount, custom_id, items: [{product_id, name, amount}], payer_email, payer_name}
        """
        try:
            data = self._request(
                "POST",
                f"/v2/checkout/orders/{order_id}/capture",
                json={},
                headers={"Prefer": "return=representation"},
            )
        except ProviderRejected as e:
            if e.code != "422":
                raise
            data = self._request("GET", f"/v2/checkout/orders/{order_id}")
            if (data.get("status") or "").upper() != "COMPLETED":
                raise
            logger.info("providers.wallet order already captured id=%s", order_id)
        return order_breakdown(data)

    # --- Plans / abonnements ---

    def ensure_catalog_product(self, product: Dict[str, Any]) -> str:
        catalog_id = f"PROD-{product.get('id')}"[:50]
        resp_product = None
        try:
            resp_product = self._request("GET", f"/v1/catalogs/products/{catalog_id}")
        except ProviderRejected as e:
            if e.code != "404":
                raise
        if resp_product:
            return resp_product.get("id") or catalog_id
        created = self._request("POST", "/v1/catalogs/products", json={
            "id": catalog_id,
            "name": (product.get("name") or str(product.get("id")))[:127],
            "type": "SERVICE",
            "category": "EDUCATIONAL_AND_TEXTBOOKS",
        })
        logger.info("providers.wallet catalog product created id=%s", created.get("id"))
        return created.get("id") or catalog_id

    def create_recurring_plan(
        self,
        product: Dict[str, Any],
        interval: str,
        amount: float,
        currency: str,
        trial_policy: Optional[Dict[str, Any]] = None,
    ) -> str:
        """
        Plan PayPal idempotent: le nom du plan porte la clé (intervalle, devise, montant, essai).
        Un plan ACTIVE portant déjà ce nom est réutilisé.
        """
        unit = INTERVAL_UNITS.get((interval or "monthly").lower(), "MONTH")
        trial_days = int((trial_policy or {}).get("days") or 0) if (trial_policy or {}).get("enabled") else 0
        trial_price = float((trial_policy or {}).get("price") or 0)
        plan_name = f"{product.get('name') or product.get('id')} {unit} {currency.upper()} {amount:.2f}"
        if trial_days:
            plan_name += f" trial{trial_days}d"
        plan_name = plan_name[:127]

        catalog_id = self.ensure_catalog_product(product)
        listing = self._request("GET", "/v1/billing/plans", params={"product_id": catalog_id, "page_size": 20, "total_required": "false"})
        for plan in listing.get("plans") or []:
            if plan.get("name") == plan_name and plan.get("status") == "ACTIVE":
                return plan["id"]

        cycles: List[Dict[str, Any]] = []
        if trial_days:
            trial_cycle: Dict[str, Any] = {
                "frequency": {"interval_unit": "DAY", "interval_count": trial_days},
                "tenure_type": "TRIAL",
                "sequence": 1,
                "total_cycles": 1,
            }
            if trial_price > 0:
                trial_cycle["pricing_scheme"] = {"fixed_price": {"value": f"{trial_price:.2f}", "currency_code": currency.upper()}}
            cycles.append(trial_cycle)
        cycles.append({
            "frequency": {"interval_unit": unit, "interval_count": 1},
            "tenure_type": "REGULAR",
            "sequence": len(cycles) + 1,
            "total_cycles": 0,
            "pricing_scheme": {"fixed_price": {"value": f"{amount:.2f}", "currency_code": currency.upper()}},
        })
        plan = self._request("POST", "/v1/billing/plans", json={
            "product_id": catalog_id,
            "name": plan_name,
            "billing_cycles": cycles,
            "payment_preferences": {
                "auto_bill_outstanding": True,
                "setup_fee_failure_action": "CONTINUE",
                "payment_failure_threshold": 3,
            },
        })
        logger.info("providers.wallet plan created id=%s name=%s", plan.get("id"), plan_name)
        return plan["id"]

    def activate_recurring_plan(
        self,
        plan_id: str,
        buyer: Dict[str, Any],
        payment_method_id: Optional[str] = None,
        *,
        custom_id: Optional[str] = None,
        return_url: Optional[str] = None,
        cancel_url: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Demande l'approbation de l'abonnement: aucune activation ici.
        Retour: {"id": "I-...", "status": "APPROVAL_PENDING", "approveUrl": "..."}
        """
        sub = self._request("POST", "/v1/billing/subscriptions", json={
            "plan_id": plan_id,
            "custom_id": custom_id,
            "subscriber": {
                "email_address": buyer.get("email"),
                "name": split_name(buyer.get("fullName") or buyer.get("full_name")),
            },
            "application_context": {
                "brand_name": BRAND_NAME,
                "user_action": "SUBSCRIBE_NOW",
                "shipping_preference": "NO_SHIPPING",
                "return_url": return_url or f"{FRONTEND_URL}/checkout/paypal-return",
                "cancel_url": cancel_url or f"{FRONTEND_URL}/checkout/cancel",
            },
        })
        approve_url = _link(sub, "approve")
        if not approve_url:
            raise ProviderRejected("PayPal did not return an approval link", provider=PROVIDER)
        logger.info("providers.wallet subscription requested id=%s", sub.get("id"))
        return {"id": sub.get("id"), "status": sub.get("status"), "approveUrl": approve_url}

    def get_subscription(self, subscription_id: str) -> Dict[str, Any]:
        return self._request("GET", f"/v1/billing/subscriptions/{subscription_id}")

    def list_transactions(self, subscription_id: str, start: datetime, end: Optional[datetime] = None) -> List[Dict[str, Any]]:
        data = self._request(
            "GET",
            f"/v1/billing/subscriptions/{subscription_id}/transactions",
            params={"start_time": _iso(start), "end_time": _iso(end or datetime.now(timezone.utc))},
        )
        return [transaction_breakdown(tx) for tx in data.get("transactions") or []]

    def latest_transaction(self, subscription_id: str, since: Optional[datetime] = None) -> Optional[Dict[str, Any]]:
        """Transaction la plus récente d'un abonnement dans la fenêtre [since, maintenant]."""
        start = since or datetime.now(timezone.utc) - timedelta(days=REFUND_LOOKBACK_DAYS)
        txs = self.list_transactions(subscription_id, start)
        return txs[-1] if txs else None

    # --- Frais / transactions ---

    def fetch_transaction_detail(self, handle: str, since: Optional[datetime] = None) -> Dict[str, Any]:
        """
        Frais et net d'une capture, ou de la dernière transaction si handle est un abonnement (I-...).
        Les données peuvent ne pas être encore disponibles: fee None, l'appelant réessaie.
        """
        if handle.startswith("I-"):
            tx = self.latest_transaction(handle, since=since)
            if not tx:
                return {"fee": None, "net": None, "transaction_id": None}
            return {"fee": tx["fee"], "net": tx["net"], "transaction_id": tx["id"]}
        capture = self._request("GET", f"/v2/payments/captures/{handle}")
        breakdown = capture.get("seller_receivable_breakdown") or {}
        return {
            "fee": _money(breakdown.get("paypal_fee")),
            "net": _money(breakdown.get("net_amount")),
            "transaction_id": capture.get("id"),
        }

    # --- Remboursements ---

    def issue_refund(
        self,
        payment_id: str,
        amount: Optional[float],
        currency: Optional[str],
        reason: Optional[str] = None,
        since: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """
        Rembourse une capture PayPal.
        Si payment_id est un abonnement (I-...), la transaction la plus récente de la fenêtre est remboursée.
        """
        capture_id = payment_id
        if payment_id.startswith("I-"):
            try:
                tx = self.latest_transaction(payment_id, since=since)
            except ProviderRejected as e:
                raise RefundFailed(f"PayPal transaction lookup failed: {e.message}") from e
            if not tx or not tx.get("id"):
                raise RefundFailed(f"No PayPal transaction found for subscription {payment_id}")
            capture_id = tx["id"]
            logger.info("providers.wallet refund resolved subscription=%s capture=%s", payment_id, capture_id)
        body: Dict[str, Any] = {"note_to_payer": reason or "Refund"}
        if amount is not None:
            body["amount"] = {"value": f"{amount:.2f}", "currency_code": (currency or "USD").upper()}
        refund = self._request("POST", f"/v2/payments/captures/{capture_id}/refund", json=body, error_cls=RefundFailed)
        logger.info("providers.wallet refund created id=%s capture=%s", refund.get("id"), capture_id)
        return {
            "id": refund.get("id"),
            "amount": _money(refund.get("amount")) if refund.get("amount") else amount,
            "status": refund.get("status"),
            "capture_id": capture_id,
        }

    # --- Gestion d'abonnement ---

    def update_price(self, subscription_id: str, product: Dict[str, Any], new_amount: float, currency: str, interval: str) -> Dict[str, Any]:
        """Nouveau plan + révision: le client doit ré-approuver (approvalUrl non nul)."""
        plan_id = self.create_recurring_plan(product, interval, new_amount, currency)
        revised = self._request("POST", f"/v1/billing/subscriptions/{subscription_id}/revise", json={
            "plan_id": plan_id,
            "application_context": {
                "brand_name": BRAND_NAME,
                "return_url": f"{FRONTEND_URL}/account/subscriptions",
                "cancel_url": f"{FRONTEND_URL}/account/subscriptions",
            },
        })
        approval_url = _link(revised, "approve")
        return {"applied": approval_url is None, "approvalUrl": approval_url, "planId": plan_id}

    def _status(self, subscription_id: str) -> str:
        return (self.get_subscription(subscription_id).get("status") or "").upper()

    def pause(self, subscription_id: str) -> Dict[str, Any]:
        if self._status(subscription_id) == "SUSPENDED":
            return {"applied": False}
        self._request("POST", f"/v1/billing/subscriptions/{subscription_id}/suspend", json={"reason": "Paused by administrator"})
        return {"applied": True}

    def resume(self, subscription_id: str) -> Dict[str, Any]:
        if self._status(subscription_id) == "ACTIVE":
            return {"applied": False}
        self._request("POST", f"/v1/billing/subscriptions/{subscription_id}/activate", json={"reason": "Resumed"})
        return {"applied": True}

    def reactivate(self, subscription_id: str) -> Dict[str, Any]:
        result = self.resume(subscription_id)
        return {**result, "approvalUrl": None}

    def cancel(self, subscription_id: str, at_period_end: bool = True) -> Dict[str, Any]:
        """PayPal annule immédiatement côté prestataire; l'échéance est gérée par le ledger."""
        if self._status(subscription_id) in ("CANCELLED", "EXPIRED"):
            return {"applied": False}
        self._request("POST", f"/v1/billing/subscriptions/{subscription_id}/cancel", json={"reason": "Cancelled"})
        return {"applied": True}

    def update_payment_method(self, subscription_id: str, customer_id: Optional[str] = None, payment_method_id: Optional[str] = None, return_url: Optional[str] = None) -> Dict[str, Any]:
        return {"applied": False, "portalUrl": "https://www.paypal.com/myaccount/autopay/"}

    # --- Webhooks ---

    def verify_webhook_signature(self, headers: Dict[str, str], event: Dict[str, Any], webhook_id: str) -> bool:
        lowered = {k.lower(): v for k, v in headers.items()}
        data = self._request("POST", "/v1/notifications/verify-webhook-signature", json={
            "auth_algo": lowered.get("paypal-auth-algo"),
            "cert_url": lowered.get("paypal-cert-url"),
            "transmission_id": lowered.get("paypal-transmission-id"),
            "transmission_sig": lowered.get("paypal-transmission-sig"),
            "transmission_time": lowered.get("paypal-transmission-time"),
            "webhook_id": webhook_id,
            "webhook_event": event,
        })
        return data.get("verification_status") == "SUCCESS"
