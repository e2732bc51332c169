"""
Orchestrateurs de checkout: création d'abonnement, essai gratuit, paiement unique, activation PayPal.

Ordre commun: valider -> résoudre le prix -> prestataire -> ledger -> accès -> effets de bord (best-effort).
Une erreur avant l'appel prestataire n'écrit rien; les effets de bord ne font jamais échouer l'achat.
"""
from datetime import datetime, timedelta, timezone
import json
import logging
from typing import Any, Dict, List, Optional, Tuple

from billing import coupons, crm, entitlements, ledger, notifications, pricing, providers, users
from billing.coupons import repository as coupons_repository
from billing.errors import NotFound, ValidationError
from billing.ledger import repository as ledger_repository
from billing.subscriptions import state
from billing.utils.best_effort import best_effort
from billing.utils.money import round2
from billing.utils.retry import WALLET_FEE_POLICY, retry_until

logger = logging.getLogger(__name__)

CARD_DISCOUNT_RATE = 0.02
WALLET_CUSTOM_ID_MAX = 127
OPEN_STATUSES = (state.ACTIVE, state.TRIALING, state.PAUSED, state.PENDING_CANCELLATION)


def _iso_from_epoch(value: Any) -> Optional[str]:
    if not value:
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc).isoformat()


def _parse_ts(value: Any) -> Optional[datetime]:
    if not value:
        return None
    try:
        dt = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None
    return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)


def trial_policy(product: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "enabled": bool(product.get("trial_enabled")) and int(product.get("trial_length_days") or 0) > 0,
        "days": int(product.get("trial_length_days") or 0),
        "price": float(product.get("trial_price_usd") or 0),
    }


def is_free_trial_product(product: Dict[str, Any]) -> bool:
    policy = trial_policy(product)
    return pricing.is_subscription_product(product) and policy["enabled"] and not policy["price"]


def _require_product(product_id: Optional[str]) -> Dict[str, Any]:
    if not product_id:
        raise ValidationError("productId is required")
    product = pricing.get_product(product_id)
    if not product:
        raise NotFound("Product not found")
    return product


def _guard_duplicate_subscription(user_id: Optional[str], product_id: str) -> None:
    if not user_id:
        return
    open_rows = [s for s in ledger_repository.find_open_subscriptions(user_id, product_id) if s.get("status") in OPEN_STATUSES]
    if open_rows:
        raise ValidationError("You already have an active subscription for this product")


def _stripe_coupon_id(adapter, coupon: Optional[Dict[str, Any]]) -> Optional[str]:
    """Coupon miroir Stripe pour que les renouvellements réappliquent la remise."""
    if not coupon:
        return None
    coupon_id = adapter.ensure_coupon(coupon)
    if coupon_id != coupon.get("stripe_coupon_id"):
        best_effort("coupons.cache_stripe_id", coupons_repository.set_stripe_coupon_id, coupon["id"], coupon_id)
    return coupon_id


def _subscription_row(
    *,
    product: Dict[str, Any],
    provider: str,
    handle: Dict[str, Any],
    status: str,
    quote: pricing.PriceQuote,
    email: str,
    full_name: Optional[str],
    user_id: Optional[str],
) -> Dict[str, Any]:
    return {
        "user_id": user_id,
        "product_id": product.get("id"),
        "product_name": product.get("name"),
        "payment_provider": provider,
        "provider_subscription_id": handle["id"],
        "provider_customer_id": handle.get("customer_id"),
        "status": status,
        "customer_email": email.lower(),
        "customer_name": full_name,
        "amount": quote.amount,
        "currency": quote.currency,
        "interval": product.get("billing_interval") or "monthly",
        "current_period_start": _iso_from_epoch(handle.get("current_period_start")),
        "current_period_end": _iso_from_epoch(handle.get("current_period_end")),
        "trial_end": _iso_from_epoch(handle.get("trial_end")),
        "coupon_code": quote.coupon_code,
        "coupon_discount": quote.discount or None,
    }


# module billing.checkout.service
def create_subscription(body: Dict[str, Any], *, stripe_key: Optional[str] = None) -> Dict[str, Any]:
    """
    Abonnement carte (synchrone, client_secret à confirmer) ou portefeuille (URL d'approbation).
    """
    email = (body.get("email") or "").strip()
    if not email:
        raise ValidationError("email is required")
    provider = providers.normalize_provider(body.get("paymentMethod") or "card")
    product = _require_product(body.get("productId"))
    if not pricing.is_subscription_product(product):
        raise ValidationError("Product is not a subscription")

    # carte: compte créé dès maintenant; PayPal: à l'activation
    account = users.resolve_buyer(email, body.get("password"), body.get("fullName")) if provider == "stripe" else None
    user_id = account.user_id if account else users.find_user_id(email)
    _guard_duplicate_subscription(user_id, str(product["id"]))

    quote = pricing.resolve_price(
        product,
        country_code=body.get("countryCode"),
        requested_amount=body.get("amount"),
        coupon_code=body.get("couponCode"),
    )
    interval = product.get("billing_interval") or "monthly"
    policy = trial_policy(product)
    buyer = {"email": email, "fullName": body.get("fullName")}
    adapter = providers.get_adapter(provider, stripe_key)
    logger.info("checkout.create_subscription product_id=%s provider=%s amount=%s %s", product["id"], provider, quote.amount, quote.currency)

    if provider == "stripe":
        # prix catalogue + coupon Stripe: la remise n'est appliquée qu'une fois, par Stripe
        price_id = adapter.create_recurring_plan(product, interval, quote.base_amount, quote.currency, policy)
        coupon_id = _stripe_coupon_id(adapter, quote.coupon) if quote.discount else None
        handle = adapter.activate_recurring_plan(
            price_id,
            buyer,
            body.get("paymentMethodId"),
            trial_days=policy["days"] if policy["enabled"] else None,
            coupon_id=coupon_id,
            metadata={"supabase_product_id": str(product["id"]), "email": email.lower(), "user_id": user_id or ""},
        )
        status = state.from_stripe(handle.get("status"))
        record = ledger.create_subscription_record(_subscription_row(
            product=product, provider=provider, handle=handle, status=status, quote=quote,
            email=email, full_name=body.get("fullName"), user_id=user_id,
        ))
        if user_id and status in (state.ACTIVE, state.TRIALING):
            entitlements.grant_for_product(user_id, product, source="subscription")
        if quote.coupon:
            best_effort("coupons.redeem", coupons.redeem, quote.coupon)
        result = {
            "subscriptionId": handle["id"],
            "clientSecret": handle.get("client_secret"),
            "status": status,
            "dbSubscriptionId": record.get("id"),
        }
        if account and account.generated_password:
            result["password"] = account.generated_password
        return result

    # PayPal: pas de coupon natif, le plan porte le montant remisé
    plan_id = adapter.create_recurring_plan(product, interval, quote.amount, quote.currency, policy)
    handle = adapter.activate_recurring_plan(plan_id, buyer, custom_id=str(product["id"]))
    if policy["enabled"]:
        handle["trial_end"] = int((datetime.now(timezone.utc) + timedelta(days=policy["days"])).timestamp())
    record = ledger.create_subscription_record(_subscription_row(
        product=product, provider=provider, handle=handle, status=state.PENDING, quote=quote,
        email=email, full_name=body.get("fullName"), user_id=user_id,
    ))
    return {
        "subscriptionId": handle["id"],
        "approveUrl": handle["approveUrl"],
        "status": state.PENDING,
        "dbSubscriptionId": record.get("id"),
    }


def create_free_trial_subscription(body: Dict[str, Any], *, stripe_key: Optional[str] = None) -> Dict[str, Any]:
    """Essai gratuit carte: aucun débit immédiat, accès accordé dès la création."""
    email = (body.get("email") or "").strip()
    if not email:
        raise ValidationError("email is required")
    product = _require_product(body.get("productId"))
    if not is_free_trial_product(product):
        raise ValidationError("This product does not offer a free trial")

    quote = pricing.resolve_price(
        product,
        country_code=body.get("countryCode"),
        requested_amount=body.get("amount"),
        coupon_code=body.get("couponCode"),
    )
    account = users.resolve_buyer(email, body.get("password"), body.get("fullName"))
    _guard_duplicate_subscription(account.user_id, str(product["id"]))

    adapter = providers.get_adapter("stripe", stripe_key)
    policy = trial_policy(product)
    price_id = adapter.create_recurring_plan(product, product.get("billing_interval") or "monthly", quote.base_amount, quote.currency, policy)
    coupon_id = _stripe_coupon_id(adapter, quote.coupon) if quote.discount else None
    handle = adapter.activate_recurring_plan(
        price_id,
        {"email": email, "fullName": body.get("fullName")},
        body.get("paymentMethodId"),
        trial_days=policy["days"],
        coupon_id=coupon_id,
        metadata={"supabase_product_id": str(product["id"]), "email": email.lower(), "user_id": account.user_id, "free_trial": "true"},
    )
    status = state.from_stripe(handle.get("status") or "trialing")
    record = ledger.create_subscription_record(_subscription_row(
        product=product, provider="stripe", handle=handle, status=status, quote=quote,
        email=email, full_name=body.get("fullName"), user_id=account.user_id,
    ))
    logger.info("checkout.create_free_trial_subscription created id=%s user_id=%s", handle["id"], account.user_id)

    course_ids = entitlements.grant_for_product(account.user_id, product, source="subscription")
    crm.after_purchase(account.user_id, email, product)
    if quote.coupon:
        best_effort("coupons.redeem", coupons.redeem, quote.coupon)

    result = {
        "success": True,
        "subscriptionId": handle["id"],
        "dbSubscriptionId": record.get("id"),
        "trialEndDate": _iso_from_epoch(handle.get("trial_end")),
        "courseIds": course_ids,
        "isNewUser": account.is_new,
    }
    if account.generated_password:
        result["password"] = account.generated_password
    return result


def _basket_products(body: Dict[str, Any]) -> Tuple[List[str], Dict[str, Dict[str, Any]]]:
    product_ids = [str(p) for p in (body.get("productIds") or []) if p]
    if not product_ids:
        raise ValidationError("No products provided")
    products = pricing.get_products_map(product_ids)
    if not products or any(pid not in products for pid in product_ids):
        raise NotFound("Products not found")
    return product_ids, products


def _price_basket(product_ids: List[str], products: Dict[str, Dict[str, Any]], body: Dict[str, Any]) -> Dict[str, Any]:
    """
    Chaque ligne passe par le résolveur de prix (prix d'essai payant pour un abonnement à essai).
    Retour: {details, currency, original, coupon_discount, coupon_code}
    """
    amounts = list(body.get("amounts") or [])
    details: List[Dict[str, Any]] = []
    currency: Optional[str] = None
    coupon_discount = 0.0
    applied_code = None
    for index, pid in enumerate(product_ids):
        product = products[pid]
        requested = amounts[index] if index < len(amounts) else None
        quote = pricing.resolve_price(product, country_code=body.get("countryCode"), requested_amount=requested, coupon_code=body.get("couponCode"))
        policy = trial_policy(product)
        gross = quote.base_amount
        discount = quote.discount
        if pricing.is_subscription_product(product) and policy["enabled"] and policy["price"] > 0 and not product.get("is_pwyf"):
            gross = policy["price"]
            discount = coupons.compute_discount(quote.coupon, gross, quote.currency)
        if currency and quote.currency != currency:
            raise ValidationError("All items must be priced in the same currency")
        currency = quote.currency
        coupon_discount += discount
        applied_code = applied_code or (quote.coupon_code if discount else None)
        details.append({
            "id": pid,
            "name": product.get("name"),
            "course_id": product.get("course_id"),
            "amount": round2(gross),
            "product_type": product.get("product_type"),
        })
    return {
        "details": details,
        "currency": currency or "USD",
        "original": round2(sum(d["amount"] for d in details)),
        "coupon_discount": round2(coupon_discount),
        "coupon_code": applied_code,
    }


def create_payment_intent(body: Dict[str, Any], *, stripe_key: Optional[str] = None) -> Dict[str, Any]:
    """
    Prépare un paiement unique carte pour un panier.
    - panier = un seul produit à essai gratuit: {freeTrialMode: true}, aucun débit
    - remise carte de 2% sur le sous-total après coupon
    - product_details / coupon_discount en métadonnées pour la répartition à la complétion
    """
    email = (body.get("email") or "").strip()
    if not email:
        raise ValidationError("email is required")
    product_ids, products = _basket_products(body)

    if len(product_ids) == 1 and is_free_trial_product(products[product_ids[0]]):
        product = products[product_ids[0]]
        return {
            "freeTrialMode": True,
            "productId": product["id"],
            "productName": product.get("name"),
            "trialDays": trial_policy(product)["days"],
        }

    basket = _price_basket(product_ids, products, body)
    details, currency = basket["details"], basket["currency"]
    original, coupon_discount = basket["original"], basket["coupon_discount"]
    subtotal = round2(original - coupon_discount)
    card_discount = round2(subtotal * CARD_DISCOUNT_RATE)
    final = round2(subtotal - card_discount)
    if final <= 0:
        raise ValidationError("Nothing to charge for this basket")

    adapter = providers.get_adapter("stripe", stripe_key)
    intent = adapter.create_one_time_charge(
        final,
        currency,
        {"email": email, "fullName": body.get("fullName")},
        details,
        metadata={
            "product_ids": json.dumps(product_ids),
            "product_details": json.dumps(details),
            "email": email.lower(),
            "full_name": body.get("fullName") or "",
            "coupon_code": basket["coupon_code"] or "",
            "coupon_discount": f"{coupon_discount:.2f}",
            "card_discount": f"{card_discount:.2f}",
            "original_amount": f"{original:.2f}",
            "final_amount": f"{final:.2f}",
            "currency": currency,
        },
    )
    logger.info("checkout.create_payment_intent id=%s original=%s final=%s %s", intent["id"], original, final, currency)
    return {
        "clientSecret": intent.get("client_secret"),
        "paymentIntentId": intent["id"],
        "amount": final,
        "originalAmount": original,
        "couponDiscount": coupon_discount,
        "discount": card_discount,
        "currency": currency,
    }


def _metadata_items(metadata: Dict[str, Any]) -> List[Dict[str, Any]]:
    raw = metadata.get("product_details")
    if raw:
        try:
            items = json.loads(raw)
        except (TypeError, ValueError):
            raise ValidationError("Invalid product_details metadata")
        return [i for i in items if i.get("id")]
    if metadata.get("product_id"):
        return [{"id": metadata["product_id"], "course_id": metadata.get("course_id"), "amount": None}]
    raise ValidationError("Payment has no product metadata")


def _float(value: Any) -> float:
    try:
        return float(value or 0)
    except (TypeError, ValueError):
        return 0.0


def _fulfil_purchase(
    account: users.BuyerAccount,
    email: str,
    full_name: Optional[str],
    items: List[Dict[str, Any]],
    *,
    first_time: bool,
    coupon_code: Optional[str],
    reference: str,
    total: float,
    currency: str,
) -> List[str]:
    """Accès pour chaque article; CRM, coupon et email de confirmation au premier enregistrement seulement."""
    product_map = pricing.get_products_map([str(i["id"]) for i in items])
    course_ids: List[str] = []
    for item in items:
        product = product_map.get(str(item["id"])) or {"id": item["id"], "course_id": item.get("course_id"), "name": item.get("name")}
        for cid in entitlements.grant_for_product(account.user_id, product, source="purchase"):
            if cid not in course_ids:
                course_ids.append(cid)
        if first_time:
            crm.after_purchase(account.user_id, email, product)

    if first_time:
        coupon = coupons_repository.get_active_coupon(coupon_code) if coupon_code else None
        if coupon:
            best_effort("coupons.redeem", coupons.redeem, coupon)
        notifications.send_order_confirmation(email, {
            "customerName": full_name or email,
            "orderId": reference,
            "products": [{"name": i.get("name"), "price": i.get("amount")} for i in items],
            "total": total,
            "currency": currency,
        })
    return course_ids


def _purchase_result(account: users.BuyerAccount, email: str, password: Optional[str], course_ids: List[str]) -> Dict[str, Any]:
    result: Dict[str, Any] = {
        "success": True,
        "userId": account.user_id,
        "courseIds": course_ids,
        "isNewUser": account.is_new,
    }
    if account.generated_password:
        result["password"] = account.generated_password
    if account.is_new:
        token = users.issue_access_token(email, password or account.generated_password)
        if token:
            result["authToken"] = token
    return result


def complete_one_time_payment(body: Dict[str, Any], *, stripe_key: Optional[str] = None) -> Dict[str, Any]:
    """
    Finalise un paiement unique réussi: compte acheteur, commandes (une par article), accès.
    Rejouable: les commandes sont en insert-or-backfill, les accès en upsert.
    """
    payment_intent_id = (body.get("paymentIntentId") or "").strip()
    if not payment_intent_id:
        raise ValidationError("paymentIntentId is required")
    adapter = providers.get_adapter("stripe", stripe_key)
    intent = adapter.retrieve_payment_intent(payment_intent_id)
    if intent.get("status") != "succeeded":
        raise ValidationError(f"Payment not completed. Status: {intent.get('status')}")

    metadata = dict(intent.get("metadata") or {})
    email = metadata.get("email") or intent.get("receipt_email") or ""
    full_name = metadata.get("full_name") or None
    items = _metadata_items(metadata)
    amount_paid = (intent.get("amount_received") or intent.get("amount") or 0) / 100
    if len(items) == 1 and items[0].get("amount") is None:
        items[0]["amount"] = amount_paid
    currency = (intent.get("currency") or metadata.get("currency") or "USD").upper()

    account = users.resolve_buyer(email, body.get("password"), full_name)
    already_recorded = ledger_repository.find_order(payment_intent_id, str(items[0]["id"]), "stripe") is not None

    detail = best_effort("stripe.fee_lookup", adapter.fetch_transaction_detail, payment_intent_id) or {}
    ledger.record_basket_orders(
        provider="stripe",
        provider_payment_id=payment_intent_id,
        items=[{"product_id": str(i["id"]), "amount": _float(i.get("amount"))} for i in items],
        currency=currency,
        total_fee=detail.get("fee"),
        total_discount=_float(metadata.get("coupon_discount")),
        extra_discount=_float(metadata.get("card_discount") or metadata.get("stripe_discount")),
        coupon_code=metadata.get("coupon_code") or None,
        email=email,
        user_id=account.user_id,
        customer_name=full_name,
    )

    course_ids = _fulfil_purchase(
        account, email, full_name, items,
        first_time=not already_recorded,
        coupon_code=metadata.get("coupon_code") or None,
        reference=payment_intent_id,
        total=amount_paid,
        currency=currency,
    )
    return _purchase_result(account, email, body.get("password"), course_ids)


# --- Paiement unique PayPal ---

def _wallet_custom_id(email: str, coupon_code: Optional[str]) -> str:
    custom_id = json.dumps({"email": email.lower(), "coupon_code": coupon_code or ""}, separators=(",", ":"))
    if len(custom_id) > WALLET_CUSTOM_ID_MAX:
        raise ValidationError("Email address is too long for a PayPal order")
    return custom_id


def _wallet_custom_data(raw: Optional[str]) -> Dict[str, Any]:
    if not raw:
        return {}
    try:
        data = json.loads(raw)
    except (TypeError, ValueError):
        logger.warning("checkout.capture_wallet_order unreadable custom_id=%r", raw)
        return {}
    return data if isinstance(data, dict) else {}


def create_wallet_order(body: Dict[str, Any], *, stripe_key: Optional[str] = None) -> Dict[str, Any]:
    """
    Commande PayPal à paiement unique pour un panier.
    Même résolution de prix que la carte, sans la remise carte. L'acheteur approuve via approveUrl,
    puis capture-wallet-order finalise l'achat.
    """
    email = (body.get("email") or "").strip()
    if not email:
        raise ValidationError("email is required")
    product_ids, products = _basket_products(body)
    if len(product_ids) == 1 and is_free_trial_product(products[product_ids[0]]):
        raise ValidationError("Free trials require a card payment")

    basket = _price_basket(product_ids, products, body)
    final = round2(basket["original"] - basket["coupon_discount"])
    if final <= 0:
        raise ValidationError("Nothing to charge for this basket")

    adapter = providers.get_adapter("paypal", stripe_key)
    order = adapter.create_one_time_charge(
        final,
        basket["currency"],
        {"email": email, "fullName": body.get("fullName")},
        basket["details"],
        metadata={
            "custom_id": _wallet_custom_id(email, basket["coupon_code"]),
            "discount": basket["coupon_discount"],
            "return_url": body.get("returnUrl"),
            "cancel_url": body.get("cancelUrl"),
        },
    )
    logger.info("checkout.create_wallet_order id=%s original=%s final=%s %s", order["id"], basket["original"], final, basket["currency"])
    return {
        "orderId": order["id"],
        "approveUrl": order["approveUrl"],
        "amount": final,
        "originalAmount": basket["original"],
        "couponDiscount": basket["coupon_discount"],
        "currency": basket["currency"],
    }


def capture_wallet_order(body: Dict[str, Any], *, stripe_key: Optional[str] = None) -> Dict[str, Any]:
    """
    Capture une commande PayPal approuvée: compte acheteur, commandes (une par article,
    frais de capture répartis au prorata), accès. Rejouable comme complete-one-time-payment.
    """
    order_id = (body.get("orderId") or "").strip()
    if not order_id:
        raise ValidationError("orderId is required")
    adapter = providers.get_adapter("paypal", stripe_key)
    captured = adapter.capture_order(order_id)
    status = (captured.get("capture_status") or captured.get("status") or "").upper()
    if status != "COMPLETED" or not captured.get("capture_id"):
        raise ValidationError(f"Payment not completed. Status: {status or 'UNKNOWN'}")
    if not captured.get("items"):
        raise ValidationError("Payment has no product metadata")

    capture_id = captured["capture_id"]
    custom = _wallet_custom_data(captured.get("custom_id"))
    email = custom.get("email") or captured.get("payer_email") or ""
    full_name = captured.get("payer_name")
    coupon_code = custom.get("coupon_code") or None
    currency = (captured.get("currency") or "USD").upper()
    items = [{"id": i["product_id"], "name": i.get("name"), "amount": i.get("amount")} for i in captured["items"]]

    account = users.resolve_buyer(email, body.get("password"), full_name)
    already_recorded = ledger_repository.find_order(capture_id, str(items[0]["id"]), "paypal") is not None

    fee = captured.get("fee")
    if fee is None:
        fee = (best_effort("paypal.fee_lookup", adapter.fetch_transaction_detail, capture_id) or {}).get("fee")
    ledger.record_basket_orders(
        provider="paypal",
        provider_payment_id=capture_id,
        items=[{"product_id": str(i["id"]), "amount": _float(i.get("amount"))} for i in items],
        currency=currency,
        total_fee=fee,
        total_discount=_float(captured.get("discount")),
        coupon_code=coupon_code,
        email=email,
        user_id=account.user_id,
        customer_name=full_name,
    )
    logger.info("checkout.capture_wallet_order order=%s capture=%s replay=%s", order_id, capture_id, already_recorded)

    course_ids = _fulfil_purchase(
        account, email, full_name, items,
        first_time=not already_recorded,
        coupon_code=coupon_code,
        reference=capture_id,
        total=captured.get("gross") or 0.0,
        currency=currency,
    )
    result = _purchase_result(account, email, body.get("password"), course_ids)
    result.update({"orderId": order_id, "captureId": capture_id})
    return result


def _wallet_fee(adapter, provider_subscription_id: str, since: datetime, sleep=None) -> Optional[Dict[str, Any]]:
    """Frais PayPal: pas toujours disponibles tout de suite (3 essais, 2 s)."""
    kwargs = {"sleep": sleep} if sleep else {}
    return retry_until(
        lambda: adapter.fetch_transaction_detail(provider_subscription_id, since=since),
        lambda d: bool(d) and d.get("fee") is not None,
        attempts=WALLET_FEE_POLICY.attempts,
        delay=WALLET_FEE_POLICY.delay,
        label="paypal.fee_lookup",
        **kwargs,
    )


def activate_wallet_subscription(body: Dict[str, Any], *, stripe_key: Optional[str] = None, sleep=None) -> Dict[str, Any]:
    """
    Active un abonnement PayPal après approbation par l'acheteur.
    pending -> active, une seule commande initiale, accès accordés.
    """
    provider_subscription_id = (body.get("subscriptionId") or "").strip()
    if not provider_subscription_id:
        raise ValidationError("subscriptionId is required")
    adapter = providers.get_adapter("paypal", stripe_key)
    details = adapter.get_subscription(provider_subscription_id)
    paypal_status = (details.get("status") or "").upper()
    if paypal_status not in ("ACTIVE", "APPROVED"):
        raise ValidationError(f"Subscription not active. Status: {paypal_status}")

    subscription = None
    if body.get("dbSubscriptionId"):
        subscription = ledger_repository.get_subscription(body["dbSubscriptionId"])
    if not subscription:
        subscription = ledger_repository.get_subscription_by_provider_id(provider_subscription_id)
    if not subscription:
        raise NotFound("Subscription not found")

    email = subscription.get("customer_email") or (details.get("subscriber") or {}).get("email_address") or ""
    account = users.resolve_buyer(email, body.get("password"), subscription.get("customer_name"))

    start = _parse_ts(details.get("start_time")) or datetime.now(timezone.utc)
    days = state.period_days(subscription.get("interval"))
    period_end = start + timedelta(days=days)
    trial_end = _parse_ts(subscription.get("trial_end"))
    target = state.TRIALING if trial_end and trial_end > datetime.now(timezone.utc) else state.ACTIVE
    first_activation = subscription.get("status") not in (state.ACTIVE, state.TRIALING)
    subscription = ledger.transition_subscription(
        subscription,
        target if first_activation else subscription["status"],
        {
            "user_id": account.user_id,
            "current_period_start": start.isoformat(),
            "current_period_end": (trial_end or period_end).isoformat() if target == state.TRIALING else period_end.isoformat(),
        },
    )
    logger.info("checkout.activate_wallet_subscription id=%s status=%s user_id=%s", subscription.get("id"), subscription.get("status"), account.user_id)

    detail = _wallet_fee(adapter, provider_subscription_id, since=start - timedelta(days=1), sleep=sleep) or {}
    if detail.get("transaction_id"):
        order, created = ledger.record_wallet_transaction(subscription, {
            "id": detail["transaction_id"],
            "fee": detail.get("fee"),
            "gross": None,
            "currency": subscription.get("currency"),
        })
    else:
        order, created = ledger.record_order(ledger.order_from_subscription(subscription))

    product = pricing.get_product(subscription.get("product_id")) or {"id": subscription.get("product_id"), "name": subscription.get("product_name")}
    entitlements.grant_for_product(account.user_id, product, source="subscription")
    if created:
        crm.after_purchase(account.user_id, email, product)
        notifications.send_order_confirmation(email, {
            "customerName": subscription.get("customer_name") or email,
            "orderId": (order or {}).get("id") or subscription.get("id"),
            "products": [{"name": product.get("name") or "Subscription", "price": subscription.get("amount")}],
            "total": subscription.get("amount"),
            "currency": subscription.get("currency") or "USD",
            "isSubscription": True,
        })

    result: Dict[str, Any] = {
        "success": True,
        "subscriptionId": subscription.get("id"),
        "userId": account.user_id,
    }
    if account.is_new:
        token = users.issue_access_token(email, body.get("password") or account.generated_password)
        if token:
            result["authToken"] = token
        if account.generated_password:
            result["password"] = account.generated_password
    return result
