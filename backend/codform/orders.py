"""Cash-on-delivery order creation for the storefront form.

Flow: validate → IP block-list → auto IP blocking → phone spam throttle →
OTP check → shipping rate + quantity discount → draftOrderCreate →
draftOrderComplete → order log + sheet webhook.
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from fastapi import BackgroundTasks
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from . import config, fraud, offers, rates, settings_store, shopify_admin, twilio_verify, webhook
from .errors import ForbiddenError, InvalidOtpError, MissingFieldError, RateLimitedError
from .phone import format_phone

logger = logging.getLogger(__name__)

ORDER_TAGS = ["COD", "App Order"]


# ---------- Schemas ----------
class CartItem(BaseModel):
    model_config = ConfigDict(coerce_numbers_to_str=True)

    variant_id: str
    product_id: Optional[str] = None
    quantity: int = Field(default=1, ge=1)
    price: float = Field(default=0.0, ge=0)  # unit price, shop currency
    title: Optional[str] = None


class CustomerInfo(BaseModel):
    model_config = ConfigDict(coerce_numbers_to_str=True, populate_by_name=True)

    name: str = ""
    phone: str = ""
    email: Optional[str] = None
    address: str = ""
    city: str = ""
    province: Optional[str] = None
    country: Optional[str] = None
    country_code: Optional[str] = Field(default=None, alias="countryCode")


class CreateOrderRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, coerce_numbers_to_str=True)

    cart_items: List[CartItem] = Field(default_factory=list, alias="cartItems")
    customer: Optional[CustomerInfo] = None
    otp: Optional[str] = None


@dataclass
class OrderResult:
    order_id: Optional[str]
    subtotal: float
    discount: float
    shipping: float
    currency: str

    @property
    def total(self) -> float:
        return round(self.subtotal - self.discount + self.shipping, 2)


def _log_order_event(payload: Dict[str, Any]) -> None:
    logger.info(json.dumps({"component": "cod_order", **payload}, ensure_ascii=False, default=str))


def parse_request(payload: Any) -> CreateOrderRequest:
    """Validate the raw storefront body; any missing or malformed field is a MissingFieldError."""
    if not isinstance(payload, dict):
        raise MissingFieldError()
    try:
        req = CreateOrderRequest.model_validate(payload)
    except ValidationError as e:
        logger.info("Rejected malformed order body: %s", e.errors(include_url=False))
        raise MissingFieldError() from e
    c = req.customer
    if not req.cart_items or c is None:
        raise MissingFieldError()
    if not format_phone(c.phone) or not c.address.strip() or not c.city.strip():
        raise MissingFieldError()
    return req


def split_name(full_name: str) -> tuple[str, str]:
    parts = (full_name or "").strip().split()
    first = parts[0] if parts else "Guest"
    last = " ".join(parts[1:]) or "User"
    return first, last


def build_draft_order_input(
    req: CreateOrderRequest,
    *,
    phone: str,
    shipping: rates.ResolvedRate,
    discount: float,
) -> Dict[str, Any]:
    c = req.customer
    first, last = split_name(c.name)
    draft: Dict[str, Any] = {
        "lineItems": [
            {"variantId": f"gid://shopify/ProductVariant/{item.variant_id}", "quantity": item.quantity}
            for item in req.cart_items
        ],
        "customAttributes": [{"key": "Payment Method", "value": "Cash on Delivery"}],
        "shippingAddress": {
            "address1": c.address.strip(),
            "city": c.city.strip(),
            "province": (c.province or "").strip() or None,
            "phone": phone,
            "countryCode": (c.country_code or config.DEFAULT_COUNTRY_CODE).strip().upper(),
            "firstName": first,
            "lastName": last,
        },
        "phone": phone,
        "email": (c.email or "").strip() or f"{phone.lstrip('+')}@example.com",
        "tags": list(ORDER_TAGS),
        "presentmentCurrencyCode": shipping.currency,
        "shippingLine": {
            "title": "Shipping",
            "priceWithCurrency": {"amount": f"{shipping.rate:.2f}", "currencyCode": shipping.currency},
        },
    }
    if discount > 0:
        draft["appliedDiscount"] = {
            "title": "Quantity offer",
            "description": "Quantity offer",
            "value": discount,
            "valueType": "FIXED_AMOUNT",
        }
    return draft


def build_sheet_payload(req: CreateOrderRequest, *, order_id: Optional[str], phone: str, total: float) -> Dict[str, Any]:
    c = req.customer
    return {
        "orderId": order_id,
        "customer": {
            "name": c.name,
            "phone": phone,
            "address": c.address,
            "city": c.city,
            "country": c.country or config.DEFAULT_COUNTRY,
        },
        "products": [f"{item.title or item.variant_id} x {item.quantity}" for item in req.cart_items],
        "total": total,
    }


async def _verify_otp(db: AsyncSession, shop: str, settings, phone: str, code: Optional[str]) -> None:
    code = (code or "").strip()
    if not code:
        raise InvalidOtpError()
    window_seconds = settings_store.otp_validity_minutes(settings) * 60
    if not await fraud.has_recent_otp(db, shop, phone, window_seconds):
        raise InvalidOtpError()
    try:
        creds = twilio_verify.credentials_from_settings(settings)
        approved = await twilio_verify.check_verification(creds, phone, code)
    except twilio_verify.TwilioVerifyError as e:
        logger.warning("OTP verification failed shop=%s: %s", shop, e)
        raise InvalidOtpError() from e
    if not approved:
        raise InvalidOtpError()


async def create_cod_order(
    db: AsyncSession,
    shop: str,
    payload: Any,
    ip: Optional[str],
    background: BackgroundTasks,
) -> OrderResult:
    shop = settings_store.normalize_shop(shop)
    req = parse_request(payload)

    if await fraud.is_ip_blocked(db, shop, ip):
        _log_order_event({"shop": shop, "ip": ip, "result": "blocked_ip"})
        raise ForbiddenError()

    settings = await settings_store.get_or_default_settings(db, shop)
    phone = format_phone(req.customer.phone)

    if settings.auto_ip_blocking_enabled:
        if await fraud.register_ip_attempt(db, shop, ip, settings):
            _log_order_event({"shop": shop, "ip": ip, "result": "auto_blocked"})
            raise ForbiddenError()

    if settings.order_spam_protection_enabled:
        if await fraud.has_recent_order(db, shop, phone, settings):
            _log_order_event({"shop": shop, "phone": phone, "result": "spam_throttled"})
            raise RateLimitedError()

    if settings.otp_enabled:
        await _verify_otp(db, shop, settings, phone, req.otp)

    shipping = await rates.resolve_shipping_rate(db, shop, req.customer.country or config.DEFAULT_COUNTRY, req.customer.city)
    product_ids = {item.product_id for item in req.cart_items if item.product_id}
    offers_by_product = offers.group_by_product(await offers.offers_for_products(db, shop, product_ids))
    lines = [
        {"product_id": item.product_id, "quantity": item.quantity, "line_price": item.price * item.quantity}
        for item in req.cart_items
    ]
    subtotal = round(sum(line["line_price"] for line in lines), 2)
    discount = offers.compute_discount(lines, offers_by_product)

    shop_domain, token = await shopify_admin.resolve_shop_credentials(db, shop)
    draft_input = build_draft_order_input(req, phone=phone, shipping=shipping, discount=discount)
    draft_id = await shopify_admin.create_draft_order(shop_domain, token, draft_input)
    order = await shopify_admin.complete_draft_order(shop_domain, token, draft_id)

    order_id = None
    if order:
        order_id = str(order.get("legacyResourceId") or "") or None
    result = OrderResult(order_id=order_id, subtotal=subtotal, discount=discount, shipping=shipping.rate, currency=shipping.currency)
    _log_order_event({
        "shop": shop,
        "draft_id": draft_id,
        "order_id": order_id,
        "total": result.total,
        "discount": discount,
        "shipping_source": shipping.source,
        "result": "created" if order_id else "created_without_id",
    })

    if settings.order_spam_protection_enabled:
        await fraud.record_order(db, shop, phone, order_id)

    sheet_url = (settings.google_sheet_url or "").strip()
    if sheet_url:
        summary = build_sheet_payload(req, order_id=order_id, phone=phone, total=result.total)
        background.add_task(webhook.post_order_summary, sheet_url, summary)

    return result
