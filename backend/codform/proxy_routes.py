import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query, Request
from fastapi.responses import JSONResponse
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from . import fraud, geoip, offers, orders, rates, settings_store, twilio_verify
from .auth import client_ip, require_proxy_shop
from .db import get_session
from .errors import CodOrderError
from .models import FormField
from .phone import format_phone

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/proxy")


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse({"success": False, "error": message}, status_code=status_code)


async def _json_body(request: Request) -> Any:
    try:
        return await request.json()
    except ValueError:
        return None


def field_to_dict(f: FormField) -> Dict[str, Any]:
    return {
        "id": f.id,
        "fieldType": f.field_type,
        "name": f.name,
        "label": f.label,
        "placeholder": f.placeholder,
        "options": f.options or [],
        "isRequired": bool(f.is_required),
        "sortOrder": f.sort_order,
    }


@router.post("/send-otp")
async def send_otp(
    request: Request,
    shop: str = Depends(require_proxy_shop),
    db: AsyncSession = Depends(get_session),
):
    body = await _json_body(request)
    raw_phone = (body or {}).get("phone") if isinstance(body, dict) else None
    phone = format_phone(raw_phone)
    if not phone:
        return _error(400, "Phone number required.")

    settings = await settings_store.get_or_default_settings(db, shop)
    if not settings.otp_enabled:
        return _error(400, "OTP verification is disabled.")

    cooldown = settings_store.otp_resend_seconds(settings)
    if await fraud.has_recent_otp(db, shop, phone, cooldown):
        return _error(429, f"Please wait {cooldown} seconds before requesting another OTP.")

    try:
        creds = twilio_verify.credentials_from_settings(settings)
        status = await twilio_verify.start_verification(creds, phone)
    except twilio_verify.TwilioVerifyError as e:
        logger.warning("OTP send failed shop=%s: %s", shop, e)
        return _error(502, "Could not send OTP. Please try again.")

    await fraud.record_otp(db, shop, phone, status)
    return {"success": True, "message": "OTP sent."}


@router.post("/create-order")
async def create_order(
    request: Request,
    background: BackgroundTasks,
    shop: str = Depends(require_proxy_shop),
    db: AsyncSession = Depends(get_session),
):
    payload = await _json_body(request)
    try:
        result = await orders.create_cod_order(db, shop, payload, client_ip(request), background)
    except CodOrderError as e:
        return _error(e.status_code, e.message)
    return {"success": True, "orderId": result.order_id, "total": result.total}


@router.get("/get-rates")
async def get_rates(
    country: Optional[str] = Query(None),
    city: Optional[str] = Query(None),
    shop: str = Depends(require_proxy_shop),
    db: AsyncSession = Depends(get_session),
):
    out: Dict[str, Any] = {"rates": await rates.rates_by_city(db, shop, country)}
    if country and city is not None:
        resolved = await rates.resolve_shipping_rate(db, shop, country, city)
        out["resolved"] = resolved.as_dict()
    return out


@router.get("/get-locations")
async def get_locations(
    shop: str = Depends(require_proxy_shop),
    db: AsyncSession = Depends(get_session),
):
    return {"locations": await rates.locations(db, shop)}


@router.post("/get-offers")
async def get_offers(
    request: Request,
    shop: str = Depends(require_proxy_shop),
    db: AsyncSession = Depends(get_session),
):
    body = await _json_body(request)
    product_ids = body.get("productIds") if isinstance(body, dict) else None
    if not isinstance(product_ids, list):
        return {"offers": []}
    rows = await offers.offers_for_products(db, shop, product_ids)
    return {"offers": [offers.offer_to_dict(o) for o in rows]}


@router.get("/get-pixels")
async def get_pixels(
    shop: str = Depends(require_proxy_shop),
    db: AsyncSession = Depends(get_session),
):
    s = await settings_store.get_app_settings(db, shop)
    if not s:
        return {"pixels": {}}
    return {
        "pixels": {
            "facebookPixelId": s.facebook_pixel_id,
            "tiktokPixelId": s.tiktok_pixel_id,
            "snapchatPixelId": s.snapchat_pixel_id,
            "googleAnalyticsId": s.google_analytics_id,
        }
    }


@router.get("/get-settings")
async def get_settings(
    shop: str = Depends(require_proxy_shop),
    db: AsyncSession = Depends(get_session),
):
    s = await settings_store.get_or_default_settings(db, shop)
    fields = (await db.scalars(
        select(FormField).where(FormField.shop == shop).order_by(FormField.sort_order.asc(), FormField.id.asc())
    )).all()
    return {
        "otpEnabled": bool(s.otp_enabled),
        "design": settings_store.form_design(s),
        "fields": [field_to_dict(f) for f in fields],
    }


@router.get("/get-country-by-ip")
async def get_country_by_ip(request: Request):
    fwd = (request.headers.get("x-forwarded-for") or "").split(",")[0].strip()
    return {"country": await geoip.country_for_ip(fwd or None)}
