from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from . import fraud, offers, rates, settings_store, webhook
from .auth import get_current_shop
from .db import get_session
from .models import AppSettings, BlockedIp, FormField, QuantityOffer, ShippingRate
from .proxy_routes import field_to_dict

router = APIRouter(prefix="/api/admin")

BLOCKED_IPS_PAGE_SIZE = 10
FIELD_TYPES = ("text", "email", "tel", "select")


# ---------- Settings ----------
class SettingsBody(BaseModel):
    otp_enabled: Optional[bool] = None
    otp_validity_minutes: Optional[int] = Field(default=None, ge=1)
    otp_resend_seconds: Optional[int] = Field(default=None, ge=1)
    order_spam_protection_enabled: Optional[bool] = None
    order_spam_window_minutes: Optional[int] = Field(default=None, ge=1)
    auto_ip_blocking_enabled: Optional[bool] = None
    ip_attempt_window_minutes: Optional[int] = Field(default=None, ge=1)
    ip_attempt_limit: Optional[int] = Field(default=None, ge=1)
    twilio_account_sid: Optional[str] = None
    twilio_auth_token: Optional[str] = None
    twilio_verify_service_sid: Optional[str] = None
    google_sheet_url: Optional[str] = None
    facebook_pixel_id: Optional[str] = None
    tiktok_pixel_id: Optional[str] = None
    snapchat_pixel_id: Optional[str] = None
    google_analytics_id: Optional[str] = None


def settings_to_dict(s: AppSettings) -> Dict[str, Any]:
    return {
        "otp_enabled": bool(s.otp_enabled),
        "otp_validity_minutes": settings_store.otp_validity_minutes(s),
        "otp_resend_seconds": settings_store.otp_resend_seconds(s),
        "order_spam_protection_enabled": bool(s.order_spam_protection_enabled),
        "order_spam_window_minutes": settings_store.order_spam_window_minutes(s),
        "auto_ip_blocking_enabled": bool(s.auto_ip_blocking_enabled),
        "ip_attempt_window_minutes": settings_store.ip_attempt_window_minutes(s),
        "ip_attempt_limit": settings_store.ip_attempt_limit(s),
        "twilio_account_sid": s.twilio_account_sid,
        "twilio_auth_token_set": bool((s.twilio_auth_token or "").strip()),
        "twilio_verify_service_sid": s.twilio_verify_service_sid,
        "google_sheet_url": s.google_sheet_url,
        "facebook_pixel_id": s.facebook_pixel_id,
        "tiktok_pixel_id": s.tiktok_pixel_id,
        "snapchat_pixel_id": s.snapchat_pixel_id,
        "google_analytics_id": s.google_analytics_id,
    }


@router.get("/settings")
async def get_settings(shop: str = Depends(get_current_shop), db: AsyncSession = Depends(get_session)):
    return {"settings": settings_to_dict(await settings_store.get_or_default_settings(db, shop))}


@router.put("/settings")
async def update_settings(body: SettingsBody, shop: str = Depends(get_current_shop), db: AsyncSession = Depends(get_session)):
    values = body.model_dump(exclude_unset=True)
    for key in ("twilio_account_sid", "twilio_verify_service_sid", "google_sheet_url"):
        if key in values and values[key] is not None:
            values[key] = values[key].strip() or None
    # blank token in the form means "keep the stored one"
    if not (values.get("twilio_auth_token") or "").strip():
        values.pop("twilio_auth_token", None)
    row = await settings_store.upsert_app_settings(db, shop, values)
    return {"success": True, "settings": settings_to_dict(row)}


# ---------- Form designer ----------
class FormDesignBody(BaseModel):
    form_title: Optional[str] = None
    form_subtitle: Optional[str] = None
    button_text: Optional[str] = None
    form_bg_color: Optional[str] = None
    form_text_color: Optional[str] = None
    form_label_color: Optional[str] = None
    button_color: Optional[str] = None
    button_text_color: Optional[str] = None


@router.get("/form-design")
async def get_form_design(shop: str = Depends(get_current_shop), db: AsyncSession = Depends(get_session)):
    return {"design": settings_store.form_design(await settings_store.get_or_default_settings(db, shop))}


@router.put("/form-design")
async def update_form_design(body: FormDesignBody, shop: str = Depends(get_current_shop), db: AsyncSession = Depends(get_session)):
    row = await settings_store.upsert_app_settings(db, shop, body.model_dump(exclude_unset=True))
    return {"success": True, "design": settings_store.form_design(row)}


# ---------- Shipping rates ----------
class ShippingRateBody(BaseModel):
    country: str
    city: str = ""
    rate: float = Field(ge=0)
    currency: str = "PKR"


def rate_to_dict(r: ShippingRate) -> Dict[str, Any]:
    return {"id": r.id, "country": r.country, "city": r.city, "rate": r.rate, "currency": r.currency}


@router.get("/shipping-rates")
async def list_shipping_rates(shop: str = Depends(get_current_shop), db: AsyncSession = Depends(get_session)):
    return {"rates": [rate_to_dict(r) for r in await rates.list_rates(db, shop)]}


@router.post("/shipping-rates")
async def save_shipping_rate(body: ShippingRateBody, shop: str = Depends(get_current_shop), db: AsyncSession = Depends(get_session)):
    if not body.country.strip():
        raise HTTPException(status_code=400, detail="country required")
    row = await rates.upsert_rate(
        db,
        shop,
        country=body.country,
        city=body.city,
        rate=body.rate,
        currency=(body.currency or "PKR").strip().upper(),
    )
    return {"success": True, "rate": rate_to_dict(row)}


async def _owned_row(db: AsyncSession, model, row_id: int, shop: str):
    row = await db.get(model, row_id)
    if not row or row.shop != shop:
        raise HTTPException(status_code=404, detail="not found")
    return row


@router.delete("/shipping-rates/{rate_id}")
async def delete_shipping_rate(rate_id: int, shop: str = Depends(get_current_shop), db: AsyncSession = Depends(get_session)):
    row = await _owned_row(db, ShippingRate, rate_id, shop)
    await db.delete(row)
    await db.commit()
    return {"success": True}


# ---------- Blocked IPs ----------
class BlockIpBody(BaseModel):
    ip_address: str


@router.get("/blocked-ips")
async def list_blocked_ips(
    page: int = Query(1, ge=1),
    shop: str = Depends(get_current_shop),
    db: AsyncSession = Depends(get_session),
):
    skip = (page - 1) * BLOCKED_IPS_PAGE_SIZE
    rows = (await db.scalars(
        select(BlockedIp)
        .where(BlockedIp.shop == shop)
        .order_by(BlockedIp.created_at.desc(), BlockedIp.id.desc())
        .offset(skip)
        .limit(BLOCKED_IPS_PAGE_SIZE)
    )).all()
    total = await db.scalar(select(func.count()).select_from(BlockedIp).where(BlockedIp.shop == shop)) or 0
    return {
        "blockedIps": [
            {"id": r.id, "ipAddress": r.ip_address, "reason": r.reason, "createdAt": r.created_at.isoformat() if r.created_at else None}
            for r in rows
        ],
        "pageInfo": {
            "hasNextPage": skip + BLOCKED_IPS_PAGE_SIZE < total,
            "hasPreviousPage": page > 1,
        },
        "totalCount": total,
    }


@router.post("/blocked-ips")
async def add_blocked_ip(body: BlockIpBody, shop: str = Depends(get_current_shop), db: AsyncSession = Depends(get_session)):
    ip = body.ip_address.strip()
    if not ip:
        raise HTTPException(status_code=400, detail="ip_address required")
    row = await fraud.block_ip(db, shop, ip, reason="manual")
    return {"success": True, "id": row.id}


@router.delete("/blocked-ips/{ip_id}")
async def delete_blocked_ip(ip_id: int, shop: str = Depends(get_current_shop), db: AsyncSession = Depends(get_session)):
    row = await _owned_row(db, BlockedIp, ip_id, shop)
    await db.delete(row)
    await db.commit()
    return {"success": True}


# ---------- Form builder ----------
class FormFieldBody(BaseModel):
    field_type: str = "text"
    name: str
    label: str
    placeholder: Optional[str] = None
    options: Optional[List[str]] = None
    is_required: bool = True
    sort_order: int = 0


def _check_field(body: FormFieldBody) -> None:
    if body.field_type not in FIELD_TYPES:
        raise HTTPException(status_code=400, detail=f"field_type must be one of {', '.join(FIELD_TYPES)}")
    if not body.name.strip() or " " in body.name.strip():
        raise HTTPException(status_code=400, detail="name must be non-empty with no spaces")


@router.get("/form-fields")
async def list_form_fields(shop: str = Depends(get_current_shop), db: AsyncSession = Depends(get_session)):
    rows = (await db.scalars(
        select(FormField).where(FormField.shop == shop).order_by(FormField.sort_order.asc(), FormField.id.asc())
    )).all()
    return {"fields": [field_to_dict(f) for f in rows]}


@router.post("/form-fields")
async def create_form_field(body: FormFieldBody, shop: str = Depends(get_current_shop), db: AsyncSession = Depends(get_session)):
    _check_field(body)
    row = FormField(shop=shop, **{**body.model_dump(), "name": body.name.strip()})
    db.add(row)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise HTTPException(status_code=400, detail="a field with this name already exists")
    await db.refresh(row)
    return {"success": True, "field": field_to_dict(row)}


@router.put("/form-fields/{field_id}")
async def update_form_field(field_id: int, body: FormFieldBody, shop: str = Depends(get_current_shop), db: AsyncSession = Depends(get_session)):
    _check_field(body)
    row = await _owned_row(db, FormField, field_id, shop)
    # name is the field's stable key in the storefront form
    for key, value in body.model_dump(exclude={"name"}).items():
        setattr(row, key, value)
    await db.commit()
    await db.refresh(row)
    return {"success": True, "field": field_to_dict(row)}


@router.delete("/form-fields/{field_id}")
async def delete_form_field(field_id: int, shop: str = Depends(get_current_shop), db: AsyncSession = Depends(get_session)):
    row = await _owned_row(db, FormField, field_id, shop)
    await db.delete(row)
    await db.commit()
    return {"success": True}


# ---------- Quantity offers ----------
class QuantityOfferBody(BaseModel):
    product_id: str
    min_quantity: int = Field(ge=1)
    discount_type: str = "percentage"
    discount_value: float = Field(ge=0)
    title: Optional[str] = None


@router.get("/quantity-offers")
async def list_quantity_offers(shop: str = Depends(get_current_shop), db: AsyncSession = Depends(get_session)):
    rows = (await db.scalars(
        select(QuantityOffer)
        .where(QuantityOffer.shop == shop)
        .order_by(QuantityOffer.product_id.asc(), QuantityOffer.min_quantity.asc())
    )).all()
    return {"offers": [offers.offer_to_dict(o) for o in rows]}


@router.post("/quantity-offers")
async def create_quantity_offer(body: QuantityOfferBody, shop: str = Depends(get_current_shop), db: AsyncSession = Depends(get_session)):
    if body.discount_type not in offers.DISCOUNT_TYPES:
        raise HTTPException(status_code=400, detail="discount_type must be percentage or fixed")
    if body.discount_type == "percentage" and body.discount_value > 100:
        raise HTTPException(status_code=400, detail="percentage discount cannot exceed 100")
    row = QuantityOffer(shop=shop, **{**body.model_dump(), "product_id": body.product_id.strip()})
    db.add(row)
    await db.commit()
    await db.refresh(row)
    return {"success": True, "offer": offers.offer_to_dict(row)}


@router.delete("/quantity-offers/{offer_id}")
async def delete_quantity_offer(offer_id: int, shop: str = Depends(get_current_shop), db: AsyncSession = Depends(get_session)):
    row = await _owned_row(db, QuantityOffer, offer_id, shop)
    await db.delete(row)
    await db.commit()
    return {"success": True}


# ---------- Google Sheets ----------
@router.get("/gsheets-guide")
async def gsheets_guide(shop: str = Depends(get_current_shop)):
    return {"script": webhook.APPS_SCRIPT_SOURCE, "headers": ",".join(webhook.SHEET_HEADERS)}
