from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from . import config
from .models import AppSettings, ShopInstallation


def normalize_shop(shop: Optional[str]) -> str:
    return (shop or "").strip().lower()


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


async def get_app_settings(db: AsyncSession, shop: str) -> Optional[AppSettings]:
    return await db.scalar(select(AppSettings).where(AppSettings.shop == normalize_shop(shop)))


async def get_or_default_settings(db: AsyncSession, shop: str) -> AppSettings:
    """Return the shop's settings row, or an unsaved row carrying column defaults."""
    row = await get_app_settings(db, shop)
    if row is not None:
        return row
    return AppSettings(
        shop=normalize_shop(shop),
        otp_enabled=False,
        order_spam_protection_enabled=False,
        auto_ip_blocking_enabled=False,
    )


async def upsert_app_settings(db: AsyncSession, shop: str, values: Dict[str, Any]) -> AppSettings:
    row = await get_app_settings(db, shop)
    if not row:
        row = AppSettings(
            shop=normalize_shop(shop),
            otp_enabled=False,
            order_spam_protection_enabled=False,
            auto_ip_blocking_enabled=False,
        )
        db.add(row)
    for key, value in values.items():
        setattr(row, key, value)
    await db.commit()
    await db.refresh(row)
    return row


# ---------- Effective thresholds ----------
def _positive(value: Optional[int], default: int) -> int:
    if value is None or value <= 0:
        return default
    return int(value)


def otp_validity_minutes(s: AppSettings) -> int:
    return _positive(s.otp_validity_minutes, config.DEFAULT_OTP_VALIDITY_MINUTES)


def otp_resend_seconds(s: AppSettings) -> int:
    return _positive(s.otp_resend_seconds, config.DEFAULT_OTP_RESEND_SECONDS)


def order_spam_window_minutes(s: AppSettings) -> int:
    return _positive(s.order_spam_window_minutes, config.DEFAULT_ORDER_SPAM_WINDOW_MINUTES)


def ip_attempt_window_minutes(s: AppSettings) -> int:
    return _positive(s.ip_attempt_window_minutes, config.DEFAULT_IP_ATTEMPT_WINDOW_MINUTES)


def ip_attempt_limit(s: AppSettings) -> int:
    return _positive(s.ip_attempt_limit, config.DEFAULT_IP_ATTEMPT_LIMIT)


def form_design(s: AppSettings) -> Dict[str, str]:
    return {k: (getattr(s, k, None) or default) for k, default in config.FORM_DESIGN_DEFAULTS.items()}


# ---------- Shopify installation ----------
async def get_installation(db: AsyncSession, shop: str) -> Optional[ShopInstallation]:
    return await db.get(ShopInstallation, normalize_shop(shop))


async def set_installation(
    db: AsyncSession,
    shop: str,
    *,
    access_token: str,
    scopes: str,
) -> None:
    row = await get_installation(db, shop)
    if not row:
        row = ShopInstallation(shop=normalize_shop(shop), access_token="")
        db.add(row)
    row.access_token = (access_token or "").strip()
    row.scopes = (scopes or "").strip()
    row.installed_at = now_utc()
    await db.commit()
