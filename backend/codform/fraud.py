"""IP blocking, order spam throttling and OTP send throttling.

All windows are rolling and measured against UTC ``created_at`` values
written by this module.
"""
from __future__ import annotations

import logging
from datetime import timedelta
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from . import settings_store
from .models import AppSettings, BlockedIp, IpOrderLog, OrderLog, OtpLog
from .settings_store import normalize_shop, now_utc

logger = logging.getLogger(__name__)


async def is_ip_blocked(db: AsyncSession, shop: str, ip: Optional[str]) -> bool:
    if not ip:
        return False
    q = select(BlockedIp.id).where(BlockedIp.shop == normalize_shop(shop), BlockedIp.ip_address == ip).limit(1)
    return (await db.scalar(q)) is not None


async def block_ip(db: AsyncSession, shop: str, ip: str, *, reason: str = "manual", commit: bool = True) -> BlockedIp:
    row = await db.scalar(select(BlockedIp).where(BlockedIp.shop == normalize_shop(shop), BlockedIp.ip_address == ip))
    if not row:
        row = BlockedIp(shop=normalize_shop(shop), ip_address=ip, reason=reason, created_at=now_utc())
        db.add(row)
    if commit:
        await db.commit()
        await db.refresh(row)
    return row


async def register_ip_attempt(db: AsyncSession, shop: str, ip: Optional[str], settings: AppSettings) -> bool:
    """Log an order attempt from ``ip`` and block it once the window limit is exceeded.

    The insert, the count and the block are committed together so the count
    always includes this attempt. Returns True when the IP is now blocked.
    """
    if not ip:
        return False
    shop_key = normalize_shop(shop)
    now = now_utc()
    window = timedelta(minutes=settings_store.ip_attempt_window_minutes(settings))
    limit = settings_store.ip_attempt_limit(settings)

    db.add(IpOrderLog(shop=shop_key, ip_address=ip, created_at=now))
    await db.flush()
    count = await db.scalar(
        select(func.count())
        .select_from(IpOrderLog)
        .where(
            IpOrderLog.shop == shop_key,
            IpOrderLog.ip_address == ip,
            IpOrderLog.created_at >= now - window,
        )
    )
    blocked = (count or 0) > limit
    if blocked:
        await block_ip(db, shop_key, ip, reason="auto", commit=False)
        logger.warning("Auto-blocked ip=%s shop=%s after %s attempts", ip, shop_key, count)
    await db.commit()
    return blocked


async def has_recent_order(db: AsyncSession, shop: str, phone: str, settings: AppSettings) -> bool:
    if not phone:
        return False
    since = now_utc() - timedelta(minutes=settings_store.order_spam_window_minutes(settings))
    q = (
        select(OrderLog.id)
        .where(OrderLog.shop == normalize_shop(shop), OrderLog.phone == phone, OrderLog.created_at >= since)
        .limit(1)
    )
    return (await db.scalar(q)) is not None


async def record_order(db: AsyncSession, shop: str, phone: str, order_id: Optional[str]) -> None:
    db.add(OrderLog(shop=normalize_shop(shop), phone=phone, order_id=order_id, created_at=now_utc()))
    await db.commit()


async def has_recent_otp(db: AsyncSession, shop: str, phone: str, seconds: int) -> bool:
    if not phone:
        return False
    since = now_utc() - timedelta(seconds=seconds)
    q = (
        select(OtpLog.id)
        .where(OtpLog.shop == normalize_shop(shop), OtpLog.phone == phone, OtpLog.created_at >= since)
        .limit(1)
    )
    return (await db.scalar(q)) is not None


async def record_otp(db: AsyncSession, shop: str, phone: str, status: Optional[str]) -> None:
    db.add(OtpLog(shop=normalize_shop(shop), phone=phone, status=status, created_at=now_utc()))
    await db.commit()
