from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from . import config
from .models import ShippingRate
from .settings_store import normalize_shop


@dataclass
class ResolvedRate:
    rate: float
    currency: str
    source: str  # city | country | fallback

    def as_dict(self) -> Dict[str, Any]:
        return {"rate": self.rate, "currency": self.currency, "source": self.source}


def _key(value: Optional[str]) -> str:
    return (value or "").strip().lower()


async def _find_rate(db: AsyncSession, shop: str, country: str, city: str) -> Optional[ShippingRate]:
    q = (
        select(ShippingRate)
        .where(
            ShippingRate.shop == normalize_shop(shop),
            func.lower(ShippingRate.country) == country,
            func.lower(ShippingRate.city) == city,
        )
        .limit(1)
    )
    return await db.scalar(q)


async def resolve_shipping_rate(db: AsyncSession, shop: str, country: Optional[str], city: Optional[str]) -> ResolvedRate:
    """City row beats the country default row ("" city) beats the hardcoded fallback."""
    country_key = _key(country)
    city_key = _key(city)
    if country_key:
        if city_key:
            row = await _find_rate(db, shop, country_key, city_key)
            if row is not None:
                return ResolvedRate(float(row.rate), row.currency or config.FALLBACK_CURRENCY, "city")
        row = await _find_rate(db, shop, country_key, "")
        if row is not None:
            return ResolvedRate(float(row.rate), row.currency or config.FALLBACK_CURRENCY, "country")
    return ResolvedRate(config.FALLBACK_SHIPPING_RATE, config.FALLBACK_CURRENCY, "fallback")


async def list_rates(db: AsyncSession, shop: str) -> list[ShippingRate]:
    q = (
        select(ShippingRate)
        .where(ShippingRate.shop == normalize_shop(shop))
        .order_by(ShippingRate.country.asc(), ShippingRate.city.asc())
    )
    return list((await db.scalars(q)).all())


async def rates_by_city(db: AsyncSession, shop: str, country: Optional[str] = None) -> Dict[str, float]:
    rates: Dict[str, float] = {}
    for r in await list_rates(db, shop):
        if country and _key(r.country) != _key(country):
            continue
        if r.city:
            rates[r.city.lower()] = r.rate
    return rates


async def locations(db: AsyncSession, shop: str) -> Dict[str, Dict[str, Any]]:
    """Group the shop's rates by country for the storefront country/city pickers."""
    out: Dict[str, Dict[str, Any]] = {}
    for r in await list_rates(db, shop):
        loc = out.setdefault(r.country, {"name": r.country, "cities": [], "rates": {}})
        entry = {"rate": r.rate, "currency": r.currency}
        if r.city:
            loc["cities"].append(r.city)
            loc["rates"][r.city.lower()] = entry
        else:
            loc["rates"]["default"] = entry
    return out


async def upsert_rate(
    db: AsyncSession,
    shop: str,
    *,
    country: str,
    city: str,
    rate: float,
    currency: str,
) -> ShippingRate:
    country = (country or "").strip()
    city = (city or "").strip()
    q = select(ShippingRate).where(
        ShippingRate.shop == normalize_shop(shop),
        func.lower(ShippingRate.country) == country.lower(),
        func.lower(ShippingRate.city) == city.lower(),
    )
    row = await db.scalar(q)
    if not row:
        row = ShippingRate(shop=normalize_shop(shop), country=country, city=city, rate=rate, currency=currency)
        db.add(row)
    else:
        row.rate = rate
        row.currency = currency
    await db.commit()
    await db.refresh(row)
    return row
