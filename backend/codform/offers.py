from __future__ import annotations

from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from .models import QuantityOffer
from .settings_store import normalize_shop

DISCOUNT_TYPES = ("percentage", "fixed")


def select_offer(offers: Iterable[QuantityOffer], quantity: int) -> Optional[QuantityOffer]:
    """Return the qualifying offer with the highest quantity threshold, if any."""
    best: Optional[QuantityOffer] = None
    for offer in offers or []:
        if offer.min_quantity is None or quantity < offer.min_quantity:
            continue
        if best is None or offer.min_quantity > best.min_quantity:
            best = offer
    return best


def line_discount(offer: QuantityOffer, line_price: float) -> float:
    if line_price <= 0:
        return 0.0
    value = float(offer.discount_value or 0)
    if offer.discount_type == "fixed":
        amount = value
    else:
        amount = line_price * value / 100.0
    return round(max(0.0, min(amount, line_price)), 2)


def compute_discount(lines: Iterable[Dict[str, Any]], offers_by_product: Dict[str, List[QuantityOffer]]) -> float:
    """Sum the best-tier discount of every cart line.

    Each line is ``{"product_id", "quantity", "line_price"}``.
    """
    total = 0.0
    for line in lines:
        offer = select_offer(offers_by_product.get(str(line.get("product_id") or ""), []), int(line.get("quantity") or 0))
        if offer is None:
            continue
        total += line_discount(offer, float(line.get("line_price") or 0))
    return round(total, 2)


async def offers_for_products(db: AsyncSession, shop: str, product_ids: Iterable[Any]) -> List[QuantityOffer]:
    ids = [str(p) for p in product_ids if p is not None and str(p).strip()]
    if not ids:
        return []
    q = (
        select(QuantityOffer)
        .where(QuantityOffer.shop == normalize_shop(shop), QuantityOffer.product_id.in_(ids))
        .order_by(QuantityOffer.product_id.asc(), QuantityOffer.min_quantity.asc())
    )
    return list((await db.scalars(q)).all())


def group_by_product(offers: Iterable[QuantityOffer]) -> Dict[str, List[QuantityOffer]]:
    grouped: Dict[str, List[QuantityOffer]] = {}
    for o in offers:
        grouped.setdefault(str(o.product_id), []).append(o)
    return grouped


def offer_to_dict(o: QuantityOffer) -> Dict[str, Any]:
    return {
        "id": o.id,
        "productId": o.product_id,
        "minQuantity": o.min_quantity,
        "discountType": o.discount_type,
        "discountValue": o.discount_value,
        "title": o.title,
    }
