from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Tuple

import httpx
from sqlalchemy.ext.asyncio import AsyncSession

from . import config
from .errors import UpstreamUnavailableError, UpstreamValidationError
from .settings_store import get_installation, normalize_shop

logger = logging.getLogger(__name__)

DRAFT_ORDER_CREATE = """
mutation draftOrderCreate($input: DraftOrderInput!) {
  draftOrderCreate(input: $input) {
    draftOrder { id }
    userErrors { field message }
  }
}
"""

DRAFT_ORDER_COMPLETE = """
mutation draftOrderComplete($id: ID!) {
  draftOrderComplete(id: $id) {
    draftOrder {
      order { id legacyResourceId }
    }
    userErrors { field message }
  }
}
"""


async def resolve_shop_credentials(db: AsyncSession, shop: str) -> Tuple[str, str]:
    """Return (shop_domain, access_token) for the requested shop.

    - stored OAuth installation → its offline token
    - SHOPIFY_STORE_DOMAIN matches (or is unset) → SHOPIFY_ACCESS_TOKEN
    """
    key = normalize_shop(shop)
    inst = await get_installation(db, key)
    if inst and (inst.access_token or "").strip():
        return key, inst.access_token.strip()
    if config.FALLBACK_ACCESS_TOKEN and (not config.FALLBACK_STORE_DOMAIN or config.FALLBACK_STORE_DOMAIN == key):
        return key, config.FALLBACK_ACCESS_TOKEN
    logger.error("No Shopify credentials for shop=%s", key)
    raise UpstreamUnavailableError()


def _graphql_url(shop: str) -> str:
    return f"https://{shop}/admin/api/{config.SHOPIFY_API_VERSION}/graphql.json"


async def shopify_graphql(shop: str, access_token: str, query: str, variables: Dict[str, Any] | None) -> Dict[str, Any]:
    """Run one GraphQL request against the Admin API. No retries."""
    headers = {
        "Content-Type": "application/json",
        "Accept": "application/json",
        "X-Shopify-Access-Token": access_token,
    }
    try:
        async with httpx.AsyncClient(timeout=config.HTTP_TIMEOUT_SECONDS) as client:
            r = await client.post(_graphql_url(shop), headers=headers, json={"query": query, "variables": variables or {}})
            r.raise_for_status()
            data = r.json()
    except (httpx.HTTPError, ValueError) as e:
        logger.error("Shopify request failed shop=%s: %s", shop, e)
        raise UpstreamUnavailableError() from e
    if data.get("errors"):
        logger.error("Shopify GraphQL errors shop=%s: %s", shop, data.get("errors"))
        raise UpstreamValidationError()
    return data.get("data") or {}


def _join_user_errors(errs: List[Dict[str, Any]]) -> str:
    return ", ".join([(e.get("message") or "").strip() for e in errs if (e.get("message") or "").strip()])


async def create_draft_order(shop: str, access_token: str, draft_input: Dict[str, Any]) -> str:
    data = await shopify_graphql(shop, access_token, DRAFT_ORDER_CREATE, {"input": draft_input})
    payload = data.get("draftOrderCreate") or {}
    errs = payload.get("userErrors") or []
    if errs:
        raise UpstreamValidationError(_join_user_errors(errs) or None)
    draft_id = ((payload.get("draftOrder") or {}).get("id")) or ""
    if not draft_id:
        raise UpstreamValidationError()
    return draft_id


async def complete_draft_order(shop: str, access_token: str, draft_id: str) -> Optional[Dict[str, Any]]:
    """Turn a draft into a real order. Returns ``{"id", "legacyResourceId"}`` or None."""
    data = await shopify_graphql(shop, access_token, DRAFT_ORDER_COMPLETE, {"id": draft_id})
    payload = data.get("draftOrderComplete") or {}
    errs = payload.get("userErrors") or []
    if errs:
        raise UpstreamValidationError(_join_user_errors(errs) or None)
    return ((payload.get("draftOrder") or {}).get("order")) or None
