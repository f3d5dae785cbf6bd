import asyncio
import time
from datetime import datetime, timezone
from typing import Any, Dict

import httpx
from jose import jwt

from backend.codform import auth, config
from backend.codform.db import SessionLocal
from backend.codform.models import AppSettings
from backend.codform.settings_store import set_installation

SHOP = "test-shop.myshopify.com"
OTHER_SHOP = "other-shop.myshopify.com"


def run(coro):
    return asyncio.run(coro)


def with_session(fn, *args, **kwargs):
    """Run ``await fn(session, *args, **kwargs)`` in a fresh session."""
    async def _go():
        async with SessionLocal() as session:
            return await fn(session, *args, **kwargs)
    return asyncio.run(_go())


async def seed_installation(shop: str) -> None:
    async with SessionLocal() as session:
        await set_installation(session, shop, access_token="shpat_test", scopes="write_draft_orders")


async def _add_all(rows):
    async with SessionLocal() as session:
        session.add_all(rows)
        await session.commit()


def add_rows(*rows) -> None:
    asyncio.run(_add_all(list(rows)))


def save_settings(shop: str = SHOP, **values) -> None:
    base = {
        "otp_enabled": False,
        "order_spam_protection_enabled": False,
        "auto_ip_blocking_enabled": False,
    }
    base.update(values)
    add_rows(AppSettings(shop=shop, **base))


def count_rows(model, **filters) -> int:
    from sqlalchemy import func, select

    async def _go():
        async with SessionLocal() as session:
            q = select(func.count()).select_from(model)
            for k, v in filters.items():
                q = q.where(getattr(model, k) == v)
            return await session.scalar(q)
    return asyncio.run(_go())


def proxy_params(shop: str = SHOP, **extra) -> Dict[str, str]:
    """Query params as Shopify's App Proxy would send them, signed."""
    params = {
        "shop": shop,
        "logged_in_customer_id": "",
        "path_prefix": "/apps/cod",
        "timestamp": str(int(time.time())),
        **{k: str(v) for k, v in extra.items()},
    }
    params["signature"] = auth.sign_proxy_params(list(params.items()), config.SHOPIFY_CLIENT_SECRET)
    return params


def session_token(shop: str = SHOP, **overrides) -> str:
    now = int(time.time())
    payload = {
        "iss": f"https://{shop}/admin",
        "dest": f"https://{shop}",
        "aud": config.SHOPIFY_CLIENT_ID,
        "sub": "42",
        "exp": now + 60,
        "nbf": now - 5,
        "iat": now,
        "jti": "test",
        "sid": "session",
    }
    payload.update(overrides)
    return jwt.encode(payload, config.SHOPIFY_CLIENT_SECRET, algorithm="HS256")


def admin_headers(shop: str = SHOP) -> Dict[str, str]:
    return {"Authorization": f"Bearer {session_token(shop)}"}


def patch_async_client(monkeypatch, handler) -> None:
    """Route every httpx.AsyncClient created during the test through ``handler``."""
    real = httpx.AsyncClient

    def factory(*args: Any, **kwargs: Any):
        kwargs["transport"] = httpx.MockTransport(handler)
        return real(*args, **kwargs)

    monkeypatch.setattr(httpx, "AsyncClient", factory)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)
