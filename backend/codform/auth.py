"""Request authentication for the two audiences of this app.

- Storefront requests arrive through the Shopify App Proxy and carry a
  ``signature`` query parameter (HMAC-SHA256 of the sorted query string).
- Admin requests come from the embedded app and carry a Shopify session
  token (HS256 JWT signed with the app secret) as a bearer token.
"""
from __future__ import annotations

import hmac
import hashlib
import logging
import urllib.parse
from typing import Dict, List, Optional, Tuple

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from . import config
from .settings_store import normalize_shop

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


def _client_secret() -> str:
    if not config.SHOPIFY_CLIENT_SECRET:
        raise HTTPException(status_code=500, detail="SHOPIFY_CLIENT_SECRET not configured")
    return config.SHOPIFY_CLIENT_SECRET


# ---------- App Proxy ----------
def proxy_signature_message(qp: List[Tuple[str, str]]) -> str:
    grouped: Dict[str, List[str]] = {}
    for k, v in qp:
        if k == "signature":
            continue
        grouped.setdefault(k, []).append(v)
    return "".join(f"{k}={','.join(grouped[k])}" for k in sorted(grouped))


def sign_proxy_params(qp: List[Tuple[str, str]], secret: str) -> str:
    msg = proxy_signature_message(qp)
    return hmac.new(secret.encode("utf-8"), msg.encode("utf-8"), hashlib.sha256).hexdigest()


def verify_proxy_signature(qp: List[Tuple[str, str]], secret: str) -> bool:
    provided = ""
    for k, v in qp:
        if k == "signature":
            provided = (v or "").strip().lower()
    if not provided:
        return False
    return hmac.compare_digest(sign_proxy_params(qp, secret), provided)


async def require_proxy_shop(request: Request) -> str:
    """Dependency: validate the App Proxy signature and return the shop domain."""
    shop = normalize_shop(request.query_params.get("shop"))
    if not shop:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
    if config.PROXY_SKIP_SIGNATURE:
        return shop
    qp = [(k, str(v)) for (k, v) in request.query_params.multi_items()]
    if not verify_proxy_signature(qp, _client_secret()):
        logger.warning("Rejected app proxy request with bad signature shop=%s", shop)
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
    return shop


# ---------- Embedded admin session tokens ----------
def shop_from_session_token(token: str) -> str:
    cred_exc = HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid session token")
    try:
        payload = jwt.decode(
            token,
            _client_secret(),
            algorithms=["HS256"],
            audience=config.SHOPIFY_CLIENT_ID or None,
            options={"verify_aud": bool(config.SHOPIFY_CLIENT_ID)},
        )
    except JWTError:
        raise cred_exc
    dest = urllib.parse.urlparse(str(payload.get("dest") or "")).netloc.lower()
    iss = urllib.parse.urlparse(str(payload.get("iss") or "")).netloc.lower()
    if not dest or (iss and iss != dest):
        raise cred_exc
    return dest


async def get_current_shop(creds: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme)) -> str:
    if not creds or not creds.credentials:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="missing session token")
    return shop_from_session_token(creds.credentials)


def client_ip(request: Request) -> Optional[str]:
    """
    Address of the caller as recorded by the nearest untrusted hop.

    Each proxy appends to X-Forwarded-For, so anything left of the entries our
    own proxies added is client-supplied. Skip TRUSTED_PROXY_HOPS from the right.
    """
    hops = [h.strip() for h in (request.headers.get("x-forwarded-for") or "").split(",") if h.strip()]
    if hops:
        return hops[max(len(hops) - 1 - config.TRUSTED_PROXY_HOPS, 0)]
    return request.client.host if request.client else None
