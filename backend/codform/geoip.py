import logging
from typing import Dict, Optional, Tuple
from time import time as _now

import httpx

from . import config

logger = logging.getLogger(__name__)

# 24 hours TTL
_TTL_SECONDS = 24 * 60 * 60
_CACHE: Dict[str, Tuple[float, str]] = {}
_MAX_KEYS = 5000

IP_API_URL = "http://ip-api.com/json/{ip}"


def _cache_get(key: str) -> Optional[str]:
	ts, val = _CACHE.get(key, (0.0, ""))
	if not val:
		return None
	if (_now() - ts) > _TTL_SECONDS:
		_CACHE.pop(key, None)
		return None
	return val


def _cache_set(key: str, val: str) -> None:
	_CACHE[key] = (_now(), val)
	if len(_CACHE) > _MAX_KEYS:
		oldest_key = min(_CACHE.items(), key=lambda kv: kv[1][0])[0]
		_CACHE.pop(oldest_key, None)


def clear_cache() -> None:
	_CACHE.clear()


async def country_for_ip(ip: Optional[str]) -> str:
	"""
	Return the country name for ``ip`` using ip-api.com.
	Falls back to the default country on any failure.
	"""
	ip = (ip or "").strip() or config.GEOIP_DEFAULT_IP
	cached = _cache_get(ip)
	if cached:
		return cached
	try:
		async with httpx.AsyncClient(timeout=config.HTTP_TIMEOUT_SECONDS) as client:
			resp = await client.get(IP_API_URL.format(ip=ip), params={"fields": "status,country"})
			resp.raise_for_status()
			data = resp.json() or {}
	except (httpx.HTTPError, ValueError) as e:
		logger.info("IP lookup failed for %s: %s", ip, e)
		return config.DEFAULT_COUNTRY
	country = (data.get("country") or "").strip()
	if not country:
		return config.DEFAULT_COUNTRY
	_cache_set(ip, country)
	return country
