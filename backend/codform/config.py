import os


def _bool_env(name: str, default: bool = False) -> bool:
    v = (os.environ.get(name) or "").strip().lower()
    if not v:
        return default
    return v in ("1", "true", "yes", "on")


def _float_env(name: str, default: float) -> float:
    try:
        return float((os.environ.get(name) or "").strip() or default)
    except ValueError:
        return default


def _int_env(name: str, default: int) -> int:
    try:
        return int((os.environ.get(name) or "").strip() or default)
    except ValueError:
        return default


# ---------- Shopify ----------
SHOPIFY_API_VERSION = os.environ.get("SHOPIFY_API_VERSION", "2025-01").strip()
SHOPIFY_CLIENT_ID = os.environ.get("SHOPIFY_CLIENT_ID", "").strip()
SHOPIFY_CLIENT_SECRET = os.environ.get("SHOPIFY_CLIENT_SECRET", "").strip()

# Single-shop fallback (custom app installed by token) when no OAuth install is stored
FALLBACK_STORE_DOMAIN = os.environ.get("SHOPIFY_STORE_DOMAIN", "").strip().lower()
FALLBACK_ACCESS_TOKEN = os.environ.get("SHOPIFY_ACCESS_TOKEN", "").strip()

PROXY_SKIP_SIGNATURE = _bool_env("SHOPIFY_PROXY_SKIP_SIGNATURE", default=False)

# Our own proxies in front of the app that append to X-Forwarded-For (0 = none)
TRUSTED_PROXY_HOPS = max(_int_env("TRUSTED_PROXY_HOPS", 0), 0)

HTTP_TIMEOUT_SECONDS = _float_env("HTTP_TIMEOUT_SECONDS", 15.0)
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").strip().upper() or "INFO"

# ---------- Business defaults (used when a shop leaves a setting blank) ----------
DEFAULT_OTP_VALIDITY_MINUTES = 10
DEFAULT_OTP_RESEND_SECONDS = 60
DEFAULT_ORDER_SPAM_WINDOW_MINUTES = 60
DEFAULT_IP_ATTEMPT_WINDOW_MINUTES = 60
DEFAULT_IP_ATTEMPT_LIMIT = 5

FALLBACK_SHIPPING_RATE = 250.0
FALLBACK_CURRENCY = "PKR"
DEFAULT_COUNTRY_CODE = "PK"

GEOIP_DEFAULT_IP = "103.108.164.0"
DEFAULT_COUNTRY = "Pakistan"

FORM_DESIGN_DEFAULTS = {
    "form_title": "Cash on Delivery",
    "form_subtitle": "Please enter your shipping address",
    "button_text": "Complete Order",
    "form_bg_color": "#FFFFFF",
    "form_text_color": "#000000",
    "form_label_color": "#333333",
    "button_color": "#008060",
    "button_text_color": "#FFFFFF",
}
