"""Twilio Verify v2 client using each shop's own credentials."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

import httpx

from . import config
from .models import AppSettings

logger = logging.getLogger(__name__)

VERIFY_BASE_URL = "https://verify.twilio.com/v2"


class TwilioVerifyError(Exception):
    pass


@dataclass
class TwilioCredentials:
    account_sid: str
    auth_token: str
    service_sid: str


def credentials_from_settings(settings: Optional[AppSettings]) -> TwilioCredentials:
    sid = ((settings.twilio_account_sid if settings else None) or "").strip()
    token = ((settings.twilio_auth_token if settings else None) or "").strip()
    svc = ((settings.twilio_verify_service_sid if settings else None) or "").strip()
    if not sid or not token or not svc:
        raise TwilioVerifyError("Twilio credentials not configured for this shop")
    return TwilioCredentials(account_sid=sid, auth_token=token, service_sid=svc)


async def _post(creds: TwilioCredentials, path: str, data: dict) -> dict:
    url = f"{VERIFY_BASE_URL}/Services/{creds.service_sid}/{path}"
    try:
        async with httpx.AsyncClient(timeout=config.HTTP_TIMEOUT_SECONDS) as client:
            resp = await client.post(url, data=data, auth=(creds.account_sid, creds.auth_token))
    except httpx.HTTPError as e:
        raise TwilioVerifyError(f"Twilio Verify request failed: {e}") from e
    if resp.status_code >= 400:
        raise TwilioVerifyError(f"Twilio Verify error {resp.status_code}: {resp.text[:500]}")
    try:
        return resp.json()
    except ValueError as e:
        raise TwilioVerifyError("Twilio Verify returned invalid JSON") from e


async def start_verification(creds: TwilioCredentials, phone_e164: str, channel: str = "sms") -> str:
    """Send a verification code. Returns the verification status (usually ``pending``)."""
    j = await _post(creds, "Verifications", {"To": phone_e164, "Channel": channel})
    return j.get("status") or ""


async def check_verification(creds: TwilioCredentials, phone_e164: str, code: str) -> bool:
    j = await _post(creds, "VerificationCheck", {"To": phone_e164, "Code": code})
    status = j.get("status")
    if status != "approved":
        logger.info("Verification check for %s returned status=%s", phone_e164, status)
    return status == "approved"
