import re

COUNTRY_CODE = "92"
TRUNK_PREFIX = "0"

_NON_DIGITS = re.compile(r"\D+")


def format_phone(phone) -> str:
    """Normalize a customer phone number to E.164 for Pakistan.

    ``03001234567`` -> ``+923001234567``; ``923001234567`` -> ``+923001234567``.
    Numbers typed with a ``+`` keep it; anything else is returned as digits.
    """
    if not phone:
        return ""
    raw = str(phone).strip()
    digits = _NON_DIGITS.sub("", raw)
    if not digits:
        return ""
    if len(digits) == 11 and digits.startswith(TRUNK_PREFIX):
        return "+" + COUNTRY_CODE + digits[1:]
    if len(digits) == 12 and digits.startswith(COUNTRY_CODE):
        return "+" + digits
    if raw.startswith("+"):
        return "+" + digits
    return digits
