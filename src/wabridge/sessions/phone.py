"""Phone number normalization and comparison.

Brazilian mobile numbers exist with and without the extra leading "9" after
the area code (+55 11 9XXXX-XXXX vs +55 11 XXXX-XXXX). The session engine may
report either form, so identity checks compare canonical forms.
"""

import re

_NON_DIGITS = re.compile(r"\D")

BRAZIL_COUNTRY_CODE = "55"


def normalize_phone_number(value: str) -> str:
    """Strip formatting and return ``+<digits>``.

    Raises:
        ValueError: If ``value`` contains no digits.
    """
    digits = _NON_DIGITS.sub("", value or "")
    if not digits:
        raise ValueError("phone number has no digits")
    return f"+{digits}"


def canonical_phone_number(value: str) -> str:
    """Normalize and collapse the Brazilian ninth-digit variant."""
    normalized = normalize_phone_number(value)
    digits = normalized[1:]
    # 55 + 2-digit area code + 9 + 8-digit subscriber
    if digits.startswith(BRAZIL_COUNTRY_CODE) and len(digits) == 13 and digits[4] == "9":
        digits = digits[:4] + digits[5:]
    return f"+{digits}"


def same_phone_number(a: str, b: str) -> bool:
    return canonical_phone_number(a) == canonical_phone_number(b)


def phone_number_from_jid(jid: str) -> str:
    """Extract ``+<digits>`` from a JID like ``5511999999999:12@s.whatsapp.net``."""
    user = jid.split("@")[0].split(":")[0]
    return normalize_phone_number(user)
