"""Phone number helpers for WhatsApp contact resolution.

Numbers arrive from the provider in whatever shape the handset reports
(`+55 11 99999-8888`, `5511999998888`, `11999998888`). People already in the
CRM were typed in by hand. Matching therefore works on digit substrings, not
on an exact key.
"""

import re

COUNTRY_CODE = "55"

# Brazilian numbers without country code: 2-digit area code + 8/9-digit line
LOCAL_NUMBER_MAX_DIGITS = 11

_NON_DIGITS = re.compile(r"\D")
_PHONE_LIKE = re.compile(r"^[\d\s()+\-.]+$")


def normalize_digits(phone: str | None) -> str:
    """Strip everything that is not a digit."""
    if not phone:
        return ""
    return _NON_DIGITS.sub("", phone)


def search_digits(phone: str | None) -> str:
    """Digits used for the fuzzy contact search (country code removed)."""
    digits = normalize_digits(phone)
    if digits.startswith(COUNTRY_CODE) and len(digits) > LOCAL_NUMBER_MAX_DIGITS:
        return digits[len(COUNTRY_CODE):]
    return digits


def with_country_code(digits: str) -> str:
    """Local digits prefixed with the country code (for the fallback search)."""
    return f"{COUNTRY_CODE}{digits}"


def to_storage_format(phone: str | None) -> str:
    """Canonical `+<country><digits>` form stored on new contacts."""
    local = search_digits(phone)
    if not local:
        return ""
    return f"+{COUNTRY_CODE}{local}"


def format_display(phone: str | None) -> str:
    """Human readable phone, used as a contact name of last resort."""
    local = search_digits(phone)
    if len(local) == 11:
        return f"+{COUNTRY_CODE} ({local[:2]}) {local[2:7]}-{local[7:]}"
    if len(local) == 10:
        return f"+{COUNTRY_CODE} ({local[:2]}) {local[2:6]}-{local[6:]}"
    if local:
        return f"+{normalize_digits(phone)}"
    return "Contato WhatsApp"


def looks_like_phone(value: str | None) -> bool:
    """True when `value` is only digits, spaces, punctuation and `+`."""
    if not value:
        return False
    return bool(_PHONE_LIKE.match(value.strip()))
