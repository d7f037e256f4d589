"""Text sanitization for content coming from the WhatsApp provider.

Messages end up rendered in the CRM inbox, so markup is removed before
storage. Entities are decoded first: `&lt;script&gt;` must not survive as a
tag once some other layer decodes it.
"""

import html
import re

MAX_MESSAGE_LENGTH = 10_000
MAX_NAME_LENGTH = 255
MAX_PHONE_LENGTH = 50

_TAG_PATTERN = re.compile(r"<[^>]*>")


def sanitize_text(value: str | None, max_length: int = MAX_MESSAGE_LENGTH) -> str:
    """Decode entities, strip tags and NUL bytes, trim and cap `value`."""
    if not value:
        return ""
    text = _TAG_PATTERN.sub("", html.unescape(value))
    text = text.replace("\x00", "").strip()
    return text[:max_length]


def sanitize_name(value: str | None) -> str:
    return sanitize_text(value, MAX_NAME_LENGTH)


def cap(value: str | None, max_length: int) -> str:
    """Length cap for values that are stored as-is (raw phones)."""
    if not value:
        return ""
    return value.replace("\x00", "")[:max_length]
