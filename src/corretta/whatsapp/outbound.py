"""Outbound WhatsApp messaging via the Timelines.ai API.

Security: NEVER log chat ids together with text. Only lengths and hashes.
"""

import hashlib
import os
from typing import Any

import requests

from corretta.observability.logging import get_logger
from corretta.observability.redaction import safe_log_context

logger = get_logger(__name__)

HTTP_TIMEOUT = 10
DEFAULT_BASE_URL = "https://app.timelines.ai"


class OutboundSendError(Exception):
    """Timelines.ai refused or could not be reached."""

    def __init__(self, status_code: int | None):
        super().__init__(f"timelines send failed (status={status_code})")
        self.status_code = status_code


def _hash_identifier(value: str) -> str:
    """Create non-reversible hash for logging. Returns first 12 chars of sha256."""
    return hashlib.sha256(value.encode()).hexdigest()[:12]


def _get_config() -> dict[str, str]:
    """Timelines API config from environment.

    Required env vars:
    - TIMELINES_API_TOKEN: API token

    Optional:
    - TIMELINES_API_BASE_URL: Base URL (default: https://app.timelines.ai)
    """
    token = os.environ.get("TIMELINES_API_TOKEN", "")
    if not token:
        raise RuntimeError("Missing Timelines config: TIMELINES_API_TOKEN")
    base_url = os.environ.get("TIMELINES_API_BASE_URL", DEFAULT_BASE_URL)
    return {"token": token, "base_url": base_url.rstrip("/")}


def send_text_via_timelines(*, chat_id: str, text: str) -> dict[str, Any]:
    """Send a text message to a Timelines chat.

    Returns:
        Decoded provider response (may contain `message_uid`).

    Raises:
        RuntimeError: If config is missing.
        OutboundSendError: On non-2xx responses or network errors.
    """
    config = _get_config()
    url = f"{config['base_url']}/integrations/api/chats/{chat_id}/messages"

    log_ctx = safe_log_context(chat_hash=_hash_identifier(chat_id), text_len=len(text))
    logger.info("sending outbound message", extra={"extra_fields": log_ctx})

    try:
        resp = requests.post(
            url,
            json={"text": text},
            headers={"Authorization": f"Bearer {config['token']}"},
            timeout=HTTP_TIMEOUT,
        )
    except requests.RequestException as e:
        logger.error(
            "outbound send failed",
            extra={"extra_fields": safe_log_context(**log_ctx, error_type=type(e).__name__)},
        )
        raise OutboundSendError(None) from e

    if not resp.ok:
        logger.error(
            "outbound send rejected",
            extra={"extra_fields": safe_log_context(**log_ctx, status_code=resp.status_code)},
        )
        raise OutboundSendError(resp.status_code)

    logger.info("outbound message sent", extra={"extra_fields": log_ctx})
    try:
        body = resp.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}
