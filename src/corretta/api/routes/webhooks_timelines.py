"""WhatsApp webhook route - Timelines.ai integration.

Security:
- Shared secret via `X-Webhook-Secret` header or `secret` query param,
  compared in constant time. Every auth failure looks the same to callers.
- Declared bodies above MAX_BODY_BYTES are refused before reading.
- Logs contain NO PII (phones, names and text pass through safe_log_context).

Responses:
    200 {"status": "success", ...}  processed (also for redelivered events)
    200 {"status": "ignored", ...}  event type not handled
    400 invalid JSON / payload shape
    401 missing or wrong secret
    405 any method other than POST/OPTIONS
    413 declared payload too large
    500 internal error (no details)
"""

import hmac
import json
import os
from dataclasses import dataclass
from typing import Any

from fastapi import APIRouter, Depends, Request, Response
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse

from corretta.observability.correlation import get_correlation_id
from corretta.observability.logging import get_logger
from corretta.observability.redaction import safe_log_context
from corretta.whatsapp.errors import IngestionError
from corretta.whatsapp.ingest import describe_chat, process_event
from corretta.whatsapp.timelines_adapter import InvalidPayloadError, parse_event

router = APIRouter(prefix="/webhooks", tags=["webhooks"])

logger = get_logger(__name__)

WEBHOOK_PATH = "/timelines"
MAX_BODY_BYTES = 1_000_000
SECRET_HEADER = "x-webhook-secret"
SECRET_QUERY_PARAM = "secret"

# Every method other than POST and OPTIONS gets the same CORS-headed 405
REJECTED_METHODS = ["GET", "HEAD", "PUT", "PATCH", "DELETE", "TRACE", "CONNECT"]

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": "authorization, x-client-info, apikey, content-type, x-webhook-secret",
    "Access-Control-Allow-Methods": "POST, OPTIONS",
}


@dataclass(frozen=True)
class WebhookSettings:
    """Configuration injected into the webhook handler."""

    secret: str


def get_webhook_settings() -> WebhookSettings:
    """Read webhook settings from the environment (override in tests)."""
    return WebhookSettings(secret=os.environ.get("TIMELINES_WEBHOOK_SECRET", ""))


def _reject_non_json_constant(token: str) -> Any:
    # json.loads accepts NaN and Infinity; real JSON does not
    raise ValueError(f"invalid JSON constant: {token}")


def _json(status_code: int, body: dict[str, Any]) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=body, headers=CORS_HEADERS)


def _declared_length_too_large(request: Request) -> bool:
    declared = request.headers.get("content-length")
    if declared is None:
        return False
    try:
        return int(declared) > MAX_BODY_BYTES
    except ValueError:
        return False


def _is_authorized(request: Request, settings: WebhookSettings) -> bool:
    """Constant-time comparison of the provided secret with the configured one."""
    provided = request.headers.get(SECRET_HEADER) or request.query_params.get(SECRET_QUERY_PARAM)
    if not settings.secret or not provided:
        return False
    return hmac.compare_digest(provided.encode(), settings.secret.encode())


@router.options(WEBHOOK_PATH)
async def timelines_webhook_preflight() -> Response:
    """CORS preflight."""
    return Response(status_code=200, headers=CORS_HEADERS)


@router.api_route(WEBHOOK_PATH, methods=REJECTED_METHODS)
async def timelines_webhook_method_not_allowed(request: Request) -> JSONResponse:
    logger.warning(
        "method not allowed",
        extra={"extra_fields": safe_log_context(method=request.method)},
    )
    return _json(405, {"error": "Method not allowed"})


@router.post(WEBHOOK_PATH)
async def timelines_webhook(
    request: Request,
    settings: WebhookSettings = Depends(get_webhook_settings),
) -> JSONResponse:
    """Receive a Timelines.ai webhook event.

    Order matters: size and auth are checked before the body is read, and
    the payload is fully validated before any write.
    """
    correlation_id = get_correlation_id()

    # 1. Bound memory before reading anything
    if _declared_length_too_large(request):
        logger.warning(
            "payload too large",
            extra={
                "extra_fields": safe_log_context(
                    correlationId=correlation_id,
                    content_length=request.headers.get("content-length"),
                )
            },
        )
        return _json(413, {"error": "Payload too large"})

    # 2. Shared secret (fail-closed, same answer for every failure)
    if not _is_authorized(request, settings):
        logger.warning(
            "webhook authentication failed",
            extra={
                "extra_fields": safe_log_context(
                    correlationId=correlation_id,
                    secret_configured=bool(settings.secret),
                )
            },
        )
        return _json(401, {"error": "Unauthorized"})

    # 3. Parse JSON
    try:
        payload = json.loads(await request.body(), parse_constant=_reject_non_json_constant)
    except ValueError:
        logger.warning(
            "invalid json body",
            extra={"extra_fields": safe_log_context(correlationId=correlation_id)},
        )
        return _json(400, {"error": "Invalid JSON"})

    # 4. Validate shape
    try:
        event = parse_event(payload)
    except InvalidPayloadError as e:
        logger.warning(
            "invalid timelines payload shape",
            extra={
                "extra_fields": safe_log_context(
                    correlationId=correlation_id,
                    invalid_fields=",".join(e.fields),
                )
            },
        )
        return _json(400, {"error": "Invalid payload"})

    # 5. Filter event types
    if not event.is_handled:
        logger.info(
            "event type ignored",
            extra={
                "extra_fields": safe_log_context(
                    correlationId=correlation_id,
                    event_type=event.event_type,
                )
            },
        )
        return _json(200, {"status": "ignored", "event_type": event.event_type})

    logger.info(
        "timelines webhook received",
        extra={
            "extra_fields": {
                **describe_chat(event.chat),
                **safe_log_context(
                    correlationId=correlation_id,
                    event_type=event.event_type,
                    has_message=event.message is not None,
                ),
            }
        },
    )

    # 6. Process (blocking DB/HTTP work runs in the threadpool)
    try:
        result = await run_in_threadpool(process_event, event)
    except IngestionError as e:
        logger.exception(
            "webhook processing failed",
            extra={"extra_fields": safe_log_context(correlationId=correlation_id, stage=e.stage)},
        )
        return _json(500, {"error": "Internal server error"})
    except Exception:
        logger.exception(
            "webhook processing failed unexpectedly",
            extra={"extra_fields": safe_log_context(correlationId=correlation_id)},
        )
        return _json(500, {"error": "Internal server error"})

    return _json(200, result.as_response())
