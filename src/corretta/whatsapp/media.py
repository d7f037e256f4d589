"""Media fetcher/store for WhatsApp attachments.

Timelines hands out short-lived download URLs. Attachments are copied into
the private `whatsapp-media` bucket and messages reference the object path
only; no public URL is ever produced.

Size is bounded twice: by the declared Content-Length before reading, and
by counting streamed bytes (headers can be missing or wrong).
"""

import re

import requests

from corretta.infra.object_storage import StorageUploadError, upload_private_object
from corretta.observability.logging import get_logger
from corretta.observability.redaction import safe_log_context

logger = get_logger(__name__)

MEDIA_BUCKET = "whatsapp-media"
MAX_MEDIA_BYTES = 10 * 1024 * 1024
MAX_FILENAME_LENGTH = 100
USER_AGENT = "Corretta-CRM-Webhook/1.0"
HTTP_TIMEOUT = 30
_CHUNK_SIZE = 64 * 1024

ALLOWED_MIME_TYPES = frozenset(
    {
        "image/jpeg",
        "image/png",
        "image/gif",
        "image/webp",
        "audio/mpeg",
        "audio/mp4",
        "audio/ogg",
        "audio/aac",
        "audio/amr",
        "audio/wav",
        "video/mp4",
        "video/3gpp",
        "video/quicktime",
        "video/webm",
        "application/pdf",
        "application/msword",
        "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
        "application/vnd.ms-excel",
        "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        "application/vnd.ms-powerpoint",
        "application/vnd.openxmlformats-officedocument.presentationml.presentation",
        "text/plain",
    }
)

_UNSAFE_PATH_CHARS = re.compile(r"[^A-Za-z0-9._-]")


class MediaTooLargeError(Exception):
    """Attachment exceeds MAX_MEDIA_BYTES."""


class MediaDownloadError(Exception):
    """Download URL answered with a non-2xx status."""


def base_mime_type(mime_type: str) -> str:
    """`audio/ogg; codecs=opus` -> `audio/ogg`."""
    return mime_type.split(";", 1)[0].strip().lower()


def is_allowed_mime_type(mime_type: str) -> bool:
    return base_mime_type(mime_type) in ALLOWED_MIME_TYPES


def safe_path_segment(value: str, max_length: int = MAX_FILENAME_LENGTH) -> str:
    """Restrict a path segment to `[A-Za-z0-9._-]` and cap its length."""
    cleaned = _UNSAFE_PATH_CHARS.sub("_", value)[:max_length]
    # `.` and `..` would still escape the namespace
    if cleaned.strip(".") == "":
        return "file"
    return cleaned


def build_storage_path(conversation_id: str, message_uid: str, filename: str) -> str:
    return "/".join(
        (
            safe_path_segment(conversation_id),
            safe_path_segment(message_uid),
            safe_path_segment(filename),
        )
    )


def download_media(url: str) -> bytes:
    """Download an attachment, enforcing MAX_MEDIA_BYTES.

    Raises:
        MediaDownloadError: On non-2xx responses.
        MediaTooLargeError: If declared or actual size exceeds the cap.
        requests.RequestException: On network errors.
    """
    with requests.get(
        url,
        headers={"User-Agent": USER_AGENT},
        stream=True,
        timeout=HTTP_TIMEOUT,
    ) as resp:
        if not resp.ok:
            raise MediaDownloadError(f"download failed (status={resp.status_code})")

        declared = resp.headers.get("Content-Length")
        if declared and declared.isdigit() and int(declared) > MAX_MEDIA_BYTES:
            raise MediaTooLargeError(f"declared size {declared} exceeds limit")

        buffer = bytearray()
        for chunk in resp.iter_content(chunk_size=_CHUNK_SIZE):
            buffer.extend(chunk)
            if len(buffer) > MAX_MEDIA_BYTES:
                raise MediaTooLargeError("body exceeds limit")

    return bytes(buffer)


def store_attachment(
    *,
    conversation_id: str,
    message_uid: str,
    url: str,
    filename: str,
    mime_type: str,
) -> str | None:
    """Copy an attachment into private storage.

    The path is derived from the message, so a redelivered event finds its
    own earlier upload: an existing object at that path counts as stored.

    Returns:
        The object path inside MEDIA_BUCKET, or None if anything failed.
        Never raises.
    """
    log_ctx = safe_log_context(
        conversation_id=conversation_id,
        mime_type=mime_type,
    )

    if not is_allowed_mime_type(mime_type):
        logger.warning("unexpected attachment mime type", extra={"extra_fields": log_ctx})

    try:
        data = download_media(url)
        path = build_storage_path(conversation_id, message_uid, filename)
        content_type = base_mime_type(mime_type) or "application/octet-stream"
        try:
            upload_private_object(MEDIA_BUCKET, path, data, content_type)
        except StorageUploadError as e:
            if e.status_code != 409:
                raise
            logger.info("attachment already stored", extra={"extra_fields": log_ctx})
            return path
    except Exception as e:
        logger.warning(
            "attachment not stored",
            extra={"extra_fields": safe_log_context(**log_ctx, error_type=type(e).__name__)},
        )
        return None

    logger.info(
        "attachment stored",
        extra={"extra_fields": safe_log_context(**log_ctx, size=len(data))},
    )
    return path
