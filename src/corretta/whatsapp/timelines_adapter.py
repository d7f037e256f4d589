"""Timelines.ai adapter - validate and normalize webhook payloads."""

from typing import Any

from pydantic import ValidationError

from .models import AttachmentRef, CurrentAttachment, LegacyAttachment, Message, TimelinesEvent

DEFAULT_MIME_TYPE = "application/octet-stream"


class InvalidPayloadError(Exception):
    """Raised when the Timelines payload has an invalid shape."""

    def __init__(self, message: str, fields: list[str] | None = None):
        super().__init__(message)
        self.fields = fields or []


def parse_event(payload: Any) -> TimelinesEvent:
    """Validate the structure of a decoded webhook body.

    Raises:
        InvalidPayloadError: If required fields are missing or of the wrong type.
    """
    if not isinstance(payload, dict):
        raise InvalidPayloadError("payload must be a JSON object")
    try:
        return TimelinesEvent.model_validate(payload)
    except ValidationError as e:
        fields = [".".join(str(p) for p in err["loc"]) for err in e.errors()]
        raise InvalidPayloadError("invalid payload shape", fields=fields) from e


def _from_current(attachment: CurrentAttachment) -> AttachmentRef | None:
    if not attachment.temporary_download_url:
        return None
    return AttachmentRef(
        url=attachment.temporary_download_url,
        filename=attachment.filename or "attachment",
        mime_type=attachment.mimetype or DEFAULT_MIME_TYPE,
        size=attachment.size,
    )


def _from_legacy(attachment: LegacyAttachment) -> AttachmentRef | None:
    url = attachment.temporary_download_url or attachment.url
    if not url:
        return None
    return AttachmentRef(
        url=url,
        filename=attachment.filename or "attachment",
        mime_type=attachment.mimetype or attachment.mime_type or DEFAULT_MIME_TYPE,
    )


def extract_attachment(message: Message) -> AttachmentRef | None:
    """Resolve the message attachment regardless of payload version.

    The singular `attachment` wins over the legacy `attachments` array; only
    the first legacy item is considered.
    """
    if message.attachment is not None:
        return _from_current(message.attachment)
    if message.attachments:
        return _from_legacy(message.attachments[0])
    return None


def classify_message_type(attachment: AttachmentRef | None) -> str:
    """Map the attachment MIME type onto the CRM message type enum."""
    if attachment is None:
        return "text"
    mime_type = attachment.mime_type.lower()
    for prefix in ("image", "audio", "video"):
        if mime_type.startswith(f"{prefix}/"):
            return prefix
    return "document"
