"""Timelines.ai webhook payload models.

Only the fields the pipeline cannot work without are validated strictly
(`event_type`, chat id and phones, `direction`, `message_uid`). Everything
else is coerced: scalars become strings, anything unusable becomes None, and
a malformed sender or attachment object is dropped instead of rejecting the
whole event.

The provider migrated from an `attachments` array to a single `attachment`
object; both shapes are still accepted and collapsed into one
`AttachmentRef` by `timelines_adapter.extract_attachment`.
"""

import math
from dataclasses import dataclass
from typing import Annotated, Any, Literal

from pydantic import (
    BaseModel,
    BeforeValidator,
    ConfigDict,
    StrictFloat,
    StrictInt,
    StrictStr,
    ValidationError,
    ValidatorFunctionWrapHandler,
    field_validator,
)

Direction = Literal["received", "sent"]

HANDLED_EVENT_TYPES = frozenset({"message:received:new", "chat:incoming:new"})


def _as_text(value: Any) -> str | None:
    if value is None or isinstance(value, str):
        return value
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return None


def _as_size(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and math.isfinite(value):
        return int(value)
    if isinstance(value, str) and value.strip().isdigit():
        return int(value)
    return None


LooseStr = Annotated[str | None, BeforeValidator(_as_text)]
LooseSize = Annotated[int | None, BeforeValidator(_as_size)]


class _Lenient(BaseModel):
    model_config = ConfigDict(extra="ignore", allow_inf_nan=False)


class Chat(_Lenient):
    chat_id: StrictInt | StrictFloat
    phone: StrictStr
    full_name: LooseStr = None
    is_group: Any = None


class WhatsappAccount(_Lenient):
    phone: StrictStr
    full_name: LooseStr = None


class Sender(_Lenient):
    phone: LooseStr = None
    full_name: LooseStr = None


class CurrentAttachment(_Lenient):
    """Single `attachment` object (current API)."""

    temporary_download_url: LooseStr = None
    filename: LooseStr = None
    size: LooseSize = None
    mimetype: LooseStr = None


class LegacyAttachment(_Lenient):
    """Item of the legacy `attachments` array."""

    url: LooseStr = None
    temporary_download_url: LooseStr = None
    mime_type: LooseStr = None
    mimetype: LooseStr = None
    type: LooseStr = None
    filename: LooseStr = None


class Message(_Lenient):
    text: LooseStr = None
    direction: Direction
    timestamp: LooseStr = None
    message_uid: StrictStr
    sender: Sender | None = None
    attachment: CurrentAttachment | None = None
    attachments: list[LegacyAttachment] | None = None

    @field_validator("sender", "attachment", "attachments", mode="wrap")
    @classmethod
    def _drop_malformed(cls, value: Any, handler: ValidatorFunctionWrapHandler) -> Any:
        # A sub-object of the wrong shape loses that detail, not the message
        try:
            return handler(value)
        except ValidationError:
            return None


class TimelinesEvent(_Lenient):
    event_type: StrictStr
    chat: Chat
    whatsapp_account: WhatsappAccount
    message: Message | None = None

    @property
    def is_handled(self) -> bool:
        return self.event_type in HANDLED_EVENT_TYPES

    @property
    def conversation_key(self) -> str:
        """External chat id as stored (`123`, never `123.0`)."""
        chat_id = self.chat.chat_id
        if isinstance(chat_id, float) and chat_id.is_integer():
            return str(int(chat_id))
        return str(chat_id)


@dataclass(frozen=True)
class AttachmentRef:
    """Attachment resolved from either payload shape."""

    url: str
    filename: str
    mime_type: str
    size: int | None = None
