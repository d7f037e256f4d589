"""Timelines webhook ingestion pipeline.

Stages run strictly in order for one event:

    channel -> contact -> conversation -> message -> media -> timeline

Redelivery safety comes from the storage layer alone: channels,
conversations and messages are written with INSERT ... ON CONFLICT on their
external ids, so the same event can be processed any number of times
(including concurrently) without duplicating rows. There are no
application-level locks.

Media is downloaded between two short transactions so a slow attachment
never holds a database connection open.
"""

from dataclasses import dataclass

from psycopg2.extensions import cursor as PgCursor

from corretta.infra.db import txn
from corretta.infra.repositories import (
    channels_repository,
    conversations_repository,
    messages_repository,
    people_repository,
)
from corretta.infra.repositories.messages_repository import NewMessage
from corretta.observability.logging import get_logger
from corretta.observability.redaction import id_prefix, safe_log_context
from corretta.whatsapp import media, phones
from corretta.whatsapp.errors import critical_stage
from corretta.whatsapp.models import Chat, Message, TimelinesEvent, WhatsappAccount
from corretta.whatsapp.sanitize import MAX_PHONE_LENGTH, cap, sanitize_name, sanitize_text
from corretta.whatsapp.timeline import message_preview, record_history
from corretta.whatsapp.timelines_adapter import classify_message_type, extract_attachment

logger = get_logger(__name__)

DEFAULT_CHANNEL_NAME = "WhatsApp Business"
LEAD_SOURCE = "WhatsApp"
INBOUND_MESSAGE_STATUS = "delivered"


@dataclass(frozen=True)
class ChannelRef:
    id: str
    owner_id: str | None


@dataclass(frozen=True)
class ContactRef:
    id: str
    created: bool


@dataclass(frozen=True)
class ConversationRef:
    id: str
    created: bool
    reopened: bool


@dataclass(frozen=True)
class MessageOutcome:
    message_id: str | None
    duplicate: bool
    message_type: str
    has_media: bool


@dataclass(frozen=True)
class IngestResult:
    channel_id: str
    person_id: str
    conversation_id: str
    is_new_conversation: bool
    message: MessageOutcome | None = None

    def as_response(self) -> dict:
        return {
            "status": "success",
            "channel_id": self.channel_id,
            "person_id": self.person_id,
            "conversation_id": self.conversation_id,
            "is_new_conversation": self.is_new_conversation,
        }


def resolve_channel(cur: PgCursor, account: WhatsappAccount) -> ChannelRef:
    """Upsert the business line the event came through."""
    with critical_stage("channel"):
        channel_id, owner_id = channels_repository.upsert_channel(
            cur,
            timelines_channel_id=phones.normalize_digits(account.phone),
            name=sanitize_name(account.full_name) or DEFAULT_CHANNEL_NAME,
            phone_number=cap(account.phone, MAX_PHONE_LENGTH),
        )
    return ChannelRef(id=channel_id, owner_id=owner_id)


def _contact_name(event: TimelinesEvent) -> str:
    candidates = [event.chat.full_name]
    if event.message and event.message.sender:
        candidates.append(event.message.sender.full_name)
    for candidate in candidates:
        name = sanitize_name(candidate)
        if name and not phones.looks_like_phone(name):
            return name
    return phones.format_display(event.chat.phone)


def resolve_contact(cur: PgCursor, event: TimelinesEvent, channel: ChannelRef) -> ContactRef:
    """Find the person behind the chat phone, creating one if needed."""
    digits = phones.search_digits(event.chat.phone)

    with critical_stage("contact"):
        person_id = people_repository.find_person_by_phone(cur, digits)
        if person_id is None and digits:
            person_id = people_repository.find_person_by_phone(
                cur, phones.with_country_code(digits)
            )
        if person_id is not None:
            logger.info(
                "matched existing person",
                extra={"extra_fields": safe_log_context(person_id=person_id)},
            )
            return ContactRef(id=person_id, created=False)

        person_id = people_repository.insert_person(
            cur,
            name=_contact_name(event),
            whatsapp=phones.to_storage_format(event.chat.phone),
            lead_source=LEAD_SOURCE,
            owner_id=channel.owner_id,
        )

    logger.info(
        "created person from whatsapp",
        extra={"extra_fields": safe_log_context(person_id=person_id)},
    )
    record_history(
        cur,
        person_id=person_id,
        event_type="created",
        description="Contato criado automaticamente via WhatsApp",
        created_by=channel.owner_id,
    )
    return ContactRef(id=person_id, created=True)


def resolve_conversation(
    cur: PgCursor,
    event: TimelinesEvent,
    channel: ChannelRef,
    contact: ContactRef,
) -> ConversationRef:
    """Create or refresh the conversation for the chat id."""
    with critical_stage("conversation"):
        upsert = conversations_repository.upsert_conversation(
            cur,
            timelines_conversation_id=event.conversation_key,
            channel_id=channel.id,
            person_id=contact.id,
        )

    if upsert.created:
        logger.info(
            "created conversation",
            extra={"extra_fields": safe_log_context(conversation_id=upsert.id)},
        )
        record_history(
            cur,
            person_id=contact.id,
            event_type="whatsapp_conversation_started",
            description="Nova conversa WhatsApp iniciada",
            metadata={"conversation_id": upsert.id},
        )
    elif upsert.reopened:
        logger.info(
            "reopened conversation",
            extra={
                "extra_fields": safe_log_context(
                    conversation_id=upsert.id,
                    previous_status=upsert.previous_status,
                )
            },
        )

    return ConversationRef(id=upsert.id, created=upsert.created, reopened=upsert.reopened)


def _build_message_row(
    message: Message,
    conversation: ConversationRef,
    content: str,
    message_type: str,
    media_path: str | None,
    mime_type: str | None,
    original_filename: str | None,
) -> NewMessage:
    sender = message.sender
    return NewMessage(
        timelines_message_id=message.message_uid,
        conversation_id=conversation.id,
        sender_type="contact" if message.direction == "received" else "agent",
        content=content,
        message_type=message_type,
        status=INBOUND_MESSAGE_STATUS,
        media_url=media_path,
        media_mime_type=mime_type,
        metadata={
            "timestamp": message.timestamp,
            "sender_phone": cap(sender.phone, MAX_PHONE_LENGTH) if sender else "",
            "sender_name": sanitize_name(sender.full_name) if sender else "",
            "original_filename": original_filename,
        },
    )


def ingest_message(
    message: Message,
    conversation: ConversationRef,
    contact: ContactRef,
) -> MessageOutcome:
    """Store one chat message (at most once per message_uid)."""
    log_ctx = safe_log_context(
        conversation_id=conversation.id,
        message_uid_prefix=id_prefix(message.message_uid),
        direction=message.direction,
    )

    with txn() as cur, critical_stage("message"):
        exists = messages_repository.message_exists(cur, message.message_uid)
    if exists:
        logger.info("duplicate message ignored", extra={"extra_fields": log_ctx})
        return MessageOutcome(message_id=None, duplicate=True, message_type="text", has_media=False)

    content = sanitize_text(message.text)
    attachment = extract_attachment(message)
    message_type = classify_message_type(attachment)

    media_path = None
    if attachment is not None:
        media_path = media.store_attachment(
            conversation_id=conversation.id,
            message_uid=message.message_uid,
            url=attachment.url,
            filename=attachment.filename,
            mime_type=attachment.mime_type,
        )
        if media_path is None:
            logger.warning("message stored without media", extra={"extra_fields": log_ctx})

    row = _build_message_row(
        message,
        conversation,
        content,
        message_type,
        media_path,
        attachment.mime_type if attachment else None,
        attachment.filename if attachment else None,
    )

    with txn() as cur:
        with critical_stage("message"):
            message_id = messages_repository.insert_message(cur, row)
        if message_id is None:
            # A concurrent delivery inserted it between the check and now
            logger.info("duplicate message ignored", extra={"extra_fields": log_ctx})
            return MessageOutcome(
                message_id=None, duplicate=True, message_type=message_type, has_media=False
            )

        has_media = media_path is not None
        record_history(
            cur,
            person_id=contact.id,
            event_type="whatsapp_received" if message.direction == "received" else "whatsapp_sent",
            description=f'WhatsApp: "{message_preview(content, message_type)}"',
            metadata={
                "message_id": message_id,
                "conversation_id": conversation.id,
                "message_type": message_type,
                "direction": message.direction,
                "has_media": has_media,
            },
        )

    logger.info(
        "message stored",
        extra={"extra_fields": safe_log_context(**log_ctx, message_type=message_type)},
    )
    return MessageOutcome(
        message_id=message_id, duplicate=False, message_type=message_type, has_media=has_media
    )


def process_event(event: TimelinesEvent) -> IngestResult:
    """Run the full pipeline for a validated, handled event.

    Raises:
        IngestionError: If a must-succeed stage fails.
    """
    with txn() as cur:
        channel = resolve_channel(cur, event.whatsapp_account)
        contact = resolve_contact(cur, event, channel)
        conversation = resolve_conversation(cur, event, channel, contact)

    outcome = None
    if event.message is not None:
        outcome = ingest_message(event.message, conversation, contact)

    return IngestResult(
        channel_id=channel.id,
        person_id=contact.id,
        conversation_id=conversation.id,
        is_new_conversation=conversation.created,
        message=outcome,
    )


def describe_chat(chat: Chat) -> dict[str, str]:
    """Safe log context for a chat (ids only, phone redacted)."""
    return safe_log_context(chat_id=str(chat.chat_id), is_group=chat.is_group, phone=chat.phone)
