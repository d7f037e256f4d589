"""WhatsApp conversation endpoints for CRM agents.

Agent replies are sent through Timelines.ai first and stored locally
afterwards: once the provider accepted the message, a local write failure
is logged but not reported as a failed send.
"""

from __future__ import annotations

from uuid import UUID

import psycopg2
from fastapi import APIRouter, Depends, HTTPException, Path
from pydantic import BaseModel, Field, field_validator

from corretta.api.auth import CurrentUser, get_current_user
from corretta.infra.db import txn
from corretta.infra.repositories import conversations_repository, messages_repository
from corretta.infra.repositories.messages_repository import NewMessage
from corretta.infra.time import epoch_millis, utc_now
from corretta.observability.correlation import get_correlation_id
from corretta.observability.logging import get_logger
from corretta.observability.redaction import safe_log_context
from corretta.whatsapp.outbound import OutboundSendError, send_text_via_timelines
from corretta.whatsapp.sanitize import MAX_MESSAGE_LENGTH
from corretta.whatsapp.timeline import message_preview, record_history

router = APIRouter(prefix="/whatsapp/conversations", tags=["conversations"])

logger = get_logger(__name__)


class SendMessageRequest(BaseModel):
    """Request body for POST /whatsapp/conversations/{id}/messages."""

    content: str = Field(..., max_length=MAX_MESSAGE_LENGTH)

    @field_validator("content")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("content must not be blank")
        return value


def _store_reply(
    *,
    conversation: conversations_repository.ConversationRow,
    user: CurrentUser,
    content: str,
    provider_response: dict,
) -> str | None:
    """Persist the sent reply and bump the conversation. Returns message id."""
    now = utc_now()
    timelines_message_id = provider_response.get("message_uid") or f"sent-{epoch_millis(now)}"

    with txn() as cur:
        message_id = messages_repository.insert_message(
            cur,
            NewMessage(
                timelines_message_id=str(timelines_message_id),
                conversation_id=conversation.id,
                sender_type="agent",
                sender_id=user.id,
                content=content,
                message_type="text",
                status="sent",
                metadata={"timelines_response": provider_response},
            ),
        )
        first_response = conversations_repository.record_agent_reply(
            cur,
            conversation_id=conversation.id,
            user_id=user.id,
            replied_at=now,
        )
        record_history(
            cur,
            person_id=conversation.person_id,
            event_type="whatsapp_sent",
            description=f'WhatsApp: "{message_preview(content, "text")}"',
            created_by=user.id,
            metadata={
                "message_id": message_id,
                "conversation_id": conversation.id,
                "sender_name": user.full_name,
            },
        )

    if first_response:
        logger.info(
            "conversation moved to in_progress",
            extra={"extra_fields": safe_log_context(conversation_id=conversation.id)},
        )
    return message_id


@router.post("/{conversation_id}/messages")
def send_message(
    body: SendMessageRequest,
    conversation_id: UUID = Path(..., description="Conversation UUID"),
    user: CurrentUser = Depends(get_current_user),
) -> dict:
    """Send an agent reply in a WhatsApp conversation."""
    correlation_id = get_correlation_id()

    with txn() as cur:
        conversation = conversations_repository.get_conversation(cur, str(conversation_id))
    if conversation is None:
        raise HTTPException(status_code=404, detail="Conversation not found")
    if not conversation.timelines_conversation_id:
        raise HTTPException(status_code=400, detail="Conversation has no Timelines chat id")

    try:
        provider_response = send_text_via_timelines(
            chat_id=conversation.timelines_conversation_id,
            text=body.content,
        )
    except OutboundSendError:
        raise HTTPException(status_code=502, detail="Failed to send message via Timelines.ai")

    try:
        message_id = _store_reply(
            conversation=conversation,
            user=user,
            content=body.content,
            provider_response=provider_response,
        )
    except psycopg2.Error:
        logger.exception(
            "reply sent but not stored",
            extra={
                "extra_fields": safe_log_context(
                    correlationId=correlation_id,
                    conversation_id=str(conversation_id),
                )
            },
        )
        message_id = None

    return {"status": "success", "message_id": message_id}
