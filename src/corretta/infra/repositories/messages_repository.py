"""WhatsApp messages repository.

Uses raw SQL with psycopg2 (no ORM). `timelines_message_id` is UNIQUE and is
the dedup key for redelivered webhook events.
"""

import json
from dataclasses import dataclass
from typing import Any

from psycopg2.extensions import cursor as PgCursor


@dataclass(frozen=True)
class NewMessage:
    timelines_message_id: str
    conversation_id: str
    sender_type: str
    content: str
    message_type: str
    status: str
    media_url: str | None = None
    media_mime_type: str | None = None
    sender_id: str | None = None
    metadata: dict[str, Any] | None = None


def message_exists(cur: PgCursor, timelines_message_id: str) -> bool:
    cur.execute(
        "SELECT 1 FROM whatsapp_messages WHERE timelines_message_id = %s",
        (timelines_message_id,),
    )
    return cur.fetchone() is not None


def insert_message(cur: PgCursor, message: NewMessage) -> str | None:
    """Insert a message unless its external id is already stored.

    Returns:
        The new message id, or None if a row with the same
        timelines_message_id already exists.
    """
    cur.execute(
        """
        INSERT INTO whatsapp_messages (
            timelines_message_id, conversation_id, sender_type, sender_id,
            content, message_type, status, media_url, media_mime_type, metadata
        )
        VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
        ON CONFLICT (timelines_message_id) DO NOTHING
        RETURNING id
        """,
        (
            message.timelines_message_id,
            message.conversation_id,
            message.sender_type,
            message.sender_id,
            message.content,
            message.message_type,
            message.status,
            message.media_url,
            message.media_mime_type,
            json.dumps(message.metadata) if message.metadata else None,
        ),
    )
    row = cur.fetchone()
    return str(row[0]) if row else None
