"""WhatsApp conversations repository.

Uses raw SQL with psycopg2 (no ORM). A conversation is one Timelines chat,
unique by `timelines_conversation_id`.

Status rules
------------
- New conversations start as `pending`.
- Inbound traffic reopens `resolved`/`archived` conversations to `pending`.
- Inbound traffic never touches `pending`/`in_progress`.
- The first agent reply moves `pending` to `in_progress`.

All transitions are done in a single UPDATE so concurrent deliveries of the
same chat cannot interleave a read and a write.
"""

from dataclasses import dataclass
from datetime import datetime

from psycopg2.extensions import cursor as PgCursor

TERMINAL_STATUSES = ("resolved", "archived")


@dataclass(frozen=True)
class ConversationUpsert:
    id: str
    created: bool
    reopened: bool
    previous_status: str | None


@dataclass(frozen=True)
class ConversationRow:
    id: str
    timelines_conversation_id: str | None
    person_id: str
    channel_id: str
    status: str | None


def upsert_conversation(
    cur: PgCursor,
    *,
    timelines_conversation_id: str,
    channel_id: str,
    person_id: str,
) -> ConversationUpsert:
    """Create the conversation for a chat, or refresh the existing one.

    Existing conversations get `last_message_at = now()`; terminal ones are
    reopened to `pending`.
    """
    cur.execute(
        """
        INSERT INTO whatsapp_conversations (
            timelines_conversation_id, channel_id, person_id,
            status, last_message_at
        )
        VALUES (%s, %s, %s, 'pending', now())
        ON CONFLICT (timelines_conversation_id) DO NOTHING
        RETURNING id
        """,
        (timelines_conversation_id, channel_id, person_id),
    )
    row = cur.fetchone()
    if row:
        return ConversationUpsert(
            id=str(row[0]), created=True, reopened=False, previous_status=None
        )

    cur.execute(
        """
        WITH prev AS (
            SELECT id, status FROM whatsapp_conversations
            WHERE timelines_conversation_id = %s
            FOR UPDATE
        )
        UPDATE whatsapp_conversations c
        SET status          = CASE WHEN prev.status IN %s THEN 'pending' ELSE c.status END,
            resolved_at     = CASE WHEN prev.status IN %s THEN NULL ELSE c.resolved_at END,
            last_message_at = now(),
            updated_at      = now()
        FROM prev
        WHERE c.id = prev.id
        RETURNING c.id, prev.status
        """,
        (timelines_conversation_id, TERMINAL_STATUSES, TERMINAL_STATUSES),
    )
    row = cur.fetchone()
    previous_status = row[1]
    return ConversationUpsert(
        id=str(row[0]),
        created=False,
        reopened=previous_status in TERMINAL_STATUSES,
        previous_status=previous_status,
    )


def get_conversation(cur: PgCursor, conversation_id: str) -> ConversationRow | None:
    """Load a conversation by internal id."""
    cur.execute(
        """
        SELECT id, timelines_conversation_id, person_id, channel_id, status
        FROM whatsapp_conversations
        WHERE id = %s
        """,
        (conversation_id,),
    )
    row = cur.fetchone()
    if row is None:
        return None
    return ConversationRow(
        id=str(row[0]),
        timelines_conversation_id=row[1],
        person_id=str(row[2]),
        channel_id=str(row[3]),
        status=row[4],
    )


def record_agent_reply(
    cur: PgCursor,
    *,
    conversation_id: str,
    user_id: str,
    replied_at: datetime,
) -> bool:
    """Touch the conversation after an agent reply.

    Returns:
        True if this was the first response (status moved to in_progress).
    """
    cur.execute(
        """
        WITH prev AS (
            SELECT id, status FROM whatsapp_conversations
            WHERE id = %s
            FOR UPDATE
        )
        UPDATE whatsapp_conversations c
        SET status            = CASE WHEN prev.status IS NULL OR prev.status = 'pending'
                                     THEN 'in_progress' ELSE c.status END,
            first_response_at = CASE WHEN prev.status IS NULL OR prev.status = 'pending'
                                     THEN %s ELSE c.first_response_at END,
            assigned_to       = CASE WHEN prev.status IS NULL OR prev.status = 'pending'
                                     THEN %s ELSE c.assigned_to END,
            last_message_at   = %s,
            updated_at        = now()
        FROM prev
        WHERE c.id = prev.id
        RETURNING prev.status
        """,
        (conversation_id, replied_at, user_id, replied_at),
    )
    row = cur.fetchone()
    return row is not None and row[0] in (None, "pending")
