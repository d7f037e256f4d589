"""WhatsApp channels repository.

Uses raw SQL with psycopg2 (no ORM). A channel is one WhatsApp business line,
identified by the digits of its phone number.
"""

from psycopg2.extensions import cursor as PgCursor


def upsert_channel(
    cur: PgCursor,
    *,
    timelines_channel_id: str,
    name: str,
    phone_number: str,
) -> tuple[str, str | None]:
    """Insert or refresh a channel keyed by its normalized phone digits.

    Returns:
        Tuple of (channel_id, owner_id). owner_id is None when no CRM user
        owns the line yet.
    """
    cur.execute(
        """
        INSERT INTO whatsapp_channels (timelines_channel_id, name, phone_number, is_active)
        VALUES (%s, %s, %s, true)
        ON CONFLICT (timelines_channel_id) DO UPDATE
        SET name         = EXCLUDED.name,
            phone_number = EXCLUDED.phone_number,
            is_active    = true,
            updated_at   = now()
        RETURNING id, owner_id
        """,
        (timelines_channel_id, name, phone_number),
    )
    row = cur.fetchone()
    return (str(row[0]), str(row[1]) if row[1] else None)
