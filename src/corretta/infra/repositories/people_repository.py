"""People (CRM contacts) repository - WhatsApp identity resolution.

Identity resolution strategy
----------------------------
People are not keyed by any provider id. They are found by a substring
match of phone digits against both `whatsapp` and `phone`, since those
columns hold hand-typed values in arbitrary formats. The first (oldest)
match wins.

This is a heuristic: two people sharing a number suffix are
indistinguishable, and concurrent first messages from a new number may
create two people.
"""

from psycopg2.extensions import cursor as PgCursor


def find_person_by_phone(cur: PgCursor, digits: str) -> str | None:
    """Return the id of the oldest person whose whatsapp/phone contains `digits`."""
    if not digits:
        return None
    pattern = f"%{digits}%"
    cur.execute(
        """
        SELECT id FROM people
        WHERE whatsapp ILIKE %s OR phone ILIKE %s
        ORDER BY created_at
        LIMIT 1
        """,
        (pattern, pattern),
    )
    row = cur.fetchone()
    return str(row[0]) if row else None


def insert_person(
    cur: PgCursor,
    *,
    name: str,
    whatsapp: str,
    lead_source: str,
    owner_id: str | None,
) -> str:
    """Create a person from a WhatsApp contact. Returns the new id."""
    cur.execute(
        """
        INSERT INTO people (name, whatsapp, lead_source, owner_id, created_by)
        VALUES (%s, %s, %s, %s, %s)
        RETURNING id
        """,
        (name, whatsapp, lead_source, owner_id, owner_id),
    )
    row = cur.fetchone()
    return str(row[0])
