"""People history repository (append-only timeline)."""

import json
from typing import Any

from psycopg2.extensions import cursor as PgCursor


def insert_person_history(
    cur: PgCursor,
    *,
    person_id: str,
    event_type: str,
    description: str,
    metadata: dict[str, Any] | None = None,
    created_by: str | None = None,
) -> None:
    cur.execute(
        """
        INSERT INTO people_history (person_id, event_type, description, metadata, created_by)
        VALUES (%s, %s, %s, %s, %s)
        """,
        (
            person_id,
            event_type,
            description,
            json.dumps(metadata) if metadata else None,
            created_by,
        ),
    )
