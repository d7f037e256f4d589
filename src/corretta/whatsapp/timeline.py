"""Timeline recorder - best-effort entries on a person's history.

An entry that cannot be written must not take the conversation or message
down with it: each insert runs under a SAVEPOINT and failures only log.
"""

from typing import Any

import psycopg2
from psycopg2.extensions import cursor as PgCursor

from corretta.infra.db import savepoint
from corretta.infra.repositories import history_repository
from corretta.observability.logging import get_logger
from corretta.observability.redaction import safe_log_context

logger = get_logger(__name__)

PREVIEW_LENGTH = 100


def record_history(
    cur: PgCursor,
    *,
    person_id: str,
    event_type: str,
    description: str,
    metadata: dict[str, Any] | None = None,
    created_by: str | None = None,
) -> bool:
    """Append one history entry. Returns False (and logs) if it failed."""
    try:
        with savepoint(cur, "person_history"):
            history_repository.insert_person_history(
                cur,
                person_id=person_id,
                event_type=event_type,
                description=description,
                metadata=metadata,
                created_by=created_by,
            )
    except psycopg2.Error as e:
        logger.warning(
            "timeline entry not recorded",
            extra={
                "extra_fields": safe_log_context(
                    event_type=event_type,
                    person_id=person_id,
                    error_type=type(e).__name__,
                )
            },
        )
        return False
    return True


def message_preview(text: str, message_type: str) -> str:
    """Description body for message entries: text preview or `[type]`."""
    if not text:
        return f"[{message_type}]"
    if len(text) > PREVIEW_LENGTH:
        return text[:PREVIEW_LENGTH] + "..."
    return text
