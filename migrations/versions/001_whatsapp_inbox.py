"""WhatsApp inbox schema (SQL-only).

Creates the CRM tables the webhook writes to when they do not exist yet
(local and CI databases; the managed production database already has them).

Revision ID: 001_whatsapp_inbox
Revises:
Create Date: 2026-10-18
"""

from __future__ import annotations

from pathlib import Path

from alembic import op


# revision identifiers, used by Alembic.
revision = "001_whatsapp_inbox"
down_revision = None
branch_labels = None
depends_on = None


def _read_sql() -> str:
    sql_path = Path(__file__).resolve().parents[1] / "sql" / "001_whatsapp_inbox.sql"
    return sql_path.read_text(encoding="utf-8")


def upgrade() -> None:
    # Raw execution to support DO $$ ... $$ blocks.
    conn = op.get_bind()
    conn.exec_driver_sql(_read_sql())


def downgrade() -> None:
    raise NotImplementedError("Downgrade not supported")
