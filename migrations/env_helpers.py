"""Database URL helpers for Alembic migrations.

Extracted so they can be tested without triggering alembic.context at import time.
"""

from __future__ import annotations

import os
from urllib.parse import quote_plus, urlparse, urlunparse

_DRIVER_PREFIX = "postgresql+psycopg2://"


def get_database_url() -> str:
    """SQLAlchemy URL for DATABASE_URL.

    Managed Postgres hands out `postgres://` / `postgresql://` URLs; both are
    rewritten to the psycopg2 driver. DB_PASSWORD is injected when the URL
    carries no password (pooler URLs from secret managers).
    """
    url = os.environ.get("DATABASE_URL")
    if not url:
        raise RuntimeError("DATABASE_URL is required to run migrations")
    if "://" not in url:
        raise RuntimeError("DATABASE_URL must be a URL (postgresql://user@host/db)")

    for scheme in ("postgres://", "postgresql://"):
        if url.startswith(scheme):
            url = _DRIVER_PREFIX + url[len(scheme):]
            break

    db_password = os.environ.get("DB_PASSWORD", "")
    if db_password:
        parsed = urlparse(url)
        if not parsed.password:
            netloc = f"{quote_plus(parsed.username or '')}:{quote_plus(db_password)}@{parsed.hostname}"
            if parsed.port:
                netloc += f":{parsed.port}"
            url = urlunparse(parsed._replace(netloc=netloc))
    return url
