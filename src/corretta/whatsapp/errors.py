"""Failure types for the ingestion pipeline.

Two kinds of stages exist:

- Critical stages (channel, contact, conversation, message insert) must
  succeed. Database failures are wrapped in `IngestionError` and abort the
  request with a 500.
- Degradable stages (media re-hosting, timeline entries) return
  `value | None` or a bool and never raise past their boundary.
"""

from contextlib import contextmanager
from typing import Iterator, Literal

import psycopg2

CriticalStage = Literal["channel", "contact", "conversation", "message"]


class IngestionError(Exception):
    """A must-succeed stage failed; nothing downstream can run."""

    def __init__(self, stage: CriticalStage):
        super().__init__(f"ingestion failed at stage: {stage}")
        self.stage = stage


@contextmanager
def critical_stage(stage: CriticalStage) -> Iterator[None]:
    """Translate database errors raised inside the block into IngestionError."""
    try:
        yield
    except psycopg2.Error as e:
        raise IngestionError(stage) from e
