"""Correlation IDs tying webhook deliveries to their log lines."""

import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Iterator

correlation_id_var: ContextVar[str] = ContextVar("correlation_id", default="")

CORRELATION_ID_HEADER = "X-Correlation-ID"

# Provider-supplied ids longer than this are replaced with a fresh one
_MAX_INBOUND_ID_LEN = 128


def generate_correlation_id() -> str:
    """Generate a new correlation ID."""
    return str(uuid.uuid4())


def get_correlation_id() -> str:
    """Get current correlation ID from context."""
    return correlation_id_var.get()


def resolve_inbound_correlation_id(header_value: str | None) -> str:
    """Reuse the caller's correlation ID when it is sane, otherwise mint one."""
    if header_value and len(header_value) <= _MAX_INBOUND_ID_LEN and header_value.isprintable():
        return header_value
    return generate_correlation_id()


@contextmanager
def correlation_scope(cid: str) -> Iterator[str]:
    """Bind `cid` as the current correlation ID for the duration of the block."""
    token = correlation_id_var.set(cid)
    try:
        yield cid
    finally:
        correlation_id_var.reset(token)
