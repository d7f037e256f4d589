"""Shared pytest fixtures for the WhatsApp inbox tests."""
import sys
sys.dont_write_bytecode = True

import pytest  # noqa: E402

from fakes import FakeCrmStore  # noqa: E402


@pytest.fixture(autouse=True)
def _reset_oidc_jwks_cache():
    """Reset global JWKS cache to avoid cross-test contamination."""
    import corretta.api.auth as auth_module

    auth_module._jwks_cache = None
    auth_module._jwks_cache_time = 0
    yield
    auth_module._jwks_cache = None
    auth_module._jwks_cache_time = 0


@pytest.fixture
def store(monkeypatch) -> FakeCrmStore:
    """In-memory CRM tables wired in place of the Postgres repositories."""
    return FakeCrmStore().install(monkeypatch)


@pytest.fixture
def no_media(monkeypatch):
    """Fail loudly if a test unexpectedly reaches the media fetcher."""

    def _unexpected(**kwargs):
        raise AssertionError("media fetcher should not be called")

    monkeypatch.setattr("corretta.whatsapp.media.store_attachment", _unexpected)
