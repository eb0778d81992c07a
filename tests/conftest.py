"""Shared fixtures for Streamlabs client tests."""

import pytest

from src.oauth.config import StreamlabsClientCredentials, StreamlabsSettings
from src.oauth.token_storage import MemoryStore, TokenCache
from src.utils.dispatch import Dispatcher


@pytest.fixture
def credentials():
    """Create test client credentials."""
    return StreamlabsClientCredentials(
        client_id="test_client_id",
        client_secret="test_client_secret",
        redirect_uris=("http://localhost:8080",),
    )


@pytest.fixture
def settings(credentials):
    """Create test settings that keep tokens in memory."""
    return StreamlabsSettings(
        credentials=credentials,
        loopback_uri="http://127.0.0.1:8080",
        token_file=None,
    )


@pytest.fixture
def dispatcher():
    """Create a dispatcher drained by the test thread."""
    return Dispatcher()


@pytest.fixture
def token_cache(settings):
    """Create an empty in-memory token cache."""
    return TokenCache(
        MemoryStore(),
        access_token_key=settings.access_token_key,
        refresh_token_key=settings.refresh_token_key,
    )
