"""Tests for OAuth token storage module."""

import json
import tempfile
from pathlib import Path
from unittest import mock

import pytest

from src.oauth.exceptions import TokenStorageError
from src.oauth.token_storage import CachedTokens, JsonFileStore, MemoryStore, TokenCache


class TestMemoryStore:
    """Tests for MemoryStore class."""

    def test_get_set_delete(self):
        """MemoryStore supports get, set and delete."""
        store = MemoryStore()

        assert store.get("key") is None
        store.set("key", "value")
        assert store.get("key") == "value"
        store.delete("key")
        assert store.get("key") is None

    def test_delete_missing_key_is_noop(self):
        """Deleting an absent key does not raise."""
        MemoryStore().delete("missing")


class TestJsonFileStore:
    """Tests for JsonFileStore class."""

    @pytest.fixture
    def temp_path(self):
        """Create a path inside a temporary directory."""
        with tempfile.TemporaryDirectory() as tmpdir:
            yield Path(tmpdir) / "nested" / "tokens.json"

    def test_creates_parent_directory(self, temp_path):
        """JsonFileStore creates the parent directory."""
        JsonFileStore(str(temp_path))

        assert temp_path.parent.exists()

    def test_set_and_get(self, temp_path):
        """Values written can be read back by a fresh store."""
        JsonFileStore(str(temp_path)).set("access", "token_123")

        assert JsonFileStore(str(temp_path)).get("access") == "token_123"
        assert json.loads(temp_path.read_text()) == {"access": "token_123"}

    def test_file_permissions_are_600(self, temp_path):
        """Token file is user-only read/write."""
        JsonFileStore(str(temp_path)).set("access", "token_123")

        assert oct(temp_path.stat().st_mode)[-3:] == "600"

    def test_get_missing_file_returns_none(self, temp_path):
        """Reading before anything was written returns None."""
        assert JsonFileStore(str(temp_path)).get("access") is None

    def test_corrupted_file_reads_as_empty(self, temp_path):
        """Invalid JSON is ignored rather than raising."""
        store = JsonFileStore(str(temp_path))
        temp_path.write_text("{not json")

        assert store.get("access") is None

    def test_non_object_file_reads_as_empty(self, temp_path):
        """A JSON file that is not an object is ignored."""
        store = JsonFileStore(str(temp_path))
        temp_path.write_text('["access"]')

        assert store.get("access") is None

    def test_delete_keeps_other_keys(self, temp_path):
        """Deleting one key leaves the others in place."""
        store = JsonFileStore(str(temp_path))
        store.set("access", "a")
        store.set("refresh", "r")

        store.delete("access")

        assert store.get("access") is None
        assert store.get("refresh") == "r"

    def test_delete_last_key_removes_file(self, temp_path):
        """Deleting the last key removes the token file."""
        store = JsonFileStore(str(temp_path))
        store.set("access", "a")

        store.delete("access")

        assert not temp_path.exists()

    def test_write_failure_raises_storage_error(self, temp_path):
        """I/O errors during write raise TokenStorageError."""
        store = JsonFileStore(str(temp_path))

        with mock.patch("builtins.open", side_effect=OSError("disk full")):
            with pytest.raises(TokenStorageError, match="Failed to save tokens"):
                store.set("access", "a")


class TestTokenCache:
    """Tests for TokenCache class."""

    @pytest.fixture
    def cache(self):
        """Create an empty cache."""
        return TokenCache(MemoryStore(), "access_key", "refresh_key")

    def test_empty_cache(self, cache):
        """A new cache holds no tokens."""
        assert cache.get() == CachedTokens()
        assert cache.has_any() is False

    def test_set_and_get(self, cache):
        """Tokens are written under the configured keys."""
        cache.set(CachedTokens(access_token="access", refresh_token="refresh"))

        assert cache.get() == CachedTokens("access", "refresh")
        assert cache.store.get("access_key") == "access"
        assert cache.store.get("refresh_key") == "refresh"
        assert cache.has_any() is True

    def test_set_none_removes_key(self, cache):
        """Setting a token to None removes it from the store."""
        cache.set(CachedTokens(access_token="access", refresh_token="refresh"))

        cache.set(CachedTokens(access_token="new_access", refresh_token=None))

        assert cache.access_token == "new_access"
        assert cache.refresh_token is None

    def test_has_any_with_only_refresh_token(self, cache):
        """has_any is true when only a refresh token is cached."""
        cache.set(CachedTokens(refresh_token="refresh"))

        assert cache.has_any() is True

    def test_set_access_token_keeps_refresh_token(self, cache):
        """set_access_token leaves the refresh token alone."""
        cache.set(CachedTokens(access_token="old", refresh_token="refresh"))

        cache.set_access_token("new")

        assert cache.get() == CachedTokens("new", "refresh")

    def test_clear(self, cache):
        """clear removes both tokens."""
        cache.set(CachedTokens(access_token="access", refresh_token="refresh"))

        cache.clear()

        assert cache.get() == CachedTokens()
        assert cache.has_any() is False
