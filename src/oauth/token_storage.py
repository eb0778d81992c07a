"""
Token storage for Streamlabs OAuth integration.

This module provides the key-value stores the token cache is persisted in and
the TokenCache accessor itself. Streamlabs access tokens do not expire, so
unlike a typical OAuth cache there is no expiry tracking here: a token stays
valid until the user explicitly clears it.
"""

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional, Protocol

from .exceptions import TokenStorageError

logger = logging.getLogger(__name__)


class KeyValueStore(Protocol):
    """Durable string store the token cache writes through to."""

    def get(self, key: str) -> Optional[str]: ...

    def set(self, key: str, value: str) -> None: ...

    def delete(self, key: str) -> None: ...


class MemoryStore:
    """In-process store; tokens are lost when the process exits."""

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._data: Dict[str, str] = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)


class JsonFileStore:
    """
    File-based key-value store (plaintext JSON).

    The whole file is rewritten on every change and chmod'ed to 600 since it
    holds OAuth tokens.
    """

    def __init__(self, path: str):
        """
        Initialize file store.

        Args:
            path: Path to the JSON file (``~`` is expanded)
        """
        self.path = Path(path).expanduser()
        self._ensure_directory()

    def _ensure_directory(self) -> None:
        """Create parent directory if needed."""
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise TokenStorageError(
                f"Cannot create token directory {self.path.parent}: {e}"
            ) from e

    def _set_secure_permissions(self) -> None:
        """Set file permissions to user-only read/write (600)."""
        try:
            self.path.chmod(0o600)
            logger.debug(f"Set secure permissions (600) on {self.path}")
        except OSError as e:
            logger.warning(f"Could not set secure permissions: {e}")

    def _read(self) -> Dict[str, str]:
        """
        Read the whole store.

        Notes:
            - Returns an empty dict if the file doesn't exist (normal on first run)
            - Returns an empty dict if the file is corrupted (logs warning)
        """
        if not self.path.exists():
            logger.debug(f"No token file found at {self.path}")
            return {}

        try:
            with open(self.path, "r") as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            logger.warning(f"Invalid token file at {self.path}, ignoring it: {e}")
            return {}
        except OSError as e:
            logger.warning(f"Could not read token file: {e}")
            return {}

        if not isinstance(data, dict):
            logger.warning(f"Token file at {self.path} is not a JSON object, ignoring it")
            return {}

        return {str(k): str(v) for k, v in data.items() if v is not None}

    def _write(self, data: Dict[str, str]) -> None:
        try:
            with open(self.path, "w") as f:
                json.dump(data, f, indent=2)
        except OSError as e:
            logger.error(f"Failed to save tokens: {e}")
            raise TokenStorageError(f"Failed to save tokens: {e}") from e

        self._set_secure_permissions()

    def get(self, key: str) -> Optional[str]:
        return self._read().get(key)

    def set(self, key: str, value: str) -> None:
        data = self._read()
        data[key] = value
        self._write(data)
        logger.debug(f"Stored {key} in {self.path}")

    def delete(self, key: str) -> None:
        data = self._read()
        if key not in data:
            return

        del data[key]
        if data:
            self._write(data)
            return

        try:
            self.path.unlink()
            logger.info(f"Token file deleted: {self.path}")
        except OSError as e:
            logger.error(f"Failed to delete token file: {e}")
            raise TokenStorageError(f"Failed to delete token file: {e}") from e


@dataclass
class CachedTokens:
    """
    Cached OAuth tokens.

    Attributes:
        access_token: Token used for API calls and for fetching the socket token
        refresh_token: Token for obtaining a new access token
    """

    access_token: Optional[str] = None
    refresh_token: Optional[str] = None


class TokenCache:
    """
    Synchronous accessor for the cached access and refresh tokens.

    Holds no network or validation logic; it only maps the two tokens onto
    their configured keys in the backing store.
    """

    def __init__(
        self,
        store: KeyValueStore,
        access_token_key: str = "StreamlabsAccessToken",
        refresh_token_key: str = "StreamlabsRefreshToken",
    ):
        self.store = store
        self.access_token_key = access_token_key
        self.refresh_token_key = refresh_token_key

    @property
    def access_token(self) -> Optional[str]:
        return self.store.get(self.access_token_key) or None

    @property
    def refresh_token(self) -> Optional[str]:
        return self.store.get(self.refresh_token_key) or None

    def get(self) -> CachedTokens:
        return CachedTokens(
            access_token=self.access_token, refresh_token=self.refresh_token
        )

    def set(self, tokens: CachedTokens) -> None:
        """
        Write both tokens; a None value removes the corresponding key.

        Raises:
            TokenStorageError: If the backing store cannot be written
        """
        self._put(self.access_token_key, tokens.access_token)
        self._put(self.refresh_token_key, tokens.refresh_token)

    def set_access_token(self, access_token: str) -> None:
        self._put(self.access_token_key, access_token)

    def clear(self) -> None:
        self.store.delete(self.access_token_key)
        self.store.delete(self.refresh_token_key)
        logger.info("Cached tokens cleared")

    def has_any(self) -> bool:
        return self.access_token is not None or self.refresh_token is not None

    def _put(self, key: str, value: Optional[str]) -> None:
        if value:
            self.store.set(key, value)
        else:
            self.store.delete(key)
