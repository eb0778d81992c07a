"""
OAuth configuration for Streamlabs API integration.

This module provides the client credentials and the runtime settings used by
the authorization and realtime layers. Configuration can be loaded from
environment variables or provided programmatically; it is read-only once a
session has been built from it.
"""

import os
from dataclasses import dataclass, field
from typing import List, Optional, Tuple
from urllib.parse import urlsplit

from .exceptions import ConfigurationError

DEFAULT_LOOPBACK_URI = "http://localhost:8080"

DEFAULT_LOOPBACK_RESPONSE_HTML = """<html>
<head><title>Streamlabs Authorization</title></head>
<body style="font-family: Arial, sans-serif; max-width: 600px; margin: 50px auto; padding: 20px;">
    <h1>Authorization response received</h1>
    <p>You can close this window and return to the application.</p>
</body>
</html>"""

AUTH_PROVIDERS = ("loopback", "manual")


@dataclass(frozen=True)
class StreamlabsClientCredentials:
    """
    Streamlabs application credentials from the developer dashboard.

    Attributes:
        client_id: Application client ID
        client_secret: Application client secret
        authorize_uri: OAuth authorization endpoint
        token_uri: OAuth token endpoint
        redirect_uris: Redirect URIs registered for the application
    """

    client_id: str = ""
    client_secret: str = ""
    authorize_uri: str = "https://streamlabs.com/api/v1.0/authorize"
    token_uri: str = "https://streamlabs.com/api/v1.0/token"
    redirect_uris: Tuple[str, ...] = (DEFAULT_LOOPBACK_URI,)

    def contains_sensitive_data(self) -> bool:
        """Whether both client id and client secret are present."""
        return bool(self.client_id) and bool(self.client_secret)


@dataclass
class StreamlabsSettings:
    """
    Runtime settings for the Streamlabs client.

    Attributes:
        credentials: Application credentials
        access_scopes: OAuth scopes requested during authorization
        loopback_uri: Local address the authorization redirect is sent to
        loopback_response_html: Page shown in the browser once the redirect arrives
        access_token_key: Store key for the cached access token
        refresh_token_key: Store key for the cached refresh token
        token_file: Path of the JSON token store (None keeps tokens in memory)
        auth_provider: "loopback" or "manual"
        use_refresh_token: Try the cached refresh token before full authorization
        send_code_challenge: Attach the PKCE S256 challenge to the authorization URL
        run_in_background: When False, block the caller while waiting for the redirect
        authorization_timeout: Seconds to wait for the redirect (None waits forever)
        emit_debug_messages: Log websocket lifecycle and raw frames
        request_timeout: Timeout in seconds for HTTPS requests
    """

    credentials: StreamlabsClientCredentials = field(
        default_factory=StreamlabsClientCredentials
    )
    access_scopes: str = "donations.read donations.create socket.token"
    loopback_uri: str = DEFAULT_LOOPBACK_URI
    loopback_response_html: str = DEFAULT_LOOPBACK_RESPONSE_HTML
    access_token_key: str = "StreamlabsAccessToken"
    refresh_token_key: str = "StreamlabsRefreshToken"
    token_file: Optional[str] = "~/.streamlabs/tokens.json"
    auth_provider: str = "loopback"
    use_refresh_token: bool = False
    send_code_challenge: bool = False
    run_in_background: bool = True
    authorization_timeout: Optional[float] = None
    emit_debug_messages: bool = False
    request_timeout: int = 30

    def __post_init__(self) -> None:
        """Validate configuration after initialization."""
        parts = urlsplit(self.loopback_uri)
        if parts.scheme != "http" or not parts.hostname:
            raise ConfigurationError(
                f"loopback_uri must be an http:// URL with a host, got {self.loopback_uri!r}"
            )

        if not self.access_token_key or not self.refresh_token_key:
            raise ConfigurationError("Token cache keys cannot be empty")

        if self.access_token_key == self.refresh_token_key:
            raise ConfigurationError("Access and refresh token keys must differ")

        if self.auth_provider not in AUTH_PROVIDERS:
            raise ConfigurationError(
                f"auth_provider must be one of {', '.join(AUTH_PROVIDERS)}, "
                f"got {self.auth_provider!r}"
            )

        if self.authorization_timeout is not None and self.authorization_timeout <= 0:
            raise ConfigurationError("authorization_timeout must be positive")

    @property
    def loopback_host(self) -> str:
        return urlsplit(self.loopback_uri).hostname or "localhost"

    @property
    def loopback_port(self) -> int:
        """Port of the loopback listener (80 when the URI carries none)."""
        return urlsplit(self.loopback_uri).port or 80

    @property
    def loopback_path(self) -> str:
        return urlsplit(self.loopback_uri).path or "/"

    @classmethod
    def from_env(cls) -> "StreamlabsSettings":
        """
        Load settings from environment variables.

        Environment variables:
            STREAMLABS_CLIENT_ID: Application client ID
            STREAMLABS_CLIENT_SECRET: Application client secret
            STREAMLABS_REDIRECT_URIS: Comma-separated registered redirect URIs
            STREAMLABS_SCOPES: Space-separated OAuth scopes
            STREAMLABS_LOOPBACK_URI: Loopback redirect address (default: http://localhost:8080)
            STREAMLABS_TOKEN_FILE: Token file path (default: ~/.streamlabs/tokens.json)
            STREAMLABS_AUTH_PROVIDER: "loopback" or "manual"
            STREAMLABS_USE_REFRESH_TOKEN: "1" to try the refresh token first
            STREAMLABS_AUTH_TIMEOUT: Seconds to wait for the authorization redirect
            STREAMLABS_DEBUG: "1" to log websocket traffic

        Missing credentials are not an error here: the authorization
        providers report unusable credentials when they are asked for a token.

        Returns:
            StreamlabsSettings instance

        Raises:
            ConfigurationError: If a value is invalid
        """
        loopback_uri = os.environ.get("STREAMLABS_LOOPBACK_URI", DEFAULT_LOOPBACK_URI)
        redirect_uris = _split_list(os.environ.get("STREAMLABS_REDIRECT_URIS", ""))

        credentials = StreamlabsClientCredentials(
            client_id=os.environ.get("STREAMLABS_CLIENT_ID", ""),
            client_secret=os.environ.get("STREAMLABS_CLIENT_SECRET", ""),
            redirect_uris=tuple(redirect_uris or [loopback_uri]),
        )

        timeout = os.environ.get("STREAMLABS_AUTH_TIMEOUT")
        try:
            authorization_timeout = float(timeout) if timeout else None
        except ValueError as e:
            raise ConfigurationError(
                f"STREAMLABS_AUTH_TIMEOUT must be a number, got {timeout!r}"
            ) from e

        return cls(
            credentials=credentials,
            access_scopes=os.environ.get(
                "STREAMLABS_SCOPES", "donations.read donations.create socket.token"
            ),
            loopback_uri=loopback_uri,
            token_file=os.environ.get("STREAMLABS_TOKEN_FILE", "~/.streamlabs/tokens.json"),
            auth_provider=os.environ.get("STREAMLABS_AUTH_PROVIDER", "loopback"),
            use_refresh_token=_env_flag("STREAMLABS_USE_REFRESH_TOKEN"),
            authorization_timeout=authorization_timeout,
            emit_debug_messages=_env_flag("STREAMLABS_DEBUG"),
        )


def _split_list(value: str) -> List[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


def _env_flag(name: str) -> bool:
    return os.environ.get(name, "").strip().lower() in ("1", "true", "yes", "on")
