"""
OAuth 2.0 module for Streamlabs API integration.

This module implements the OAuth 2.0 Authorization Code flow with PKCE used
to authenticate against Streamlabs, and the exchange of the resulting access
token for a realtime socket token.

Public API:
    StreamlabsClientCredentials: Application credentials
    StreamlabsSettings: Runtime settings
    TokenCache: Cached access/refresh token accessor
    JsonFileStore, MemoryStore: Key-value stores backing the cache
    TokenManager: Token endpoint client
    LoopbackCallbackServer: Single-shot redirect listener
    LoopbackAccessTokenProvider, ManualAccessTokenProvider: Authorization strategies
    AuthController: Token lifecycle manager

Exceptions:
    StreamlabsOAuthError: Base exception
    ConfigurationError: Configuration error
    CredentialsInvalidError: Client id/secret missing
    AuthorizationDeniedError: Redirect carried an error
    MalformedAuthorizationResponseError: Redirect carried no code
    TokenExchangeError: Token exchange failed
    TokenRefreshError: Token refresh failed
    SocketTokenFetchError: Socket token fetch failed
    TokenStorageError: Storage operation failed
"""

from .auth_server import (
    AuthorizationResult,
    LoopbackCallbackServer,
    build_authorization_url,
    parse_authorization_response,
)
from .config import StreamlabsClientCredentials, StreamlabsSettings
from .coordinator import AuthController
from .exceptions import (
    AuthorizationDeniedError,
    ConfigurationError,
    CredentialsInvalidError,
    MalformedAuthorizationResponseError,
    SocketTokenFetchError,
    StreamlabsOAuthError,
    TokenExchangeError,
    TokenRefreshError,
    TokenStorageError,
)
from .pkce import derive_challenge, generate_verifier
from .providers import (
    AccessTokenProvider,
    LoopbackAccessTokenProvider,
    ManualAccessTokenProvider,
    create_access_token_provider,
)
from .token_manager import TokenManager, TokenPair
from .token_storage import CachedTokens, JsonFileStore, MemoryStore, TokenCache

__all__ = [
    # Configuration
    "StreamlabsClientCredentials",
    "StreamlabsSettings",
    # PKCE
    "generate_verifier",
    "derive_challenge",
    # Token Storage
    "CachedTokens",
    "TokenCache",
    "JsonFileStore",
    "MemoryStore",
    # Token Manager
    "TokenManager",
    "TokenPair",
    # Authorization Server
    "LoopbackCallbackServer",
    "AuthorizationResult",
    "build_authorization_url",
    "parse_authorization_response",
    # Providers
    "AccessTokenProvider",
    "LoopbackAccessTokenProvider",
    "ManualAccessTokenProvider",
    "create_access_token_provider",
    # Controller
    "AuthController",
    # Exceptions
    "StreamlabsOAuthError",
    "ConfigurationError",
    "CredentialsInvalidError",
    "AuthorizationDeniedError",
    "MalformedAuthorizationResponseError",
    "TokenExchangeError",
    "TokenRefreshError",
    "SocketTokenFetchError",
    "TokenStorageError",
]
