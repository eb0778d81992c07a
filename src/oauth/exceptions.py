"""
OAuth exception classes for Streamlabs API integration.

This module defines the exception hierarchy for all authorization-related
errors. At the AuthController boundary every one of them collapses into a
boolean failure signal; the exception message is what gets logged.
"""


class StreamlabsOAuthError(Exception):
    """Base exception for all Streamlabs OAuth errors."""

    pass


class ConfigurationError(StreamlabsOAuthError):
    """OAuth configuration error (missing or invalid configuration)."""

    pass


class CredentialsInvalidError(StreamlabsOAuthError):
    """Client id or client secret is missing."""

    pass


class AuthorizationDeniedError(StreamlabsOAuthError):
    """The user or the provider returned an error on the authorization redirect."""

    pass


class MalformedAuthorizationResponseError(StreamlabsOAuthError):
    """Authorization redirect carried neither an error nor a code."""

    pass


class TokenExchangeError(StreamlabsOAuthError):
    """Failed to exchange authorization code for tokens."""

    pass


class TokenRefreshError(StreamlabsOAuthError):
    """Failed to refresh access token using refresh token."""

    pass


class SocketTokenFetchError(StreamlabsOAuthError):
    """Failed to exchange the access token for a realtime socket token."""

    pass


class TokenStorageError(StreamlabsOAuthError):
    """Token storage operation failed (file I/O error)."""

    pass
