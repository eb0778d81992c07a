"""
Token endpoint client for Streamlabs OAuth integration.

This module talks to the Streamlabs token endpoint:
- Token exchange (authorization code + PKCE verifier → access/refresh tokens)
- Token refresh (refresh token → new access token)
- Socket token fetch (access token → realtime socket token)

All calls are blocking. Callers that must not block run them through
Dispatcher.submit so that completion lands on the consuming context.
"""

import logging
from dataclasses import dataclass
from typing import Optional

import requests

from .config import StreamlabsClientCredentials
from .exceptions import SocketTokenFetchError, TokenExchangeError, TokenRefreshError

logger = logging.getLogger(__name__)

REQUEST_CONTENT_TYPE = "application/x-www-form-urlencoded"
SOCKET_TOKEN_URL = "https://streamlabs.com/api/v1.0/socket/token"


@dataclass
class TokenPair:
    """Access and refresh token returned by the token endpoint."""

    access_token: str
    refresh_token: Optional[str] = None


class TokenManager:
    """
    Issues requests against the OAuth token endpoint.

    Responsibilities:
    - Exchange authorization codes for tokens
    - Refresh access tokens
    - Exchange access tokens for socket tokens

    No call is retried; every failure is reported once as a typed exception.
    """

    def __init__(self, credentials: StreamlabsClientCredentials, timeout: int = 30):
        """
        Initialize token manager.

        Args:
            credentials: Application credentials (token URI, client id/secret)
            timeout: Request timeout in seconds
        """
        self.credentials = credentials
        self.timeout = timeout

    def exchange_auth_code(
        self, authorization_code: str, code_verifier: str, redirect_uri: str
    ) -> TokenPair:
        """
        Exchange authorization code for access and refresh tokens.

        Args:
            authorization_code: Code received on the loopback redirect
            code_verifier: PKCE verifier generated for this attempt
            redirect_uri: Redirect URI used in the authorization request

        Returns:
            TokenPair with access and refresh tokens

        Raises:
            TokenExchangeError: On network failure, HTTP error or malformed body
        """
        logger.info("Exchanging authorization code for tokens")

        data = self._post_token_request(
            {
                "grant_type": "authorization_code",
                "client_id": self.credentials.client_id,
                "client_secret": self.credentials.client_secret,
                "redirect_uri": redirect_uri,
                "code": authorization_code,
                "code_verifier": code_verifier,
            },
            TokenExchangeError,
            "Token exchange",
        )

        try:
            tokens = TokenPair(
                access_token=data["access_token"],
                refresh_token=data.get("refresh_token"),
            )
        except (KeyError, TypeError) as e:
            logger.error(f"Invalid response from token endpoint: {e}")
            raise TokenExchangeError(
                f"Invalid response from token endpoint: missing {e}"
            ) from e

        logger.info("Successfully obtained tokens")
        return tokens

    def refresh_access_token(self, refresh_token: str) -> TokenPair:
        """
        Refresh access token using refresh token.

        Args:
            refresh_token: Cached refresh token (caller checks it exists)

        Returns:
            TokenPair; the refresh token is the new one if the endpoint
            rotated it, otherwise the one passed in

        Raises:
            TokenRefreshError: On network failure, HTTP error or malformed body
        """
        logger.info("Refreshing access token")

        data = self._post_token_request(
            {
                "grant_type": "refresh_token",
                "client_id": self.credentials.client_id,
                "client_secret": self.credentials.client_secret,
                "redirect_uri": self.credentials.redirect_uris[0]
                if self.credentials.redirect_uris
                else "",
                "refresh_token": refresh_token,
            },
            TokenRefreshError,
            "Token refresh",
        )

        try:
            tokens = TokenPair(
                access_token=data["access_token"],
                refresh_token=data.get("refresh_token", refresh_token),
            )
        except (KeyError, TypeError) as e:
            logger.error(f"Invalid response from token endpoint: {e}")
            raise TokenRefreshError(
                f"Invalid response from token endpoint: missing {e}"
            ) from e

        logger.info("Successfully refreshed access token")
        return tokens

    def fetch_socket_token(self, access_token: str) -> str:
        """
        Exchange an access token for a realtime socket token.

        Args:
            access_token: Valid OAuth access token

        Returns:
            Socket token string

        Raises:
            SocketTokenFetchError: On network failure, HTTP error or malformed body
        """
        try:
            response = requests.get(
                SOCKET_TOKEN_URL,
                params={"access_token": access_token},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            logger.error(f"Network error during socket token fetch: {e}")
            raise SocketTokenFetchError(
                f"Network error during socket token fetch: {e}"
            ) from e

        if response.status_code != 200:
            logger.error(
                f"Socket token fetch failed: {response.status_code} - {response.text}"
            )
            raise SocketTokenFetchError(
                f"Socket token fetch failed with status {response.status_code}"
            )

        try:
            socket_token = response.json()["socket_token"]
        except (KeyError, TypeError, ValueError) as e:
            logger.error(f"Invalid response from socket token endpoint: {e}")
            raise SocketTokenFetchError(
                f"Invalid response from socket token endpoint: {e}"
            ) from e

        if not socket_token:
            raise SocketTokenFetchError("Socket token endpoint returned an empty token")

        return socket_token

    def _post_token_request(self, form: dict, error_cls: type, action: str) -> dict:
        """POST a form to the token endpoint and return the decoded JSON body."""
        try:
            response = requests.post(
                self.credentials.token_uri,
                headers={"Content-Type": REQUEST_CONTENT_TYPE},
                data=form,
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            logger.error(f"Network error during {action.lower()}: {e}")
            raise error_cls(f"Network error during {action.lower()}: {e}") from e

        if response.status_code != 200:
            logger.error(f"{action} failed: {response.status_code} - {response.text}")
            raise error_cls(
                f"{action} failed with status {response.status_code}. "
                f"Check that your client_id and client_secret are correct."
            )

        try:
            data = response.json()
        except ValueError as e:
            logger.error(f"Invalid response from token endpoint: {e}")
            raise error_cls(f"Invalid response from token endpoint: {e}") from e

        if not isinstance(data, dict):
            raise error_cls("Invalid response from token endpoint: expected a JSON object")

        return data
