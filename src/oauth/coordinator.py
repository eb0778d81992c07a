"""
Authorization controller for the Streamlabs session.

This module provides the main interface for authorization in the
application. It decides whether a cached token can be used or an
interactive flow must run, and then exchanges the access token for the
socket token the realtime channel is authenticated with.
"""

import logging
from functools import partial
from typing import Optional

from src.utils.dispatch import Dispatcher, Event

from .config import StreamlabsSettings
from .providers import AccessTokenProvider, create_access_token_provider
from .token_manager import TokenManager
from .token_storage import TokenCache

logger = logging.getLogger(__name__)


class AuthController:
    """
    Token lifecycle manager.

    At most one refresh runs at a time; callers learn the outcome through
    on_access_token_refreshed(success). Sub-kinds of failure are logged, not
    propagated.

    Example:
        auth = AuthController(settings, token_cache, dispatcher)
        auth.on_access_token_refreshed.subscribe(handle_refreshed)
        auth.refresh_access_token()
        dispatcher.run_until(lambda: not auth.is_refreshing)
    """

    def __init__(
        self,
        settings: StreamlabsSettings,
        token_cache: TokenCache,
        dispatcher: Dispatcher,
        token_manager: Optional[TokenManager] = None,
        provider: Optional[AccessTokenProvider] = None,
    ):
        """
        Initialize authorization controller.

        Args:
            settings: Session settings
            token_cache: Cache the access and refresh tokens live in
            dispatcher: Consuming-context dispatcher
            token_manager: Token endpoint client (created from settings if not provided)
            provider: Access token provider (picked from settings if not provided)
        """
        self.settings = settings
        self.token_cache = token_cache
        self.dispatcher = dispatcher
        self.token_manager = token_manager or TokenManager(
            settings.credentials, timeout=settings.request_timeout
        )
        self.provider = provider or create_access_token_provider(
            settings, token_cache, self.token_manager, dispatcher
        )
        self.on_access_token_refreshed = Event("on_access_token_refreshed")
        self.socket_token: Optional[str] = None
        self._is_refreshing = False

    @property
    def access_token(self) -> Optional[str]:
        return self.token_cache.access_token

    @property
    def is_refreshing(self) -> bool:
        return self._is_refreshing

    def refresh_access_token(self) -> None:
        """
        Make sure an access token is available and fetch a fresh socket token.

        Does nothing while a refresh is already running; the pending refresh
        delivers the single completion event.
        """
        if self._is_refreshing:
            return
        self._is_refreshing = True
        self.socket_token = None

        self.provider.on_done.subscribe(self._handle_provider_done)
        self.provider.provide_access_token()

    def cancel_auth(self) -> None:
        """Abort an in-flight authorization; completes it as failed."""
        if self._is_refreshing:
            self.provider.cancel()

    def clear_cached_tokens(self) -> None:
        """Remove cached tokens, forcing a full authorization next time."""
        self.token_cache.clear()
        self.socket_token = None

    def get_status(self) -> dict:
        """
        Get current authorization status for diagnostics.

        Returns:
            Dictionary with status information:
            - credentials_configured: bool
            - access_token_cached: bool
            - refresh_token_cached: bool
            - refreshing: bool
            - socket_token_available: bool
            - auth_provider: str
        """
        tokens = self.token_cache.get()
        return {
            "credentials_configured": self.settings.credentials.contains_sensitive_data(),
            "access_token_cached": tokens.access_token is not None,
            "refresh_token_cached": tokens.refresh_token is not None,
            "refreshing": self._is_refreshing,
            "socket_token_available": self.socket_token is not None,
            "auth_provider": self.settings.auth_provider,
        }

    def _handle_provider_done(self, provider: AccessTokenProvider) -> None:
        provider.on_done.unsubscribe(self._handle_provider_done)

        if not provider.is_done or provider.is_error:
            logger.error(
                "Failed to execute authorization procedure. "
                "Check application settings and credentials."
            )
            self._finish(False)
            return

        self.dispatcher.submit(
            partial(self.token_manager.fetch_socket_token, self.access_token),
            self._handle_socket_token_fetched,
            name="socket-token",
        )

    def _handle_socket_token_fetched(
        self, socket_token: Optional[str], error: Optional[BaseException]
    ) -> None:
        if error is not None:
            logger.error(f"Failed to execute authorization procedure: {error}")
            self._finish(False)
            return

        self.socket_token = socket_token
        self._finish(True)

    def _finish(self, success: bool) -> None:
        self._is_refreshing = False
        self.on_access_token_refreshed.emit(success)
