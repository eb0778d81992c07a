"""
Access token providers.

A provider runs one complete authorization attempt and reports completion
exactly once through its on_done event. Providers are interchangeable
strategies behind the AccessTokenProvider interface; the one used by a
session is picked from settings.auth_provider.

All state changes happen on the dispatcher's consuming context. Background
work (the loopback listener, token endpoint calls, console input) posts its
results back through the dispatcher.
"""

import logging
import threading
import webbrowser
from abc import ABC, abstractmethod
from dataclasses import dataclass
from functools import partial
from typing import Callable, Dict, Optional
from urllib.parse import parse_qsl, urlsplit

from src.utils.dispatch import Dispatcher, Event

from .auth_server import (
    LoopbackCallbackServer,
    build_authorization_url,
    parse_authorization_response,
)
from .config import StreamlabsSettings
from .exceptions import (
    AuthorizationDeniedError,
    ConfigurationError,
    CredentialsInvalidError,
    MalformedAuthorizationResponseError,
    TokenStorageError,
)
from .pkce import derive_challenge, generate_verifier
from .token_manager import TokenManager, TokenPair
from .token_storage import CachedTokens, TokenCache

logger = logging.getLogger(__name__)


@dataclass
class PendingAuthorizationAttempt:
    """
    State of one interactive authorization.

    Attributes:
        code_verifier: PKCE verifier sent with the code exchange
        code_challenge: S256 challenge derived from the verifier
        redirect_uri: Redirect URI used in the authorization request
        server: Loopback listener (None for providers that don't bind one)
        timer: Timeout timer (None when no timeout is configured)
    """

    code_verifier: str
    code_challenge: str
    redirect_uri: str
    server: Optional[LoopbackCallbackServer] = None
    timer: Optional[threading.Timer] = None

    def release(self) -> None:
        if self.timer is not None:
            self.timer.cancel()
            self.timer = None
        if self.server is not None:
            self.server.close()
            self.server = None


class AccessTokenProvider(ABC):
    """
    Runs an OAuth authorization attempt and signals completion once.

    Attributes:
        on_done: Event emitted with the provider when the attempt finishes
        is_done: Whether the last attempt has finished
        is_error: Whether the last attempt failed
    """

    def __init__(
        self,
        settings: StreamlabsSettings,
        token_cache: TokenCache,
        token_manager: TokenManager,
        dispatcher: Dispatcher,
    ):
        self.settings = settings
        self.token_cache = token_cache
        self.token_manager = token_manager
        self.dispatcher = dispatcher
        self.on_done = Event("on_done")
        self.is_done = False
        self.is_error = False
        self._running = False
        self._pending: Optional[PendingAuthorizationAttempt] = None

    @property
    def in_progress(self) -> bool:
        return self._running

    def provide_access_token(self) -> None:
        """
        Start an authorization attempt. Completion is signalled via on_done.

        Order of preference: cached access token (Streamlabs access tokens
        never expire), then the cached refresh token when enabled, then the
        full interactive flow.
        """
        if self._running:
            logger.debug("Authorization already in progress")
            return

        self.is_done = False
        self.is_error = False
        self._running = True

        if not self.settings.credentials.contains_sensitive_data():
            logger.error(
                f"{CredentialsInvalidError.__name__}: Client credentials are not valid. "
                f"Set STREAMLABS_CLIENT_ID and STREAMLABS_CLIENT_SECRET."
            )
            self._complete(error=True)
            return

        if self.token_cache.access_token:
            logger.debug("Using cached access token")
            self._complete()
            return

        refresh_token = self.token_cache.refresh_token
        if self.settings.use_refresh_token and refresh_token:
            self.dispatcher.submit(
                partial(self.token_manager.refresh_access_token, refresh_token),
                self._handle_access_token_refreshed,
                name="oauth-refresh",
            )
            return

        self._execute_full_auth()

    def cancel(self) -> None:
        """Force the in-flight attempt to complete as failed. No-op when idle."""
        if not self._running:
            return
        logger.warning("Authorization cancelled")
        self._complete(error=True)

    @abstractmethod
    def _execute_full_auth(self) -> None:
        """Start the interactive part of the flow."""

    def _new_attempt(self, redirect_uri: str) -> PendingAuthorizationAttempt:
        code_verifier = generate_verifier(32)
        attempt = PendingAuthorizationAttempt(
            code_verifier=code_verifier,
            code_challenge=derive_challenge(code_verifier),
            redirect_uri=redirect_uri,
        )
        self._pending = attempt
        return attempt

    def _authorization_url(self, attempt: PendingAuthorizationAttempt) -> str:
        return build_authorization_url(
            self.settings.credentials,
            attempt.redirect_uri,
            self.settings.access_scopes,
            attempt.code_challenge if self.settings.send_code_challenge else None,
        )

    def _arm_timeout(self, attempt: PendingAuthorizationAttempt) -> None:
        timeout = self.settings.authorization_timeout
        if timeout is None:
            return
        timer = threading.Timer(
            timeout, self.dispatcher.post, args=(self._handle_timeout, attempt)
        )
        timer.daemon = True
        attempt.timer = timer
        timer.start()

    def _handle_timeout(self, attempt: PendingAuthorizationAttempt) -> None:
        if attempt is not self._pending:
            return
        logger.error(
            f"No authorization response received within "
            f"{self.settings.authorization_timeout} seconds"
        )
        self._complete(error=True)

    def _handle_access_token_refreshed(
        self, tokens: Optional[TokenPair], error: Optional[BaseException]
    ) -> None:
        if not self._running:
            return

        if error is not None:
            logger.info(
                f"Failed to refresh access token; executing full auth procedure. "
                f"Details: {error}"
            )
            self._execute_full_auth()
            return

        try:
            self.token_cache.set(
                CachedTokens(
                    access_token=tokens.access_token,
                    refresh_token=tokens.refresh_token,
                )
            )
        except TokenStorageError as e:
            logger.error(f"Failed to cache refreshed access token: {e}")
            self._complete(error=True)
            return

        self._complete()

    def _handle_redirect(
        self, attempt: PendingAuthorizationAttempt, query: Dict[str, str]
    ) -> None:
        """Validate the redirect query and exchange the code. Consuming context."""
        if attempt is not self._pending:
            logger.debug("Ignoring redirect for a finished authorization attempt")
            return

        # Single-shot: the listener is done once a redirect is in hand
        attempt.release()

        result = parse_authorization_response(query)
        if not result.success:
            if result.is_malformed:
                logger.error(
                    f"{MalformedAuthorizationResponseError.__name__}: "
                    f"{result.error_description}"
                )
            else:
                logger.error(
                    f"{AuthorizationDeniedError.__name__}: OAuth authorization error: "
                    f"{result.error} - {result.error_description}"
                )
            self._complete(error=True)
            return

        self.dispatcher.submit(
            partial(
                self.token_manager.exchange_auth_code,
                result.authorization_code,
                attempt.code_verifier,
                attempt.redirect_uri,
            ),
            partial(self._handle_auth_code_exchanged, attempt),
            name="oauth-exchange",
        )

    def _handle_auth_code_exchanged(
        self,
        attempt: PendingAuthorizationAttempt,
        tokens: Optional[TokenPair],
        error: Optional[BaseException],
    ) -> None:
        if attempt is not self._pending:
            return

        if error is not None:
            logger.error(f"Failed to exchange authorization code: {error}")
            self._complete(error=True)
            return

        try:
            self.token_cache.set(
                CachedTokens(
                    access_token=tokens.access_token,
                    refresh_token=tokens.refresh_token,
                )
            )
        except TokenStorageError as e:
            logger.error(f"Failed to cache tokens: {e}")
            self._complete(error=True)
            return

        logger.info("Authorization complete, tokens cached")
        self._complete()

    def _complete(self, error: bool = False) -> None:
        if not self._running:
            return
        self._running = False

        if self._pending is not None:
            self._pending.release()
            self._pending = None

        self.is_error = error
        self.is_done = True
        self.on_done.emit(self)


class LoopbackAccessTokenProvider(AccessTokenProvider):
    """
    Provides an access token using a local loopback listener.

    The browser is sent to the Streamlabs consent page with the loopback URI
    as redirect target; the listener captures the redirect and the code is
    exchanged with the PKCE verifier generated for the attempt.
    """

    def __init__(
        self,
        settings: StreamlabsSettings,
        token_cache: TokenCache,
        token_manager: TokenManager,
        dispatcher: Dispatcher,
        open_url: Callable[[str], object] = webbrowser.open,
    ):
        super().__init__(settings, token_cache, token_manager, dispatcher)
        self.open_url = open_url

    def _execute_full_auth(self) -> None:
        attempt = self._new_attempt(self.settings.loopback_uri)

        server = LoopbackCallbackServer(
            self.settings,
            on_request=lambda query: self.dispatcher.post(
                self._handle_redirect, attempt, query
            ),
        )
        attempt.server = server

        try:
            server.start()
        except OSError as e:
            logger.error(
                f"Could not start loopback listener on {self.settings.loopback_uri}: {e}"
            )
            self._complete(error=True)
            return

        auth_url = self._authorization_url(attempt)
        logger.info("Opening browser for Streamlabs authorization")
        logger.debug(f"Authorization URL: {auth_url}")
        try:
            self.open_url(auth_url)
        except Exception as e:
            logger.warning(
                f"Could not open browser automatically: {e}. "
                f"Visit this URL to authorize: {auth_url}"
            )

        if self.settings.run_in_background:
            self._arm_timeout(attempt)
            return

        # Host can't keep serving while unfocused: block until the redirect arrives
        if not server.wait_for_request(self.settings.authorization_timeout):
            self._handle_timeout(attempt)


class ManualAccessTokenProvider(AccessTokenProvider):
    """
    Provides an access token without binding a local listener.

    Prints the authorization URL and reads back the redirected URL (or the
    bare code) from the console. Used on hosts where the loopback address
    can't be bound, e.g. remote shells.
    """

    def __init__(
        self,
        settings: StreamlabsSettings,
        token_cache: TokenCache,
        token_manager: TokenManager,
        dispatcher: Dispatcher,
        prompt: Callable[[str], str] = input,
        output: Callable[[str], None] = print,
    ):
        super().__init__(settings, token_cache, token_manager, dispatcher)
        self.prompt = prompt
        self.output = output

    def _execute_full_auth(self) -> None:
        redirect_uris = self.settings.credentials.redirect_uris
        redirect_uri = redirect_uris[0] if redirect_uris else self.settings.loopback_uri
        attempt = self._new_attempt(redirect_uri)

        self.output("Please authorize the application by visiting:")
        self.output(f"\n  {self._authorization_url(attempt)}\n")

        self._arm_timeout(attempt)
        self.dispatcher.submit(
            partial(self.prompt, "Paste the URL you were redirected to: "),
            partial(self._handle_input, attempt),
            name="oauth-manual-input",
        )

    def _handle_input(
        self,
        attempt: PendingAuthorizationAttempt,
        text: Optional[str],
        error: Optional[BaseException],
    ) -> None:
        if error is not None:
            if attempt is self._pending:
                logger.error(f"Could not read authorization response: {error}")
                self._complete(error=True)
            return
        self._handle_redirect(attempt, parse_redirect_input(text or ""))


def parse_redirect_input(text: str) -> Dict[str, str]:
    """
    Turn pasted console input into redirect query parameters.

    Accepts a full redirect URL, a bare query string, or just the code.
    """
    text = text.strip()
    if not text:
        return {}
    if "://" in text:
        return dict(parse_qsl(urlsplit(text).query, keep_blank_values=True))
    if "=" in text:
        return dict(parse_qsl(text.lstrip("?"), keep_blank_values=True))
    return {"code": text}


def create_access_token_provider(
    settings: StreamlabsSettings,
    token_cache: TokenCache,
    token_manager: TokenManager,
    dispatcher: Dispatcher,
) -> AccessTokenProvider:
    """
    Build the provider selected by settings.auth_provider.

    Raises:
        ConfigurationError: If the provider name is unknown
    """
    providers = {
        "loopback": LoopbackAccessTokenProvider,
        "manual": ManualAccessTokenProvider,
    }
    try:
        provider_cls = providers[settings.auth_provider]
    except KeyError as e:
        raise ConfigurationError(
            f"Unknown auth provider {settings.auth_provider!r}"
        ) from e
    return provider_cls(settings, token_cache, token_manager, dispatcher)
