"""
Loopback callback server for Streamlabs OAuth.

This module provides the local HTTP listener the authorization redirect is
sent to. The listener is single-shot: it serves exactly one request, answers
it with the configured HTML page, and closes.

IMPORTANT: The request handler runs on the listener thread. It only records
the query string and forwards it to the on_request callback; callers are
responsible for marshalling that callback onto their own context.
"""

import logging
import threading
from dataclasses import dataclass
from typing import Callable, Dict, Optional
from urllib.parse import urlencode

from flask import Flask, Response, request
from werkzeug.serving import BaseWSGIServer, make_server

from .config import StreamlabsClientCredentials, StreamlabsSettings

logger = logging.getLogger(__name__)

# How often the serving loop wakes up to check for close()
POLL_INTERVAL = 0.25


@dataclass
class AuthorizationResult:
    """
    Result of OAuth authorization redirect.

    Attributes:
        success: Whether authorization succeeded
        authorization_code: Authorization code from callback (if successful)
        error: Error code from OAuth provider, or "missing_code" (if failed)
        error_description: Human-readable error description (if failed)
    """

    success: bool
    authorization_code: Optional[str] = None
    error: Optional[str] = None
    error_description: Optional[str] = None

    @property
    def is_malformed(self) -> bool:
        return not self.success and self.error == "missing_code"


def parse_authorization_response(query: Dict[str, str]) -> AuthorizationResult:
    """
    Interpret the query string of an authorization redirect.

    An ``error`` parameter wins over everything else, even when empty; a
    response with neither ``error`` nor ``code`` is malformed.

    Args:
        query: Query parameters of the redirect request

    Returns:
        AuthorizationResult describing the redirect
    """
    if "error" in query:
        return AuthorizationResult(
            success=False,
            error=query["error"],
            error_description=query.get("error_description", "Unknown error"),
        )

    code = query.get("code")
    if not code:
        return AuthorizationResult(
            success=False,
            error="missing_code",
            error_description=f"Malformed authorization response: {urlencode(query)}",
        )

    return AuthorizationResult(success=True, authorization_code=code)


def build_authorization_url(
    credentials: StreamlabsClientCredentials,
    redirect_uri: str,
    scopes: str,
    code_challenge: Optional[str] = None,
) -> str:
    """
    Generate the Streamlabs authorization URL.

    Args:
        credentials: Application credentials (authorize URI, client id)
        redirect_uri: Loopback address the provider redirects to
        scopes: Space-separated OAuth scopes
        code_challenge: PKCE S256 challenge to attach, if any

    Returns:
        Complete authorization URL with query parameters
    """
    params = {
        "client_id": credentials.client_id,
        "redirect_uri": redirect_uri,
        "response_type": "code",
        "scope": scopes,
    }
    if code_challenge:
        params["code_challenge"] = code_challenge
        params["code_challenge_method"] = "S256"
    return f"{credentials.authorize_uri}?{urlencode(params)}"


class LoopbackCallbackServer:
    """
    Local HTTP server to receive the OAuth redirect.

    The server:
    1. Binds to the host and port of the configured loopback URI
    2. Serves requests on a background thread until one arrives
    3. Answers that request with the configured HTML page
    4. Closes its socket

    Security:
    - Binds to the loopback host only
    - Single-use (closes after one request)
    - No persistent state
    """

    def __init__(
        self,
        settings: StreamlabsSettings,
        on_request: Optional[Callable[[Dict[str, str]], None]] = None,
    ):
        """
        Initialize callback server.

        Args:
            settings: Settings with loopback URI and response HTML
            on_request: Called on the listener thread with the redirect query
        """
        self.settings = settings
        self.on_request = on_request
        self.query: Optional[Dict[str, str]] = None
        self.app = Flask(__name__)
        self.app.logger.setLevel(logging.WARNING)  # Suppress Flask logs
        self._server: Optional[BaseWSGIServer] = None
        self._thread: Optional[threading.Thread] = None
        self._received = threading.Event()
        self._closed = threading.Event()

        self.app.add_url_rule(
            "/",
            "oauth_callback",
            self._handle_callback,
            defaults={"_path": ""},
            methods=["GET"],
        )
        self.app.add_url_rule(
            "/<path:_path>",
            "oauth_callback_path",
            self._handle_callback,
            methods=["GET"],
        )

    @property
    def received(self) -> bool:
        return self._received.is_set()

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _handle_callback(self, _path: str = "") -> Response:
        """Record the redirect query and answer with the configured page."""
        if self._received.is_set():
            return Response("Already handled", status=410, content_type="text/plain")

        logger.info("Received OAuth redirect")
        self.query = request.args.to_dict()
        self._received.set()

        if self.on_request is not None:
            self.on_request(dict(self.query))

        return Response(
            self.settings.loopback_response_html,
            status=200,
            content_type="text/html; charset=utf-8",
        )

    def start(self) -> None:
        """
        Bind the listener and start serving in a background thread.

        Raises:
            OSError: If the loopback address cannot be bound
        """
        host = self.settings.loopback_host
        port = self.settings.loopback_port

        logger.info(f"Starting OAuth loopback listener on {host}:{port}")
        self._server = make_server(host, port, self.app)
        self._server.timeout = POLL_INTERVAL

        self._thread = threading.Thread(
            target=self._serve, name="oauth-loopback", daemon=True
        )
        self._thread.start()

    def _serve(self) -> None:
        server = self._server
        try:
            while not self._received.is_set() and not self._closed.is_set():
                server.handle_request()
        except Exception as e:
            logger.error(f"Loopback listener error: {e}")
        finally:
            server.server_close()
            logger.debug("OAuth loopback listener closed")

    def wait_for_request(self, timeout: Optional[float] = None) -> bool:
        """
        Block until the redirect arrives or the server is closed.

        Args:
            timeout: Maximum seconds to wait (None waits indefinitely)

        Returns:
            True if a request was received
        """
        if self._thread is None:
            return self._received.is_set()
        self._thread.join(timeout)
        return self._received.is_set()

    def close(self) -> None:
        """Stop serving and release the socket. Safe to call more than once."""
        self._closed.set()
        if self._thread is None and self._server is not None:
            self._server.server_close()
            self._server = None
