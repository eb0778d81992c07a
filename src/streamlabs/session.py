"""
Session composition.

A StreamlabsSession wires the settings, token cache, authorization
controller and realtime client around one Dispatcher. The application
builds it once and passes it around; there is no module-level session state.
"""

import logging
from typing import Optional

from src.oauth.config import StreamlabsSettings
from src.oauth.coordinator import AuthController
from src.oauth.token_storage import JsonFileStore, KeyValueStore, MemoryStore, TokenCache
from src.utils.dispatch import Dispatcher

from .client import StreamlabsClient
from .models import ConnectionState

logger = logging.getLogger(__name__)


class StreamlabsSession:
    """
    One authenticated Streamlabs session per process.

    Attributes:
        settings: Session settings
        dispatcher: Consuming-context dispatcher all events are delivered on
        token_cache: Cached OAuth tokens
        auth: Authorization controller
        client: Realtime client
    """

    def __init__(
        self,
        settings: Optional[StreamlabsSettings] = None,
        store: Optional[KeyValueStore] = None,
        dispatcher: Optional[Dispatcher] = None,
    ):
        """
        Build a session.

        Args:
            settings: Settings (loads from environment if not provided)
            store: Token store (JSON file at settings.token_file, or memory when unset)
            dispatcher: Dispatcher (a new one if not provided)
        """
        self.settings = settings or StreamlabsSettings.from_env()
        self.dispatcher = dispatcher or Dispatcher()

        if store is None:
            if self.settings.token_file:
                store = JsonFileStore(self.settings.token_file)
            else:
                store = MemoryStore()

        self.token_cache = TokenCache(
            store,
            access_token_key=self.settings.access_token_key,
            refresh_token_key=self.settings.refresh_token_key,
        )
        self.auth = AuthController(self.settings, self.token_cache, self.dispatcher)
        self.client = StreamlabsClient(self.settings, self.auth, self.dispatcher)

    def authorize(self, timeout: Optional[float] = None) -> bool:
        """
        Run the authorization procedure and wait for it.

        Args:
            timeout: Seconds to wait (None waits until the flow completes)

        Returns:
            True if an access token and socket token were obtained
        """
        outcome = []
        handler = outcome.append
        self.auth.on_access_token_refreshed.subscribe(handler)
        try:
            self.auth.refresh_access_token()
            if not self.dispatcher.run_until(lambda: bool(outcome), timeout=timeout):
                logger.error("Timed out waiting for authorization")
                self.auth.cancel_auth()
                self.dispatcher.run_pending()
        finally:
            self.auth.on_access_token_refreshed.unsubscribe(handler)
        return bool(outcome) and outcome[0]

    def connect_and_wait(self, timeout: Optional[float] = None) -> bool:
        """
        Connect and wait until the attempt settles.

        Returns:
            True if the client reached CONNECTED
        """
        self.client.connect()
        self.dispatcher.run_until(
            lambda: self.client.connection_state is not ConnectionState.CONNECTING,
            timeout=timeout,
        )
        return self.client.connection_state is ConnectionState.CONNECTED

    def close(self) -> None:
        """Cancel any authorization in flight and disconnect."""
        self.auth.cancel_auth()
        self.client.disconnect()
        self.dispatcher.run_pending()
