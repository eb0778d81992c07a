"""
Streamlabs realtime client.

This module owns the websocket session to the Streamlabs socket API. It
handles:

- The connection state machine (NOT_CONNECTED -> CONNECTING -> CONNECTED)
- Socket token acquisition through the AuthController before connecting
- socket.io frame decoding and the heartbeat negotiated in the handshake
- Dispatch of donation events to subscribers
- Test donation submission over the REST API

Websocket I/O runs on a reader thread per connection. State changes and
subscriber callbacks are posted to the dispatcher and happen only on the
consuming context.
"""

import logging
import socket
import threading
from functools import partial
from typing import Callable, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.connectionpool import HTTPConnectionPool, HTTPSConnectionPool
from websockets.exceptions import ConnectionClosed, WebSocketException
from websockets.sync.client import connect as websocket_connect

from src.oauth.config import StreamlabsSettings
from src.oauth.coordinator import AuthController
from src.utils.dispatch import Dispatcher, Event

from . import endpoints
from .exceptions import (
    DonationSendError,
    DonationSendRejectedError,
    FrameDecodeError,
    WebsocketError,
)
from .heartbeat import Heartbeat
from .models import ConnectionState, Donation
from .protocol import parse_event, parse_handshake, split_frame

logger = logging.getLogger(__name__)


def format_amount(amount: float) -> str:
    """Culture-invariant decimal string for a donation amount (25.98, 5)."""
    text = repr(float(amount))
    return text[:-2] if text.endswith(".0") else text


class _TrackingHTTPConnectionPool(HTTPConnectionPool):
    """Connection pool that reports every connection it hands out."""

    def __init__(self, *args, on_connection: Callable, **kwargs):
        super().__init__(*args, **kwargs)
        self.on_connection = on_connection

    def _get_conn(self, timeout=None):
        conn = super()._get_conn(timeout=timeout)
        self.on_connection(conn)
        return conn


class _TrackingHTTPSConnectionPool(HTTPSConnectionPool):
    def __init__(self, *args, on_connection: Callable, **kwargs):
        super().__init__(*args, **kwargs)
        self.on_connection = on_connection

    def _get_conn(self, timeout=None):
        conn = super()._get_conn(timeout=timeout)
        self.on_connection(conn)
        return conn


class _AbortableAdapter(HTTPAdapter):
    """
    HTTPAdapter whose pools report the connection carrying each request.

    Session.close() only releases idle pooled connections; the connection of
    a request in progress is checked out of the pool. Holding it lets the
    owner shut its socket down from another thread.
    """

    def __init__(self, on_connection: Callable, **kwargs):
        # Set before super().__init__, which builds the pool manager
        self._on_connection = on_connection
        super().__init__(**kwargs)

    def init_poolmanager(self, *args, **kwargs) -> None:
        super().init_poolmanager(*args, **kwargs)
        self.poolmanager.pool_classes_by_scheme = {
            "http": partial(_TrackingHTTPConnectionPool, on_connection=self._on_connection),
            "https": partial(_TrackingHTTPSConnectionPool, on_connection=self._on_connection),
        }


class DonationRequest:
    """
    Handle for one donation POST.

    Attributes:
        form: Form fields sent to the donations endpoint
        status_code: HTTP status of the response (None until answered)
        error: Failure description (None on success)
        aborted: Whether the request was aborted by disconnect()
    """

    def __init__(self, form: dict, timeout: int = 30):
        self.form = form
        self.timeout = timeout
        self.status_code: Optional[int] = None
        self.error: Optional[str] = None
        self.aborted = False
        self._connection = None
        self._lock = threading.Lock()
        self._session = requests.Session()
        adapter = _AbortableAdapter(self._track_connection)
        self._session.mount("http://", adapter)
        self._session.mount("https://", adapter)
        self._done = threading.Event()

    @property
    def done(self) -> bool:
        """Whether the completion callback has run."""
        return self._done.is_set()

    @property
    def succeeded(self) -> bool:
        return self.done and self.error is None and not self.aborted

    def send(self) -> int:
        """
        Perform the POST. Runs on a worker thread.

        Returns:
            HTTP status code

        Raises:
            DonationSendError: On network or HTTP error, or if aborted
        """
        if self.aborted:
            raise DonationSendError("Donation request aborted")

        try:
            response = self._session.post(
                endpoints.DONATIONS,
                data=self.form,
                headers={
                    "Content-Type": endpoints.REQUEST_CONTENT_TYPE,
                    "Accept": endpoints.REQUEST_ACCEPT,
                },
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            if self.aborted:
                raise DonationSendError("Donation request aborted") from e
            raise DonationSendError(f"Network error: {e}") from e
        finally:
            self._session.close()

        # abort() may land after the response was read but before we got here
        if self.aborted:
            raise DonationSendError("Donation request aborted")

        self.status_code = response.status_code
        if response.status_code >= 400:
            raise DonationSendError(f"HTTP {response.status_code}: {response.text}")
        return response.status_code

    def abort(self) -> None:
        """Shut down the connection carrying the POST; the pending send fails."""
        with self._lock:
            self.aborted = True
            connection = self._connection

        sock = getattr(connection, "sock", None)
        if sock is not None:
            try:
                sock.shutdown(socket.SHUT_RDWR)
            except OSError as e:
                logger.debug(f"Donation connection already closed: {e}")
        self._session.close()

    def _track_connection(self, connection) -> None:
        with self._lock:
            self._connection = connection

    def _finish(self, error: Optional[BaseException]) -> None:
        if error is not None:
            self.error = str(error)
        self._done.set()


class _SocketSession:
    """Websocket and heartbeat of one connection attempt."""

    def __init__(self, url: str):
        self.url = url
        self.websocket = None
        self.heartbeat: Optional[Heartbeat] = None
        self.open = False
        self.closed = False

    def restart_heartbeat(self, interval_ms: int) -> None:
        self.cancel_heartbeat()
        self.heartbeat = Heartbeat(
            self.websocket.send, interval_ms, is_open=lambda: self.open
        )
        self.heartbeat.start()

    def cancel_heartbeat(self) -> None:
        if self.heartbeat is not None:
            self.heartbeat.cancel()

    def close(self) -> None:
        self.closed = True
        self.cancel_heartbeat()
        if self.websocket is not None:
            self.websocket.close()


class StreamlabsClient:
    """
    Realtime connection manager for the Streamlabs socket API.

    Example:
        client = StreamlabsClient(settings, auth, dispatcher)
        client.on_donation.subscribe(lambda d: print(d.message[0].from_))
        client.connect()
        dispatcher.run_forever()
    """

    def __init__(
        self,
        settings: StreamlabsSettings,
        auth: AuthController,
        dispatcher: Dispatcher,
        connect_websocket: Callable = websocket_connect,
    ):
        """
        Initialize realtime client.

        Args:
            settings: Session settings
            auth: Authorization controller providing access and socket tokens
            dispatcher: Consuming-context dispatcher
            connect_websocket: Websocket factory (websockets.sync.client.connect)
        """
        self.settings = settings
        self.auth = auth
        self.dispatcher = dispatcher
        self.connect_websocket = connect_websocket
        self.on_connection_state_changed = Event("on_connection_state_changed")
        self.on_donation = Event("on_donation")
        self._connection_state = ConnectionState.NOT_CONNECTED
        self._socket: Optional[_SocketSession] = None
        self._donation_request: Optional[DonationRequest] = None

    @property
    def connection_state(self) -> ConnectionState:
        return self._connection_state

    @property
    def donation_in_flight(self) -> bool:
        return self._donation_request is not None

    def connect(self) -> None:
        """
        Connect to the Streamlabs server to begin sending and receiving events.

        The connection process is async; listen to on_connection_state_changed
        for the result. Ignored while connecting or connected.
        """
        if self._connection_state in (ConnectionState.CONNECTING, ConnectionState.CONNECTED):
            return

        self._change_connection_state(ConnectionState.CONNECTING)

        self.auth.on_access_token_refreshed.unsubscribe(self._handle_access_token_refreshed)
        self.auth.on_access_token_refreshed.subscribe(self._handle_access_token_refreshed)
        self.auth.refresh_access_token()

    def disconnect(self) -> None:
        """Disconnect from the Streamlabs server and stop receiving events."""
        if self._donation_request is not None:
            self._donation_request.abort()
            self._donation_request = None

        if self._socket is not None:
            session, self._socket = self._socket, None
            session.close()

        self._change_connection_state(ConnectionState.NOT_CONNECTED)

    def send_donation(
        self, name: str, message: str, identifier: str, amount: float, currency: str
    ) -> Optional[DonationRequest]:
        """
        Send a test donation event.

        Args:
            name: Donor name; 2-25 chars, alphanumeric and underscores
            message: Donor message; fewer than 255 characters
            identifier: Groups donations from the same donor (e.g. an email address)
            amount: Donation amount
            currency: 3 letter currency code

        Returns:
            DonationRequest handle, or None if the send was rejected
        """
        try:
            self._check_can_send()
        except DonationSendRejectedError as e:
            logger.error(f"Can't send donation event: {e}")
            return None

        request = DonationRequest(
            {
                "name": name,
                "message": message,
                "identifier": identifier,
                "amount": format_amount(amount),
                "currency": currency,
                "access_token": self.auth.access_token or "",
            },
            timeout=self.settings.request_timeout,
        )
        self._donation_request = request
        self.dispatcher.submit(
            request.send,
            partial(self._handle_donation_response, request),
            name="streamlabs-donation",
        )
        return request

    def _check_can_send(self) -> None:
        if self._donation_request is not None:
            raise DonationSendRejectedError("send request already in progress.")
        if self._connection_state is not ConnectionState.CONNECTED:
            raise DonationSendRejectedError("not connected to the Streamlabs server.")

    def _handle_donation_response(
        self,
        request: DonationRequest,
        status_code: Optional[int],
        error: Optional[BaseException],
    ) -> None:
        if error is not None and not request.aborted:
            logger.error(f"Failed to send donation event: {error}")
        request._finish(error)

        if self._donation_request is request:
            self._donation_request = None

    def _handle_access_token_refreshed(self, success: bool) -> None:
        self.auth.on_access_token_refreshed.unsubscribe(self._handle_access_token_refreshed)

        if self._connection_state is not ConnectionState.CONNECTING:
            logger.info("Connection attempt abandoned before the websocket was opened")
            return

        if not success:
            # The handshake will be refused and surface as error + close
            logger.warning("Authorization failed; attempting websocket connection anyway")

        self._initialize_websocket()

    def _initialize_websocket(self) -> None:
        session = _SocketSession(endpoints.socket_url(self.auth.socket_token))
        self._socket = session
        thread = threading.Thread(
            target=self._run_socket, args=(session,), name="streamlabs-socket", daemon=True
        )
        thread.start()

    def _run_socket(self, session: _SocketSession) -> None:
        """Open the websocket and read frames until it closes. Reader thread."""
        try:
            websocket = self.connect_websocket(
                session.url, open_timeout=self.settings.request_timeout
            )
        except (WebSocketException, OSError) as e:
            self._handle_error(WebsocketError(f"Failed to connect: {e}"))
            self.dispatcher.post(self._handle_close, session)
            return

        session.websocket = websocket
        if session.closed:
            websocket.close()
            return

        session.open = True
        self.dispatcher.post(self._handle_open, session)

        try:
            for message in websocket:
                if isinstance(message, str):
                    self._handle_socket_message(session, message)
        except ConnectionClosed as e:
            self._handle_error(WebsocketError(f"Connection lost: {e}"))
        finally:
            session.open = False
            session.cancel_heartbeat()
            self.dispatcher.post(self._handle_close, session)

    def _handle_socket_message(self, session: _SocketSession, data: str) -> None:
        """Decode one frame. Reader thread; donations are posted to the dispatcher."""
        if self.settings.emit_debug_messages:
            logger.info(f"Message: {data}")

        try:
            frame = split_frame(data)
            if frame.is_handshake:
                session.restart_heartbeat(parse_handshake(frame.payload))
                return

            if not frame.is_event:
                return

            event = parse_event(frame.payload)
        except FrameDecodeError as e:
            logger.warning(f"Ignoring undecodable frame: {e}")
            return

        if event is None:
            return

        donation = Donation.from_dict(event)
        if donation.is_donation:
            self.dispatcher.post(self._dispatch_donation, donation)

    def _dispatch_donation(self, donation: Donation) -> None:
        self.on_donation.emit(donation)

    def _handle_open(self, session: _SocketSession) -> None:
        if session is not self._socket:
            return
        if self.settings.emit_debug_messages:
            logger.info("WebSocket: Open")
        self._change_connection_state(ConnectionState.CONNECTED)

    def _handle_close(self, session: _SocketSession) -> None:
        if session is not self._socket:
            return
        if self.settings.emit_debug_messages:
            logger.info("WebSocket: Close")
        session.cancel_heartbeat()
        self._socket = None
        self._change_connection_state(ConnectionState.NOT_CONNECTED)

    def _handle_error(self, error: WebsocketError) -> None:
        logger.error(f"Streamlabs web socket error: {error}")

    def _change_connection_state(self, state: ConnectionState) -> None:
        if self._connection_state is state:
            return
        self._connection_state = state
        self.on_connection_state_changed.emit(state)
