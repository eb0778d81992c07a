"""Keep-alive loop for the realtime websocket."""

import logging
import threading
from typing import Callable, Optional

from websockets.exceptions import ConnectionClosed

from .protocol import HEARTBEAT_MESSAGE

logger = logging.getLogger(__name__)


class Heartbeat:
    """
    Sends the keep-alive message at a fixed interval on a daemon thread.

    The loop runs while is_open() holds and cancel() hasn't been called.
    Cancellation wakes the loop immediately.
    """

    def __init__(
        self,
        send: Callable[[str], None],
        interval_ms: int,
        is_open: Callable[[], bool],
    ):
        self.send = send
        self.interval_ms = interval_ms
        self.is_open = is_open
        self._cancelled = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        self._thread = threading.Thread(
            target=self._run, name="streamlabs-heartbeat", daemon=True
        )
        self._thread.start()

    def cancel(self) -> None:
        self._cancelled.set()

    def join(self, timeout: Optional[float] = None) -> None:
        if self._thread is not None:
            self._thread.join(timeout)

    def _run(self) -> None:
        interval = self.interval_ms / 1000
        while self.is_open() and not self._cancelled.is_set():
            try:
                self.send(HEARTBEAT_MESSAGE)
            except ConnectionClosed:
                logger.debug("Heartbeat stopped: websocket closed")
                return
            self._cancelled.wait(interval)
