"""
Consuming-context dispatch for background I/O.

Background threads (loopback listener, websocket reader, HTTP workers) never
touch shared state or invoke subscribers directly. They post callables to a
Dispatcher, and the owning thread drains the queue with run_pending(),
run_until() or run_forever(). Everything observed by subscribers therefore
happens on that one thread.
"""

import logging
import queue
import threading
import time
from typing import Any, Callable, List, Optional, Tuple

logger = logging.getLogger(__name__)

Callback = Callable[..., Any]


class Event:
    """
    Multicast event with subscribe/unsubscribe semantics.

    Handlers are invoked in subscription order. A handler that raises is
    logged and does not prevent the remaining handlers from running.
    """

    def __init__(self, name: str = "event"):
        self.name = name
        self._handlers: List[Callback] = []

    def subscribe(self, handler: Callback) -> None:
        self._handlers.append(handler)

    def unsubscribe(self, handler: Callback) -> None:
        if handler in self._handlers:
            self._handlers.remove(handler)

    def emit(self, *args: Any) -> None:
        # Copy so handlers may unsubscribe themselves while being invoked
        for handler in list(self._handlers):
            try:
                handler(*args)
            except Exception:
                logger.exception(f"Unhandled error in {self.name} handler {handler!r}")

    def __len__(self) -> int:
        return len(self._handlers)


class Dispatcher:
    """
    Single-consumer work queue bound to the thread that drains it.

    Example:
        dispatcher = Dispatcher()
        dispatcher.submit(fetch_token, on_token_fetched)
        dispatcher.run_until(lambda: done, timeout=30)
    """

    def __init__(self) -> None:
        self._queue: "queue.Queue[Tuple[Callback, tuple]]" = queue.Queue()
        self._stopped = threading.Event()

    def post(self, callback: Callback, *args: Any) -> None:
        """Queue a callback for execution on the consuming context. Thread-safe."""
        self._queue.put((callback, args))

    def submit(
        self,
        func: Callable[[], Any],
        on_done: Callable[[Any, Optional[BaseException]], None],
        name: Optional[str] = None,
    ) -> threading.Thread:
        """
        Run a blocking function on a daemon thread and post its completion.

        Args:
            func: Blocking callable executed off-context
            on_done: Called on the consuming context as on_done(result, error);
                     exactly one of the two is meaningful
            name: Optional worker thread name

        Returns:
            The started worker thread
        """

        def worker() -> None:
            try:
                result = func()
            except Exception as e:
                self.post(on_done, None, e)
            else:
                self.post(on_done, result, None)

        thread = threading.Thread(target=worker, name=name, daemon=True)
        thread.start()
        return thread

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def run_pending(self, timeout: Optional[float] = None) -> int:
        """
        Execute queued callbacks.

        Args:
            timeout: When given, block up to this many seconds for the first
                     callback if the queue is empty

        Returns:
            Number of callbacks executed
        """
        executed = 0
        block = timeout is not None
        while True:
            try:
                if block and executed == 0:
                    callback, args = self._queue.get(timeout=timeout)
                else:
                    callback, args = self._queue.get_nowait()
            except queue.Empty:
                return executed
            callback(*args)
            executed += 1

    def run_until(
        self,
        predicate: Callable[[], bool],
        timeout: Optional[float] = None,
        poll_interval: float = 0.1,
    ) -> bool:
        """
        Drain the queue until predicate() is true.

        Returns:
            True if the predicate was satisfied, False on timeout
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        while not predicate():
            if deadline is not None:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return False
                wait = min(poll_interval, remaining)
            else:
                wait = poll_interval
            self.run_pending(timeout=wait)
        return True

    def run_forever(self, poll_interval: float = 0.1) -> None:
        """Drain the queue until stop() is called."""
        self._stopped.clear()
        while not self._stopped.is_set():
            self.run_pending(timeout=poll_interval)

    def stop(self) -> None:
        self._stopped.set()
