"""Abortable requests for ``requests`` sessions driven from worker threads.

A blocking ``requests`` call cannot be cancelled from the event loop. To stop
one early, :class:`AbortableAdapter` builds connection pools whose connections
register themselves with the :class:`InFlightRequest` bound to the calling
thread. :meth:`InFlightRequest.abort` shuts that connection's socket down,
which makes the blocked read in the worker thread return at once.

Usage:
    ```python
    session.mount("http://", AbortableAdapter())
    in_flight = InFlightRequest()
    response = in_flight.run(session.request, "GET", url)   # worker thread
    in_flight.abort()                                       # any thread
    ```
"""

import logging
import socket
import threading
from collections.abc import Callable
from typing import Any, TypeVar

from requests.adapters import HTTPAdapter
from urllib3.connection import HTTPConnection, HTTPSConnection
from urllib3.connectionpool import HTTPConnectionPool, HTTPSConnectionPool

logger = logging.getLogger(__name__)

T = TypeVar("T")

_current = threading.local()


class RequestAbortedError(ConnectionError):
    """The request was aborted before it finished."""


class InFlightRequest:
    """One request running in a worker thread, abortable from any thread."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._connection: HTTPConnection | None = None
        self.aborted = False

    def run(self, func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """Call ``func`` with this request bound to the current thread."""
        if self.aborted:
            raise RequestAbortedError("Request aborted before it was sent")
        _current.request = self
        try:
            return func(*args, **kwargs)
        finally:
            _current.request = None
            with self._lock:
                self._connection = None

    def attach(self, connection: HTTPConnection) -> None:
        with self._lock:
            if self.aborted:
                connection.close()
                raise RequestAbortedError("Request aborted")
            self._connection = connection

    def abort(self) -> None:
        """Stop the request, unblocking the thread that runs it."""
        with self._lock:
            self.aborted = True
            connection = self._connection
        if connection is None:
            return

        sock = connection.sock
        if sock is not None:
            try:
                sock.shutdown(socket.SHUT_RDWR)
            except OSError as e:
                # Already closed by the peer or the worker thread
                logger.debug(f"Socket shutdown on abort failed: {e}")
        connection.close()


def _attach_current(connection: HTTPConnection) -> None:
    request: InFlightRequest | None = getattr(_current, "request", None)
    if request is not None:
        request.attach(connection)


class _AbortableHTTPConnection(HTTPConnection):
    def connect(self) -> None:
        super().connect()
        _attach_current(self)

    def request(self, *args: Any, **kwargs: Any) -> None:
        _attach_current(self)
        super().request(*args, **kwargs)


class _AbortableHTTPSConnection(HTTPSConnection):
    def connect(self) -> None:
        super().connect()
        _attach_current(self)

    def request(self, *args: Any, **kwargs: Any) -> None:
        _attach_current(self)
        super().request(*args, **kwargs)


class _AbortableHTTPConnectionPool(HTTPConnectionPool):
    ConnectionCls = _AbortableHTTPConnection


class _AbortableHTTPSConnectionPool(HTTPSConnectionPool):
    ConnectionCls = _AbortableHTTPSConnection


class AbortableAdapter(HTTPAdapter):
    """``HTTPAdapter`` whose connections can be aborted mid-request."""

    def init_poolmanager(self, *args: Any, **kwargs: Any) -> None:
        super().init_poolmanager(*args, **kwargs)
        self.poolmanager.pool_classes_by_scheme = {
            "http": _AbortableHTTPConnectionPool,
            "https": _AbortableHTTPSConnectionPool,
        }
