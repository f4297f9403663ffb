"""Push channel from the preview server to connected browsers.

Viewers hold an open ``text/event-stream`` response. A broadcast writes one
``reload`` event to each of them; there is no acknowledgement and no replay,
so a viewer that misses a signal catches up on its next full page load.
"""

import itertools
import logging
import threading

from .errors import ChannelSendError

logger = logging.getLogger(__name__)

RELOAD = "reload"
DEFAULT_KEEPALIVE = 15.0
# seconds a viewer may stall a write before it is dropped
SEND_TIMEOUT = 5.0

_handles = itertools.count(1)


class ViewerConnection:
    def __init__(self, wfile):
        self.handle = next(_handles)
        self.wfile = wfile
        # broadcast (dispatcher thread) and keepalive (request thread) share
        # the socket
        self._write_lock = threading.Lock()
        self._closed = threading.Event()

    @property
    def closed(self):
        return self._closed.is_set()

    def send(self, data):
        with self._write_lock:
            if self._closed.is_set():
                raise ChannelSendError(f"viewer {self.handle} is closed")
            try:
                self.wfile.write(data.encode("utf-8"))
                self.wfile.flush()
            except (OSError, ValueError) as exc:
                self._closed.set()
                raise ChannelSendError(
                    f"viewer {self.handle} unreachable: {exc}"
                ) from exc

    def send_event(self, message):
        self.send(f"data: {message}\n\n")

    def send_comment(self, text):
        # comment lines are ignored by EventSource
        self.send(f": {text}\n\n")

    def close(self):
        self._closed.set()

    def wait_closed(self, timeout=None):
        return self._closed.wait(timeout)

    def __repr__(self):
        return f"<ViewerConnection {self.handle}>"


class ViewerRegistry:
    """The set of currently connected viewers."""

    def __init__(self):
        self._connections = set()
        self._lock = threading.Lock()

    def register(self, connection):
        with self._lock:
            self._connections.add(connection)
        logger.debug("Viewer %s connected", connection.handle)

    def unregister(self, connection):
        with self._lock:
            found = connection in self._connections
            self._connections.discard(connection)
        if found:
            logger.debug("Viewer %s disconnected", connection.handle)
        return found

    def connections(self):
        with self._lock:
            return list(self._connections)

    def __len__(self):
        with self._lock:
            return len(self._connections)

    def broadcast(self, message=RELOAD):
        """Send ``message`` to every viewer; return how many received it.

        Viewers whose send fails are dropped from the registry.
        """
        reached = 0
        for connection in self.connections():
            try:
                connection.send_event(message)
            except ChannelSendError as exc:
                logger.debug("Dropping viewer: %s", exc)
                self.unregister(connection)
                continue
            reached += 1
        return reached

    def close_all(self):
        for connection in self.connections():
            connection.close()
            self.unregister(connection)

    def serve_connection(self, connection, keepalive=DEFAULT_KEEPALIVE):
        """Hold ``connection`` open until it closes or a write fails.

        Runs on the HTTP request thread that accepted the viewer.
        """
        self.register(connection)
        try:
            # flushes the response headers so the browser sees the stream open
            connection.send_comment("connected")
            while not connection.wait_closed(keepalive):
                connection.send_comment("ping")
        except ChannelSendError as exc:
            logger.debug("Viewer went away: %s", exc)
        finally:
            connection.close()
            self.unregister(connection)
