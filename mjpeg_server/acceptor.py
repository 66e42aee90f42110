"""
Connection acceptor.

Owns the listening socket. Instead of blocking in accept() it waits for the
socket to become readable with a short selector timeout, so the loop notices
the stop event within one poll interval. Every accepted connection is handed
to its own handler thread and the loop goes straight back to waiting.
"""

import logging
import selectors
import socket
from threading import Thread

logger = logging.getLogger(__name__)

DEFAULT_POLL_TIMEOUT = 0.1
DEFAULT_BACKLOG = 5


class ConnectionAcceptor:
    def __init__(self, host, port, handler_factory, stop_event,
                 poll_timeout=DEFAULT_POLL_TIMEOUT, backlog=DEFAULT_BACKLOG):
        self.host = host
        self.port = port
        self.handler_factory = handler_factory
        self.stop_event = stop_event
        self.poll_timeout = poll_timeout
        self.backlog = backlog
        self.socket = None
        self.selector = None
        self.accepted_count = 0

    @property
    def bound_port(self):
        if self.socket is None:
            return None
        return self.socket.getsockname()[1]

    def bind(self):
        """Create, bind and listen. Raises OSError if any step fails."""
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.bind((self.host, self.port))
            sock.listen(self.backlog)
            sock.setblocking(False)
        except OSError:
            sock.close()
            raise
        self.socket = sock
        self.selector = selectors.DefaultSelector()
        self.selector.register(sock, selectors.EVENT_READ)
        logger.info("Listening on %s:%d", self.host or '0.0.0.0', self.bound_port)

    def close(self):
        selector, self.selector = self.selector, None
        if selector is not None:
            selector.close()
        sock, self.socket = self.socket, None
        if sock is not None:
            sock.close()

    def run(self):
        try:
            while not self.stop_event.is_set():
                if self.socket is None:
                    break
                self.accept_once()
        finally:
            self.close()
            logger.info("Acceptor stopped")

    def accept_once(self):
        """Wait up to one poll interval for a connection and dispatch it."""
        try:
            ready = self.selector.select(self.poll_timeout)
        except (OSError, ValueError) as e:
            logger.error("Select failed: %s", e)
            # avoid spinning on a persistent select error
            self.stop_event.wait(self.poll_timeout)
            return
        if not ready:
            return

        try:
            conn, address = self.socket.accept()
        except (BlockingIOError, InterruptedError):
            return
        except OSError as e:
            logger.error("Accept failed: %s", e)
            return

        self.accepted_count += 1
        self.dispatch(conn, address)

    def dispatch(self, conn, address):
        try:
            handler = self.handler_factory(conn, address)
            thread = Thread(target=handler.run, name=f"mjpeg-client-{address[0]}:{address[1]}",
                            daemon=True)
            thread.start()
        except Exception as e:
            logger.error("Could not start handler for %s: %s", address, e)
            conn.close()
