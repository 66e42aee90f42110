"""
Client Stream Handler

Serves one accepted connection from handshake to close:

1. read a single HTTP request and reject anything that is not a GET,
2. send the multipart response headers,
3. switch the socket to non-blocking mode and stream the latest frame at a fixed
   pace until the client goes away or the server stops.

A handler only ever touches its own socket. Whatever goes wrong, the failure
stays inside this connection: run() logs it, closes the socket and returns.
"""

import enum
import logging
import selectors
import socket
import time

from mjpeg_server import protocol
from mjpeg_server.codec import JpegEncoder

logger = logging.getLogger(__name__)

DEFAULT_FRAME_INTERVAL = 0.033  # ~30 fps
DEFAULT_IDLE_INTERVAL = 0.01
DEFAULT_ERROR_BACKOFF = 0.1
DEFAULT_REQUEST_TIMEOUT = 5.0
DEFAULT_WRITE_TIMEOUT = 2.0
DEFAULT_REQUEST_BUFFER_SIZE = 1024


class HandlerState(enum.Enum):
    ACCEPTED = 'accepted'
    HANDSHAKING = 'handshaking'
    STREAMING = 'streaming'
    CLOSED = 'closed'


class ClientStreamHandler:
    def __init__(self, connection, address, frame_slot, stop_event, encoder=None,
                 frame_interval=DEFAULT_FRAME_INTERVAL,
                 idle_interval=DEFAULT_IDLE_INTERVAL,
                 error_backoff=DEFAULT_ERROR_BACKOFF,
                 request_timeout=DEFAULT_REQUEST_TIMEOUT,
                 write_timeout=DEFAULT_WRITE_TIMEOUT,
                 request_buffer_size=DEFAULT_REQUEST_BUFFER_SIZE):
        self.connection = connection
        self.address = address
        self.frame_slot = frame_slot
        self.stop_event = stop_event
        self.encoder = encoder or JpegEncoder()
        self.frame_interval = frame_interval
        self.idle_interval = idle_interval
        self.error_backoff = error_backoff
        self.request_timeout = request_timeout
        self.write_timeout = write_timeout
        self.request_buffer_size = request_buffer_size

        self.state = HandlerState.ACCEPTED
        self.frames_sent = 0
        self._cached_generation = None
        self._cached_payload = None
        self._write_selector = None

    @property
    def is_closed(self):
        return self.state is HandlerState.CLOSED

    def run(self):
        try:
            with self.connection:
                if self.handshake():
                    self.stream()
        except Exception as e:
            logger.error("Client handler error for %s: %s", self.address, e)
        finally:
            if self._write_selector is not None:
                self._write_selector.close()
                self._write_selector = None
            self.state = HandlerState.CLOSED
            logger.info("Client %s disconnected after %d frames", self.address, self.frames_sent)

    def handshake(self):
        """Read the request and answer with the multipart headers. Returns True to start streaming."""
        self.state = HandlerState.HANDSHAKING
        self.connection.setblocking(True)
        self.connection.settimeout(self.request_timeout)
        try:
            request = self.connection.recv(self.request_buffer_size)
        except OSError as e:
            logger.debug("Failed to read request from %s: %s", self.address, e)
            return False
        if not request:
            return False

        if not protocol.is_get_request(request):
            logger.warning("Rejected request from %s: %r", self.address, protocol.request_line(request))
            return False

        try:
            self.connection.sendall(protocol.RESPONSE_PREAMBLE)
        except OSError as e:
            logger.debug("Client %s left before the response headers: %s", self.address, e)
            return False

        logger.info("Client %s connected: %s", self.address, protocol.request_line(request))
        self.connection.setblocking(False)
        self.state = HandlerState.STREAMING
        return True

    def stream(self):
        while not self.stop_event.is_set():
            if not self.is_peer_alive():
                break

            started = time.monotonic()
            frame, generation = self.frame_slot.snapshot_with_generation()
            if frame is None:
                self.stop_event.wait(self.idle_interval)
                continue

            try:
                payload = self.encode(frame, generation)
            except Exception as e:
                logger.warning("Error encoding frame for %s: %s", self.address, e)
                self.stop_event.wait(self.error_backoff)
                continue

            if not self.send_part(payload):
                break
            self.frames_sent += 1

            remaining = self.frame_interval - (time.monotonic() - started)
            if remaining > 0:
                self.stop_event.wait(remaining)

    def is_peer_alive(self):
        """Peek at the socket without consuming anything: b'' means the peer closed."""
        try:
            data = self.connection.recv(1, socket.MSG_PEEK)
        except (BlockingIOError, InterruptedError):
            return True
        except OSError as e:
            logger.debug("Liveness probe failed for %s: %s", self.address, e)
            return False
        return bool(data)

    def encode(self, frame, generation):
        if generation != self._cached_generation:
            self._cached_payload = self.encoder.encode(frame)
            self._cached_generation = generation
        return self._cached_payload

    def send_part(self, payload):
        return (self.send(protocol.part_header(len(payload)))
                and self.send(payload)
                and self.send(protocol.PART_TRAILER))

    def send(self, data):
        """
        Write all of data to the non-blocking socket.

        Waits for the socket to drain for at most write_timeout; a client that
        stays stuck that long, or any socket error, counts as a failed write.
        """
        view = memoryview(data)
        deadline = time.monotonic() + self.write_timeout
        while view:
            try:
                sent = self.connection.send(view)
            except (BlockingIOError, InterruptedError):
                sent = 0
            except OSError as e:
                logger.debug("Write to %s failed: %s", self.address, e)
                return False
            if sent:
                view = view[sent:]
                continue

            remaining = deadline - time.monotonic()
            if remaining <= 0 or self.stop_event.is_set():
                logger.debug("Write to %s timed out", self.address)
                return False
            if not self.wait_writable(min(remaining, self.frame_interval)):
                return False
        return True

    def wait_writable(self, timeout):
        """Block until the socket can take more data or timeout passes. False on error."""
        try:
            if self._write_selector is None:
                self._write_selector = selectors.DefaultSelector()
                self._write_selector.register(self.connection, selectors.EVENT_WRITE)
            self._write_selector.select(timeout)
        except (OSError, ValueError) as e:
            logger.debug("Waiting on %s failed: %s", self.address, e)
            return False
        return True
