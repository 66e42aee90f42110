"""
MJPEG Server

Broadcasts the latest published frame to any number of HTTP clients as a
multipart/x-mixed-replace stream of JPEG images.

Features:
- One producer publishes frames with publish(); publishing never waits on the
  network and is safe before start() and after stop().
- One acceptor thread owns the listening socket; each client gets its own
  handler thread with its own pacing, so a slow or dead client only affects
  itself.
- stop() signals every thread through a shared event, waits for the acceptor and
  releases the port. Client handlers notice the event within one loop iteration.

Usage:
    server = MjpegServer(port=8080)
    if server.start():
        while capturing:
            server.publish(frame)
        server.stop()
"""

import enum
import logging
import weakref
from functools import partial
from threading import Event, Lock, Thread

from mjpeg_server import acceptor as acceptor_module
from mjpeg_server import client_handler
from mjpeg_server.acceptor import ConnectionAcceptor
from mjpeg_server.client_handler import ClientStreamHandler
from mjpeg_server.codec import DEFAULT_JPEG_QUALITY, JpegEncoder
from mjpeg_server.frame_slot import FrameSlot

logger = logging.getLogger(__name__)

DEFAULT_PORT = 8080


class ServerState(enum.Enum):
    STOPPED = 'stopped'
    STARTING = 'starting'
    RUNNING = 'running'
    STOPPING = 'stopping'


class MjpegServer:
    def __init__(self, port=DEFAULT_PORT, host='', jpeg_quality=DEFAULT_JPEG_QUALITY,
                 frame_interval=client_handler.DEFAULT_FRAME_INTERVAL,
                 poll_timeout=acceptor_module.DEFAULT_POLL_TIMEOUT,
                 idle_interval=client_handler.DEFAULT_IDLE_INTERVAL,
                 error_backoff=client_handler.DEFAULT_ERROR_BACKOFF,
                 request_timeout=client_handler.DEFAULT_REQUEST_TIMEOUT,
                 write_timeout=client_handler.DEFAULT_WRITE_TIMEOUT,
                 request_buffer_size=client_handler.DEFAULT_REQUEST_BUFFER_SIZE,
                 backlog=acceptor_module.DEFAULT_BACKLOG,
                 encoder=None):
        self.host = host
        self.port = port
        self.frame_interval = frame_interval
        self.poll_timeout = poll_timeout
        self.idle_interval = idle_interval
        self.error_backoff = error_backoff
        self.request_timeout = request_timeout
        self.write_timeout = write_timeout
        self.request_buffer_size = request_buffer_size
        self.backlog = backlog
        self.encoder = encoder or JpegEncoder(jpeg_quality)

        self.frame_slot = FrameSlot()
        self.state = ServerState.STOPPED
        self._lifecycle_lock = Lock()
        self._stop_event = None
        self._acceptor = None
        self._acceptor_thread = None
        self._last_bound_port = None
        self._handlers = weakref.WeakSet()
        self._handlers_lock = Lock()

    @classmethod
    def from_config(cls, config_manager, section='mjpeg_server'):
        """Build a server from the [mjpeg_server] section of a ConfigManager."""
        def seconds(key, default):
            value = config_manager.getfloat(section, key, fallback=None)
            return default if value is None else value / 1000.0

        return cls(
            port=config_manager.getint(section, 'port', fallback=DEFAULT_PORT),
            host=config_manager.get(section, 'host', fallback=''),
            jpeg_quality=config_manager.getint(section, 'jpeg_quality', fallback=DEFAULT_JPEG_QUALITY),
            frame_interval=seconds('frame_interval_ms', client_handler.DEFAULT_FRAME_INTERVAL),
            poll_timeout=seconds('poll_timeout_ms', acceptor_module.DEFAULT_POLL_TIMEOUT),
            idle_interval=seconds('idle_interval_ms', client_handler.DEFAULT_IDLE_INTERVAL),
            error_backoff=seconds('error_backoff_ms', client_handler.DEFAULT_ERROR_BACKOFF),
            request_timeout=seconds('request_timeout_ms', client_handler.DEFAULT_REQUEST_TIMEOUT),
            write_timeout=seconds('write_timeout_ms', client_handler.DEFAULT_WRITE_TIMEOUT),
            request_buffer_size=config_manager.getint(section, 'request_buffer_size',
                                                      fallback=client_handler.DEFAULT_REQUEST_BUFFER_SIZE),
            backlog=config_manager.getint(section, 'listen_backlog', fallback=acceptor_module.DEFAULT_BACKLOG),
        )

    def __enter__(self):
        if not self.start():
            raise RuntimeError(f"MJPEG server could not start on port {self.port}")
        return self

    def __exit__(self, exc_type, exc, tb):
        self.stop()

    @property
    def is_running(self):
        return self.state is ServerState.RUNNING

    @property
    def bound_port(self):
        """
        Port actually listened on; differs from port when port is 0.

        After stop() this is the port of the last run, until start() binds again.
        """
        return self._last_bound_port or self.port

    @property
    def active_clients(self):
        with self._handlers_lock:
            handlers = list(self._handlers)
        return sum(1 for handler in handlers if not handler.is_closed)

    def start(self):
        with self._lifecycle_lock:
            if self.state is not ServerState.STOPPED:
                logger.error("MJPEG server is already running")
                return False
            self.state = ServerState.STARTING

            stop_event = Event()
            acceptor = ConnectionAcceptor(self.host, self.port,
                                          partial(self._create_handler, stop_event), stop_event,
                                          poll_timeout=self.poll_timeout, backlog=self.backlog)
            try:
                acceptor.bind()
            except OSError as e:
                logger.error("MJPEG server failed to listen on port %s: %s", self.port, e)
                self.state = ServerState.STOPPED
                return False

            acceptor_thread = Thread(target=acceptor.run, name='mjpeg-acceptor', daemon=True)
            try:
                acceptor_thread.start()
            except RuntimeError as e:
                logger.error("MJPEG server could not start the acceptor thread: %s", e)
                acceptor.close()
                self.state = ServerState.STOPPED
                return False

            self._stop_event = stop_event
            self._acceptor = acceptor
            self._acceptor_thread = acceptor_thread
            self._last_bound_port = acceptor.bound_port
            self.state = ServerState.RUNNING

        logger.info("MJPEG stream available at: %s", self.stream_url())
        return True

    def stop(self):
        with self._lifecycle_lock:
            if self.state is not ServerState.RUNNING:
                return
            logger.info("Shutting down MJPEG server...")
            self.state = ServerState.STOPPING
            self._stop_event.set()

            if self._acceptor_thread is not None:
                self._acceptor_thread.join()
            self._acceptor_thread = None
            if self._acceptor is not None:
                self._acceptor.close()

            self.state = ServerState.STOPPED
        logger.info("MJPEG server stopped")

    def publish(self, frame):
        """Make frame the one every client streams next. Empty frames are ignored."""
        return self.frame_slot.publish(frame)

    update_frame = publish

    def stream_url(self):
        return f"http://localhost:{self.bound_port}/"

    def _create_handler(self, stop_event, conn, address):
        handler = ClientStreamHandler(
            conn, address, self.frame_slot, stop_event,
            encoder=self.encoder,
            frame_interval=self.frame_interval,
            idle_interval=self.idle_interval,
            error_backoff=self.error_backoff,
            request_timeout=self.request_timeout,
            write_timeout=self.write_timeout,
            request_buffer_size=self.request_buffer_size,
        )
        with self._handlers_lock:
            self._handlers.add(handler)
        return handler
