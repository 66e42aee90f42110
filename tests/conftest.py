"""
Test Configuration
==================

Pytest fixtures shared by the MJPEG server tests: test images, a server bound
to an ephemeral port, and a raw socket client that parses the multipart
stream by hand.
"""

import re
import socket
import time

import numpy as np
import pytest

from mjpeg_server.server import MjpegServer

GET_REQUEST = b'GET / HTTP/1.1\r\nHost: localhost\r\n\r\n'
HEADER_END = b'\r\n\r\n'


class RawClient:
    """Minimal MJPEG client speaking plain sockets."""

    def __init__(self, port, request=GET_REQUEST, timeout=3.0):
        self.sock = socket.create_connection(('127.0.0.1', port), timeout=timeout)
        self.timeout = timeout
        self.buffer = b''
        if request:
            self.sock.sendall(request)

    def fill(self, timeout=None):
        """Read one chunk into the buffer. Returns False once the server closed."""
        self.sock.settimeout(self.timeout if timeout is None else timeout)
        chunk = self.sock.recv(65536)
        self.buffer += chunk
        return bool(chunk)

    def read_until(self, marker, timeout=None):
        deadline = time.monotonic() + (self.timeout if timeout is None else timeout)
        while marker not in self.buffer:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise socket.timeout(f"{marker!r} not received")
            if not self.fill(remaining):
                raise ConnectionError(f"connection closed before {marker!r}")
        index = self.buffer.index(marker) + len(marker)
        data, self.buffer = self.buffer[:index], self.buffer[index:]
        return data

    def read_exactly(self, size, timeout=None):
        deadline = time.monotonic() + (self.timeout if timeout is None else timeout)
        while len(self.buffer) < size:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise socket.timeout(f"{size} bytes not received")
            if not self.fill(remaining):
                raise ConnectionError("connection closed mid-part")
        data, self.buffer = self.buffer[:size], self.buffer[size:]
        return data

    def read_response_headers(self):
        return self.read_until(HEADER_END)

    def read_part(self, timeout=None):
        """Read one multipart part and return (headers, payload)."""
        headers = self.read_until(HEADER_END, timeout)
        assert headers.startswith(b'--frame\r\n'), headers
        assert b'Content-Type: image/jpeg\r\n' in headers
        match = re.search(rb'Content-Length: (\d+)\r\n', headers)
        assert match, headers
        payload = self.read_exactly(int(match.group(1)), timeout)
        assert self.read_exactly(2, timeout) == b'\r\n'
        return headers, payload

    def close(self):
        self.sock.close()


def wait_for(predicate, timeout=2.0, interval=0.01):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


@pytest.fixture
def solid_image():
    """2x2 solid color BGR image."""
    return np.full((2, 2, 3), (0, 128, 255), dtype=np.uint8)


@pytest.fixture
def gradient_image():
    image = np.zeros((48, 64, 3), dtype=np.uint8)
    image[:, :, 1] = np.linspace(0, 255, 64, dtype=np.uint8)
    return image


@pytest.fixture
def server():
    """Running server on an ephemeral port, stopped after the test."""
    mjpeg_server = MjpegServer(port=0, host='127.0.0.1', frame_interval=0.01, poll_timeout=0.05)
    assert mjpeg_server.start()
    yield mjpeg_server
    mjpeg_server.stop()


@pytest.fixture
def connect_client():
    clients = []

    def _connect(port, **kwargs):
        client = RawClient(port, **kwargs)
        clients.append(client)
        return client

    yield _connect
    for client in clients:
        client.close()


@pytest.fixture
def many_open_fds():
    """Hold enough sockets open that the next descriptors are numbered above 1024."""
    resource = pytest.importorskip('resource')
    needed = 1400
    soft, hard = resource.getrlimit(resource.RLIMIT_NOFILE)
    if soft < needed:
        if hard != resource.RLIM_INFINITY and hard < needed:
            pytest.skip(f"RLIMIT_NOFILE hard limit {hard} is too low")
        resource.setrlimit(resource.RLIMIT_NOFILE, (needed, hard))
    fillers = [socket.socket(socket.AF_INET, socket.SOCK_STREAM) for _ in range(1100)]
    yield fillers
    for filler in fillers:
        filler.close()
    resource.setrlimit(resource.RLIMIT_NOFILE, (soft, hard))
