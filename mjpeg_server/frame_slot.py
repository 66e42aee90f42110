"""
Frame Slot

Holds the most recently published frame for the streaming clients. There is no
queue: every publish replaces the stored frame, so a slow client simply skips
the frames it was too slow to see.

The slot is also a writable binary stream, which lets a camera encoder that
produces JPEG data (for example picamera2's FileOutput) write straight into it.
"""

import io
import logging
from threading import Lock

from mjpeg_server.frame import Frame

logger = logging.getLogger(__name__)


class FrameSlot(io.BufferedIOBase):
    def __init__(self):
        super().__init__()
        self._lock = Lock()
        self._frame = None
        self._generation = 0

    def writable(self):
        return True

    def write(self, buf):
        """Store an encoded JPEG buffer as the latest frame."""
        self.publish(bytes(buf))
        return len(buf)

    def publish(self, frame):
        """
        Replace the stored frame.

        Empty or unusable frames are dropped and False is returned; publishing
        never raises and never waits on readers.
        """
        try:
            frame = Frame.coerce(frame)
        except TypeError as e:
            logger.warning("Discarding frame: %s", e)
            return False
        if frame is None:
            return False
        with self._lock:
            self._frame = frame
            self._generation += 1
        return True

    def snapshot(self):
        with self._lock:
            return self._frame

    def snapshot_with_generation(self):
        """Return the current frame together with the generation it was published at."""
        with self._lock:
            return self._frame, self._generation

    def clear(self):
        with self._lock:
            self._frame = None

    @property
    def generation(self):
        with self._lock:
            return self._generation

    @property
    def has_frame(self):
        with self._lock:
            return self._frame is not None
