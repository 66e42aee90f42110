"""
Frame sources for the camera streamer: a local camera index, a video file or
stream URL understood by OpenCV, or an HTTP snapshot URL that returns a single
image per request.
"""

import logging
import sys
from threading import Thread

import cv2
import numpy as np
import requests

logger = logging.getLogger(__name__)


def preferred_backend(name=None):
    """
    OpenCV capture API to try first for camera indexes.

    name is a cv2 CAP_* suffix such as "V4L2"; without one the platform's native
    API is used. Returns None when OpenCV should pick on its own.
    """
    if name:
        return getattr(cv2, f"CAP_{name.upper()}", None)
    if sys.platform == 'darwin':
        return cv2.CAP_AVFOUNDATION
    if sys.platform.startswith('win'):
        return cv2.CAP_DSHOW
    if sys.platform.startswith('linux'):
        return cv2.CAP_V4L2
    return None


class VideoCapture:
    def __init__(self, source, timeout=1, backend=None):
        try:    # Convert source to an integer if possible (for camera index)
            self.source = int(source)
        except ValueError:
            self.source = source
        self.timeout = timeout
        self.cap = None
        self.is_snapshot = self.check_if_snapshot(self.source)
        if not self.is_snapshot:
            if isinstance(self.source, int):
                self.cap = self.open_camera(self.source, backend)
            else:
                self.cap = cv2.VideoCapture(self.source)

    def open_camera(self, index, backend=None):
        """Open a camera index with the preferred backend, falling back to OpenCV's default."""
        api = preferred_backend(backend)
        if api is not None:
            cap = cv2.VideoCapture(index, api)
            if cap.isOpened():
                return cap
            cap.release()
            logger.info("Camera %s failed with backend %s, trying default", index, api)
        return cv2.VideoCapture(index)

    def check_if_snapshot(self, source):
        """Check if the source is an image URL by attempting to fetch it."""
        if isinstance(source, str) and source.startswith(('http://', 'https://')):
            try:
                response = requests.get(source, stream=True, timeout=self.timeout)
                return 'image' in response.headers.get('Content-Type', '')
            except requests.RequestException:
                return False
        return False

    def isOpened(self):
        return self.is_snapshot or (self.cap is not None and self.cap.isOpened())

    def set_size(self, width, height):
        if self.cap is not None:
            self.cap.set(cv2.CAP_PROP_FRAME_WIDTH, width)
            self.cap.set(cv2.CAP_PROP_FRAME_HEIGHT, height)

    def read(self):
        """Fetch the next frame from the source."""
        if self.is_snapshot:
            return self.fetch_snapshot()
        return self.cap.read()

    def fetch_snapshot(self):
        """Fetch the latest image from the snapshot URL."""
        try:
            response = requests.get(self.source, timeout=self.timeout)
            image_array = np.frombuffer(response.content, dtype=np.uint8)
            frame = cv2.imdecode(image_array, cv2.IMREAD_COLOR)
            return frame is not None, frame
        except requests.RequestException as e:
            logger.warning("Error fetching snapshot: %s", e)
            return False, None

    def release(self):
        """Release the video capture object."""
        if self.cap is not None:
            self.cap.release()


def open_capture(source, width=None, height=None, timeout=5.0, backend=None):
    """
    Open a capture source on a worker thread.

    Some camera backends hang for a long time when the device is missing, so
    give up after timeout seconds and return None.
    """
    result = {}

    def _open():
        capture = VideoCapture(source, backend=backend)
        if capture.isOpened():
            if width and height:
                capture.set_size(width, height)
            result['capture'] = capture
        else:
            capture.release()

    opener = Thread(target=_open, name='camera-open', daemon=True)
    opener.start()
    opener.join(timeout)
    if opener.is_alive():
        logger.error("Camera %s did not open within %ss", source, timeout)
        return None
    return result.get('capture')
