"""
MJPEG broadcast server: publish frames from one producer, stream them to many
HTTP clients as multipart/x-mixed-replace JPEG streams.
"""

from mjpeg_server.codec import EncodingError, JpegEncoder
from mjpeg_server.frame import Frame
from mjpeg_server.frame_slot import FrameSlot
from mjpeg_server.server import MjpegServer, ServerState

__all__ = [
    "EncodingError",
    "Frame",
    "FrameSlot",
    "JpegEncoder",
    "MjpegServer",
    "ServerState",
]
