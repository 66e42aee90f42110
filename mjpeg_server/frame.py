"""
Frame

Immutable snapshot of one image published by the producer. A frame holds
either a raw OpenCV image (numpy array) or bytes that are already JPEG
encoded, for example the output of a hardware MJPEG encoder.
"""

import struct

import numpy as np

RAW = 'raw'
JPEG = 'jpeg'

# JPEG start-of-frame markers that carry the image dimensions
_SOF_MARKERS = {0xC0, 0xC1, 0xC2, 0xC3, 0xC5, 0xC6, 0xC7, 0xC9, 0xCA, 0xCB, 0xCD, 0xCE, 0xCF}


def jpeg_size(data):
    """Return (width, height) read from a JPEG SOF segment, or (0, 0)."""
    if len(data) < 4 or data[0] != 0xFF or data[1] != 0xD8:
        return 0, 0
    pos = 2
    while pos + 4 <= len(data):
        if data[pos] != 0xFF:
            return 0, 0
        marker = data[pos + 1]
        if marker == 0xFF:
            pos += 1
            continue
        if marker in (0xD8, 0x01) or 0xD0 <= marker <= 0xD7:
            pos += 2
            continue
        length = struct.unpack('>H', data[pos + 2:pos + 4])[0]
        if marker in _SOF_MARKERS and pos + 9 <= len(data):
            height, width = struct.unpack('>HH', data[pos + 5:pos + 9])
            return width, height
        pos += 2 + length
    return 0, 0


class Frame:
    __slots__ = ('_data', '_width', '_height', '_encoding')

    def __init__(self, data, width, height, encoding):
        object.__setattr__(self, '_data', data)
        object.__setattr__(self, '_width', width)
        object.__setattr__(self, '_height', height)
        object.__setattr__(self, '_encoding', encoding)

    def __setattr__(self, name, value):
        raise AttributeError('Frame is immutable')

    @classmethod
    def from_image(cls, image):
        """Copy an OpenCV image into a read-only frame."""
        data = np.array(image, copy=True)
        data.setflags(write=False)
        height, width = data.shape[:2]
        return cls(data, width, height, RAW)

    @classmethod
    def from_jpeg(cls, buf):
        data = bytes(buf)
        width, height = jpeg_size(data)
        return cls(data, width, height, JPEG)

    @classmethod
    def coerce(cls, value):
        """
        Turn whatever the producer handed us into a Frame.

        Accepts a Frame, a numpy image or a bytes-like JPEG buffer. Returns None
        for None and for empty input, which the frame slot silently discards.
        """
        if value is None:
            return None
        if isinstance(value, Frame):
            return None if value.nbytes == 0 else value
        if isinstance(value, np.ndarray):
            if value.size == 0 or value.ndim < 2:
                return None
            return cls.from_image(value)
        if isinstance(value, (bytes, bytearray, memoryview)):
            if len(value) == 0:
                return None
            return cls.from_jpeg(value)
        raise TypeError(f"Unsupported frame type: {type(value).__name__}")

    @property
    def data(self):
        return self._data

    @property
    def width(self):
        return self._width

    @property
    def height(self):
        return self._height

    @property
    def encoding(self):
        return self._encoding

    @property
    def is_encoded(self):
        return self._encoding == JPEG

    @property
    def nbytes(self):
        if isinstance(self._data, np.ndarray):
            return self._data.nbytes
        return len(self._data)

    def __repr__(self):
        return f"Frame({self._width}x{self._height}, {self._encoding}, {self.nbytes} bytes)"
