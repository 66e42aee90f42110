"""
JPEG codec used to turn published frames into multipart payloads.

Raw frames are compressed with OpenCV; frames that are already JPEG encoded are
passed through untouched.
"""

import cv2

DEFAULT_JPEG_QUALITY = 80


class EncodingError(RuntimeError):
    """Raised when a frame cannot be turned into JPEG bytes."""


def _check_quality(quality):
    if not 0 <= int(quality) <= 100:
        raise ValueError(f"JPEG quality must be between 0 and 100, got {quality}")
    return int(quality)


class JpegEncoder:
    def __init__(self, quality=DEFAULT_JPEG_QUALITY):
        self.quality = _check_quality(quality)

    def encode(self, frame, quality=None):
        if frame.is_encoded:
            return frame.data
        quality = self.quality if quality is None else _check_quality(quality)
        try:
            ok, buffer = cv2.imencode('.jpg', frame.data, [cv2.IMWRITE_JPEG_QUALITY, quality])
        except cv2.error as e:
            raise EncodingError(f"Failed to encode {frame!r}: {e}") from e
        if not ok:
            raise EncodingError(f"Failed to encode {frame!r}")
        return buffer.tobytes()
