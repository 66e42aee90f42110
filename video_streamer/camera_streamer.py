"""
Camera Streamer

Captures frames from a camera (or any source VideoCapture understands) and
broadcasts them with MjpegServer. Open the printed URL in a browser or point
any MJPEG-capable player at it.

Usage:
    python -m video_streamer.camera_streamer [-d CONFIG_DIR] [-f CONFIG_FILE]

Settings come from the [mjpeg_server], [video_streamer] and [logging] sections
of the config file. Ctrl-C (or ESC in the preview window) stops the streamer.
"""

import logging
import signal
import socket
import time
from threading import Event

import cv2

from config.config_manager import ConfigManager, setup_logging
from mjpeg_server.server import MjpegServer
from video_streamer.video_capture import open_capture

logger = logging.getLogger(__name__)

PREVIEW_WINDOW = 'Camera Preview (ESC to exit)'
ESC_KEY = 27


def get_host_ip():
    """Attempt to determine the LAN IP address of the machine."""
    try:
        # connecting a UDP socket sends nothing, it only selects the outgoing interface
        s = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        s.connect(("8.8.8.8", 80))
        ip = s.getsockname()[0]
        s.close()
        return ip
    except OSError:
        return "localhost"


class CameraStreamer:
    def __init__(self, config_manager):
        self.source = config_manager.get('video_streamer', 'camera_source', fallback='0')
        self.width = config_manager.getint('video_streamer', 'width', fallback=640)
        self.height = config_manager.getint('video_streamer', 'height', fallback=480)
        self.capture_fps = config_manager.getint('video_streamer', 'capture_fps', fallback=30)
        self.open_timeout = config_manager.getfloat('video_streamer', 'open_timeout', fallback=5.0)
        self.preview = config_manager.getboolean('video_streamer', 'preview', fallback=False)
        self.backend = config_manager.get('video_streamer', 'backend', fallback='') or None
        self.server = MjpegServer.from_config(config_manager)
        self.stop_event = Event()
        self.capture = None

    def request_stop(self, signum=None, frame=None):
        if signum is not None:
            logger.info("Received signal %s, shutting down...", signum)
        self.stop_event.set()

    def start(self):
        logger.info("Initializing camera...")
        self.capture = open_capture(self.source, self.width, self.height, self.open_timeout, self.backend)
        if self.capture is None:
            logger.error("Failed to open camera %s", self.source)
            return False
        if not self.server.start():
            logger.error("Failed to start MJPEG server")
            self.capture.release()
            return False
        print(f"Camera streamer started. Stream at: http://{get_host_ip()}:{self.server.bound_port}/")
        if self.preview:
            cv2.namedWindow(PREVIEW_WINDOW, cv2.WINDOW_AUTOSIZE)
        return True

    def run(self):
        frame_interval = 1.0 / max(self.capture_fps, 1)
        last_frame_time = time.monotonic()
        while not self.stop_event.is_set():
            elapsed = time.monotonic() - last_frame_time
            if elapsed < frame_interval:
                time.sleep(frame_interval - elapsed)
            last_frame_time = time.monotonic()

            ok, frame = self.capture.read()
            if not ok or frame is None:
                logger.warning("Empty frame captured")
                time.sleep(0.1)
                continue

            self.server.publish(frame)

            if self.preview:
                cv2.imshow(PREVIEW_WINDOW, frame)
                if cv2.waitKey(1) == ESC_KEY:
                    self.stop_event.set()

    def stop(self):
        self.server.stop()
        if self.capture is not None:
            self.capture.release()
        if self.preview:
            cv2.destroyAllWindows()
        logger.info("Camera streamer stopped")


def main(argv=None):
    args = ConfigManager.parse_arguments(argv)
    config_manager = ConfigManager(args=args)
    setup_logging(config_manager)

    streamer = CameraStreamer(config_manager)
    signal.signal(signal.SIGINT, streamer.request_stop)
    signal.signal(signal.SIGTERM, streamer.request_stop)

    if not streamer.start():
        return 1
    try:
        streamer.run()
    finally:
        streamer.stop()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
