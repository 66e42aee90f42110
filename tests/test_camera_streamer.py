"""
Camera Streamer Tests
=====================

The capture loop is exercised with a fake capture source; no camera needed.
"""

import logging

import cv2
import numpy as np
import requests

from config.config_manager import ConfigManager
from video_streamer import camera_streamer, video_capture
from video_streamer.camera_streamer import CameraStreamer
from video_streamer.video_capture import VideoCapture, open_capture, preferred_backend


class FakeCapture:
    def __init__(self, frames, on_exhausted):
        self.frames = list(frames)
        self.on_exhausted = on_exhausted
        self.released = False

    def read(self):
        if not self.frames:
            self.on_exhausted()
            return False, None
        return True, self.frames.pop(0)

    def release(self):
        self.released = True


def make_config(tmp_path, port=0):
    (tmp_path / 'cam.conf').write_text(
        "[mjpeg_server]\nhost = 127.0.0.1\nport = %d\npoll_timeout_ms = 50\n"
        "[video_streamer]\ncamera_source = 0\ncapture_fps = 200\npreview = false\n" % port
    )
    return ConfigManager(config_file='cam.conf', config_dir=str(tmp_path))


def test_capture_loop_publishes_frames(tmp_path):
    streamer = CameraStreamer(make_config(tmp_path))
    frames = [np.full((4, 4, 3), value, dtype=np.uint8) for value in (10, 20, 30)]
    streamer.capture = FakeCapture(frames, streamer.request_stop)

    streamer.run()

    assert streamer.server.frame_slot.generation == 3
    assert int(streamer.server.frame_slot.snapshot().data[0, 0, 0]) == 30


def test_start_fails_without_camera(tmp_path, monkeypatch):
    monkeypatch.setattr(camera_streamer, 'open_capture', lambda *args: None)
    streamer = CameraStreamer(make_config(tmp_path))
    assert streamer.start() is False
    assert not streamer.server.is_running


def test_start_and_stop(tmp_path, monkeypatch):
    fake = FakeCapture([], lambda: None)
    monkeypatch.setattr(camera_streamer, 'open_capture', lambda *args: fake)
    streamer = CameraStreamer(make_config(tmp_path))

    assert streamer.start()
    assert streamer.server.is_running
    streamer.stop()
    assert not streamer.server.is_running
    assert fake.released


def test_missing_video_file_does_not_open(tmp_path):
    assert open_capture(str(tmp_path / 'missing.mp4'), timeout=5) is None



class FakeOpenCVCapture:
    """Stands in for cv2.VideoCapture; only opens when called without an API."""

    calls = []

    def __init__(self, *args):
        FakeOpenCVCapture.calls.append(args)
        self.opened = len(args) == 1
        self.released = False

    def isOpened(self):
        return self.opened

    def release(self):
        self.released = True


def test_camera_falls_back_to_default_backend(monkeypatch):
    FakeOpenCVCapture.calls = []
    monkeypatch.setattr(cv2, 'VideoCapture', FakeOpenCVCapture)

    capture = VideoCapture(0, backend='V4L2')

    assert FakeOpenCVCapture.calls == [(0, cv2.CAP_V4L2), (0,)]
    assert capture.isOpened()


def test_unknown_backend_opens_default_directly(monkeypatch):
    FakeOpenCVCapture.calls = []
    monkeypatch.setattr(cv2, 'VideoCapture', FakeOpenCVCapture)

    assert preferred_backend('no_such_api') is None
    capture = VideoCapture('0', backend='no_such_api')

    assert FakeOpenCVCapture.calls == [(0,)]
    assert capture.isOpened()


def test_snapshot_errors_are_logged_lazily(monkeypatch, caplog):
    def failing_get(*args, **kwargs):
        raise requests.ConnectionError("camera unreachable")

    monkeypatch.setattr(video_capture.requests, 'get', failing_get)
    capture = VideoCapture.__new__(VideoCapture)
    capture.source = 'http://camera.invalid/snapshot.jpg'
    capture.timeout = 1
    assert capture.check_if_snapshot(capture.source) is False

    with caplog.at_level(logging.WARNING, logger='video_streamer.video_capture'):
        assert capture.fetch_snapshot() == (False, None)

    record = caplog.records[-1]
    assert record.msg == "Error fetching snapshot: %s"
    assert "camera unreachable" in record.getMessage()
