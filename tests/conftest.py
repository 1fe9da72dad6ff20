"""Pytest configuration and shared fixtures for the coin metrology system.

Synthetic contours and frames stand in for camera input so the classifiers,
metrology and orchestration can be exercised without hardware.
"""
import sys
from pathlib import Path

import cv2
import numpy as np
import pytest

# Add the project root and the module directory to Python path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))
sys.path.insert(0, str(PROJECT_ROOT / "software" / "python"))

from config.settings import build_metrology_config


def make_ellipse_contour(center, half_axes, angle=0, delta=5):
    """Closed ellipse contour shaped like cv2.findContours output."""
    pts = cv2.ellipse2Poly((int(center[0]), int(center[1])),
                           (int(half_axes[0]), int(half_axes[1])),
                           int(angle), 0, 360, delta)
    if len(pts) > 1 and np.array_equal(pts[0], pts[-1]):
        pts = pts[:-1]
    return pts.reshape(-1, 1, 2).astype(np.int32)


def make_circle_contour(center, radius):
    return make_ellipse_contour(center, (radius, radius))


def make_rect_contour(center, size, angle=0.0):
    """Four-corner contour of a rotated rectangle."""
    box = cv2.boxPoints(((float(center[0]), float(center[1])),
                         (float(size[0]), float(size[1])), float(angle)))
    return np.round(box).astype(np.int32).reshape(-1, 1, 2)


def make_polygon_contour(points):
    return np.array(points, dtype=np.int32).reshape(-1, 1, 2)


@pytest.fixture
def config():
    """Default configuration, as shipped in config/settings.py."""
    return build_metrology_config()


@pytest.fixture
def ellipse_contour():
    return make_ellipse_contour


@pytest.fixture
def circle_contour():
    return make_circle_contour


@pytest.fixture
def rect_contour():
    return make_rect_contour


@pytest.fixture
def polygon_contour():
    return make_polygon_contour


@pytest.fixture
def blank_frame():
    return np.zeros((480, 640, 3), dtype=np.uint8)


@pytest.fixture
def scene_frame():
    """Coin of radius 40px on the left, 300x200px phone on the right."""
    frame = np.zeros((480, 640, 3), dtype=np.uint8)
    cv2.circle(frame, (120, 240), 40, (255, 255, 255), -1)
    cv2.rectangle(frame, (300, 100), (600, 300), (255, 255, 255), -1)
    return frame


@pytest.fixture
def phone_only_frame():
    frame = np.zeros((480, 640, 3), dtype=np.uint8)
    cv2.rectangle(frame, (300, 100), (600, 300), (255, 255, 255), -1)
    return frame


class FakeCamera:
    """Hands out a fixed list of frames, then reports missed reads."""

    def __init__(self, frames):
        self.frames = list(frames)
        self.is_running = False
        self.started = 0
        self.stopped = 0
        self.reads = 0

    def start(self):
        self.started += 1
        self.is_running = True

    def get_frame(self, timeout=None):
        self.reads += 1
        if self.frames:
            return self.frames.pop(0)
        return None

    def stop(self):
        self.stopped += 1
        self.is_running = False


@pytest.fixture
def fake_camera_factory():
    return FakeCamera
