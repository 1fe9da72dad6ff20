"""
Camera interface for the metrology system
Background capture thread with a bounded wait for each fresh frame
"""

import threading
import time
from datetime import datetime

import cv2

from config.settings import CAMERA_FPS, CAMERA_HEIGHT, CAMERA_ID, CAMERA_READ_TIMEOUT_S, CAMERA_WIDTH


def log_with_timestamp(message):
    """Print message with timestamp"""
    timestamp = datetime.now().strftime("%H:%M:%S.%f")[:-3]
    print(f"[{timestamp}] CAMERA: {message}")


class CameraError(RuntimeError):
    """Camera could not be opened or stopped delivering frames"""


class CameraInterface:
    """USB camera interface"""

    def __init__(self, camera_id=CAMERA_ID, target_resolution=(CAMERA_WIDTH, CAMERA_HEIGHT),
                 read_timeout=CAMERA_READ_TIMEOUT_S):
        self.camera_id = camera_id
        self.target_resolution = target_resolution
        self.read_timeout = read_timeout
        self.cap = None
        self.current_frame = None
        self.frame_sequence = 0
        self.delivered_sequence = 0
        self.is_running = False
        self.capture_thread = None
        self._frame_ready = threading.Condition()

    def start(self):
        """Open the camera and start the capture thread"""
        self.cap = cv2.VideoCapture(self.camera_id, cv2.CAP_ANY)

        if not self.cap.isOpened():
            self.cap.release()
            self.cap = None
            raise CameraError(f"Cannot open camera {self.camera_id}")

        # Try to set the target resolution
        self.cap.set(cv2.CAP_PROP_FRAME_WIDTH, self.target_resolution[0])
        self.cap.set(cv2.CAP_PROP_FRAME_HEIGHT, self.target_resolution[1])

        # Get actual resolution
        actual_width = int(self.cap.get(cv2.CAP_PROP_FRAME_WIDTH))
        actual_height = int(self.cap.get(cv2.CAP_PROP_FRAME_HEIGHT))

        log_with_timestamp(f"Camera {self.camera_id} opened: {actual_width}x{actual_height}")

        self.is_running = True
        self.capture_thread = threading.Thread(target=self._capture_loop, daemon=True)
        self.capture_thread.start()

        return actual_width, actual_height

    def _capture_loop(self):
        """Background frame capture"""
        cap = self.cap
        while self.is_running and cap.isOpened():
            ret, frame = cap.read()
            if ret:
                with self._frame_ready:
                    self.current_frame = frame
                    self.frame_sequence += 1
                    self._frame_ready.notify_all()
            else:
                time.sleep(1.0 / CAMERA_FPS)

    def get_frame(self, timeout=None):
        """
        Wait for a frame that has not been returned before
        Args:
            timeout: Seconds to wait, defaults to the interface read timeout
        Returns:
            BGR frame, or None when no fresh frame arrived in time
        """
        if timeout is None:
            timeout = self.read_timeout

        with self._frame_ready:
            fresh = self._frame_ready.wait_for(
                lambda: self.frame_sequence > self.delivered_sequence or not self.is_running,
                timeout=timeout)
            if not fresh or self.frame_sequence <= self.delivered_sequence:
                return None
            self.delivered_sequence = self.frame_sequence
            return self.current_frame.copy()

    def stop(self):
        """Stop camera capture and release the device"""
        was_running = self.is_running
        self.is_running = False
        with self._frame_ready:
            self._frame_ready.notify_all()
        if self.capture_thread:
            self.capture_thread.join(timeout=1.0)
            self.capture_thread = None
        if self.cap:
            self.cap.release()
            self.cap = None
        if was_running:
            log_with_timestamp(f"Camera {self.camera_id} stopped")

    def get_info(self):
        """Get camera information"""
        if not self.cap or not self.cap.isOpened():
            return None

        return {
            'camera_id': self.camera_id,
            'width': int(self.cap.get(cv2.CAP_PROP_FRAME_WIDTH)),
            'height': int(self.cap.get(cv2.CAP_PROP_FRAME_HEIGHT)),
            'fps': self.cap.get(cv2.CAP_PROP_FPS),
            'backend': self.cap.getBackendName()
        }

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.stop()
        return False
