"""
Camera
======
Exclusively-owned frame source.  A session opens it once and must release
it on every exit path; release() is idempotent and safe to call while a
read is in flight on a worker thread.

Interface used by the controllers:

    open()    -> None, raises CameraPermissionError / CameraError
    read()    -> BGR frame or None
    release() -> None
"""

import logging
import os
import sys
import threading

import cv2

from .config import CAMERA_HEIGHT, CAMERA_WIDTH
from .errors import CameraError, CameraPermissionError

logger = logging.getLogger(__name__)


def _device_permission_denied(index):
    """Linux only: the device node exists but this process may not read it."""
    if not sys.platform.startswith("linux"):
        return False
    node = f"/dev/video{index}"
    return os.path.exists(node) and not os.access(node, os.R_OK | os.W_OK)


class OpenCVCamera:
    """cv2.VideoCapture wrapper requesting a front camera at 640x480."""

    def __init__(self, index=0, width=CAMERA_WIDTH, height=CAMERA_HEIGHT):
        self.index = index
        self.width = width
        self.height = height
        self._cap = None
        self._lock = threading.Lock()

    @property
    def is_open(self):
        return self._cap is not None

    def open(self):
        with self._lock:
            if self._cap is not None:
                return
            if _device_permission_denied(self.index):
                raise CameraPermissionError(f"no permission for camera {self.index}")

            cap = cv2.VideoCapture(self.index)
            if not cap.isOpened():
                cap.release()
                raise CameraError(f"could not open camera {self.index}")

            cap.set(cv2.CAP_PROP_FRAME_WIDTH, self.width)
            cap.set(cv2.CAP_PROP_FRAME_HEIGHT, self.height)
            cap.set(cv2.CAP_PROP_BUFFERSIZE, 1)
            self._cap = cap
            logger.info("Camera %s opened", self.index)

    def read(self):
        with self._lock:
            if self._cap is None:
                return None
            ok, frame = self._cap.read()
        return frame if ok else None

    def release(self):
        with self._lock:
            if self._cap is None:
                return
            self._cap.release()
            self._cap = None
            logger.info("Camera %s released", self.index)
