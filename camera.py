"""
Frame sampler: owns the webcam for one monitoring session.
"""

import logging
import threading
from typing import Optional

import cv2
import numpy as np

from config import CAMERA_INDEX, FRAME_HEIGHT, FRAME_WIDTH

logger = logging.getLogger(__name__)

CAMERA_BACKENDS = [
    (cv2.CAP_AVFOUNDATION, "AVFoundation (macOS)"),
    (cv2.CAP_ANY, "Default backend"),
]


class CameraPermissionError(RuntimeError):
    """The camera could not be opened by any backend (denied, busy or absent)."""


class FrameSampler:
    """
    Wraps cv2.VideoCapture. start() raises CameraPermissionError instead of
    retrying; stop() may be called any number of times and releases once.
    """

    def __init__(self, camera_index: int = CAMERA_INDEX,
                 width: int = FRAME_WIDTH, height: int = FRAME_HEIGHT,
                 backends=None, capture_factory=cv2.VideoCapture):
        self.camera_index = camera_index
        self.width = width
        self.height = height
        self.backends = backends if backends is not None else CAMERA_BACKENDS
        self.capture_factory = capture_factory
        self.cap = None
        self._lock = threading.Lock()

    @property
    def is_open(self) -> bool:
        return self.cap is not None

    def start(self):
        with self._lock:
            if self.cap is not None:
                return
            for backend, backend_name in self.backends:
                try:
                    logger.info("[CAMERA] Trying %s...", backend_name)
                    cap = self.capture_factory(self.camera_index, backend)
                    if cap.isOpened():
                        cap.set(cv2.CAP_PROP_FRAME_WIDTH, self.width)
                        cap.set(cv2.CAP_PROP_FRAME_HEIGHT, self.height)
                        logger.info("[CAMERA] Camera initialized with %s", backend_name)
                        self.cap = cap
                        return
                    cap.release()
                except cv2.error as e:
                    logger.error("[CAMERA] %s failed: %s", backend_name, e)
            raise CameraPermissionError(f"Could not open camera {self.camera_index}")

    def sample(self) -> Optional[np.ndarray]:
        """Current frame, or None when the camera is not ready."""
        cap = self.cap
        if cap is None:
            return None
        ret, frame = cap.read()
        if not ret or frame is None:
            return None
        return frame

    def stop(self):
        with self._lock:
            cap, self.cap = self.cap, None
        if cap is not None:
            cap.release()
            logger.info("[CAMERA] Camera released")
