import numpy as np
import pytest

from camera import CameraPermissionError
from detection.base import Detector
from models import Detection, Face, FaceLandmarks, FrameFeatures, HeadPose


def _eye_at(cx, cy):
    # six-point contour with EAR 0.3 centred on (cx, cy)
    return [(cx - 10, cy), (cx - 4, cy - 3), (cx + 4, cy - 3),
            (cx + 10, cy), (cx + 4, cy + 3), (cx - 4, cy + 3)]


@pytest.fixture
def eye_at():
    return _eye_at


@pytest.fixture
def make_landmarks():
    def factory(nose=(150, 150), chin=(150, 200), left=(100, 100), right=(200, 100)):
        return FaceLandmarks(
            left_eye=_eye_at(*left),
            right_eye=_eye_at(*right),
            nose_tip=nose,
            chin=chin,
        )
    return factory


@pytest.fixture
def make_features():
    def factory(face_count=1, yaw=0.0, pitch=10.0, size=300.0, centroid=(320.0, 240.0),
                devices=None, pose_known=True, confidence=0.9, ear=0.3):
        return FrameFeatures(
            face_count=face_count,
            confidence=confidence if face_count else 0.0,
            head_pose=HeadPose(yaw=yaw, pitch=pitch, roll=0.0),
            eye_aspect_ratio=ear if face_count else 0.0,
            face_size=size if face_count else 0.0,
            centroid=centroid if face_count else None,
            device_labels=list(devices or []),
            pose_known=pose_known and face_count > 0,
            ear_known=face_count > 0 and ear > 0,
        )
    return factory


class FakeSampler:
    def __init__(self, deny=False):
        self.deny = deny
        self.started = 0
        self.released = 0
        self.open = False

    def start(self):
        self.started += 1
        if self.deny:
            raise CameraPermissionError("camera access denied")
        self.open = True

    def sample(self):
        if not self.open:
            return None
        return np.zeros((48, 64, 3), dtype=np.uint8)

    def stop(self):
        if self.open:
            self.open = False
            self.released += 1


class ScriptedDetector(Detector):
    """Returns a fixed sequence of detections, then repeats the last one."""

    def __init__(self, detections=None, mode="model"):
        self.detections = list(detections or [Detection()])
        self.mode = mode
        self.calls = 0
        self.resets = 0
        self.before_detect = None

    def detect(self, frame):
        self.calls += 1
        if self.before_detect is not None:
            self.before_detect(self.calls)
        idx = min(self.calls - 1, len(self.detections) - 1)
        item = self.detections[idx]
        if isinstance(item, Exception):
            raise item
        return item

    def reset(self):
        self.resets += 1


class TickingClock:
    """Each call advances by ``step`` seconds."""

    def __init__(self, start=0.0, step=1.0):
        self.now = start - step
        self.step = step

    def __call__(self):
        self.now += self.step
        return self.now


@pytest.fixture
def one_face():
    return Detection(faces=[Face(bbox=(200, 100, 260, 260), confidence=0.95)])
