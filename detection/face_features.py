"""
Per-frame feature extraction for presence monitoring.

Turns one Detection into the scalars the violation classifier and the
session aggregator work with: eye aspect ratio (blink proxy), head pose
angles estimated from 2D landmark geometry, face size and face centroid.

The functions are pure. Missing landmark groups produce zeroed values with
the matching ``*_known`` flag cleared instead of raising.
"""

import math
from typing import List, Optional, Sequence, Tuple

import numpy as np

from config import (
    DISALLOWED_DEVICE_LABELS, PITCH_RANGE, ROLL_RANGE, YAW_RANGE,
)
from models import (
    BBox, Detection, FaceLandmarks, FrameFeatures, HeadPose, Point,
)


def _distance(p1: Point, p2: Point) -> float:
    return float(np.linalg.norm(np.array(p1[:2], dtype=float) - np.array(p2[:2], dtype=float)))


def eye_aspect_ratio(eye_points: Sequence[Point]) -> float:
    """EAR = (|p1-p5| + |p2-p4|) / (2 * |p0-p3|). Returns 0.0 when unusable."""
    if len(eye_points) < 6:
        return 0.0
    v1 = _distance(eye_points[1], eye_points[5])
    v2 = _distance(eye_points[2], eye_points[4])
    h = _distance(eye_points[0], eye_points[3])
    if h == 0:
        return 0.0
    return (v1 + v2) / (2.0 * h)


def average_eye_aspect_ratio(landmarks: Optional[FaceLandmarks]) -> float:
    if landmarks is None:
        return 0.0
    left = eye_aspect_ratio(landmarks.left_eye)
    right = eye_aspect_ratio(landmarks.right_eye)
    if left == 0.0 or right == 0.0:
        return 0.0
    return (left + right) / 2.0


def _clamp(value: float, limit: float) -> float:
    return max(-limit, min(limit, value))


def estimate_head_pose(landmarks: Optional[FaceLandmarks]) -> Optional[HeadPose]:
    """
    Rough head pose from landmark geometry.

    Yaw: horizontal nose offset from the inter-eye midpoint over inter-eye
    distance, scaled to +/-60 degrees. Pitch: vertical nose offset from the
    eye midpoint over the eye-to-chin span, scaled to +/-40. Roll: angle of
    the inter-eye vector, clamped to +/-30.

    Returns None when the needed landmark groups are missing.
    """
    if landmarks is None or not landmarks.left_eye or not landmarks.right_eye:
        return None
    if landmarks.nose_tip is None or landmarks.chin is None:
        return None

    left_center = np.mean(np.array(landmarks.left_eye, dtype=float)[:, :2], axis=0)
    right_center = np.mean(np.array(landmarks.right_eye, dtype=float)[:, :2], axis=0)
    eye_center = (left_center + right_center) / 2.0
    nose_x, nose_y = landmarks.nose_tip[0], landmarks.nose_tip[1]

    face_width = abs(right_center[0] - left_center[0])
    face_height = abs(landmarks.chin[1] - eye_center[1])
    if face_width == 0 or face_height == 0:
        return None

    yaw = (nose_x - eye_center[0]) / face_width * YAW_RANGE
    pitch = (nose_y - eye_center[1]) / face_height * PITCH_RANGE

    eye_vector = right_center - left_center
    roll = math.degrees(math.atan2(eye_vector[1], eye_vector[0]))

    return HeadPose(
        yaw=round(_clamp(float(yaw), YAW_RANGE), 1),
        pitch=round(_clamp(float(pitch), PITCH_RANGE), 1),
        roll=round(_clamp(float(roll), ROLL_RANGE), 1),
    )


def face_size(bbox: BBox) -> float:
    """Geometric mean of box width and height, a proxy for camera distance."""
    _, _, w, h = bbox
    if w <= 0 or h <= 0:
        return 0.0
    return math.sqrt(w * h)


def bbox_centroid(bbox: BBox) -> Tuple[float, float]:
    x, y, w, h = bbox
    return x + w / 2.0, y + h / 2.0


def disallowed_labels(detection: Detection, labels: Optional[List[str]] = None) -> List[str]:
    """Object labels matching the disallowed device list (substring, case-insensitive)."""
    device_labels = labels if labels is not None else DISALLOWED_DEVICE_LABELS
    found = []
    for obj in detection.objects:
        label = (obj.label or "").lower()
        if any(device in label for device in device_labels):
            found.append(label)
    return found


def extract_features(detection: Detection) -> FrameFeatures:
    """Derive FrameFeatures from the primary (largest) face of a Detection."""
    devices = disallowed_labels(detection)
    face = detection.primary_face()
    if face is None:
        return FrameFeatures(
            face_count=0,
            confidence=0.0,
            head_pose=HeadPose(),
            eye_aspect_ratio=0.0,
            face_size=0.0,
            centroid=None,
            device_labels=devices,
        )

    pose = estimate_head_pose(face.landmarks)
    ear = average_eye_aspect_ratio(face.landmarks)
    return FrameFeatures(
        face_count=detection.face_count,
        confidence=max(0.0, min(1.0, float(face.confidence))),
        head_pose=pose if pose is not None else HeadPose(),
        eye_aspect_ratio=ear,
        face_size=face_size(face.bbox),
        centroid=bbox_centroid(face.bbox),
        device_labels=devices,
        pose_known=pose is not None,
        ear_known=ear > 0.0,
    )
