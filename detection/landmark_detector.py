"""
Model-based detection strategy.

MediaPipe face detection provides boxes and confidence scores, MediaPipe
Face Mesh provides the eye/nose/chin landmarks, and an optional YOLO model
provides labelled objects for device checks.
"""

import logging
from typing import List, Optional, Tuple

import cv2
import numpy as np

from config import FACE_DETECTION_CONFIDENCE, FACE_MESH_MAX_FACES, YOLO_CONFIDENCE
from detection.base import Detector, load_with_retry
from detection import yolo_devices
from models import Detection, Face, FaceLandmarks

logger = logging.getLogger(__name__)

# Face Mesh indices. Eye contours are ordered outer/inner corner, upper lid,
# lower lid so that the EAR formula applies directly.
LEFT_EYE_EAR = [33, 160, 158, 133, 153, 144]
RIGHT_EYE_EAR = [362, 385, 387, 263, 373, 380]
NOSE_TIP = 1
CHIN = 152


def load_face_models(min_confidence: float = FACE_DETECTION_CONFIDENCE,
                     max_faces: int = FACE_MESH_MAX_FACES):
    """Create the MediaPipe face detector and face mesh."""
    import mediapipe as mp

    face_detection = mp.solutions.face_detection.FaceDetection(
        model_selection=1, min_detection_confidence=min_confidence
    )
    face_mesh = mp.solutions.face_mesh.FaceMesh(
        static_image_mode=False,
        max_num_faces=max_faces,
        refine_landmarks=True,
        min_detection_confidence=min_confidence,
        min_tracking_confidence=0.5,
    )
    return face_detection, face_mesh


def _bbox_from_detection(det, w: int, h: int) -> Tuple[float, float, float, float]:
    rel = det.location_data.relative_bounding_box
    x = max(0.0, rel.xmin * w)
    y = max(0.0, rel.ymin * h)
    bw = min(w - x, rel.width * w)
    bh = min(h - y, rel.height * h)
    return (x, y, bw, bh)


def _landmarks_from_mesh(face_landmarks, w: int, h: int) -> FaceLandmarks:
    points = face_landmarks.landmark

    def px(idx):
        lm = points[idx]
        return (lm.x * w, lm.y * h)

    return FaceLandmarks(
        left_eye=[px(i) for i in LEFT_EYE_EAR],
        right_eye=[px(i) for i in RIGHT_EYE_EAR],
        nose_tip=px(NOSE_TIP),
        chin=px(CHIN),
    )


def _contains(bbox, point) -> bool:
    x, y, bw, bh = bbox
    return x <= point[0] <= x + bw and y <= point[1] <= y + bh


def attach_landmarks(faces: List[Face], meshes: List[FaceLandmarks]):
    """Give each face the mesh whose nose tip falls inside its box."""
    unused = list(meshes)
    for face in faces:
        for mesh in unused:
            if mesh.nose_tip is not None and _contains(face.bbox, mesh.nose_tip):
                face.landmarks = mesh
                unused.remove(mesh)
                break


class LandmarkDetector(Detector):
    """Face boxes, landmarks and objects from pretrained models."""

    mode = "model"

    def __init__(self, face_detection, face_mesh, device_model=None,
                 device_confidence: float = YOLO_CONFIDENCE):
        self.face_detection = face_detection
        self.face_mesh = face_mesh
        self.device_model = device_model
        self.device_confidence = device_confidence

    def detect(self, frame: np.ndarray) -> Detection:
        h, w = frame.shape[:2]
        rgb = cv2.cvtColor(frame, cv2.COLOR_BGR2RGB)

        faces: List[Face] = []
        face_results = self.face_detection.process(rgb)
        detections = face_results.detections if face_results and face_results.detections else []
        for det in detections:
            conf = float(det.score[0]) if det.score else 0.0
            faces.append(Face(bbox=_bbox_from_detection(det, w, h), confidence=conf))

        if faces:
            mesh_results = self.face_mesh.process(rgb)
            meshes = [
                _landmarks_from_mesh(lm, w, h)
                for lm in (mesh_results.multi_face_landmarks or [])
            ]
            attach_landmarks(faces, meshes)

        objects = yolo_devices.detect_objects(self.device_model, frame, self.device_confidence)
        return Detection(faces=faces, objects=objects, source=self.mode)

    def close(self):
        for model in (self.face_detection, self.face_mesh):
            close = getattr(model, "close", None)
            if close is not None:
                close()


def build_landmark_detector(**retry_kwargs) -> Optional[LandmarkDetector]:
    """
    Load the face models (required) and the device model (optional) with
    bounded retries. Returns None when the face models cannot be loaded.
    """
    face_models = load_with_retry(load_face_models, name="face models", **retry_kwargs)
    if face_models is None:
        return None
    device_model = load_with_retry(yolo_devices.load_model, name="device model", **retry_kwargs)
    if device_model is None:
        logger.warning("[DETECTION] Device detection disabled, object model unavailable")
    face_detection, face_mesh = face_models
    return LandmarkDetector(face_detection, face_mesh, device_model)
