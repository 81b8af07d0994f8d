"""
Data types shared by the detectors, the feature extractor, the violation
classifier and the session aggregator.
"""

from dataclasses import asdict, dataclass, field
from typing import Dict, List, Optional, Tuple

# (x, y, width, height) in frame pixels
BBox = Tuple[float, float, float, float]
Point = Tuple[float, float]


@dataclass
class FaceLandmarks:
    """Landmark groups used by the feature extractor.

    Eye contours are six points ordered p0..p5 (outer corner, two upper lid
    points, inner corner, two lower lid points). Any group may be missing.
    """
    left_eye: List[Point] = field(default_factory=list)
    right_eye: List[Point] = field(default_factory=list)
    nose_tip: Optional[Point] = None
    chin: Optional[Point] = None


@dataclass
class Face:
    bbox: BBox
    confidence: float
    landmarks: Optional[FaceLandmarks] = None


@dataclass
class ObjectDetection:
    label: str
    confidence: float
    bbox: Optional[BBox] = None


@dataclass
class Detection:
    """One frame's raw detector output. Not retained past feature extraction."""
    faces: List[Face] = field(default_factory=list)
    objects: List[ObjectDetection] = field(default_factory=list)
    source: str = "model"

    @property
    def face_count(self) -> int:
        return len(self.faces)

    def primary_face(self) -> Optional[Face]:
        """Largest face, assumed to be the candidate."""
        if not self.faces:
            return None
        return max(self.faces, key=lambda f: f.bbox[2] * f.bbox[3])


@dataclass
class HeadPose:
    yaw: float = 0.0
    pitch: float = 0.0
    roll: float = 0.0


@dataclass
class FrameFeatures:
    """Per-frame scalars derived from a Detection.

    Zero pose or EAR with ``pose_known``/``ear_known`` False means unknown,
    not centred.
    """
    face_count: int
    confidence: float
    head_pose: HeadPose
    eye_aspect_ratio: float
    face_size: float
    centroid: Optional[Point]
    device_labels: List[str] = field(default_factory=list)
    pose_known: bool = False
    ear_known: bool = False


@dataclass
class FrameRecord:
    timestamp: float
    face_count: int
    confidence: float
    head_pose: HeadPose
    eye_aspect_ratio: float


@dataclass
class ViolationRecord:
    type: str
    time: float
    severity: str
    message: str = ""
    detail: str = ""

    def to_dict(self) -> Dict:
        return asdict(self)


@dataclass(frozen=True)
class HeadPoseStats:
    average_yaw: float = 0.0
    average_pitch: float = 0.0
    average_roll: float = 0.0
    max_yaw_deviation: float = 0.0
    max_pitch_deviation: float = 0.0


@dataclass(frozen=True)
class EyeMovementStats:
    average_ear: float = 0.0
    blink_count: int = 0
    blink_rate: float = 0.0


@dataclass(frozen=True)
class MonitoringReport:
    session_duration: float
    total_detections: int
    average_confidence: float
    face_detection_rate: float
    violations: Dict[str, int]
    head_pose_stats: HeadPoseStats
    eye_movement_stats: EyeMovementStats
    attention_score: float
    stability_score: float
    overall_score: float
    presence_rate: float
    recommendations: Tuple[str, ...]
    detector_mode: str = "model"

    def to_dict(self) -> Dict:
        data = asdict(self)
        data["recommendations"] = list(self.recommendations)
        return data
