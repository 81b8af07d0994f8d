import pytest

from detection.face_features import (
    average_eye_aspect_ratio, bbox_centroid, disallowed_labels, estimate_head_pose,
    extract_features, eye_aspect_ratio, face_size,
)
from models import Detection, Face, FaceLandmarks, ObjectDetection


def test_eye_aspect_ratio_known_contour():
    points = [(0, 0), (1, 1), (2, 1), (3, 0), (2, -1), (1, -1)]
    assert eye_aspect_ratio(points) == pytest.approx(4 / 6)


def test_eye_aspect_ratio_unusable_contours():
    assert eye_aspect_ratio([(0, 0), (1, 1)]) == 0.0
    assert eye_aspect_ratio([(5, 5)] * 6) == 0.0


def test_average_ear_needs_both_eyes(eye_at):
    both = FaceLandmarks(left_eye=eye_at(100, 100), right_eye=eye_at(200, 100))
    assert average_eye_aspect_ratio(both) == pytest.approx(0.3)

    one = FaceLandmarks(left_eye=eye_at(100, 100))
    assert average_eye_aspect_ratio(one) == 0.0
    assert average_eye_aspect_ratio(None) == 0.0


def test_head_pose_frontal(make_landmarks):
    pose = estimate_head_pose(make_landmarks())
    assert pose.yaw == 0.0
    assert pose.pitch == pytest.approx(20.0)
    assert pose.roll == 0.0


def test_head_pose_turned(make_landmarks):
    pose = estimate_head_pose(make_landmarks(nose=(175, 150)))
    assert pose.yaw == pytest.approx(15.0)


def test_head_pose_is_clamped(make_landmarks):
    pose = estimate_head_pose(make_landmarks(nose=(400, 150), left=(100, 100), right=(200, 160)))
    assert pose.yaw == 60.0
    assert pose.roll == 30.0


def test_head_pose_missing_groups(make_landmarks, eye_at):
    assert estimate_head_pose(None) is None
    no_chin = FaceLandmarks(left_eye=eye_at(100, 100), right_eye=eye_at(200, 100), nose_tip=(150, 150))
    assert estimate_head_pose(no_chin) is None
    assert estimate_head_pose(make_landmarks(left=(150, 100), right=(150, 100))) is None


def test_face_size_and_centroid():
    assert face_size((0, 0, 100, 400)) == pytest.approx(200.0)
    assert face_size((0, 0, 0, 100)) == 0.0
    assert bbox_centroid((10, 20, 100, 50)) == (60.0, 45.0)


def test_disallowed_labels_substring_match():
    detection = Detection(objects=[
        ObjectDetection("cell phone", 0.9),
        ObjectDetection("person", 0.99),
        ObjectDetection("Laptop", 0.7),
    ])
    assert disallowed_labels(detection) == ["cell phone", "laptop"]
    assert disallowed_labels(detection, labels=["person"]) == ["person"]


def test_extract_features_without_face():
    features = extract_features(Detection(objects=[ObjectDetection("tv", 0.8)]))
    assert features.face_count == 0
    assert features.confidence == 0.0
    assert features.centroid is None
    assert not features.pose_known
    assert not features.ear_known
    assert features.device_labels == ["tv"]


def test_extract_features_uses_largest_face(make_landmarks):
    small = Face(bbox=(0, 0, 50, 50), confidence=0.99)
    large = Face(bbox=(100, 100, 200, 200), confidence=0.8, landmarks=make_landmarks())
    features = extract_features(Detection(faces=[small, large]))

    assert features.face_count == 2
    assert features.confidence == pytest.approx(0.8)
    assert features.face_size == pytest.approx(200.0)
    assert features.centroid == (200.0, 200.0)
    assert features.pose_known
    assert features.ear_known
    assert features.eye_aspect_ratio == pytest.approx(0.3)


def test_extract_features_face_without_landmarks():
    features = extract_features(Detection(faces=[Face(bbox=(0, 0, 300, 300), confidence=0.7)]))
    assert features.face_count == 1
    assert not features.pose_known
    assert features.head_pose.yaw == 0.0
    assert features.eye_aspect_ratio == 0.0
