"""
Session aggregation: bounded per-frame history, blink log and violation log,
reduced into a MonitoringReport when the session ends.
"""

import logging
from collections import deque
from typing import Deque, List, Optional

import numpy as np

import config
from models import (
    EyeMovementStats, FrameRecord, HeadPoseStats, MonitoringReport, ViolationRecord,
)

logger = logging.getLogger(__name__)

NO_DATA_RECOMMENDATION = "No face data collected during session"
ALL_GOOD_RECOMMENDATION = "Excellent monitoring session! Your behavior was professional and consistent."


def _clamp_score(value: float) -> float:
    return float(max(0.0, min(100.0, value)))


class SessionAggregator:
    """Collects one session's measurements. Owned by the session controller."""

    def __init__(self, started_at: float,
                 frame_capacity: int = config.FRAME_HISTORY_SIZE,
                 blink_capacity: int = config.BLINK_HISTORY_SIZE,
                 ear_threshold: float = config.EAR_BLINK_THRESHOLD):
        self.started_at = started_at
        self.ear_threshold = ear_threshold
        self.frames: Deque[FrameRecord] = deque(maxlen=frame_capacity)
        self.blinks: Deque[float] = deque(maxlen=blink_capacity)
        self.violations: List[ViolationRecord] = []
        self.frames_recorded = 0
        self.present_frames = 0
        self._last_timestamp: Optional[float] = None
        self._eyes_closed = False

    def record_frame(self, record: FrameRecord) -> bool:
        """Append one frame. Returns True when the frame started a blink."""
        if self._last_timestamp is not None and record.timestamp <= self._last_timestamp:
            raise ValueError(
                f"Frame timestamps must increase ({record.timestamp} <= {self._last_timestamp})"
            )
        self._last_timestamp = record.timestamp
        self.frames.append(record)
        self.frames_recorded += 1
        if record.face_count > 0:
            self.present_frames += 1

        closed = 0.0 < record.eye_aspect_ratio < self.ear_threshold
        blinked = closed and not self._eyes_closed
        self._eyes_closed = closed
        if blinked:
            self.record_blink(record.timestamp)
        return blinked

    def record_blink(self, timestamp: float):
        self.blinks.append(timestamp)

    def record_violation(self, violation: ViolationRecord):
        self.violations.append(violation)

    def violation_counts(self):
        counts = {vtype: 0 for vtype in config.VIOLATION_TYPES}
        for v in self.violations:
            counts[v.type] = counts.get(v.type, 0) + 1
        return counts

    def finalize(self, now: float, detector_mode: str = "model") -> MonitoringReport:
        """Build the session report from everything recorded before ``now``."""
        duration = max(0.0, now - self.started_at)
        counts = self.violation_counts()
        frames = list(self.frames)

        if not frames:
            logger.info("[SESSION] No frames recorded, returning empty report")
            return MonitoringReport(
                session_duration=duration,
                total_detections=0,
                average_confidence=0.0,
                face_detection_rate=0.0,
                violations=counts,
                head_pose_stats=HeadPoseStats(),
                eye_movement_stats=EyeMovementStats(),
                attention_score=0.0,
                stability_score=0.0,
                overall_score=0.0,
                presence_rate=0.0,
                recommendations=(NO_DATA_RECOMMENDATION,),
                detector_mode=detector_mode,
            )

        confidences = np.array([f.confidence for f in frames], dtype=float)
        yaws = np.array([f.head_pose.yaw for f in frames], dtype=float)
        pitches = np.array([f.head_pose.pitch for f in frames], dtype=float)
        rolls = np.array([f.head_pose.roll for f in frames], dtype=float)
        ears = np.array([f.eye_aspect_ratio for f in frames if f.eye_aspect_ratio > 0], dtype=float)

        average_confidence = float(confidences.mean())
        face_detection_rate = sum(1 for f in frames if f.face_count > 0) / len(frames) * 100

        pose_stats = HeadPoseStats(
            average_yaw=float(yaws.mean()),
            average_pitch=float(pitches.mean()),
            average_roll=float(rolls.mean()),
            max_yaw_deviation=float(np.abs(yaws).max()),
            max_pitch_deviation=float(np.abs(pitches).max()),
        )

        blink_count = len(self.blinks)
        blink_rate = blink_count / duration * 60 if duration > 0 else 0.0
        eye_stats = EyeMovementStats(
            average_ear=float(ears.mean()) if ears.size else 0.0,
            blink_count=blink_count,
            blink_rate=blink_rate,
        )

        attention = _clamp_score(
            100
            - pose_stats.max_yaw_deviation * 2
            - pose_stats.max_pitch_deviation * 2
            - counts[config.LOOKING_AWAY] * 10
        )
        stability = _clamp_score(face_detection_rate - counts[config.FACE_NOT_DETECTED] * 5)
        overall = (attention + stability + average_confidence * 100) / 3

        # present frames over wall-clock seconds; can exceed 100 when ticks
        # outpace seconds, hence the clamp
        presence = round(self.present_frames / duration * 100, 2) if duration > 0 else 0.0
        presence = min(presence, 100.0)

        recommendations = self._recommendations(
            face_detection_rate, pose_stats, blink_rate, counts, average_confidence
        )

        return MonitoringReport(
            session_duration=duration,
            total_detections=self.frames_recorded,
            average_confidence=average_confidence,
            face_detection_rate=face_detection_rate,
            violations=counts,
            head_pose_stats=pose_stats,
            eye_movement_stats=eye_stats,
            attention_score=attention,
            stability_score=stability,
            overall_score=overall,
            presence_rate=presence,
            recommendations=tuple(recommendations),
            detector_mode=detector_mode,
        )

    @staticmethod
    def _recommendations(face_detection_rate, pose_stats, blink_rate, counts, average_confidence):
        recs = []
        if face_detection_rate < config.RECOMMEND_MIN_DETECTION_RATE:
            recs.append("Improve camera positioning for better face detection")
        if pose_stats.max_yaw_deviation > config.RECOMMEND_MAX_YAW:
            recs.append("Try to keep your head facing forward")
        if pose_stats.max_pitch_deviation > config.RECOMMEND_MAX_PITCH:
            recs.append("Maintain eye level with the camera")
        if blink_rate < config.RECOMMEND_MIN_BLINK_RATE:
            recs.append("Remember to blink naturally")
        if blink_rate > config.RECOMMEND_MAX_BLINK_RATE:
            recs.append("Reduce excessive blinking")
        if counts.get(config.MULTIPLE_FACES, 0) > 0:
            recs.append("Ensure you are alone during the session")
        if counts.get(config.ELECTRONIC_DEVICE, 0) > 0:
            recs.append("Keep phones and other devices out of view")
        if average_confidence < config.RECOMMEND_MIN_CONFIDENCE:
            recs.append("Improve lighting conditions for better detection")
        if not recs:
            recs.append(ALL_GOOD_RECOMMENDATION)
        return recs
