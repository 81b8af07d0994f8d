"""
Violation classification with confirmation counters and cooldowns.

Per-frame detections are noisy (lighting flicker, a quick glance, detector
jitter). Each violation type therefore needs N consecutive frames with its
predicate true before it fires, and at least ``cooldown`` seconds between two
emissions of the same type. A single frame with the predicate false resets
that type's counter.
"""

import logging
import math
from dataclasses import dataclass, replace
from typing import Dict, List, Optional, Tuple

import config
from models import FrameFeatures, ViolationRecord

logger = logging.getLogger(__name__)

QUIET = "quiet"
ACCUMULATING = "accumulating"
COOLING_DOWN = "cooling_down"

SEVERITIES = ("low", "medium", "high")


@dataclass(frozen=True)
class ViolationRule:
    type: str
    severity: str
    confirmations: int
    cooldown: float
    enabled: bool = True


@dataclass
class ConfirmationState:
    confirmation_count: int = 0
    last_emitted_at: Optional[float] = None


def build_rules(mode: str = "model", overrides: Optional[Dict[str, dict]] = None) -> Dict[str, ViolationRule]:
    """
    Rules for a detector mode. Heuristic mode applies HEURISTIC_RULE_OVERRIDES;
    ``overrides`` (type -> partial rule dict) is applied last.
    """
    rules = {
        vtype: ViolationRule(type=vtype, **spec)
        for vtype, spec in config.VIOLATION_RULES.items()
    }
    layers = []
    if mode == "heuristic":
        layers.append(config.HEURISTIC_RULE_OVERRIDES)
    if overrides:
        layers.append(overrides)
    for layer in layers:
        for vtype, changes in layer.items():
            if vtype in rules:
                rules[vtype] = replace(rules[vtype], **changes)
    for rule in rules.values():
        if rule.severity not in SEVERITIES:
            raise ValueError(f"Unknown severity {rule.severity!r} for {rule.type}")
        if rule.confirmations < 1:
            raise ValueError(f"{rule.type} needs at least one confirmation")
    return rules


def violation_message(vtype: str, severity: str) -> str:
    return config.VIOLATION_MESSAGES.get(vtype, {}).get(severity, "Proctoring violation detected")


class ViolationClassifier:
    """Debounced violation detection for one monitoring session."""

    def __init__(self,
                 rules: Optional[Dict[str, ViolationRule]] = None,
                 yaw_limit: float = config.LOOKING_AWAY_YAW,
                 pitch_min: float = config.LOOKING_AWAY_PITCH_MIN,
                 pitch_max: float = config.LOOKING_AWAY_PITCH_MAX,
                 min_face_size: float = config.MIN_FACE_SIZE,
                 movement_pixels: float = config.SUSPICIOUS_MOVEMENT_PIXELS):
        self.rules = rules if rules is not None else build_rules()
        self.yaw_limit = yaw_limit
        self.pitch_min = pitch_min
        self.pitch_max = pitch_max
        self.min_face_size = min_face_size
        self.movement_pixels = movement_pixels
        self.states: Dict[str, ConfirmationState] = {}
        self.last_face_position: Optional[Tuple[float, float]] = None
        self.reset()

    def reset(self):
        """Fresh confirmation state for a new session."""
        self.states = {vtype: ConfirmationState() for vtype in self.rules}
        self.last_face_position = None

    def state(self, vtype: str, now: float) -> str:
        st = self.states[vtype]
        rule = self.rules[vtype]
        if st.last_emitted_at is not None and now - st.last_emitted_at < rule.cooldown:
            return COOLING_DOWN
        if st.confirmation_count > 0:
            return ACCUMULATING
        return QUIET

    def _check_cooldown(self, rule: ViolationRule, now: float) -> bool:
        last = self.states[rule.type].last_emitted_at
        if last is None:
            return True
        return now - last >= rule.cooldown

    def _movement(self, features: FrameFeatures) -> Optional[float]:
        """Centroid displacement since the previous frame with a face."""
        if features.face_count == 0 or features.centroid is None:
            return None
        previous = self.last_face_position
        self.last_face_position = features.centroid
        if previous is None:
            return None
        return math.hypot(features.centroid[0] - previous[0], features.centroid[1] - previous[1])

    def predicates(self, features: FrameFeatures) -> Dict[str, Tuple[bool, str]]:
        """Evaluate every rule's trigger condition for one frame."""
        results = {}
        count = features.face_count
        results[config.FACE_NOT_DETECTED] = (count == 0, "no face in frame")
        results[config.MULTIPLE_FACES] = (count > 1, f"count={count}")

        pose = features.head_pose
        away = features.pose_known and count > 0 and (
            abs(pose.yaw) > self.yaw_limit
            or pose.pitch < self.pitch_min
            or pose.pitch > self.pitch_max
        )
        results[config.LOOKING_AWAY] = (away, f"yaw={pose.yaw:.1f} pitch={pose.pitch:.1f}")

        obscured = count > 0 and 0 < features.face_size < self.min_face_size
        results[config.FACE_OBSCURED] = (obscured, f"face_size={features.face_size:.0f}")

        movement = self._movement(features)
        moved = movement is not None and movement > self.movement_pixels
        results[config.SUSPICIOUS_MOVEMENT] = (moved, f"moved={movement or 0.0:.0f}px")

        devices = features.device_labels
        results[config.ELECTRONIC_DEVICE] = (bool(devices), ", ".join(sorted(set(devices))))
        return results

    def evaluate(self, features: FrameFeatures, now: float) -> List[ViolationRecord]:
        """Advance every type's state machine by one frame; return emitted violations."""
        emitted = []
        for vtype, (triggered, detail) in self.predicates(features).items():
            rule = self.rules.get(vtype)
            if rule is None or not rule.enabled:
                continue
            record = self._step(rule, triggered, now, detail)
            if record is not None:
                emitted.append(record)
        return emitted

    def _step(self, rule: ViolationRule, triggered: bool, now: float, detail: str) -> Optional[ViolationRecord]:
        st = self.states[rule.type]
        if not triggered:
            st.confirmation_count = 0
            return None

        st.confirmation_count += 1
        if st.confirmation_count < rule.confirmations or not self._check_cooldown(rule, now):
            return None

        st.confirmation_count = 0
        st.last_emitted_at = now
        logger.info("[VIOLATION] %s (%s): %s", rule.type, rule.severity, detail)
        return ViolationRecord(
            type=rule.type,
            time=now,
            severity=rule.severity,
            message=violation_message(rule.type, rule.severity),
            detail=detail,
        )
