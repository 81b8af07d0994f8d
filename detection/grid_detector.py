"""
Heuristic presence detection for when the face models cannot be loaded.

Samples a coarse grid over the central part of the frame and looks at:
- brightness contrast between a cell and its neighbours (face-like blobs)
- a simple skin-tone test (R > G > B, moderate R-G gap)
- per-cell motion against the previous frame
- very bright, static cells (screens) as a device signal

The output has the same shape as the model detector: one Face per cluster of
face-like regions, plus an "electronic device" object when enough bright
static spots are seen.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional

import numpy as np

import config
from detection.base import Detector
from models import Detection, Face, ObjectDetection

logger = logging.getLogger(__name__)

DEVICE_LABEL = "electronic device"


@dataclass
class FaceRegion:
    x: float
    y: float
    diff: float
    is_skin_tone: bool


class GridDetector(Detector):
    """
    Pixel-statistics detector. Keeps the previous frame's grid samples for
    motion, so call reset() at the start of every session.
    """

    mode = "heuristic"

    def __init__(self,
                 grid_size: int = config.HEURISTIC_GRID_SIZE,
                 sample_ratio: float = config.HEURISTIC_SAMPLE_RATIO,
                 face_threshold: float = config.HEURISTIC_FACE_THRESHOLD,
                 center_weight: float = config.HEURISTIC_CENTER_WEIGHT,
                 region_distance: float = config.HEURISTIC_REGION_DISTANCE,
                 bright_threshold: float = config.HEURISTIC_BRIGHT_THRESHOLD,
                 device_motion: float = config.HEURISTIC_DEVICE_MOTION,
                 device_spots: int = config.HEURISTIC_DEVICE_SPOTS,
                 min_brightness: float = config.HEURISTIC_MIN_BRIGHTNESS,
                 max_brightness: float = config.HEURISTIC_MAX_BRIGHTNESS,
                 motion_presence: float = config.HEURISTIC_MOTION_PRESENCE,
                 warmup_checks: int = config.HEURISTIC_WARMUP_CHECKS):
        self.grid_size = grid_size
        self.sample_ratio = sample_ratio
        self.face_threshold = face_threshold
        self.center_weight = center_weight
        self.region_distance = region_distance
        self.bright_threshold = bright_threshold
        self.device_motion = device_motion
        self.device_spots = device_spots
        self.min_brightness = min_brightness
        self.max_brightness = max_brightness
        self.motion_presence = motion_presence
        self.warmup_checks = warmup_checks

        self.prev_samples: Optional[np.ndarray] = None
        self.check_count = 0
        self.last_brightness = 0.0
        self.last_motion = 0.0

    def reset(self):
        self.prev_samples = None
        self.check_count = 0
        self.last_brightness = 0.0
        self.last_motion = 0.0

    def detect(self, frame: np.ndarray) -> Detection:
        h, w = frame.shape[:2]
        grid = self.grid_size
        sample_w = int(w * self.sample_ratio)
        sample_h = int(h * self.sample_ratio)
        sample_x = w // 2 - sample_w // 2
        sample_y = h // 2 - sample_h // 2
        cell_w = max(1, sample_w // grid)
        cell_h = max(1, sample_h // grid)

        # centre pixel of every grid cell, in frame coordinates
        xs = sample_x + np.arange(grid) * cell_w + cell_w // 2
        ys = sample_y + np.arange(grid) * cell_h + cell_h // 2
        xs = np.clip(xs, 0, w - 1)
        ys = np.clip(ys, 0, h - 1)
        samples = frame[np.ix_(ys, xs)].astype(np.float64)

        blue, green, red = samples[..., 0], samples[..., 1], samples[..., 2]
        brightness = (red + green + blue) / 3.0

        motion: Optional[np.ndarray] = None
        if self.prev_samples is not None and self.prev_samples.shape == samples.shape:
            motion = np.abs(samples - self.prev_samples).sum(axis=2)

        avg_brightness = float(brightness.mean())
        avg_motion = float(motion.mean()) if motion is not None else 0.0

        regions = self._face_regions(brightness, red, green, blue,
                                     sample_x, sample_y, cell_w, cell_h)
        clusters = self._cluster_regions(regions, cell_w, cell_h)
        spots = self._device_spots(brightness, motion)

        brightness_ok = self.min_brightness < avg_brightness < self.max_brightness
        present = False
        if brightness_ok and regions:
            present = True
        elif brightness_ok and avg_motion > self.motion_presence and self.check_count < self.warmup_checks:
            present = True
        elif any(r.is_skin_tone for r in regions):
            present = True

        faces: List[Face] = []
        if present:
            size = cell_w * 3
            for cluster in clusters:
                # cluster mean, steadier than the strongest cell
                cx = float(np.mean([r.x for r in cluster])) + cell_w / 2.0
                cy = float(np.mean([r.y for r in cluster])) + cell_h / 2.0
                faces.append(Face(
                    bbox=(cx - size / 2.0, cy - size / 2.0, size, size),
                    confidence=min(1.0, cluster[0].diff / (4 * self.face_threshold)),
                ))
            if not faces:
                # motion-only presence: no region to localise the face
                faces.append(Face(bbox=(sample_x, sample_y, sample_w, sample_h), confidence=0.5))

        objects: List[ObjectDetection] = []
        if spots > self.device_spots:
            logger.debug("[DETECTION] %d bright static spots, flagging device", spots)
            objects.append(ObjectDetection(
                label=DEVICE_LABEL,
                confidence=min(1.0, spots / float(grid * grid)),
            ))

        self.prev_samples = samples
        self.check_count += 1
        self.last_brightness = avg_brightness
        self.last_motion = avg_motion
        return Detection(faces=faces, objects=objects, source=self.mode)

    def _face_regions(self, brightness, red, green, blue,
                      sample_x, sample_y, cell_w, cell_h) -> List[FaceRegion]:
        grid = self.grid_size
        half = grid / 2.0
        regions = []
        for gy in range(1, grid - 1):
            for gx in range(1, grid - 1):
                center = brightness[gy, gx]
                surrounding = (brightness[gy - 1, gx] + brightness[gy + 1, gx]
                               + brightness[gy, gx - 1] + brightness[gy, gx + 1]) / 4.0

                dist = np.hypot((gx - half) / half, (gy - half) / half)
                weight = 1.0 - dist * self.center_weight
                diff = abs(center - surrounding) * weight
                if diff <= self.face_threshold:
                    continue

                r, g, b = red[gy, gx], green[gy, gx], blue[gy, gx]
                is_skin = bool(r > g > b and 5 < r - g < 100)
                if is_skin or center > 100:
                    regions.append(FaceRegion(
                        x=float(gx * cell_w + sample_x),
                        y=float(gy * cell_h + sample_y),
                        diff=float(diff),
                        is_skin_tone=is_skin,
                    ))
        regions.sort(key=lambda r: r.diff, reverse=True)
        return regions

    def _cluster_regions(self, regions: List[FaceRegion], cell_w, cell_h) -> List[List[FaceRegion]]:
        """
        Greedy clustering. The strongest region seeds a cluster; weaker regions
        within region_distance cells of a seed join it, the rest seed new ones.
        """
        clusters: List[List[FaceRegion]] = []
        for region in regions:
            for cluster in clusters:
                seed = cluster[0]
                if np.hypot((region.x - seed.x) / cell_w,
                            (region.y - seed.y) / cell_h) < self.region_distance:
                    cluster.append(region)
                    break
            else:
                clusters.append([region])
        return clusters

    def _device_spots(self, brightness: np.ndarray, motion: Optional[np.ndarray]) -> int:
        bright = brightness > self.bright_threshold
        if motion is None:
            return int(bright.sum())
        return int((bright & (motion < self.device_motion)).sum())
