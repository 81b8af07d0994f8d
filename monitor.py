"""
PRESENCE MONITORING SESSION
Session controller tying together camera sampling, detection, violation
classification and report aggregation, plus the command-line runner.
"""

import argparse
import logging
import queue
import threading
import time
from typing import Callable, Dict, List, Optional

from aggregator import SessionAggregator
from camera import CameraPermissionError, FrameSampler
from config import HEURISTIC_SAMPLE_INTERVAL, SAMPLE_INTERVAL
from db import init_db, save_session
from detection.base import Detector
from detection.face_features import extract_features
from detection.grid_detector import GridDetector
from detection.landmark_detector import build_landmark_detector
from models import FrameRecord, MonitoringReport, ViolationRecord
from violations import ViolationClassifier, build_rules

logger = logging.getLogger(__name__)

IDLE = "idle"
PERMISSION_REQUESTED = "permission_requested"
ACTIVE = "active"
DENIED = "denied"
STOPPED = "stopped"

_STOP_DISPATCH = object()


class SessionStateError(RuntimeError):
    """start() called while a session is already running or starting."""


class MonitoringSession:
    """
    One controller per camera. Sessions run one at a time; the loaded detector
    is reused across sessions, everything else is rebuilt on start().

    Callbacks:
        on_camera_ready(ok: bool)
        on_violation(record: ViolationRecord), delivered off the sampling thread
        on_report(report: MonitoringReport), once per session
        on_model_status(ok: bool, reason: str), once, after the first model load
    """

    def __init__(self,
                 sampler: Optional[FrameSampler] = None,
                 detector_factory: Optional[Callable[[], Optional[Detector]]] = None,
                 rule_overrides: Optional[Dict[str, dict]] = None,
                 interval: Optional[float] = None,
                 clock: Callable[[], float] = time.monotonic,
                 on_camera_ready: Optional[Callable[[bool], None]] = None,
                 on_violation: Optional[Callable[[ViolationRecord], None]] = None,
                 on_report: Optional[Callable[[MonitoringReport], None]] = None,
                 on_model_status: Optional[Callable[[bool, str], None]] = None):
        self.sampler = sampler if sampler is not None else FrameSampler()
        self.detector_factory = detector_factory or build_landmark_detector
        self.rule_overrides = rule_overrides
        self.interval = interval
        self.clock = clock
        self.on_camera_ready = on_camera_ready
        self.on_violation = on_violation
        self.on_report = on_report
        self.on_model_status = on_model_status

        self.state = IDLE
        self.detector: Optional[Detector] = None
        self.classifier: Optional[ViolationClassifier] = None
        self.aggregator: Optional[SessionAggregator] = None
        self.last_report: Optional[MonitoringReport] = None
        self.last_violations: List[ViolationRecord] = []

        self._state_lock = threading.RLock()
        self._tick_lock = threading.Lock()  # held while a tick is in flight
        self._generation = 0
        self._events: "queue.Queue" = queue.Queue()
        self._stop_event = threading.Event()
        self._sampling_thread: Optional[threading.Thread] = None
        self._dispatch_thread: Optional[threading.Thread] = None

    # ---------- lifecycle ----------

    def start(self, run_loop: bool = True) -> bool:
        """
        Open the camera and begin sampling. Returns False when the camera is
        denied; the caller decides whether to try again.
        """
        with self._state_lock:
            if self.state in (ACTIVE, PERMISSION_REQUESTED):
                raise SessionStateError(f"Cannot start while {self.state}")
            self.state = PERMISSION_REQUESTED

        try:
            self.sampler.start()
        except CameraPermissionError as e:
            logger.error("[CAMERA] %s", e)
            with self._state_lock:
                self.state = DENIED
            self._notify(self.on_camera_ready, False)
            return False

        with self._state_lock:
            if self.state != PERMISSION_REQUESTED:
                # stopped while the camera was opening
                self.sampler.stop()
                return False
        self._notify(self.on_camera_ready, True)

        detector = self._ensure_detector()
        detector.reset()

        with self._state_lock:
            if self.state != PERMISSION_REQUESTED:
                # stopped while the models were loading
                self.sampler.stop()
                return False
            self._generation += 1
            generation = self._generation
            self.classifier = ViolationClassifier(build_rules(detector.mode, self.rule_overrides))
            self.aggregator = SessionAggregator(started_at=self.clock())
            self.last_report = None
            self.last_violations = []
            self._stop_event.clear()
            self._events = queue.Queue()
            events = self._events
            self.state = ACTIVE

        logger.info("[SESSION] Monitoring started (%s detector)", detector.mode)
        if run_loop:
            self._dispatch_thread = threading.Thread(
                target=self._dispatch_loop, args=(events,), name="presence-events", daemon=True
            )
            self._dispatch_thread.start()
            self._sampling_thread = threading.Thread(
                target=self._run, args=(generation,), name="presence-sampler", daemon=True
            )
            self._sampling_thread.start()
        return True

    def stop(self) -> Optional[MonitoringReport]:
        """
        End the session and return its report. Safe to call repeatedly; only
        the call that ends an active session does any work.
        """
        with self._state_lock:
            if self.state == DENIED:
                self.state = IDLE
                return None
            cancelling = self.state == PERMISSION_REQUESTED
            if cancelling:
                # start() is still opening the camera or loading models;
                # it sees the state change and backs out
                self.state = IDLE
            elif self.state != ACTIVE:
                return None
            else:
                self.state = STOPPED
                self._generation += 1
                self._stop_event.set()
                aggregator = self.aggregator

        if cancelling:
            self.sampler.stop()
            logger.info("[SESSION] Start cancelled, camera released")
            return None

        sampler_thread = self._sampling_thread
        if sampler_thread is not None and sampler_thread is not threading.current_thread():
            sampler_thread.join(timeout=5.0)
        self._sampling_thread = None

        report = None
        try:
            report = aggregator.finalize(self.clock(), self.detector.mode)
        except Exception as e:
            logger.error("[SESSION] Report generation failed: %s", e)
        finally:
            try:
                self.sampler.stop()
            except Exception as e:
                logger.error("[CAMERA] Failed to release camera: %s", e)

        self._shutdown_dispatch()

        self.last_report = report
        self.last_violations = list(aggregator.violations)
        if report is not None:
            logger.info("[SESSION] Session ended after %.1fs, overall score %.1f",
                        report.session_duration, report.overall_score)
            self._notify(self.on_report, report)

        with self._state_lock:
            self.classifier = None
            self.aggregator = None
            self.state = IDLE
        return report

    def close(self):
        """Stop any session and release the detector models."""
        self.stop()
        if self.detector is not None:
            self.detector.close()
            self.detector = None

    # ---------- detection ----------

    def _ensure_detector(self) -> Detector:
        if self.detector is not None:
            return self.detector

        reason = ""
        detector = None
        try:
            detector = self.detector_factory()
        except Exception as e:
            reason = str(e)
            logger.error("[DETECTION] Detector setup failed: %s", e)

        if detector is None:
            reason = reason or "face models could not be loaded"
            logger.warning("[DETECTION] Running in heuristic mode: %s", reason)
            self.detector = GridDetector()
            self._notify(self.on_model_status, False, reason)
        elif detector.mode == "model":
            self.detector = detector
            self._notify(self.on_model_status, True, "")
        else:
            self.detector = detector
            self._notify(self.on_model_status, False, "heuristic detector selected")
        return self.detector

    def tick(self) -> bool:
        """
        Run one detection cycle. Returns True when a frame was recorded.
        Overlapping calls are dropped, not queued.
        """
        if not self._tick_lock.acquire(blocking=False):
            logger.debug("[SESSION] Previous tick still in flight, skipping")
            return False
        try:
            recorded = self._tick()
        finally:
            self._tick_lock.release()
        if self._dispatch_thread is None:
            self.drain_events()
        return recorded

    def _tick(self) -> bool:
        with self._state_lock:
            if self.state != ACTIVE:
                return False
            generation = self._generation
            detector = self.detector
            classifier = self.classifier
            aggregator = self.aggregator

        frame = self.sampler.sample()
        if frame is None:
            return False

        try:
            detection = detector.detect(frame)
            features = extract_features(detection)
        except Exception as e:
            logger.error("[DETECTION] Detection failed, skipping frame: %s", e)
            return False

        with self._state_lock:
            if self.state != ACTIVE or generation != self._generation:
                logger.debug("[SESSION] Discarding detection from an ended session")
                return False
            now = self.clock()
            aggregator.record_frame(FrameRecord(
                timestamp=now,
                face_count=features.face_count,
                confidence=features.confidence,
                head_pose=features.head_pose,
                eye_aspect_ratio=features.eye_aspect_ratio,
            ))
            for record in classifier.evaluate(features, now):
                aggregator.record_violation(record)
                self._events.put(record)
        return True

    def _run(self, generation: int):
        interval = self.interval
        if interval is None:
            interval = HEURISTIC_SAMPLE_INTERVAL if self.detector.mode == "heuristic" else SAMPLE_INTERVAL
        while not self._stop_event.wait(interval):
            if generation != self._generation:
                break
            try:
                self.tick()
            except Exception:
                logger.exception("[SESSION] Tick failed")

    # ---------- events ----------

    def drain_events(self) -> int:
        """Deliver queued violations in emission order. Returns how many."""
        delivered = 0
        while True:
            try:
                record = self._events.get_nowait()
            except queue.Empty:
                return delivered
            if record is _STOP_DISPATCH:
                return delivered
            self._notify(self.on_violation, record)
            delivered += 1

    def _dispatch_loop(self, events: "queue.Queue"):
        while True:
            record = events.get()
            if record is _STOP_DISPATCH:
                return
            self._notify(self.on_violation, record)

    def _shutdown_dispatch(self):
        thread, self._dispatch_thread = self._dispatch_thread, None
        if thread is None:
            self.drain_events()
        elif thread is threading.current_thread():
            # stop() from inside on_violation: deliver the rest here, then
            # let the loop return once the callback does
            self.drain_events()
            self._events.put(_STOP_DISPATCH)
        else:
            self._events.put(_STOP_DISPATCH)
            thread.join(timeout=5.0)

    @staticmethod
    def _notify(callback, *args):
        if callback is None:
            return
        try:
            callback(*args)
        except Exception:
            logger.exception("[SESSION] Callback %s failed", getattr(callback, "__name__", callback))


# ==================== COMMAND LINE ====================

def _print_violation(record: ViolationRecord):
    if record.severity == "high":
        print(f"[ALERT] {record.message} ({record.detail})")
    elif record.severity == "medium":
        print(f"[WARNING] {record.message}")
    else:
        logger.info("[VIOLATION] %s recorded", record.type)


def _print_model_status(ok: bool, reason: str):
    if not ok:
        print(f"[INFO] Advanced detection unavailable, using basic monitoring ({reason})")


def print_summary(report: MonitoringReport):
    print("=" * 60)
    print("PRESENCE MONITORING SESSION SUMMARY")
    print("=" * 60)
    print(f"Detector mode:      {report.detector_mode}")
    print(f"Duration:           {report.session_duration:.1f}s")
    print(f"Frames analysed:    {report.total_detections}")
    print(f"Face detection:     {report.face_detection_rate:.1f}%")
    print(f"Presence rate:      {report.presence_rate:.1f}%")
    print(f"Attention score:    {report.attention_score:.1f}")
    print(f"Stability score:    {report.stability_score:.1f}")
    print(f"Overall score:      {report.overall_score:.1f}")
    print(f"Blinks:             {report.eye_movement_stats.blink_count} "
          f"({report.eye_movement_stats.blink_rate:.1f}/min)")
    print("Violations:")
    for vtype, count in report.violations.items():
        print(f"  {vtype:<22}{count}")
    print("Recommendations:")
    for rec in report.recommendations:
        print(f"  - {rec}")
    print("=" * 60)


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Webcam presence monitoring session")
    parser.add_argument("--camera", type=int, default=None, help="camera index")
    parser.add_argument("--duration", type=float, default=None,
                        help="stop after this many seconds (default: until Ctrl-C)")
    parser.add_argument("--heuristic", action="store_true",
                        help="skip model loading and use the heuristic detector")
    parser.add_argument("--db", default=None, help="sqlite file for saved sessions")
    parser.add_argument("--no-save", action="store_true", help="do not store the report")
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    sampler = FrameSampler() if args.camera is None else FrameSampler(camera_index=args.camera)
    session = MonitoringSession(
        sampler=sampler,
        detector_factory=GridDetector if args.heuristic else None,
        on_violation=_print_violation,
        on_model_status=_print_model_status,
    )

    print("[INFO] Requesting camera access...")
    if not session.start():
        print("[ERROR] Camera unavailable. Check permissions and run again.")
        return 1

    print("[INFO] Monitoring active. Press Ctrl-C to finish.")
    started = time.monotonic()
    try:
        while session.state == ACTIVE:
            if args.duration is not None and time.monotonic() - started >= args.duration:
                break
            time.sleep(0.2)
    except KeyboardInterrupt:
        print()
    finally:
        report = session.stop()
        session.close()

    if report is None:
        print("[ERROR] No report was produced")
        return 1

    print_summary(report)

    if not args.no_save:
        init_db(args.db)
        session_id = save_session(report, session.last_violations, db_path=args.db)
        print(f"[INFO] Session saved as {session_id}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
