import threading

import pytest

import config
import monitor
from conftest import FakeSampler, ScriptedDetector, TickingClock
from detection.grid_detector import GridDetector
from models import Detection


def _session(detector=None, sampler=None, **kwargs):
    sampler = sampler or FakeSampler()
    detector = detector or ScriptedDetector()
    return monitor.MonitoringSession(
        sampler=sampler,
        detector_factory=lambda: detector,
        clock=TickingClock(),
        **kwargs
    )


def test_start_and_stop_lifecycle(one_face):
    ready, reports = [], []
    sampler = FakeSampler()
    session = _session(ScriptedDetector([one_face]), sampler,
                       on_camera_ready=ready.append, on_report=reports.append)

    assert session.state == monitor.IDLE
    assert session.start(run_loop=False)
    assert session.state == monitor.ACTIVE
    assert ready == [True]

    for _ in range(3):
        assert session.tick()

    report = session.stop()
    assert session.state == monitor.IDLE
    assert report.total_detections == 3
    assert report.face_detection_rate == 100.0
    assert reports == [report]
    assert sampler.released == 1


def test_stop_is_idempotent():
    sampler = FakeSampler()
    session = _session(sampler=sampler)
    session.start(run_loop=False)
    session.tick()

    assert session.stop() is not None
    assert session.stop() is None
    assert sampler.released == 1


def test_stop_while_idle_is_a_noop():
    sampler = FakeSampler()
    session = _session(sampler=sampler)
    assert session.stop() is None
    assert session.state == monitor.IDLE
    assert sampler.released == 0


def test_start_while_active_is_rejected():
    session = _session()
    session.start(run_loop=False)
    with pytest.raises(monitor.SessionStateError):
        session.start(run_loop=False)
    session.stop()


def test_camera_denied_is_terminal_until_retried():
    ready = []
    sampler = FakeSampler(deny=True)
    session = _session(sampler=sampler, on_camera_ready=ready.append)

    assert session.start(run_loop=False) is False
    assert session.state == monitor.DENIED
    assert ready == [False]
    assert sampler.started == 1
    assert session.tick() is False

    sampler.deny = False
    assert session.start(run_loop=False)
    assert session.state == monitor.ACTIVE
    assert ready == [False, True]
    session.stop()


def test_violations_delivered_in_order_after_tick():
    delivered = []
    session = _session(ScriptedDetector([Detection()]), on_violation=delivered.append)
    session.start(run_loop=False)

    session.tick()
    assert delivered == []
    session.tick()
    assert [v.type for v in delivered] == [config.FACE_NOT_DETECTED]
    assert delivered[0].severity == "high"

    report = session.stop()
    assert report.violations[config.FACE_NOT_DETECTED] == 1
    assert [v.type for v in session.last_violations] == [config.FACE_NOT_DETECTED]


def test_failing_violation_callback_does_not_break_ticks():
    def explode(record):
        raise RuntimeError("consumer failed")

    session = _session(ScriptedDetector([Detection()]), on_violation=explode)
    session.start(run_loop=False)
    for _ in range(4):
        assert session.tick()
    assert session.stop().total_detections == 4


def test_detection_error_skips_frame(one_face):
    detector = ScriptedDetector([one_face, RuntimeError("inference failed"), one_face])
    session = _session(detector)
    session.start(run_loop=False)

    assert session.tick() is True
    assert session.tick() is False
    assert session.tick() is True
    assert session.stop().total_detections == 2


def test_overlapping_tick_is_dropped(one_face):
    detector = ScriptedDetector([one_face])
    session = _session(detector)
    nested = []
    detector.before_detect = lambda calls: nested.append(session.tick()) if calls == 1 else None
    session.start(run_loop=False)

    assert session.tick() is True
    assert nested == [False]
    assert detector.calls == 1


def test_detection_finishing_after_stop_is_discarded(one_face):
    detector = ScriptedDetector([one_face])
    session = _session(detector)
    stopped = []
    detector.before_detect = lambda calls: stopped.append(session.stop()) if calls == 2 else None
    session.start(run_loop=False)

    assert session.tick() is True
    assert session.tick() is False
    assert stopped[0].total_detections == 1
    assert session.state == monitor.IDLE


def test_stop_while_camera_opens_releases_it():
    ready = []

    class StoppingSampler(FakeSampler):
        def start(self):
            super().start()
            session.stop()

    sampler = StoppingSampler()
    session = _session(sampler=sampler, on_camera_ready=ready.append)

    assert session.start(run_loop=False) is False
    assert session.state == monitor.IDLE
    assert ready == []
    assert sampler.released == 1
    assert not sampler.open


def test_stop_while_models_load_releases_camera():
    sampler = FakeSampler()
    detector = ScriptedDetector()

    def slow_factory():
        session.stop()
        return detector

    session = monitor.MonitoringSession(sampler=sampler, detector_factory=slow_factory,
                                        clock=TickingClock())

    assert session.start(run_loop=False) is False
    assert session.state == monitor.IDLE
    assert sampler.released == 1
    assert not sampler.open
    assert session.stop() is None

    # the loaded detector is kept for the next start
    assert session.start(run_loop=False) is True
    assert session.detector is detector
    assert session.stop() is not None
    assert sampler.released == 2


def test_camera_released_when_report_fails(monkeypatch):
    sampler = FakeSampler()
    session = _session(sampler=sampler)
    session.start(run_loop=False)
    session.tick()

    def broken(*args, **kwargs):
        raise ZeroDivisionError("bad aggregate")

    monkeypatch.setattr(session.aggregator, "finalize", broken)
    assert session.stop() is None
    assert sampler.released == 1
    assert session.state == monitor.IDLE


def test_model_failure_falls_back_to_heuristic_once():
    statuses = []
    calls = []

    def factory():
        calls.append(1)
        return None

    session = monitor.MonitoringSession(
        sampler=FakeSampler(), detector_factory=factory, clock=TickingClock(),
        on_model_status=lambda ok, reason: statuses.append((ok, reason)),
    )
    session.start(run_loop=False)
    assert isinstance(session.detector, GridDetector)
    assert not session.classifier.rules[config.LOOKING_AWAY].enabled
    report = session.stop()
    assert report.detector_mode == "heuristic"

    session.start(run_loop=False)
    session.stop()
    assert len(calls) == 1
    assert len(statuses) == 1
    assert statuses[0][0] is False


def test_model_factory_exception_falls_back():
    def factory():
        raise OSError("weights missing")

    statuses = []
    session = monitor.MonitoringSession(
        sampler=FakeSampler(), detector_factory=factory, clock=TickingClock(),
        on_model_status=lambda ok, reason: statuses.append((ok, reason)),
    )
    session.start(run_loop=False)
    assert session.detector.mode == "heuristic"
    assert statuses == [(False, "weights missing")]
    session.stop()


def test_detector_reused_and_reset_per_session(one_face):
    detector = ScriptedDetector([one_face])
    built = []

    def factory():
        built.append(detector)
        return detector

    session = monitor.MonitoringSession(sampler=FakeSampler(), detector_factory=factory, clock=TickingClock())
    for _ in range(2):
        session.start(run_loop=False)
        session.tick()
        session.stop()
    assert len(built) == 1
    assert detector.resets == 2


def test_background_loop_samples_and_delivers():
    got_violation = threading.Event()
    session = monitor.MonitoringSession(
        sampler=FakeSampler(),
        detector_factory=lambda: ScriptedDetector([Detection()]),
        interval=0.01,
        on_violation=lambda record: got_violation.set(),
    )
    session.start()
    assert got_violation.wait(timeout=5.0)

    report = session.stop()
    assert report.total_detections >= 2
    assert report.violations[config.FACE_NOT_DETECTED] >= 1
    assert session.state == monitor.IDLE


def test_stop_from_violation_callback_then_restart():
    phase = {"n": 1}
    delivered_on = {1: [], 2: []}
    stopping, stopped, second = threading.Event(), threading.Event(), threading.Event()
    reports = []

    def on_violation(record):
        n = phase["n"]
        delivered_on[n].append(threading.current_thread())
        if n == 1 and not stopping.is_set():
            stopping.set()
            reports.append(session.stop())
            stopped.set()
        elif n == 2:
            second.set()

    session = monitor.MonitoringSession(
        sampler=FakeSampler(),
        detector_factory=lambda: ScriptedDetector([Detection()]),
        interval=0.01,
        on_violation=on_violation,
    )
    session.start()
    assert stopped.wait(timeout=5.0)
    first_dispatcher = delivered_on[1][0]
    first_dispatcher.join(timeout=5.0)
    assert not first_dispatcher.is_alive()
    assert reports[0] is not None
    assert session.state == monitor.IDLE

    phase["n"] = 2
    session.start()
    assert second.wait(timeout=5.0)
    session.stop()

    assert len(set(delivered_on[1])) == 1
    assert len(set(delivered_on[2])) == 1
    assert delivered_on[2][0] is not first_dispatcher
    assert not [t for t in threading.enumerate() if t.name == "presence-events" and t.is_alive()]
