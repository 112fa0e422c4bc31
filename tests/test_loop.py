import pytest

from conftest import FakeFrameSource, RecordingSurface, ScriptedEstimator, StepClock, make_frame
from poseloop.backends import Backends
from poseloop.config import LoopConfig, PipelineConfig
from poseloop.errors import DeviceBusy, PermissionDenied
from poseloop.estimators.base import EstimatorState
from poseloop.loop import FrameLoopController, LoopState
from poseloop.scheduler import FrameScheduler


class Harness:
    def __init__(self, source_kwargs=None, estimator_kwargs=None, config=None):
        self.events = []
        self.sources = []
        self.estimators = []
        self.source_kwargs = source_kwargs or {}
        self.estimator_kwargs = estimator_kwargs or {}
        self.surface = RecordingSurface(events=self.events)
        self.scheduler = FrameScheduler(clock=StepClock())
        self.results = []
        self.controller = FrameLoopController(
            config=config or PipelineConfig(),
            backends=Backends("test", self._make_source, self._make_estimator),
            surface=self.surface,
            scheduler=self.scheduler,
            on_result=self.results.append,
        )

    def _make_source(self):
        src = FakeFrameSource(self.events, **self.source_kwargs)
        self.sources.append(src)
        return src

    def _make_estimator(self, config):
        est = ScriptedEstimator(config, events=self.events, **self.estimator_kwargs)
        self.estimators.append(est)
        return est

    def pump(self, n):
        for _ in range(n):
            if not self.scheduler.run_once():
                break


def test_start_acquires_everything_and_runs():
    h = Harness(source_kwargs={"frame": make_frame(320, 240)})
    assert h.controller.start() is LoopState.RUNNING
    assert h.events[:3] == ["probe", "acquire", "init"]
    # Sized to the granted frame, not the 640x480 request.
    assert ("resize", 320, 240) in h.surface.calls
    assert h.controller.frame_handle is not None


def test_ticks_detect_render_and_reschedule():
    h = Harness()
    h.controller.start()
    h.pump(3)
    assert len(h.results) == 3
    assert all(r.detected for r in h.results)
    assert h.controller.state is LoopState.RUNNING
    assert h.scheduler.has_pending()
    assert len(h.controller.last_pose.points) == 33
    assert h.surface.ops("text")


def test_unsupported_environment_fails_fast():
    h = Harness(source_kwargs={"supported": False})
    assert h.controller.start() is LoopState.ERROR
    assert "acquire" not in h.events
    assert "camera" in h.controller.error_message.lower()


def test_camera_error_surfaces_user_message():
    h = Harness(source_kwargs={"error": PermissionDenied("EPERM on /dev/video0")})
    assert h.controller.start() is LoopState.ERROR
    assert h.controller.error_message == PermissionDenied.default_message
    assert "EPERM" not in h.controller.error_message
    assert h.estimators == []


def test_estimator_init_failure_releases_camera_before_error(monkeypatch):
    h = Harness(estimator_kwargs={"load_error": RuntimeError("model download failed")})
    seen_state_at_release = []
    original_release = FakeFrameSource.release

    def spying_release(self):
        seen_state_at_release.append(h.controller.state)
        original_release(self)

    monkeypatch.setattr(FakeFrameSource, "release", spying_release)
    assert h.controller.start() is LoopState.ERROR

    src = h.sources[0]
    assert src.capture.release_calls == 1
    assert seen_state_at_release == [LoopState.LOADING]
    assert h.events.index("dispose") < h.events.index("release")
    assert h.estimators[0].get_state() is EstimatorState.DISPOSED
    assert h.controller.estimator is None and h.controller.stream is None


def test_cleanup_order_on_stop():
    h = Harness()
    h.controller.start()
    h.pump(2)
    h.events.clear()
    assert h.controller.stop() is LoopState.IDLE
    assert h.events == ["dispose", "release", "clear"]
    assert not h.scheduler.has_pending()
    assert h.controller.frame_handle is None
    assert h.controller.frame_source is None
    assert h.controller.estimator is None


def test_cleanup_is_idempotent_from_any_state():
    h = Harness()
    h.controller.cleanup()
    h.controller.start()
    h.controller.cleanup()
    h.controller.cleanup()
    assert h.sources[0].capture.release_calls == 1
    assert h.events.count("dispose") == 1
    assert h.estimators[0].engine_closed == 1


def test_late_tick_after_teardown_bails_out():
    h = Harness()
    h.controller.start()
    h.controller.stop()
    h.surface.calls.clear()
    h.controller.tick(99999.0)
    assert h.results == []
    assert h.surface.calls == []
    assert not h.scheduler.has_pending()
    assert h.controller.state is LoopState.IDLE


def test_tick_bails_if_stream_already_released():
    h = Harness()
    h.controller.start()
    h.controller.stream.release()
    h.pump(1)
    assert h.results == []
    assert not h.scheduler.has_pending()


def test_engine_failure_mid_session_is_fatal():
    h = Harness()
    h.controller.start()
    h.pump(1)
    h.estimators[0].infer_error = RuntimeError("delegate crashed")
    h.pump(5)
    assert h.controller.state is LoopState.ERROR
    assert h.controller.error_message
    assert not h.scheduler.has_pending()
    assert h.sources[0].capture.release_calls == 1
    assert len(h.results) == 1


def test_retry_reenters_start_sequence():
    h = Harness(source_kwargs={"error": DeviceBusy()})
    assert h.controller.start() is LoopState.ERROR
    h.source_kwargs = {}
    assert h.controller.retry() is LoopState.RUNNING
    assert h.controller.error_message == ""
    assert len(h.sources) == 2


def test_retry_only_from_error_and_start_only_from_idle():
    h = Harness()
    assert h.controller.retry() is LoopState.IDLE
    h.controller.start()
    assert h.controller.start() is LoopState.RUNNING
    assert len(h.sources) == 1


def test_finite_source_stops_at_end():
    h = Harness(source_kwargs={"finite": True, "frames": [make_frame(), make_frame(), make_frame()]})
    assert h.controller.run() is LoopState.IDLE
    assert len(h.results) == 3
    assert h.sources[0].capture.release_calls == 1
    summary = h.controller.summary()
    assert summary["processed_frames"] == 3
    assert summary["detection_rate"] == pytest.approx(1.0)


def test_lost_camera_becomes_error():
    cfg = PipelineConfig(loop=LoopConfig(max_missed_frames=3))
    h = Harness(source_kwargs={"frames": [make_frame(), None]}, config=cfg)
    h.controller.start()
    h.sources[0].capture.frames = [None]
    h.pump(10)
    assert h.controller.state is LoopState.ERROR
    assert "camera" in h.controller.error_message.lower()


def test_duration_limit_stops_session():
    cfg = PipelineConfig(loop=LoopConfig(duration_s=0.1))
    h = Harness(config=cfg)
    assert h.controller.run() is LoopState.IDLE
    # StepClock advances 1/30 s per reading.
    assert 1 <= len(h.results) <= 4


def test_preview_quit_stops_session():
    class QuitAfterTwo:
        def __init__(self):
            self.shown = 0
            self.closed = False

        def show(self, frame, surface, mirrored):
            self.shown += 1
            return self.shown >= 2

        def close(self):
            self.closed = True

    h = Harness()
    preview = QuitAfterTwo()
    h.controller.preview = preview
    assert h.controller.run() is LoopState.IDLE
    assert preview.shown == 2
    assert preview.closed


def test_timestamps_passed_to_estimator_never_decrease():
    h = Harness()
    h.controller.start()
    h.pump(10)
    calls = h.estimators[0].infer_calls
    assert calls == sorted(calls)


def test_preview_quit_honoured_while_camera_drops_frames():
    class QuitOnFirstPoll:
        def __init__(self):
            self.shown = 0
            self.polled = 0
            self.closed = False

        def show(self, frame, surface, mirrored):
            self.shown += 1
            return False

        def poll(self):
            self.polled += 1
            return True

        def close(self):
            self.closed = True

    cfg = PipelineConfig(loop=LoopConfig(max_missed_frames=30))
    h = Harness(source_kwargs={"frames": [make_frame(), None]}, config=cfg)
    preview = QuitOnFirstPoll()
    h.controller.preview = preview
    h.controller.start()
    h.sources[0].capture.frames = [None]
    h.pump(5)
    # The warm-up frame is shown, then the first empty read polls for keys.
    assert preview.shown == 1
    assert preview.polled == 1
    assert h.controller.state is LoopState.IDLE
