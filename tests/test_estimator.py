from types import SimpleNamespace

import numpy as np
import pytest

from conftest import ScriptedEstimator, make_frame, make_points
from poseloop.config import EstimatorConfig
from poseloop.errors import AlreadyDisposed, InitializationFailed
from poseloop.estimators.base import EstimatorState, build_detection, next_state
from poseloop.estimators.factory import build_estimator
from poseloop.estimators.mediapipe_pose import MediaPipeLandmarkEstimator
from poseloop.estimators.native import NativeLandmarkEstimator
from poseloop.landmarks import NOTHING_DETECTED

S = EstimatorState


class TestStateMachine:
    def test_happy_path(self):
        assert next_state(S.UNINITIALIZED, "init") is S.LOADING
        assert next_state(S.LOADING, "loaded") is S.READY
        assert next_state(S.READY, "dispose") is S.DISPOSED

    def test_failed_load_is_retryable(self):
        assert next_state(S.LOADING, "failed") is S.UNINITIALIZED

    def test_init_is_noop_while_loading_or_ready(self):
        assert next_state(S.LOADING, "init") is S.LOADING
        assert next_state(S.READY, "init") is S.READY

    @pytest.mark.parametrize("state", list(EstimatorState))
    def test_dispose_from_any_state(self, state):
        assert next_state(state, "dispose") is S.DISPOSED

    def test_disposed_is_terminal(self):
        with pytest.raises(AlreadyDisposed):
            next_state(S.DISPOSED, "init")
        assert next_state(S.DISPOSED, "loaded") is S.DISPOSED
        assert next_state(S.DISPOSED, "failed") is S.DISPOSED

    def test_impossible_transition_rejected(self):
        with pytest.raises(ValueError):
            next_state(S.READY, "loaded")


class TestLifecycle:
    def test_init_reaches_ready(self):
        est = ScriptedEstimator()
        assert est.get_state() is S.UNINITIALIZED
        assert not est.is_ready()
        est.init()
        assert est.is_ready()
        assert est.get_state() is S.READY

    def test_init_is_idempotent(self):
        est = ScriptedEstimator()
        est.init()
        est.init()
        assert est.events.count("init") == 1

    def test_failed_init_resets_and_wraps_cause(self):
        cause = RuntimeError("no GPU context")
        est = ScriptedEstimator(load_error=cause)
        with pytest.raises(InitializationFailed) as info:
            est.init()
        assert info.value.__cause__ is cause
        assert "no GPU context" in str(info.value)
        assert est.get_state() is S.UNINITIALIZED
        assert est.engine_closed == 1

        est.load_error = None
        est.init()
        assert est.is_ready()

    def test_dispose_twice_is_safe(self):
        est = ScriptedEstimator()
        est.init()
        est.dispose()
        assert est.get_state() is S.DISPOSED
        est.dispose()
        assert est.get_state() is S.DISPOSED
        assert est.engine_closed == 1

    def test_dispose_before_init(self):
        est = ScriptedEstimator()
        est.dispose()
        assert est.get_state() is S.DISPOSED

    def test_init_after_dispose_fails(self):
        est = ScriptedEstimator()
        est.dispose()
        with pytest.raises(AlreadyDisposed):
            est.init()
        assert est.get_state() is S.DISPOSED

    def test_config_is_immutable(self):
        est = ScriptedEstimator(EstimatorConfig(delegate="CPU"))
        with pytest.raises(AttributeError):
            est.config.delegate = "GPU"


class TestDetect:
    @pytest.mark.parametrize("prepare", ["fresh", "failed", "disposed"])
    def test_not_ready_returns_nothing(self, prepare):
        est = ScriptedEstimator()
        if prepare == "failed":
            est.load_error = RuntimeError("boom")
            with pytest.raises(InitializationFailed):
                est.init()
        elif prepare == "disposed":
            est.init()
            est.dispose()
        assert est.detect(make_frame(), 10.0) is NOTHING_DETECTED
        assert est.infer_calls == []

    @pytest.mark.parametrize("frame", [None, np.zeros((0, 0, 3), dtype=np.uint8), np.zeros((48, 0, 3), dtype=np.uint8)])
    def test_empty_frame_returns_nothing(self, frame):
        est = ScriptedEstimator()
        est.init()
        assert est.detect(frame, 10.0) is NOTHING_DETECTED

    def test_valid_detection_shape(self):
        est = ScriptedEstimator()
        est.init()
        result = est.detect(make_frame(), 16.0)
        assert result.detected
        for lms in (result.world, result.normalized):
            assert len(lms) == 33
            assert all(0.0 <= lm.visibility <= 1.0 for lm in lms)
            assert lms.timestamp_ms == 16.0

    def test_backwards_timestamp_is_dropped(self):
        est = ScriptedEstimator()
        est.init()
        est.detect(make_frame(), 100.0)
        assert est.detect(make_frame(), 50.0) is NOTHING_DETECTED
        assert est.infer_calls == [100]

    def test_repeated_timestamp_still_runs_inference(self):
        est = ScriptedEstimator()
        est.init()
        first = est.detect(make_frame(), 100.2)
        second = est.detect(make_frame(), 100.7)
        assert second is not first
        assert second.detected
        assert est.infer_calls == [100, 101]

    def test_nudged_timestamps_stay_strictly_increasing(self):
        est = ScriptedEstimator()
        est.init()
        for ts in (100.0, 100.1, 100.9, 101.0, 105.0):
            est.detect(make_frame(), ts)
        assert est.infer_calls == [100, 101, 102, 103, 105]

    def test_backwards_check_uses_caller_timestamps(self):
        est = ScriptedEstimator()
        est.init()
        est.detect(make_frame(), 100.0)
        est.detect(make_frame(), 100.5)
        # 100 was nudged to 101 for the engine, but the caller has not gone backwards.
        assert est.detect(make_frame(), 100.9).detected
        assert est.detect(make_frame(), 99.0) is NOTHING_DETECTED
        assert est.infer_calls == [100, 101, 102]


class TestBuildDetection:
    def test_both_empty(self):
        assert build_detection([], [], 0) is NOTHING_DETECTED
        assert build_detection(None, None, 0) is NOTHING_DETECTED

    def test_asymmetric_is_dropped_with_warning(self, caplog):
        with caplog.at_level("WARNING"):
            assert build_detection(make_points(), [], 0) is NOTHING_DETECTED
            assert build_detection(None, make_points(), 0) is NOTHING_DETECTED
        assert "dropping frame" in caplog.text

    def test_incomplete_set_is_dropped(self):
        assert build_detection(make_points(n=17), make_points(n=17), 0) is NOTHING_DETECTED


class FakeSolutionsEngine:
    def __init__(self, results):
        self.results = results
        self.closed = False
        self.frames = []

    def process(self, rgb):
        self.frames.append(rgb)
        return self.results

    def close(self):
        self.closed = True


class TestMediaPipeEstimator:
    def _ready(self, monkeypatch, results):
        engine = FakeSolutionsEngine(results)

        def fake_load(self):
            self._engine = engine
            self.backend = "solutions"

        monkeypatch.setattr(MediaPipeLandmarkEstimator, "_load", fake_load)
        est = MediaPipeLandmarkEstimator(EstimatorConfig(delegate="CPU"))
        est.init()
        return est, engine

    def test_maps_both_landmark_spaces(self, monkeypatch):
        results = SimpleNamespace(
            pose_landmarks=SimpleNamespace(landmark=make_points(0.8, x=0.25)),
            pose_world_landmarks=SimpleNamespace(landmark=make_points(0.8, x=-0.1)),
        )
        est, engine = self._ready(monkeypatch, results)
        result = est.detect(make_frame(), 33.0)
        assert result.detected
        assert result.normalized[0].x == pytest.approx(0.25)
        assert result.world[0].x == pytest.approx(-0.1)
        assert engine.frames[0].shape == (48, 64, 3)

    def test_missing_world_set_is_nothing(self, monkeypatch):
        results = SimpleNamespace(
            pose_landmarks=SimpleNamespace(landmark=make_points()),
            pose_world_landmarks=None,
        )
        est, _ = self._ready(monkeypatch, results)
        assert est.detect(make_frame(), 33.0) is NOTHING_DETECTED

    def test_dispose_closes_engine(self, monkeypatch):
        est, engine = self._ready(monkeypatch, SimpleNamespace(pose_landmarks=None, pose_world_landmarks=None))
        est.dispose()
        est.dispose()
        assert engine.closed
        assert est.get_state() is S.DISPOSED



def test_native_estimator_never_becomes_ready():
    est = NativeLandmarkEstimator()
    with pytest.raises(InitializationFailed):
        est.init()
    assert est.get_state() is S.UNINITIALIZED
    assert est.detect(make_frame(), 0.0) is NOTHING_DETECTED
    est.dispose()
    assert est.get_state() is S.DISPOSED


def test_factory():
    assert isinstance(build_estimator("mediapipe"), MediaPipeLandmarkEstimator)
    assert isinstance(build_estimator("native"), NativeLandmarkEstimator)
    with pytest.raises(ValueError):
        build_estimator("openpose")
