"""Shared fakes: a scripted camera, inference engine, surface and clock."""

from types import SimpleNamespace

import numpy as np
import pytest

from poseloop.camera import CameraStream, FrameSource
from poseloop.estimators.base import LandmarkEstimator, build_detection
from poseloop.landmarks import NUM_LANDMARKS, Landmark
from poseloop.overlay import Surface


def make_points(visibility=0.9, n=NUM_LANDMARKS, x=0.5, y=0.5):
    """Engine-style landmark objects (attribute access, like MediaPipe's)."""
    if np.isscalar(visibility):
        visibility = [visibility] * n
    return [SimpleNamespace(x=x, y=y, z=0.0, visibility=v) for v in visibility]


def make_landmarks(visibility=0.9, n=NUM_LANDMARKS, x=0.5, y=0.5):
    if np.isscalar(visibility):
        visibility = [visibility] * n
    return [Landmark(x=x, y=y, z=0.0, visibility=v) for v in visibility]


def make_frame(width=64, height=48):
    return np.zeros((height, width, 3), dtype=np.uint8)


class FakeCapture:
    def __init__(self, frames=None, opened=True, endless=True):
        self.frames = list(frames) if frames is not None else [make_frame()]
        self.opened = opened
        self.endless = endless
        self.release_calls = 0
        self.props = {}
        self._idx = 0

    def isOpened(self):
        return self.opened

    def set(self, prop, value):
        self.props[prop] = value
        return True

    def read(self):
        if self._idx >= len(self.frames):
            if not self.endless:
                return False, None
            self._idx = 0
        frame = self.frames[self._idx]
        self._idx += 1
        return frame is not None, frame

    def release(self):
        self.release_calls += 1
        self.opened = False


class FakeFrameSource(FrameSource):
    name = "fake"

    def __init__(self, events, supported=True, error=None, frame=None, finite=False, frames=None):
        super().__init__()
        self.events = events
        self.supported = supported
        self.error = error
        self.frame = frame if frame is not None else make_frame(64, 48)
        self.finite = finite
        self.capture = FakeCapture(frames if frames is not None else [self.frame], endless=not finite)

    def is_supported(self):
        self.events.append("probe")
        return self.supported

    def acquire(self, config):
        self.events.append("acquire")
        if self.error is not None:
            raise self.error
        first = self.capture.read()[1]
        self.stream = CameraStream(self.capture, first, label="fake", finite=self.finite)
        return self.stream

    def release(self):
        self.events.append("release")
        super().release()


class ScriptedEstimator(LandmarkEstimator):
    name = "scripted"

    def __init__(self, config=None, events=None, load_error=None, infer_error=None, visibility=0.9):
        super().__init__(config)
        self.events = events if events is not None else []
        self.load_error = load_error
        self.infer_error = infer_error
        self.visibility = visibility
        self.infer_calls = []
        self.engine_closed = 0

    def _load(self):
        self.events.append("init")
        if self.load_error is not None:
            raise self.load_error

    def _infer(self, frame_bgr, timestamp_ms):
        self.infer_calls.append(timestamp_ms)
        if self.infer_error is not None:
            raise self.infer_error
        points = make_points(self.visibility)
        return build_detection(points, points, timestamp_ms)

    def _release_engine(self):
        self.engine_closed += 1

    def dispose(self):
        self.events.append("dispose")
        super().dispose()


class RecordingSurface(Surface):
    def __init__(self, width=640, height=480, events=None):
        self.width = width
        self.height = height
        self.calls = []
        self.events = events

    def resize(self, width, height):
        self.width, self.height = width, height
        self.calls.append(("resize", width, height))

    def clear(self):
        self.calls.append(("clear",))
        if self.events is not None:
            self.events.append("clear")

    def draw_line(self, start, end, color, thickness, opacity=1.0):
        self.calls.append(("line", start, end))

    def draw_circle(self, center, radius, color):
        self.calls.append(("circle", center, radius, color))

    def fill_rect(self, top_left, bottom_right, color, opacity=1.0):
        self.calls.append(("rect", top_left, bottom_right))

    def draw_text(self, text, origin, color):
        self.calls.append(("text", text, origin, color))

    def ops(self, name):
        return [c for c in self.calls if c[0] == name]


class StepClock:
    """Deterministic clock in seconds, advancing a fixed step per call."""

    def __init__(self, step_s=1 / 30, start=0.0):
        self.t = start
        self.step = step_s

    def __call__(self):
        self.t += self.step
        return self.t


@pytest.fixture
def events():
    return []
