from __future__ import annotations

import logging
import time
from enum import Enum
from typing import Callable, Optional

from poseloop.backends import Backends, select_backends
from poseloop.camera import CameraStream, FrameSource
from poseloop.config import PipelineConfig
from poseloop.errors import DeviceNotFound, PoseLoopError, UnsupportedEnvironment, user_message
from poseloop.estimators.base import LandmarkEstimator
from poseloop.landmarks import NOTHING_DETECTED, SKELETON_CONNECTIONS, DetectionResult
from poseloop.overlay import OpenCVSurface, Surface, draw_fps, render
from poseloop.policy import EMPTY_POSE, FpsSmoother
from poseloop.report import SessionStats, build_summary
from poseloop.scheduler import DisplayScheduler, FrameHandle, FrameScheduler

logger = logging.getLogger(__name__)


class LoopState(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    RUNNING = "running"
    ERROR = "error"


class FrameLoopController:
    """
    Drives capture -> inference -> overlay once per display refresh.

    The controller is the only owner of the frame source and the estimator
    for a session: it creates them in `start()` and tears them down in
    `cleanup()`, which runs on stop, on any start failure and on a failed
    tick. Cleanup order is fixed: cancel the pending frame callback, dispose
    the estimator, release the camera, clear the surface.
    """

    def __init__(
        self,
        config: Optional[PipelineConfig] = None,
        backends: Optional[Backends] = None,
        surface: Optional[Surface] = None,
        scheduler: Optional[FrameScheduler] = None,
        preview=None,
        on_result: Optional[Callable[[DetectionResult], None]] = None,
    ) -> None:
        self.config = config or PipelineConfig()
        self.backends = backends or select_backends()
        self.surface = surface if surface is not None else OpenCVSurface()
        self.scheduler = scheduler or DisplayScheduler(self.config.loop.refresh_hz)
        self.preview = preview
        self.on_result = on_result

        self.state = LoopState.IDLE
        self.error_message = ""
        self.frame_source: Optional[FrameSource] = None
        self.stream: Optional[CameraStream] = None
        self.estimator: Optional[LandmarkEstimator] = None
        self.frame_handle: Optional[FrameHandle] = None

        self.fps = FpsSmoother()
        self.stats = SessionStats()
        self.last_result: DetectionResult = NOTHING_DETECTED
        self.last_pose = EMPTY_POSE
        self._missed_frames = 0

    @property
    def mirrored(self) -> bool:
        return self.config.loop.mirror

    def start(self) -> LoopState:
        if self.state is not LoopState.IDLE:
            logger.warning("start() ignored in state %s", self.state.value)
            return self.state

        self.state = LoopState.LOADING
        self.error_message = ""
        try:
            self._start_sequence()
        except Exception as exc:
            self._fail(exc)
        return self.state

    def retry(self) -> LoopState:
        if self.state is not LoopState.ERROR:
            logger.warning("retry() ignored in state %s", self.state.value)
            return self.state
        self.state = LoopState.IDLE
        self.error_message = ""
        return self.start()

    def stop(self) -> LoopState:
        self.cleanup()
        self.state = LoopState.IDLE
        self.error_message = ""
        return self.state

    def run(self) -> LoopState:
        """Start if idle, then pump frames until stopped or failed."""
        if self.state is LoopState.IDLE:
            self.start()
        try:
            self.scheduler.run()
        finally:
            if self.state is LoopState.RUNNING:
                self.stop()
            if self.preview is not None:
                self.preview.close()
        return self.state

    def summary(self) -> dict:
        return build_summary(self.stats, self.fps.value, self.backends.name)

    def _start_sequence(self) -> None:
        source = self.backends.frame_source_factory()
        self.frame_source = source
        if not source.is_supported():
            raise UnsupportedEnvironment(f"{source.name} capture backend is not supported here")

        self.stream = source.acquire(self.config.capture)

        self.estimator = self.backends.estimator_factory(self.config.estimator)
        self.estimator.init()

        # Size to what the device granted, not what was requested.
        self.surface.resize(self.stream.width, self.stream.height)

        now = self.scheduler.now_ms()
        self.fps.reset(now)
        self.stats.reset(now)
        self._missed_frames = 0
        self.state = LoopState.RUNNING
        logger.info(
            "Tracking started (%s, %dx%d)", self.backends.name, self.stream.width, self.stream.height
        )
        self.frame_handle = self.scheduler.request_frame(self.tick)

    def tick(self, timestamp_ms: float) -> None:
        self.frame_handle = None
        stream, estimator = self.stream, self.estimator
        if self.state is not LoopState.RUNNING or stream is None or estimator is None or stream.released:
            # Fired after teardown began; nothing left to touch.
            return

        try:
            keep_going = self._process_frame(stream, estimator, timestamp_ms)
        except Exception as exc:
            self._fail(exc)
            return

        if not keep_going:
            self.stop()
            return
        if self.state is LoopState.RUNNING and self.stream is not None:
            self.frame_handle = self.scheduler.request_frame(self.tick)

    def _process_frame(self, stream: CameraStream, estimator: LandmarkEstimator, timestamp_ms: float) -> bool:
        frame = stream.read()
        if frame is None:
            if stream.finite:
                logger.info("End of %s", stream.label)
                return False
            self._missed_frames += 1
            if self._missed_frames >= self.config.loop.max_missed_frames:
                raise DeviceNotFound(
                    f"{stream.label} returned no frames {self._missed_frames} times in a row",
                    user_message="The camera stopped sending video. Check the connection and try again.",
                )
        else:
            self._missed_frames = 0

        t0 = time.perf_counter()
        result = estimator.detect(frame, timestamp_ms)
        latency_ms = (time.perf_counter() - t0) * 1000.0
        self.stats.record(result, latency_ms, timestamp_ms)
        self.last_result = result
        if self.on_result is not None:
            self.on_result(result)

        self.last_pose = render(
            self.surface,
            result.normalized,
            SKELETON_CONNECTIONS,
            self.config.overlay,
            self.mirrored,
        )
        fps = self.fps.update(timestamp_ms)
        draw_fps(self.surface, fps, self.config.overlay, self.mirrored)

        if self.preview is not None:
            if frame is None:
                quit_requested = self.preview.poll()
            else:
                quit_requested = self.preview.show(frame, self.surface, self.mirrored)
            if quit_requested:
                logger.info("Quit requested from preview window")
                return False

        duration_s = self.config.loop.duration_s
        if duration_s is not None and self.stats.elapsed_s >= duration_s:
            logger.info("Reached duration limit of %.1fs", duration_s)
            return False
        return True

    def cleanup(self) -> None:
        """Release everything held, in dependency order. Safe from any state."""
        handle, self.frame_handle = self.frame_handle, None
        if handle is not None:
            self.scheduler.cancel(handle)

        estimator, self.estimator = self.estimator, None
        if estimator is not None:
            try:
                estimator.dispose()
            except Exception:
                logger.exception("Disposing the estimator failed")

        source, self.frame_source = self.frame_source, None
        self.stream = None
        if source is not None:
            try:
                source.release()
            except Exception:
                logger.exception("Releasing the frame source failed")

        try:
            self.surface.clear()
        except Exception:
            logger.exception("Clearing the overlay surface failed")

        self.last_pose = EMPTY_POSE

    def _fail(self, exc: Exception) -> None:
        if isinstance(exc, PoseLoopError):
            logger.warning("Tracking session failed: %s", exc)
        else:
            logger.exception("Unexpected failure in tracking session")
        self.cleanup()
        self.error_message = user_message(exc)
        self.state = LoopState.ERROR
