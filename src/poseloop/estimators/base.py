from __future__ import annotations

import logging
from enum import Enum
from typing import Optional, Sequence

import numpy as np

from poseloop.camera import has_pixels
from poseloop.config import EstimatorConfig
from poseloop.errors import AlreadyDisposed, InitializationFailed
from poseloop.landmarks import NOTHING_DETECTED, DetectionResult, LandmarkSet, has_full_set

logger = logging.getLogger(__name__)


class EstimatorState(str, Enum):
    UNINITIALIZED = "uninitialized"
    LOADING = "loading"
    READY = "ready"
    DISPOSED = "disposed"


S = EstimatorState

# (state, event) -> next state. Anything absent is an internal bug.
_TRANSITIONS = {
    (S.UNINITIALIZED, "init"): S.LOADING,
    (S.LOADING, "init"): S.LOADING,
    (S.READY, "init"): S.READY,
    (S.LOADING, "loaded"): S.READY,
    (S.LOADING, "failed"): S.UNINITIALIZED,
}


def next_state(state: EstimatorState, event: str) -> EstimatorState:
    """
    The estimator lifecycle in one place.

    `dispose` is accepted from every state and lands in DISPOSED, which is
    terminal: `init` from there raises AlreadyDisposed, and late `loaded` /
    `failed` events are absorbed.
    """
    if event == "dispose":
        return S.DISPOSED
    if state is S.DISPOSED:
        if event == "init":
            raise AlreadyDisposed(
                "Cannot initialize a disposed estimator; create a new instance instead."
            )
        return S.DISPOSED
    try:
        return _TRANSITIONS[(state, event)]
    except KeyError:
        raise ValueError(f"Invalid estimator transition: {state.value} --{event}-->") from None


class LandmarkEstimator:
    """
    Stateful wrapper around a pose-inference engine.

    Subclasses implement `_load`, `_infer` and `_release_engine`; lifecycle,
    readiness and timestamp checks live here.
    """

    name = "base"

    def __init__(self, config: Optional[EstimatorConfig] = None) -> None:
        self._config = config or EstimatorConfig()
        self._state = S.UNINITIALIZED
        self._last_input_ts: Optional[int] = None
        self._last_ts: Optional[int] = None

    @property
    def config(self) -> EstimatorConfig:
        return self._config

    def get_state(self) -> EstimatorState:
        return self._state

    def is_ready(self) -> bool:
        return self._state is S.READY

    def init(self) -> None:
        if self._state in (S.LOADING, S.READY):
            return
        self._advance("init")
        try:
            self._load()
        except Exception as exc:
            self._release_engine_quietly()
            if self._state is S.DISPOSED:
                raise
            self._advance("failed")
            if isinstance(exc, InitializationFailed):
                raise
            raise InitializationFailed(f"Failed to initialize {self.name} estimator: {exc}") from exc
        self._advance("loaded")

    def detect(self, frame: Optional[np.ndarray], timestamp_ms: float) -> DetectionResult:
        if self._state is not S.READY:
            return NOTHING_DETECTED
        if not has_pixels(frame):
            return NOTHING_DETECTED

        input_ts = int(timestamp_ms)
        if self._last_input_ts is not None and input_ts < self._last_input_ts:
            logger.warning(
                "Dropping frame: timestamp %d ms is earlier than previous %d ms", input_ts, self._last_input_ts
            )
            return NOTHING_DETECTED

        # The engine needs strictly increasing ms; frames sharing a ms are nudged forward.
        ts = input_ts if self._last_ts is None else max(input_ts, self._last_ts + 1)
        result = self._infer(frame, ts)
        self._last_input_ts = input_ts
        self._last_ts = ts
        return result

    def dispose(self) -> None:
        try:
            if self._state is not S.DISPOSED:
                self._release_engine()
        finally:
            if self._state is not S.DISPOSED:
                logger.info("Disposed %s estimator", self.name)
            self._advance("dispose")

    def _advance(self, event: str) -> None:
        old = self._state
        self._state = next_state(old, event)
        if self._state is not old:
            logger.debug("%s estimator: %s -> %s", self.name, old.value, self._state.value)

    def _release_engine_quietly(self) -> None:
        try:
            self._release_engine()
        except Exception:
            logger.debug("Releasing a half-loaded %s engine failed", self.name, exc_info=True)

    def _load(self) -> None:  # pragma: no cover - interface
        raise NotImplementedError

    def _infer(self, frame_bgr: np.ndarray, timestamp_ms: int) -> DetectionResult:  # pragma: no cover - interface
        raise NotImplementedError

    def _release_engine(self) -> None:
        return None


def build_detection(
    world: Optional[Sequence],
    normalized: Optional[Sequence],
    timestamp_ms: float,
) -> DetectionResult:
    """All-or-nothing: both landmark arrays must be present and complete."""
    if not world and not normalized:
        return NOTHING_DETECTED
    if not world or not normalized:
        logger.warning(
            "Engine returned %d world and %d normalized landmarks; dropping frame",
            len(world or ()),
            len(normalized or ()),
        )
        return NOTHING_DETECTED
    if not has_full_set(world) or not has_full_set(normalized):
        logger.warning(
            "Engine returned an incomplete landmark set (%d world, %d normalized); dropping frame",
            len(world),
            len(normalized),
        )
        return NOTHING_DETECTED
    return DetectionResult(
        world=LandmarkSet.from_points(world, timestamp_ms),
        normalized=LandmarkSet.from_points(normalized, timestamp_ms),
    )
