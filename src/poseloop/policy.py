from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Optional, Sequence

from poseloop.landmarks import Landmark

HIGH_CONFIDENCE = 0.7
MEDIUM_CONFIDENCE = 0.4
DEFAULT_VISIBILITY_THRESHOLD = 0.3
FPS_SMOOTHING = 0.9


class ConfidenceLevel(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


def classify_visibility(visibility: float) -> ConfidenceLevel:
    # Colour coding only; suppression is is_drawable's job.
    if visibility > HIGH_CONFIDENCE:
        return ConfidenceLevel.HIGH
    if visibility > MEDIUM_CONFIDENCE:
        return ConfidenceLevel.MEDIUM
    return ConfidenceLevel.LOW


def is_drawable(landmark: Optional[Landmark], threshold: float = DEFAULT_VISIBILITY_THRESHOLD) -> bool:
    """Threshold is an exclusive lower bound: visibility == threshold is not drawn."""
    if landmark is None:
        return False
    return float(landmark.visibility) > threshold


@dataclass(frozen=True)
class DrawablePoint:
    index: int
    landmark: Landmark
    level: ConfidenceLevel


@dataclass(frozen=True)
class DrawablePose:
    points: tuple[DrawablePoint, ...] = ()
    edges: tuple[tuple[Landmark, Landmark], ...] = ()

    @property
    def empty(self) -> bool:
        return not self.points and not self.edges


EMPTY_POSE = DrawablePose()


def select_drawable(
    landmarks: Optional[Sequence[Landmark]],
    connections: Iterable[tuple[int, int]],
    threshold: float = DEFAULT_VISIBILITY_THRESHOLD,
) -> DrawablePose:
    """
    Decide what is drawn this frame.

    Points below the threshold are omitted outright. An edge is kept only if
    both of its endpoints pass the threshold independently.
    """
    if not landmarks:
        return EMPTY_POSE

    n = len(landmarks)
    edges = []
    for start_idx, end_idx in connections:
        if start_idx >= n or end_idx >= n:
            continue
        start, end = landmarks[start_idx], landmarks[end_idx]
        if is_drawable(start, threshold) and is_drawable(end, threshold):
            edges.append((start, end))

    points = tuple(
        DrawablePoint(index=i, landmark=lm, level=classify_visibility(lm.visibility))
        for i, lm in enumerate(landmarks)
        if is_drawable(lm, threshold)
    )
    return DrawablePose(points=points, edges=tuple(edges))


def smooth_fps(previous: float, delta_ms: float, weight: float = FPS_SMOOTHING) -> float:
    """
    Exponentially smooth the frame rate: S' = w*S + (1-w)*(1000/delta_ms).

    Non-positive deltas (first frame, clock anomalies) keep the prior value.
    """
    if delta_ms <= 0:
        return previous
    instant = 1000.0 / delta_ms
    return weight * previous + (1.0 - weight) * instant


class FpsSmoother:
    def __init__(self, weight: float = FPS_SMOOTHING) -> None:
        self.weight = weight
        self.value = 0.0
        self._last_ms: Optional[float] = None

    def reset(self, now_ms: Optional[float] = None) -> None:
        self.value = 0.0
        self._last_ms = now_ms

    def update(self, now_ms: float) -> float:
        if self._last_ms is not None:
            self.value = smooth_fps(self.value, now_ms - self._last_ms, self.weight)
        self._last_ms = now_ms
        return self.value
