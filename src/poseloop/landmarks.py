from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum
from typing import Iterable, Optional, Sequence

NUM_LANDMARKS = 33


class PoseLandmark(IntEnum):
    """BlazePose 33-point body topology."""

    NOSE = 0
    LEFT_EYE_INNER = 1
    LEFT_EYE = 2
    LEFT_EYE_OUTER = 3
    RIGHT_EYE_INNER = 4
    RIGHT_EYE = 5
    RIGHT_EYE_OUTER = 6
    LEFT_EAR = 7
    RIGHT_EAR = 8
    MOUTH_LEFT = 9
    MOUTH_RIGHT = 10
    LEFT_SHOULDER = 11
    RIGHT_SHOULDER = 12
    LEFT_ELBOW = 13
    RIGHT_ELBOW = 14
    LEFT_WRIST = 15
    RIGHT_WRIST = 16
    LEFT_PINKY = 17
    RIGHT_PINKY = 18
    LEFT_INDEX = 19
    RIGHT_INDEX = 20
    LEFT_THUMB = 21
    RIGHT_THUMB = 22
    LEFT_HIP = 23
    RIGHT_HIP = 24
    LEFT_KNEE = 25
    RIGHT_KNEE = 26
    LEFT_ANKLE = 27
    RIGHT_ANKLE = 28
    LEFT_HEEL = 29
    RIGHT_HEEL = 30
    LEFT_FOOT_INDEX = 31
    RIGHT_FOOT_INDEX = 32


PL = PoseLandmark

SKELETON_CONNECTIONS: tuple[tuple[int, int], ...] = (
    # Torso
    (PL.LEFT_SHOULDER, PL.RIGHT_SHOULDER),
    (PL.LEFT_SHOULDER, PL.LEFT_HIP),
    (PL.RIGHT_SHOULDER, PL.RIGHT_HIP),
    (PL.LEFT_HIP, PL.RIGHT_HIP),
    # Arms
    (PL.LEFT_SHOULDER, PL.LEFT_ELBOW),
    (PL.LEFT_ELBOW, PL.LEFT_WRIST),
    (PL.RIGHT_SHOULDER, PL.RIGHT_ELBOW),
    (PL.RIGHT_ELBOW, PL.RIGHT_WRIST),
    # Legs
    (PL.LEFT_HIP, PL.LEFT_KNEE),
    (PL.LEFT_KNEE, PL.LEFT_ANKLE),
    (PL.RIGHT_HIP, PL.RIGHT_KNEE),
    (PL.RIGHT_KNEE, PL.RIGHT_ANKLE),
    # Feet
    (PL.LEFT_ANKLE, PL.LEFT_HEEL),
    (PL.LEFT_HEEL, PL.LEFT_FOOT_INDEX),
    (PL.LEFT_ANKLE, PL.LEFT_FOOT_INDEX),
    (PL.RIGHT_ANKLE, PL.RIGHT_HEEL),
    (PL.RIGHT_HEEL, PL.RIGHT_FOOT_INDEX),
    (PL.RIGHT_ANKLE, PL.RIGHT_FOOT_INDEX),
    # Face outline
    (PL.LEFT_EAR, PL.LEFT_EYE),
    (PL.LEFT_EYE, PL.NOSE),
    (PL.NOSE, PL.RIGHT_EYE),
    (PL.RIGHT_EYE, PL.RIGHT_EAR),
)


@dataclass(frozen=True)
class Landmark:
    """
    One tracked body point.

    Coordinates are image-normalized ([0,1] x/y, relative z) or world-space
    meters depending on which LandmarkSet holds it. `visibility` is in [0,1].
    """

    x: float
    y: float
    z: float = 0.0
    visibility: float = 0.0


@dataclass(frozen=True)
class LandmarkSet:
    landmarks: tuple[Landmark, ...]
    timestamp_ms: float

    def __post_init__(self) -> None:
        if len(self.landmarks) != NUM_LANDMARKS:
            raise ValueError(
                f"LandmarkSet needs exactly {NUM_LANDMARKS} landmarks, got {len(self.landmarks)}"
            )

    def __len__(self) -> int:
        return len(self.landmarks)

    def __getitem__(self, idx: int) -> Landmark:
        return self.landmarks[int(idx)]

    def __iter__(self):
        return iter(self.landmarks)

    @classmethod
    def from_points(cls, points: Iterable, timestamp_ms: float) -> "LandmarkSet":
        """Build from engine landmark objects exposing x/y/z/visibility attributes."""
        return cls(
            landmarks=tuple(
                Landmark(
                    x=float(p.x),
                    y=float(p.y),
                    z=float(getattr(p, "z", 0.0) or 0.0),
                    visibility=clamp_unit(getattr(p, "visibility", 0.0)),
                )
                for p in points
            ),
            timestamp_ms=float(timestamp_ms),
        )


@dataclass(frozen=True)
class DetectionResult:
    """
    Per-frame estimator output: both landmark sets, or nothing.

    Never partially populated; use `NOTHING_DETECTED` for the empty case.
    """

    world: Optional[LandmarkSet] = None
    normalized: Optional[LandmarkSet] = None

    def __post_init__(self) -> None:
        if (self.world is None) != (self.normalized is None):
            raise ValueError("DetectionResult must carry both landmark sets or neither")

    @property
    def detected(self) -> bool:
        return self.world is not None

    @property
    def timestamp_ms(self) -> Optional[float]:
        return self.world.timestamp_ms if self.world is not None else None


NOTHING_DETECTED = DetectionResult()


def clamp_unit(value) -> float:
    if value is None:
        return 0.0
    return min(max(float(value), 0.0), 1.0)


def landmark_name(idx: int) -> str:
    return PoseLandmark(int(idx)).name.lower()


def has_full_set(points: Optional[Sequence]) -> bool:
    return points is not None and len(points) == NUM_LANDMARKS
