from __future__ import annotations

import sys
from dataclasses import dataclass
from functools import partial
from typing import Callable, Optional

from poseloop.camera import FrameSource, OpenCVFrameSource, UnavailableFrameSource
from poseloop.config import EstimatorConfig
from poseloop.estimators.base import LandmarkEstimator
from poseloop.estimators.factory import build_estimator

MOBILE_PLATFORMS = ("android", "ios")


@dataclass(frozen=True)
class Backends:
    """Capture and inference implementations picked for the running platform."""

    name: str
    frame_source_factory: Callable[[], FrameSource]
    estimator_factory: Callable[[EstimatorConfig], LandmarkEstimator]


def select_backends(platform_name: Optional[str] = None, estimator: str = "mediapipe") -> Backends:
    name = (platform_name or sys.platform).lower()
    if name in MOBILE_PLATFORMS:
        return Backends(
            name="native",
            frame_source_factory=UnavailableFrameSource,
            estimator_factory=partial(build_estimator, "native"),
        )
    return Backends(
        name="desktop",
        frame_source_factory=OpenCVFrameSource,
        estimator_factory=partial(build_estimator, estimator),
    )
