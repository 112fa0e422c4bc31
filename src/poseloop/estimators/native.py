from __future__ import annotations

import numpy as np

from poseloop.errors import InitializationFailed
from poseloop.estimators.base import LandmarkEstimator
from poseloop.landmarks import DetectionResult


class NativeLandmarkEstimator(LandmarkEstimator):
    """On-device (mobile) inference placeholder; `init()` always fails."""

    name = "native"

    def _load(self) -> None:
        raise InitializationFailed(
            "On-device pose estimation is not implemented for this platform",
            user_message="Pose tracking is not available on this device yet.",
        )

    def _infer(self, frame_bgr: np.ndarray, timestamp_ms: int) -> DetectionResult:
        raise NotImplementedError("NativeLandmarkEstimator never reaches the ready state")
