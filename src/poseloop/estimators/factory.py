from __future__ import annotations

from pathlib import Path
from typing import Optional

from poseloop.config import EstimatorConfig
from poseloop.estimators.base import LandmarkEstimator
from poseloop.estimators.mediapipe_pose import MediaPipeLandmarkEstimator
from poseloop.estimators.native import NativeLandmarkEstimator


def build_estimator(
    backend: str,
    config: Optional[EstimatorConfig] = None,
    model_dir: Optional[Path] = None,
) -> LandmarkEstimator:
    key = backend.lower()

    if key == "mediapipe":
        return MediaPipeLandmarkEstimator(config=config, model_dir=model_dir)

    if key == "native":
        return NativeLandmarkEstimator(config=config)

    raise ValueError(f"Unsupported estimator backend: {backend}")
