from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import cv2
import numpy as np

from poseloop.config import EstimatorConfig
from poseloop.errors import InitializationFailed
from poseloop.estimators.base import LandmarkEstimator, build_detection
from poseloop.estimators.model_assets import ensure_model
from poseloop.landmarks import DetectionResult

logger = logging.getLogger(__name__)

# Legacy solutions API has no model variants, only a complexity level.
MODEL_COMPLEXITY = {"lite": 0, "full": 1, "heavy": 2}


class MediaPipeLandmarkEstimator(LandmarkEstimator):
    """
    MediaPipe pose landmarker in video mode.

    Prefers the Tasks `PoseLandmarker` (GPU/CPU delegate, downloaded .task
    model); falls back to `mp.solutions.pose` when the installed wheel lacks
    the Tasks vision API.
    """

    name = "mediapipe"

    def __init__(self, config: Optional[EstimatorConfig] = None, model_dir: Optional[Path] = None) -> None:
        super().__init__(config)
        self.model_dir = model_dir
        self.backend: Optional[str] = None
        self._engine = None
        self._mp = None

    def _load(self) -> None:
        try:
            import mediapipe as mp
        except ImportError as e:
            raise InitializationFailed(
                "MediaPipe is not installed. Install with: pip install mediapipe",
                user_message="The pose tracking engine is not installed.",
            ) from e
        self._mp = mp

        try:
            from mediapipe.tasks import python as mp_python
            from mediapipe.tasks.python import vision
        except ImportError:
            if not hasattr(mp, "solutions"):
                raise InitializationFailed(
                    "Installed mediapipe package provides neither tasks vision nor `solutions` APIs."
                ) from None
            self._engine = self._create_solutions_engine(mp)
            self.backend = "solutions"
        else:
            self._engine = self._create_tasks_engine(mp_python, vision)
            self.backend = "tasks"
        logger.info("MediaPipe pose landmarker ready (backend=%s, delegate=%s)", self.backend, self.config.delegate)

    def _create_tasks_engine(self, mp_python, vision):
        cfg = self.config
        model_path = ensure_model(cfg, self.model_dir)
        delegate = (
            mp_python.BaseOptions.Delegate.GPU
            if cfg.delegate == "GPU"
            else mp_python.BaseOptions.Delegate.CPU
        )
        options = vision.PoseLandmarkerOptions(
            base_options=mp_python.BaseOptions(
                model_asset_path=str(model_path),
                delegate=delegate,
            ),
            running_mode=vision.RunningMode.VIDEO,
            num_poses=cfg.num_poses,
            min_pose_detection_confidence=cfg.min_detection_confidence,
            min_pose_presence_confidence=cfg.min_presence_confidence,
            min_tracking_confidence=cfg.min_tracking_confidence,
        )
        return vision.PoseLandmarker.create_from_options(options)

    def _create_solutions_engine(self, mp):
        cfg = self.config
        if cfg.delegate == "GPU":
            logger.info("Legacy mediapipe solutions backend runs on CPU only")
        return mp.solutions.pose.Pose(
            static_image_mode=False,
            model_complexity=MODEL_COMPLEXITY[cfg.model_variant],
            smooth_landmarks=True,
            min_detection_confidence=cfg.min_detection_confidence,
            min_tracking_confidence=cfg.min_tracking_confidence,
        )

    def _infer(self, frame_bgr: np.ndarray, timestamp_ms: int) -> DetectionResult:
        frame_rgb = cv2.cvtColor(frame_bgr, cv2.COLOR_BGR2RGB)
        if self.backend == "tasks":
            image = self._mp.Image(image_format=self._mp.ImageFormat.SRGB, data=frame_rgb)
            results = self._engine.detect_for_video(image, timestamp_ms)
            # Only the first pose is tracked.
            world = results.pose_world_landmarks[0] if results.pose_world_landmarks else None
            normalized = results.pose_landmarks[0] if results.pose_landmarks else None
        else:
            results = self._engine.process(frame_rgb)
            world_lm = getattr(results, "pose_world_landmarks", None)
            norm_lm = getattr(results, "pose_landmarks", None)
            world = world_lm.landmark if world_lm else None
            normalized = norm_lm.landmark if norm_lm else None
        return build_detection(world, normalized, timestamp_ms)

    def _release_engine(self) -> None:
        engine, self._engine = self._engine, None
        if engine is not None and hasattr(engine, "close"):
            engine.close()
