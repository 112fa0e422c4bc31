from __future__ import annotations

import logging
import os
import urllib.request
from pathlib import Path
from typing import Optional

from poseloop.config import EstimatorConfig
from poseloop.errors import InitializationFailed

logger = logging.getLogger(__name__)

MODEL_URL_TEMPLATE = (
    "https://storage.googleapis.com/mediapipe-models/pose_landmarker/"
    "pose_landmarker_{variant}/float16/latest/pose_landmarker_{variant}.task"
)
DEFAULT_MODEL_DIR = Path(os.environ.get("POSELOOP_MODEL_DIR", Path.home() / ".cache" / "poseloop"))


def model_filename(variant: str) -> str:
    return f"pose_landmarker_{variant}.task"


def model_url(variant: str) -> str:
    return MODEL_URL_TEMPLATE.format(variant=variant)


def ensure_model(config: EstimatorConfig, model_dir: Optional[Path] = None) -> Path:
    """Return a local model path, downloading into the cache on first use."""
    if config.model_path:
        path = Path(config.model_path)
        if not path.exists():
            raise InitializationFailed(
                f"Pose landmarker model not found at: {path}",
                user_message=f"The pose model file {path} does not exist.",
            )
        return path

    path = Path(model_dir or DEFAULT_MODEL_DIR) / model_filename(config.model_variant)
    if path.exists():
        return path
    return download_model(config.model_variant, path)


def download_model(variant: str, out_path: Path) -> Path:
    out_path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = out_path.with_name(out_path.name + ".part")
    url = model_url(variant)
    logger.info("Downloading pose model %s to %s", url, out_path)
    try:
        urllib.request.urlretrieve(url, tmp_path)
        tmp_path.replace(out_path)
    except OSError as e:
        tmp_path.unlink(missing_ok=True)
        raise InitializationFailed(f"Could not download pose model from {url}: {e}") from e
    return out_path
