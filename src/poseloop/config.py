from __future__ import annotations

import logging
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Optional

import yaml

logger = logging.getLogger(__name__)

FACING_MODES = ("user", "environment")
DELEGATES = ("GPU", "CPU")
MODEL_VARIANTS = ("lite", "full", "heavy")


@dataclass(frozen=True)
class CaptureConfig:
    width: int = 640
    height: int = 480
    facing_mode: str = "user"
    camera_id: Optional[int] = None
    camera_name: Optional[str] = None
    # Reads attempted while waiting for the first non-empty frame.
    warmup_reads: int = 30

    def __post_init__(self) -> None:
        if self.facing_mode not in FACING_MODES:
            raise ValueError(f"facing_mode must be one of {FACING_MODES}, got {self.facing_mode!r}")
        if self.width <= 0 or self.height <= 0:
            raise ValueError(f"Capture size must be positive, got {self.width}x{self.height}")


@dataclass(frozen=True)
class EstimatorConfig:
    delegate: str = "GPU"
    num_poses: int = 1
    min_detection_confidence: float = 0.5
    min_tracking_confidence: float = 0.5
    min_presence_confidence: float = 0.5
    model_variant: str = "lite"
    model_path: Optional[str] = None

    def __post_init__(self) -> None:
        if self.delegate not in DELEGATES:
            raise ValueError(f"delegate must be one of {DELEGATES}, got {self.delegate!r}")
        if self.num_poses < 1:
            raise ValueError(f"num_poses must be >= 1, got {self.num_poses}")
        if self.model_variant not in MODEL_VARIANTS:
            raise ValueError(f"model_variant must be one of {MODEL_VARIANTS}, got {self.model_variant!r}")
        for name in ("min_detection_confidence", "min_tracking_confidence", "min_presence_confidence"):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                raise ValueError(f"{name} must lie in [0, 1], got {value}")


# Colours are BGR tuples for OpenCV.
@dataclass(frozen=True)
class DrawConfig:
    landmark_radius: int = 6
    connection_line_width: int = 3
    high_confidence_color: tuple[int, int, int] = (94, 197, 34)  # #22c55e
    medium_confidence_color: tuple[int, int, int] = (8, 179, 234)  # #eab308
    low_confidence_color: tuple[int, int, int] = (68, 68, 239)  # #ef4444
    connection_color: tuple[int, int, int] = (255, 255, 255)
    connection_opacity: float = 0.6
    border_color: tuple[int, int, int] = (255, 255, 255)
    visibility_threshold: float = 0.3


@dataclass(frozen=True)
class LoopConfig:
    mirror: bool = True
    refresh_hz: float = 60.0
    window_name: str = "poseloop"
    # Consecutive empty camera reads before the session is treated as lost.
    max_missed_frames: int = 30
    duration_s: Optional[float] = None


@dataclass(frozen=True)
class PipelineConfig:
    capture: CaptureConfig = field(default_factory=CaptureConfig)
    estimator: EstimatorConfig = field(default_factory=EstimatorConfig)
    overlay: DrawConfig = field(default_factory=DrawConfig)
    loop: LoopConfig = field(default_factory=LoopConfig)


_SECTIONS = {
    "capture": CaptureConfig,
    "estimator": EstimatorConfig,
    "overlay": DrawConfig,
    "loop": LoopConfig,
}


def load_pipeline_config(config_path: Path) -> PipelineConfig:
    if not config_path.exists():
        logger.info("No config at %s, using defaults", config_path)
        return PipelineConfig()

    with config_path.open("r", encoding="utf-8") as f:
        doc = yaml.safe_load(f) or {}

    return config_from_dict(doc)


def config_from_dict(doc: dict) -> PipelineConfig:
    for key in doc:
        if key not in _SECTIONS:
            logger.warning("Ignoring unknown config section %r", key)

    sections = {}
    for name, cls in _SECTIONS.items():
        sections[name] = section_from_dict(cls, doc.get(name) or {})
    return PipelineConfig(**sections)


def section_from_dict(cls, values: dict[str, Any]):
    known = {f.name: f for f in fields(cls)}
    kwargs: dict[str, Any] = {}
    for key, raw in values.items():
        f = known.get(key)
        if f is None:
            logger.warning("Ignoring unknown %s option %r", cls.__name__, key)
            continue
        if raw is None:
            continue
        kwargs[key] = _coerce(getattr(cls(), key), raw)
    return cls(**kwargs)


def with_overrides(section, **overrides):
    """Return a copy of a config section with the non-None overrides applied."""
    changes = {k: v for k, v in overrides.items() if v is not None}
    return replace(section, **changes) if changes else section


def _coerce(default: Any, raw: Any) -> Any:
    if isinstance(default, bool):
        return bool(raw)
    if isinstance(default, int):
        return int(raw)
    if isinstance(default, float):
        return float(raw)
    if isinstance(default, tuple):
        return tuple(int(v) for v in raw)
    if isinstance(default, str):
        return str(raw)
    # Optional fields default to None; keep ints as ints.
    if isinstance(raw, (int, float)) and not isinstance(raw, bool):
        return raw
    return str(raw)
