from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

import numpy as np

from poseloop.landmarks import DetectionResult


@dataclass
class SessionStats:
    processed_frames: int = 0
    detected_frames: int = 0
    latencies_ms: list[float] = field(default_factory=list)
    started_ms: Optional[float] = None
    last_ms: Optional[float] = None

    def reset(self, now_ms: Optional[float] = None) -> None:
        self.processed_frames = 0
        self.detected_frames = 0
        self.latencies_ms = []
        self.started_ms = now_ms
        self.last_ms = now_ms

    def record(self, result: DetectionResult, latency_ms: float, now_ms: float) -> None:
        self.processed_frames += 1
        if result.detected:
            self.detected_frames += 1
        self.latencies_ms.append(float(latency_ms))
        self.last_ms = now_ms

    @property
    def elapsed_s(self) -> float:
        if self.started_ms is None or self.last_ms is None:
            return 0.0
        return max(self.last_ms - self.started_ms, 0.0) / 1000.0


def build_summary(stats: SessionStats, smoothed_fps: float, backend: str) -> dict:
    latency_arr = (
        np.array(stats.latencies_ms, dtype=np.float32)
        if stats.latencies_ms
        else np.array([0.0], dtype=np.float32)
    )
    processed = stats.processed_frames
    elapsed_s = max(stats.elapsed_s, 1e-6)

    return {
        "backend": backend,
        "duration_seconds": stats.elapsed_s,
        "processed_frames": processed,
        "fps_effective": processed / elapsed_s if processed else 0.0,
        "fps_smoothed": float(smoothed_fps),
        "detection_rate": (stats.detected_frames / processed) if processed else 0.0,
        "latency_ms_avg": float(np.mean(latency_arr)),
        "latency_ms_p95": float(np.percentile(latency_arr, 95)),
        "generated_at_utc": datetime.now(timezone.utc).isoformat(),
    }
