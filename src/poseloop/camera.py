from __future__ import annotations

import logging
import os
import platform
import re
import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

import cv2
import numpy as np

from poseloop.config import CaptureConfig
from poseloop.errors import CameraError, DeviceBusy, DeviceNotFound, PermissionDenied, UnsupportedEnvironment

logger = logging.getLogger(__name__)

DEV_DIR = Path("/dev")
SYSFS_V4L = Path("/sys/class/video4linux")

# Name fragments of cameras that face the user on laptops and phones.
USER_FACING_HINTS = ("facetime", "built", "integrated", "front", "user", "internal")


@dataclass
class CameraDevice:
    idx: int
    name: str


def has_pixels(frame: Optional[np.ndarray]) -> bool:
    return frame is not None and frame.ndim >= 2 and frame.shape[0] > 0 and frame.shape[1] > 0


class CameraStream:
    """
    Live handle over an opened capture.

    Holds the capture and the last decoded frame until `release()`. Width and
    height are those of the first confirmed frame, i.e. what the device
    actually granted.
    """

    def __init__(self, capture, first_frame: np.ndarray, label: str, finite: bool = False) -> None:
        self._capture = capture
        self.frame: Optional[np.ndarray] = first_frame
        self._pending_first = True
        self.label = label
        self.finite = finite
        self.height, self.width = int(first_frame.shape[0]), int(first_frame.shape[1])

    @property
    def released(self) -> bool:
        return self._capture is None

    def read(self) -> Optional[np.ndarray]:
        if self._capture is None:
            return None
        if self._pending_first:
            # The warm-up frame has not been handed out yet.
            self._pending_first = False
            return self.frame
        ok, frame = self._capture.read()
        if not ok or not has_pixels(frame):
            return None
        self.frame = frame
        return frame

    def release(self) -> None:
        capture, self._capture = self._capture, None
        self.frame = None
        if capture is None:
            return
        try:
            capture.release()
        finally:
            logger.info("Released capture %s", self.label)


class FrameSource:
    """Camera capture backend. One live stream at a time."""

    name = "base"

    def __init__(self) -> None:
        self.stream: Optional[CameraStream] = None

    def is_supported(self) -> bool:  # pragma: no cover - interface
        raise NotImplementedError

    def acquire(self, config: CaptureConfig) -> CameraStream:  # pragma: no cover - interface
        raise NotImplementedError

    def release(self) -> None:
        stream, self.stream = self.stream, None
        if stream is not None:
            stream.release()


class OpenCVFrameSource(FrameSource):
    name = "opencv"

    def __init__(
        self,
        capture_factory: Optional[Callable[..., object]] = None,
        system: Optional[str] = None,
        dev_dir: Path = DEV_DIR,
    ) -> None:
        super().__init__()
        self._capture_factory = capture_factory or _open_capture
        self.system = system or platform.system()
        self.dev_dir = dev_dir

    def is_supported(self) -> bool:
        return is_camera_supported(self.system, self.dev_dir)

    def acquire(self, config: CaptureConfig) -> CameraStream:
        if self.stream is not None:
            logger.warning("acquire() called with a live stream; releasing it first")
            self.release()

        camera_id = resolve_camera_id(config, self.system, self.dev_dir)
        logger.info(
            "Opening camera_id=%s (%dx%d requested, facing=%s)",
            camera_id,
            config.width,
            config.height,
            config.facing_mode,
        )
        cap = self._capture_factory(camera_id, self.system)
        if not cap.isOpened():
            cap.release()
            raise classify_open_failure(camera_id, self.system, self.dev_dir)

        # Requested size is a preference; the device may grant another.
        cap.set(cv2.CAP_PROP_FRAME_WIDTH, config.width)
        cap.set(cv2.CAP_PROP_FRAME_HEIGHT, config.height)

        first = _await_first_frame(cap, config.warmup_reads)
        if first is None:
            cap.release()
            raise DeviceBusy(f"camera_id={camera_id} opened but delivered no frames")

        self.stream = CameraStream(cap, first, label=f"camera_id={camera_id}")
        logger.info("Camera ready at %dx%d", self.stream.width, self.stream.height)
        return self.stream


class VideoFileFrameSource(FrameSource):
    """Recorded video played through the same pipeline as a live camera."""

    name = "video-file"

    def __init__(self, path: Path, capture_factory: Optional[Callable[[str], object]] = None) -> None:
        super().__init__()
        self.path = Path(path)
        self._capture_factory = capture_factory or cv2.VideoCapture

    def is_supported(self) -> bool:
        return self.path.exists()

    def acquire(self, config: CaptureConfig) -> CameraStream:
        if self.stream is not None:
            self.release()
        if not self.path.exists():
            raise DeviceNotFound(f"Input video not found: {self.path}", user_message=f"Video file not found: {self.path}")
        cap = self._capture_factory(str(self.path))
        if not cap.isOpened():
            cap.release()
            raise DeviceBusy(f"Could not open video: {self.path}", user_message=f"Could not open video: {self.path}")
        first = _await_first_frame(cap, config.warmup_reads)
        if first is None:
            cap.release()
            raise DeviceBusy(f"Video has no decodable frames: {self.path}", user_message=f"Video has no frames: {self.path}")
        self.stream = CameraStream(cap, first, label=str(self.path), finite=True)
        return self.stream


class UnavailableFrameSource(FrameSource):
    """Placeholder for platforms without a capture backend yet (mobile)."""

    name = "unavailable"

    def is_supported(self) -> bool:
        return False

    def acquire(self, config: CaptureConfig) -> CameraStream:
        raise UnsupportedEnvironment("No camera backend for this platform")


def is_camera_supported(system: Optional[str] = None, dev_dir: Path = DEV_DIR) -> bool:
    """Capability probe; never opens a device, so no permission prompt."""
    if not hasattr(cv2, "VideoCapture"):
        return False
    system = system or platform.system()
    if system == "Linux":
        return any(dev_dir.glob("video*"))
    return system in ("Darwin", "Windows")


def classify_open_failure(camera_id: int, system: Optional[str] = None, dev_dir: Path = DEV_DIR) -> CameraError:
    system = system or platform.system()
    if system == "Linux":
        node = dev_dir / f"video{camera_id}"
        if not node.exists():
            return DeviceNotFound(f"{node} does not exist")
        if not os.access(node, os.R_OK | os.W_OK):
            return PermissionDenied(f"No read/write access to {node}")
        return DeviceBusy(f"{node} exists but could not be opened")

    devices = list_cameras(system, dev_dir)
    if devices and camera_id not in {d.idx for d in devices}:
        return DeviceNotFound(f"camera_id={camera_id} not among {[d.idx for d in devices]}")
    if system == "Darwin":
        # AVFoundation refuses a present device when camera privacy access is off.
        return PermissionDenied(f"AVFoundation refused camera_id={camera_id}")
    return DeviceBusy(f"Could not open camera_id={camera_id}")


def resolve_camera_id(config: CaptureConfig, system: Optional[str] = None, dev_dir: Path = DEV_DIR) -> int:
    if config.camera_name:
        devices = list_cameras(system, dev_dir)
        resolved = _pick_best_match(config.camera_name.strip(), devices)
        if resolved is not None:
            return resolved
        available = ", ".join([f"[{d.idx}] {d.name}" for d in devices]) or "none found"
        raise DeviceNotFound(
            f'Camera name "{config.camera_name}" not found. Available video devices: {available}.',
            user_message=f'No camera named "{config.camera_name}" was found.',
        )

    if config.camera_id is not None:
        return int(config.camera_id)

    devices = list_cameras(system, dev_dir)
    picked = pick_by_facing(devices, config.facing_mode)
    return picked if picked is not None else 0


def pick_by_facing(devices: list[CameraDevice], facing_mode: str) -> Optional[int]:
    if not devices:
        return None
    user_facing = [d for d in devices if _is_user_facing(d.name)]
    other = [d for d in devices if not _is_user_facing(d.name)]
    preferred = user_facing if facing_mode == "user" else other
    chosen = preferred or devices
    return min(d.idx for d in chosen)


def list_cameras(system: Optional[str] = None, dev_dir: Path = DEV_DIR) -> list[CameraDevice]:
    system = system or platform.system()
    if system == "Darwin":
        return list_cameras_avfoundation()
    if system == "Linux":
        return list_cameras_v4l(dev_dir)
    return []


def list_cameras_v4l(dev_dir: Path = DEV_DIR, sysfs: Path = SYSFS_V4L) -> list[CameraDevice]:
    devices: list[CameraDevice] = []
    for node in dev_dir.glob("video*"):
        m = re.fullmatch(r"video(\d+)", node.name)
        if not m:
            continue
        name_file = sysfs / node.name / "name"
        try:
            name = name_file.read_text(encoding="utf-8").strip()
        except OSError:
            name = node.name
        devices.append(CameraDevice(idx=int(m.group(1)), name=name))
    return sorted(devices, key=lambda d: d.idx)


def list_cameras_avfoundation() -> list[CameraDevice]:
    ffmpeg = shutil.which("ffmpeg")
    if not ffmpeg:
        return []

    try:
        proc = subprocess.run(
            [ffmpeg, "-f", "avfoundation", "-list_devices", "true", "-i", ""],
            check=False,
            capture_output=True,
            text=True,
        )
    except OSError:
        logger.debug("ffmpeg device listing failed", exc_info=True)
        return []

    # ffmpeg writes the device list to stderr for avfoundation.
    return parse_avfoundation_devices((proc.stderr or "") + "\n" + (proc.stdout or ""))


def parse_avfoundation_devices(text: str) -> list[CameraDevice]:
    in_video_section = False
    devices: list[CameraDevice] = []
    for line in text.splitlines():
        if "AVFoundation video devices" in line:
            in_video_section = True
            continue
        if in_video_section and "AVFoundation audio devices" in line:
            break
        if not in_video_section:
            continue

        m = re.search(r"\[(\d+)\]\s+(.*)$", line)
        if not m:
            continue
        devices.append(CameraDevice(idx=int(m.group(1)), name=m.group(2).strip()))
    return devices


def _open_capture(camera_id: int, system: str):
    if system == "Darwin":
        return cv2.VideoCapture(camera_id, cv2.CAP_AVFOUNDATION)
    return cv2.VideoCapture(camera_id)


def _await_first_frame(cap, attempts: int) -> Optional[np.ndarray]:
    for _ in range(max(attempts, 1)):
        ok, frame = cap.read()
        if ok and has_pixels(frame):
            return frame
    return None


def _is_user_facing(name: str) -> bool:
    tokens = _norm(name)
    return any(hint in tokens for hint in USER_FACING_HINTS)


def _pick_best_match(wanted: str, devices: list[CameraDevice]) -> Optional[int]:
    if not devices:
        return None

    wanted_norm = _norm(wanted)
    wanted_tokens = set(wanted_norm.split())

    best: Optional[tuple[int, int]] = None  # (score, -idx)
    for d in devices:
        name_norm = _norm(d.name)
        score = 0
        if wanted_norm == name_norm:
            score += 100
        if wanted_norm in name_norm or name_norm in wanted_norm:
            score += 50
        score += 10 * len(wanted_tokens.intersection(name_norm.split()))

        if score <= 0:
            continue
        candidate = (score, -d.idx)
        if best is None or candidate > best:
            best = candidate

    return -best[1] if best is not None else None


def _norm(text: str) -> str:
    return re.sub(r"[^a-z0-9]+", " ", text.lower()).strip()
