from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Optional, Sequence

import cv2
import numpy as np

from poseloop.config import DrawConfig
from poseloop.landmarks import SKELETON_CONNECTIONS, Landmark
from poseloop.policy import EMPTY_POSE, ConfidenceLevel, DrawablePose, select_drawable

Point = tuple[float, float]
Color = tuple[int, int, int]

READOUT_MARGIN = 8
READOUT_SIZE = (90, 32)
READOUT_TEXT_OFFSET = (8, 22)
READOUT_BACKGROUND = (0, 0, 0)
READOUT_BACKGROUND_OPACITY = 0.5


class Surface:
    """Caller-owned drawing target in screen space."""

    width = 0
    height = 0

    def resize(self, width: int, height: int) -> None:  # pragma: no cover - interface
        raise NotImplementedError

    def clear(self) -> None:  # pragma: no cover - interface
        raise NotImplementedError

    def draw_line(self, start: Point, end: Point, color: Color, thickness: int, opacity: float = 1.0) -> None:  # pragma: no cover - interface
        raise NotImplementedError

    def draw_circle(self, center: Point, radius: int, color: Color) -> None:  # pragma: no cover - interface
        raise NotImplementedError

    def fill_rect(self, top_left: Point, bottom_right: Point, color: Color, opacity: float = 1.0) -> None:  # pragma: no cover - interface
        raise NotImplementedError

    def draw_text(self, text: str, origin: Point, color: Color) -> None:  # pragma: no cover - interface
        raise NotImplementedError


class OpenCVSurface(Surface):
    """BGRA overlay buffer; alpha 0 means transparent."""

    def __init__(self, width: int = 0, height: int = 0) -> None:
        self.buffer = np.zeros((0, 0, 4), dtype=np.uint8)
        self.resize(width, height)

    def resize(self, width: int, height: int) -> None:
        self.width = int(width)
        self.height = int(height)
        self.buffer = np.zeros((self.height, self.width, 4), dtype=np.uint8)

    def clear(self) -> None:
        self.buffer[:] = 0

    def draw_line(self, start: Point, end: Point, color: Color, thickness: int, opacity: float = 1.0) -> None:
        cv2.line(
            self.buffer,
            _px(start),
            _px(end),
            _bgra(color, opacity),
            int(thickness),
            cv2.LINE_AA,
        )

    def draw_circle(self, center: Point, radius: int, color: Color) -> None:
        cv2.circle(self.buffer, _px(center), int(radius), _bgra(color), -1, cv2.LINE_AA)

    def fill_rect(self, top_left: Point, bottom_right: Point, color: Color, opacity: float = 1.0) -> None:
        cv2.rectangle(self.buffer, _px(top_left), _px(bottom_right), _bgra(color, opacity), -1)

    def draw_text(self, text: str, origin: Point, color: Color) -> None:
        cv2.putText(
            self.buffer,
            text,
            _px(origin),
            cv2.FONT_HERSHEY_SIMPLEX,
            0.55,
            _bgra(color),
            2,
            cv2.LINE_AA,
        )


def presentation_transform(width: float, mirrored: bool) -> np.ndarray:
    """Canvas -> screen. The mirrored ("selfie") view maps x to width - x."""
    if not mirrored:
        return np.eye(3)
    return np.array(
        [
            [-1.0, 0.0, float(width)],
            [0.0, 1.0, 0.0],
            [0.0, 0.0, 1.0],
        ]
    )


def counter_mirror(mirrored: bool) -> np.ndarray:
    """Text space -> canvas: flips glyphs so a mirrored presentation reads correctly."""
    if not mirrored:
        return np.eye(3)
    return np.diag([-1.0, 1.0, 1.0])


def readout_transform(width: float, mirrored: bool) -> np.ndarray:
    """
    Text space -> screen for the performance readout.

    Composes the surface mirror with the text counter-mirror. The linear part
    is always the identity (glyphs read left to right); the translation is
    not, so the readout lands in the opposite corner when mirrored.
    """
    return presentation_transform(width, mirrored) @ counter_mirror(mirrored)


def to_surface_coords(landmark: Landmark, width: float, height: float, mirrored: bool = True) -> Point:
    p = presentation_transform(width, mirrored) @ np.array(
        [float(landmark.x) * width, float(landmark.y) * height, 1.0]
    )
    return float(p[0]), float(p[1])


@dataclass(frozen=True)
class ReadoutLayout:
    top_left: Point
    bottom_right: Point
    text_origin: Point
    glyph_matrix: np.ndarray


def readout_layout(width: float, mirrored: bool) -> ReadoutLayout:
    # Canvas-space box anchored to the top-left canvas corner.
    x0, y0 = READOUT_MARGIN, READOUT_MARGIN
    x1, y1 = x0 + READOUT_SIZE[0], y0 + READOUT_SIZE[1]
    counter = counter_mirror(mirrored)
    # Counter-mirror is its own inverse: canvas -> text space.
    text_corners = counter @ np.array([[x0, x1], [y0, y1], [1.0, 1.0]])
    tx0 = float(text_corners[0].min())
    origin_text = np.array([tx0 + READOUT_TEXT_OFFSET[0], y0 + READOUT_TEXT_OFFSET[1], 1.0])

    transform = readout_transform(width, mirrored)
    screen_corners = transform @ np.array(
        [[tx0, float(text_corners[0].max())], [float(y0), float(y1)], [1.0, 1.0]]
    )
    origin = transform @ origin_text
    return ReadoutLayout(
        top_left=(float(screen_corners[0].min()), float(screen_corners[1].min())),
        bottom_right=(float(screen_corners[0].max()), float(screen_corners[1].max())),
        text_origin=(float(origin[0]), float(origin[1])),
        glyph_matrix=transform[:2, :2],
    )


def confidence_color(level: ConfidenceLevel, config: DrawConfig) -> Color:
    if level is ConfidenceLevel.HIGH:
        return config.high_confidence_color
    if level is ConfidenceLevel.MEDIUM:
        return config.medium_confidence_color
    return config.low_confidence_color


def fps_color(rounded_fps: int, config: DrawConfig) -> Color:
    if rounded_fps >= 15:
        return config.high_confidence_color
    if rounded_fps >= 10:
        return config.medium_confidence_color
    return config.low_confidence_color


def render(
    surface: Surface,
    normalized: Optional[Sequence[Landmark]],
    connections: Iterable[tuple[int, int]] = SKELETON_CONNECTIONS,
    config: Optional[DrawConfig] = None,
    mirrored: bool = True,
) -> DrawablePose:
    """
    Draw one frame's skeleton.

    The surface is always cleared first; null or empty input leaves it blank.
    Edges are drawn before points so joints stay visible where lines meet.
    """
    cfg = config or DrawConfig()
    surface.clear()
    if not normalized:
        return EMPTY_POSE

    pose = select_drawable(normalized, connections, cfg.visibility_threshold)
    w, h = surface.width, surface.height

    for start, end in pose.edges:
        surface.draw_line(
            to_surface_coords(start, w, h, mirrored),
            to_surface_coords(end, w, h, mirrored),
            cfg.connection_color,
            cfg.connection_line_width,
            cfg.connection_opacity,
        )

    for point in pose.points:
        pos = to_surface_coords(point.landmark, w, h, mirrored)
        surface.draw_circle(pos, cfg.landmark_radius + 1, cfg.border_color)
        surface.draw_circle(pos, cfg.landmark_radius, confidence_color(point.level, cfg))

    return pose


def draw_skeleton(
    surface: Surface,
    normalized: Optional[Sequence[Landmark]],
    config: Optional[DrawConfig] = None,
    mirrored: bool = True,
) -> DrawablePose:
    return render(surface, normalized, SKELETON_CONNECTIONS, config, mirrored)


def draw_fps(surface: Surface, fps: float, config: Optional[DrawConfig] = None, mirrored: bool = True) -> str:
    cfg = config or DrawConfig()
    rounded = int(round(fps))
    label = f"{rounded} FPS"
    layout = readout_layout(surface.width, mirrored)
    surface.fill_rect(layout.top_left, layout.bottom_right, READOUT_BACKGROUND, READOUT_BACKGROUND_OPACITY)
    surface.draw_text(label, layout.text_origin, fps_color(rounded, cfg))
    return label


def compose_preview(frame: np.ndarray, surface: OpenCVSurface, mirrored: bool = True) -> np.ndarray:
    """Blend the overlay onto the (optionally mirrored) video frame."""
    video = cv2.flip(frame, 1) if mirrored else frame.copy()
    overlay = surface.buffer
    h, w = video.shape[:2]
    if overlay.shape[0] != h or overlay.shape[1] != w:
        overlay = cv2.resize(overlay, (w, h), interpolation=cv2.INTER_NEAREST)
    alpha = overlay[:, :, 3:4].astype(np.float32) / 255.0
    blended = video.astype(np.float32) * (1.0 - alpha) + overlay[:, :, :3].astype(np.float32) * alpha
    return blended.astype(np.uint8)


def _px(point: Point) -> tuple[int, int]:
    return int(round(point[0])), int(round(point[1]))


def _bgra(color: Color, opacity: float = 1.0) -> tuple[int, int, int, int]:
    return int(color[0]), int(color[1]), int(color[2]), int(round(255 * opacity))
