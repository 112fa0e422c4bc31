from __future__ import annotations

import cv2
import numpy as np

from poseloop.overlay import OpenCVSurface, compose_preview

QUIT_KEYS = (ord("q"), 27)  # q, Esc


class PreviewWindow:
    """OpenCV window showing the mirrored video with the overlay on top."""

    def __init__(self, window_name: str = "poseloop") -> None:
        self.window_name = window_name
        self._opened = False

    def show(self, frame: np.ndarray, surface: OpenCVSurface, mirrored: bool = True) -> bool:
        """Display one frame; returns True when the user asked to quit."""
        cv2.imshow(self.window_name, compose_preview(frame, surface, mirrored))
        self._opened = True
        return self.poll()

    def poll(self) -> bool:
        """Service window events without a new frame; returns True on quit."""
        key = cv2.waitKey(1) & 0xFF
        return key in QUIT_KEYS

    def close(self) -> None:
        if self._opened:
            cv2.destroyWindow(self.window_name)
            self._opened = False
