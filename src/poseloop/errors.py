from __future__ import annotations


class PoseLoopError(Exception):
    """Base class for tracking-pipeline failures that reach the user."""

    retryable = True
    default_message = "Something went wrong while starting pose tracking."

    def __init__(self, detail: str | None = None, user_message: str | None = None) -> None:
        super().__init__(detail or self.default_message)
        self.user_message = user_message or self.default_message


class UnsupportedEnvironment(PoseLoopError):
    retryable = False
    default_message = (
        "Camera capture is not available here. "
        "Run on a desktop with a connected webcam and camera access enabled."
    )


class CameraError(PoseLoopError):
    pass


class PermissionDenied(CameraError):
    default_message = (
        "Camera access was denied. Allow camera access for this app in your "
        "system privacy settings, then try again."
    )


class DeviceNotFound(CameraError):
    default_message = "No camera was found. Connect a webcam and try again."


class DeviceBusy(CameraError):
    default_message = (
        "The camera is in use by another application. Close it and try again."
    )


class InitializationFailed(PoseLoopError):
    default_message = (
        "The pose tracking model could not be loaded. Check your network "
        "connection and try again."
    )


class AlreadyDisposed(PoseLoopError):
    retryable = False
    default_message = "This pose estimator has already been shut down."


GENERIC_MESSAGE = PoseLoopError.default_message


def user_message(exc: BaseException) -> str:
    if isinstance(exc, PoseLoopError):
        return exc.user_message
    return GENERIC_MESSAGE
