"""Exceptions raised by the model, camera and storage adapters."""

from enum import Enum


class ErrorKind(str, Enum):
    MODEL_LOAD = "model_load"
    CAMERA_DENIED = "camera_denied"
    CAMERA = "camera"
    NO_FACE = "no_face"
    TIMEOUT = "timeout"
    MATCH_FAILED = "match_failed"
    SUBMIT_FAILED = "submit_failed"


# Short user-facing messages; exception details only go to the log.
MESSAGES = {
    ErrorKind.MODEL_LOAD: "Could not load face models. Check the connection and retry.",
    ErrorKind.CAMERA_DENIED: "Camera access denied.",
    ErrorKind.CAMERA: "Camera error.",
    ErrorKind.NO_FACE: "No face detected. Keep your face in the frame.",
    ErrorKind.TIMEOUT: "Time is up. Start the check again.",
    ErrorKind.MATCH_FAILED: "Face does not match. Try again.",
    ErrorKind.SUBMIT_FAILED: "Could not save the face data. Try again.",
}


class FaceGateError(Exception):
    kind = None


class ModelLoadError(FaceGateError):
    kind = ErrorKind.MODEL_LOAD


class CameraError(FaceGateError):
    kind = ErrorKind.CAMERA


class CameraPermissionError(CameraError):
    kind = ErrorKind.CAMERA_DENIED


class StoreError(FaceGateError):
    kind = ErrorKind.SUBMIT_FAILED


class TokenError(FaceGateError):
    """Signed token missing, malformed or issued for another purpose."""


class TokenExpiredError(TokenError):
    pass
