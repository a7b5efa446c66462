from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

import numpy as np

from .config import POSE_HOLD_MS

# face_recognition landmark dict: feature name -> list of (x, y)
Landmarks = Dict[str, List[Tuple[float, float]]]


class Pose(str, Enum):
    CENTER = "center"
    LEFT = "left"
    RIGHT = "right"


@dataclass(frozen=True)
class PoseStep:
    pose: Pose
    label: str
    hold_ms: int = POSE_HOLD_MS


DEFAULT_POSE_STEPS = (
    PoseStep(Pose.CENTER, "Look straight at the camera"),
    PoseStep(Pose.LEFT, "Slowly turn your head LEFT"),
    PoseStep(Pose.RIGHT, "Slowly turn your head RIGHT"),
    PoseStep(Pose.CENTER, "Look straight at the camera again"),
)


def as_descriptor(values):
    """Freeze a descriptor into a read-only float64 vector."""
    vec = np.array(values, dtype=np.float64).reshape(-1)
    vec.setflags(write=False)
    return vec


@dataclass(frozen=True)
class Detection:
    landmarks: Landmarks
    descriptor: Optional[np.ndarray] = None


@dataclass(frozen=True)
class Displacement:
    magnitude: float
    dominant_axis: str      # "horizontal" | "vertical"
    direction: str          # "left" | "right" | "up" | "down"


@dataclass(frozen=True)
class BlinkEvent:
    at_ms: float
    ear: float


@dataclass(frozen=True)
class MovementEvent:
    at_ms: float
    direction: str
    magnitude: float


@dataclass(frozen=True)
class LivenessEvidence:
    blink_count: int
    head_movement_count: int
    elapsed_ms: float
    sample_count: int

    def to_dict(self):
        return {
            "blinkCount": self.blink_count,
            "headMovementCount": self.head_movement_count,
            "elapsedMs": self.elapsed_ms,
            "sampleCount": self.sample_count,
        }


@dataclass(frozen=True)
class EnrollmentReceipt:
    ok: bool
    count: int = 0
    reason: Optional[str] = None


@dataclass(frozen=True)
class VerificationResult:
    ok: bool
    token: Optional[str] = None
    user: Optional[Dict[str, Any]] = None
    reason: Optional[str] = None
    detail: Optional[str] = None
    distance: Optional[float] = field(default=None, compare=False)
