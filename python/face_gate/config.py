"""
Configuration
=============
Central place for thresholds, timings and deployment settings.

Thresholds are module constants so that the client-side controllers and the
server-side matcher enforce exactly the same liveness minimums.  Secrets and
paths are read from the environment (a local .env file is honoured).
"""

import os
from dataclasses import dataclass, field

from dotenv import load_dotenv

load_dotenv()


# =============================================================================
# Face model
# =============================================================================

# dlib face descriptor length
EMBED_DIM = 128

# Euclidean distance below which two dlib descriptors are the same person
FACE_MATCH_THRESHOLD = 0.6

# Stored descriptors per identity
MAX_DESCRIPTORS = 5

# Preferred capture resolution
CAMERA_WIDTH = 640
CAMERA_HEIGHT = 480

# Contrast / brightness correction applied before descriptor extraction
PREPROCESS_ALPHA = 1.2
PREPROCESS_BETA = 10


# =============================================================================
# Liveness
# =============================================================================

EAR_CLOSED_THRESHOLD = 0.30
EAR_OPEN_THRESHOLD = 0.35
BLINK_DEBOUNCE_MS = 200

HEAD_MOVE_MIN_PX = 25.0
HEAD_MOVE_DEBOUNCE_MS = 300

MIN_BLINKS = 2
MIN_HEAD_MOVEMENTS = 3
MIN_LIVENESS_DURATION_MS = 3000
LIVENESS_TIMEOUT_MS = 20000

LIVENESS_SAMPLE_INTERVAL_S = 0.2


# =============================================================================
# Enrollment
# =============================================================================

POSE_OFFSET_THRESHOLD = 0.2
POSE_HOLD_MS = 1200
ENROLL_SAMPLE_INTERVAL_S = 0.1


@dataclass(frozen=True)
class LivenessConfig:
    ear_closed: float = EAR_CLOSED_THRESHOLD
    ear_open: float = EAR_OPEN_THRESHOLD
    blink_debounce_ms: int = BLINK_DEBOUNCE_MS
    move_min_px: float = HEAD_MOVE_MIN_PX
    move_debounce_ms: int = HEAD_MOVE_DEBOUNCE_MS
    min_blinks: int = MIN_BLINKS
    min_head_movements: int = MIN_HEAD_MOVEMENTS
    min_duration_ms: int = MIN_LIVENESS_DURATION_MS
    timeout_ms: int = LIVENESS_TIMEOUT_MS
    sample_interval_s: float = LIVENESS_SAMPLE_INTERVAL_S


@dataclass(frozen=True)
class EnrollmentConfig:
    sample_interval_s: float = ENROLL_SAMPLE_INTERVAL_S
    # the live preview is mirrored, so captures are mirrored to match it
    mirror_capture: bool = True


@dataclass(frozen=True)
class MatcherConfig:
    threshold: float = FACE_MATCH_THRESHOLD
    embed_dim: int = EMBED_DIM
    liveness: LivenessConfig = field(default_factory=LivenessConfig)


# =============================================================================
# Server
# =============================================================================

@dataclass(frozen=True)
class ServerSettings:
    secret_key: str = "change-me-in-production"
    algorithm: str = "HS256"
    session_token_minutes: int = 7 * 24 * 60
    face_verify_token_minutes: int = 2
    store_path: str = "data/face_profiles.json"
    match_threshold: float = FACE_MATCH_THRESHOLD

    @classmethod
    def from_env(cls):
        return cls(
            secret_key=os.getenv("FACE_GATE_SECRET_KEY", cls.secret_key),
            store_path=os.getenv("FACE_GATE_STORE_PATH", cls.store_path),
            match_threshold=float(os.getenv("FACE_GATE_MATCH_THRESHOLD", FACE_MATCH_THRESHOLD)),
        )
