"""
Verification Matcher
====================
Server-side decision for a verification attempt:

  1. re-validate the client's liveness evidence against the same minimums
     the client enforces (the client is never trusted on its own)
  2. Euclidean distance from the candidate to every enrolled descriptor;
     accepted when the minimum is strictly below the threshold
"""

import math
from dataclasses import dataclass
from typing import Optional

import numpy as np

from .config import EMBED_DIM, LivenessConfig, MatcherConfig
from .types import LivenessEvidence

FACE_MISMATCH = "face_mismatch"
INSUFFICIENT_LIVENESS = "insufficient_liveness"
NOT_ENROLLED = "not_enrolled"
INVALID_DESCRIPTOR = "invalid_descriptor"


@dataclass(frozen=True)
class MatchResult:
    accepted: bool
    distance: float = math.inf
    best_index: Optional[int] = None
    confidence: float = 0.0
    reason: Optional[str] = None


def descriptor_distance(a, b):
    """Euclidean distance; infinite when the lengths differ."""
    a = np.asarray(a, dtype=np.float64).reshape(-1)
    b = np.asarray(b, dtype=np.float64).reshape(-1)
    if a.shape != b.shape:
        return math.inf
    return float(np.linalg.norm(a - b))


def min_distance(query, descriptors):
    """(minimum distance, index of the closest descriptor)."""
    if not len(descriptors):
        return math.inf, None
    distances = [descriptor_distance(query, d) for d in descriptors]
    best = int(np.argmin(distances))
    return distances[best], best


def parse_descriptor(values, embed_dim=EMBED_DIM):
    """Validated float vector of length embed_dim, or None."""
    try:
        vec = np.asarray(values, dtype=np.float64)
    except (TypeError, ValueError):
        return None
    if vec.ndim != 1 or vec.shape[0] != embed_dim or not np.all(np.isfinite(vec)):
        return None
    return vec


def parse_evidence(data):
    """LivenessEvidence from a LivenessEvidence or its camelCase dict form."""
    if isinstance(data, LivenessEvidence):
        return data
    if not isinstance(data, dict):
        return None
    try:
        ev = LivenessEvidence(
            blink_count=int(data["blinkCount"]),
            head_movement_count=int(data["headMovementCount"]),
            elapsed_ms=float(data["elapsedMs"]),
            sample_count=int(data["sampleCount"]),
        )
    except (KeyError, TypeError, ValueError):
        return None
    if not math.isfinite(ev.elapsed_ms):
        return None
    return ev


def liveness_satisfied(evidence, config=None):
    config = config or LivenessConfig()
    ev = parse_evidence(evidence)
    if ev is None:
        return False
    if min(ev.blink_count, ev.head_movement_count, ev.sample_count) < 0 or ev.elapsed_ms < 0:
        return False
    return (ev.sample_count > 0
            and ev.blink_count >= config.min_blinks
            and ev.head_movement_count >= config.min_head_movements
            and ev.elapsed_ms >= config.min_duration_ms)


class VerificationMatcher:
    """Min-distance matcher over an enrolled descriptor set."""

    def __init__(self, config=None):
        config = config or MatcherConfig()
        if config.threshold <= 0:
            raise ValueError("threshold must be positive")
        self.threshold = float(config.threshold)
        self.embed_dim = config.embed_dim
        self.liveness = config.liveness

    def match(self, candidate, profile):
        vec = parse_descriptor(candidate, self.embed_dim)
        if vec is None:
            return MatchResult(False, reason=INVALID_DESCRIPTOR)
        if not profile:
            return MatchResult(False, reason=NOT_ENROLLED)

        distance, best = min_distance(vec, profile)
        accepted = distance < self.threshold
        confidence = max(0.0, 1.0 - distance / self.threshold) if math.isfinite(distance) else 0.0
        return MatchResult(
            accepted=accepted,
            distance=distance,
            best_index=best,
            confidence=confidence,
            reason=None if accepted else FACE_MISMATCH,
        )

    def verify(self, candidate, profile, evidence):
        """Liveness gate first, then the descriptor match."""
        if not liveness_satisfied(evidence, self.liveness):
            return MatchResult(False, reason=INSUFFICIENT_LIVENESS)
        return self.match(candidate, profile)
