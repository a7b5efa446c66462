"""
Liveness Challenge
==================
Challenge-response check run before a verification descriptor is taken.

Every sample (200 ms) updates two detectors:

  1. Blink  (dlib 68-point EAR with hysteresis)
       open -> closed when EAR < 0.30, closed -> open when EAR > 0.35.
       A close counts as a blink only if no blink was counted yet or the
       last counted blink is more than 200 ms old.
  2. Head movement  (nose tip displacement between consecutive samples)
       A jump over 25 px gives a direction (left / right / up / down).  It
       counts only if the last counted movement is more than 300 ms old AND
       the direction differs from the last counted direction.

The challenge completes when blinks >= 2, movements >= 3 and at least
3000 ms have elapsed, all at the same time.  After 20000 ms without
completion the session fails and every counter goes back to zero.

On completion one more frame is taken for the descriptor:
  - no face        -> back to the challenge, counters kept
  - match rejected -> back to the challenge, counters reset
"""

import logging
from dataclasses import dataclass, replace
from enum import Enum
from typing import Optional, Tuple

from .config import LivenessConfig
from .errors import MESSAGES, ErrorKind
from .geometry import average_ear, displacement, nose_point
from .session import CaptureSession, call_maybe_async
from .types import BlinkEvent, LivenessEvidence, MovementEvent

logger = logging.getLogger(__name__)

DEFAULT_CONFIG = LivenessConfig()

CHALLENGE_PROMPT = "Blink a few times and turn your head left, right, up and down"


class LivenessPhase(str, Enum):
    LOADING_MODELS = "loading_models"
    AWAITING_CAMERA = "awaiting_camera"
    CHALLENGE = "challenge"
    EXTRACTING = "extracting"
    VERIFYING = "verifying"
    VERIFIED = "verified"
    ERROR = "error"
    CANCELLED = "cancelled"


class BlinkState(str, Enum):
    OPEN = "open"
    CLOSED = "closed"


TERMINAL_PHASES = frozenset({LivenessPhase.VERIFIED, LivenessPhase.ERROR, LivenessPhase.CANCELLED})


@dataclass(frozen=True)
class LivenessState:
    phase: LivenessPhase = LivenessPhase.LOADING_MODELS
    started_at: Optional[float] = None
    blink_count: int = 0
    head_movement_count: int = 0
    frame_count: int = 0
    blink_state: BlinkState = BlinkState.OPEN
    last_blink_at: Optional[float] = None
    last_movement_at: Optional[float] = None
    last_direction: Optional[str] = None
    last_landmarks: Optional[dict] = None
    last_ear: Optional[float] = None
    blink_events: Tuple[BlinkEvent, ...] = ()
    movement_events: Tuple[MovementEvent, ...] = ()
    submitted: bool = False
    completed_at: Optional[float] = None
    message: str = ""
    error: Optional[ErrorKind] = None

    def elapsed_ms(self, now_ms):
        if self.started_at is None:
            return 0.0
        return now_ms - self.started_at


# =============================================================================
# Transitions
# =============================================================================

def start_challenge(now_ms, message=CHALLENGE_PROMPT, error=None):
    """A fresh challenge: every counter at zero, clock starting now."""
    return LivenessState(phase=LivenessPhase.CHALLENGE, started_at=now_ms, message=message, error=error)


def _update_blink(state, ear, now_ms, config):
    if ear < config.ear_closed and state.blink_state == BlinkState.OPEN:
        state = replace(state, blink_state=BlinkState.CLOSED)
        debounced = state.last_blink_at is None or now_ms - state.last_blink_at > config.blink_debounce_ms
        if debounced:
            state = replace(
                state,
                blink_count=state.blink_count + 1,
                last_blink_at=now_ms,
                blink_events=state.blink_events + (BlinkEvent(now_ms, ear),),
            )
    elif ear > config.ear_open:
        state = replace(state, blink_state=BlinkState.OPEN)
    return state


def _update_movement(state, landmarks, now_ms, config):
    prev = nose_point(state.last_landmarks) if state.last_landmarks is not None else None
    curr = nose_point(landmarks)
    if prev is None or curr is None:
        return state

    move = displacement(prev, curr)
    if move.magnitude <= config.move_min_px:
        return state

    debounced = state.last_movement_at is None or now_ms - state.last_movement_at > config.move_debounce_ms
    if debounced and move.direction != state.last_direction:
        state = replace(
            state,
            head_movement_count=state.head_movement_count + 1,
            last_movement_at=now_ms,
            last_direction=move.direction,
            movement_events=state.movement_events + (MovementEvent(now_ms, move.direction, move.magnitude),),
        )
    return state


def is_complete(state, now_ms, config=DEFAULT_CONFIG):
    return (state.blink_count >= config.min_blinks
            and state.head_movement_count >= config.min_head_movements
            and state.elapsed_ms(now_ms) >= config.min_duration_ms)


def is_timed_out(state, now_ms, config=DEFAULT_CONFIG):
    return state.elapsed_ms(now_ms) > config.timeout_ms


def observe(state, landmarks, now_ms, config=DEFAULT_CONFIG):
    """Apply one sample to a challenge in progress.

    landmarks is None when no face was found; such a sample is not counted
    and the previous landmarks are forgotten so no movement is measured
    across the gap.  Completion needs a face in the current sample and is
    only possible inside the timeout window, so a challenge whose descriptor
    frames keep failing still ends.
    """
    if state.phase != LivenessPhase.CHALLENGE:
        return state

    if landmarks is not None:
        ear = average_ear(landmarks)
        state = _update_blink(state, ear, now_ms, config)
        state = _update_movement(state, landmarks, now_ms, config)
        state = replace(state, last_landmarks=landmarks, last_ear=ear, frame_count=state.frame_count + 1)
    else:
        state = replace(state, last_landmarks=None)

    if is_timed_out(state, now_ms, config):
        return timed_out(state)
    if landmarks is not None and is_complete(state, now_ms, config):
        return replace(state, phase=LivenessPhase.EXTRACTING, completed_at=now_ms,
                       message="Hold still...", error=None)
    return state


def evidence(state):
    """Aggregated evidence frozen at the moment the challenge completed."""
    end = state.completed_at if state.completed_at is not None else state.started_at
    return LivenessEvidence(
        blink_count=state.blink_count,
        head_movement_count=state.head_movement_count,
        elapsed_ms=state.elapsed_ms(end) if end is not None else 0.0,
        sample_count=state.frame_count,
    )


def timed_out(state):
    return LivenessState(phase=LivenessPhase.ERROR, error=ErrorKind.TIMEOUT,
                         message=MESSAGES[ErrorKind.TIMEOUT])


def extraction_failed(state):
    """No face on the descriptor frame: resume the challenge, keep counters."""
    return replace(state, phase=LivenessPhase.CHALLENGE, completed_at=None, last_landmarks=None,
                   message=MESSAGES[ErrorKind.NO_FACE], error=ErrorKind.NO_FACE)


def extraction_succeeded(state):
    return replace(state, phase=LivenessPhase.VERIFYING, submitted=True, message="Verifying...")


def verification_failed(state, now_ms, message=None):
    """Rejected match: a new challenge from zero."""
    return start_challenge(now_ms, message=message or MESSAGES[ErrorKind.MATCH_FAILED],
                           error=ErrorKind.MATCH_FAILED)


def verification_succeeded(state):
    return replace(state, phase=LivenessPhase.VERIFIED, message="Verified", error=None)


def fail(state, kind):
    return LivenessState(phase=LivenessPhase.ERROR, error=kind, message=MESSAGES[kind])


def cancel(state):
    return LivenessState(phase=LivenessPhase.CANCELLED)


# =============================================================================
# Controller
# =============================================================================

class LivenessController(CaptureSession):
    """Runs the liveness challenge, then extracts and submits a descriptor.

    Args:
        models:      provider with load() / detect(frame, with_descriptor)
        camera:      frame source with open() / read() / release()
        submit:      callable(temp_token, descriptor, evidence) ->
                     VerificationResult, sync or async
        temp_token:  short-lived token from the password step
    """

    terminal_phases = TERMINAL_PHASES

    def __init__(self, models, camera, submit, temp_token, config=None, clock=None, on_change=None):
        self.config = config or LivenessConfig()
        super().__init__(models, camera, self.config.sample_interval_s, clock, on_change)
        self.submit = submit
        self.temp_token = temp_token
        self.result = None
        self.state = LivenessState()

    def _on_loading(self):
        return LivenessState(phase=LivenessPhase.LOADING_MODELS, message="Loading face models...")

    def _on_awaiting_camera(self):
        return LivenessState(phase=LivenessPhase.AWAITING_CAMERA, message="Allow camera access")

    def _on_started(self, now_ms):
        self.result = None
        return start_challenge(now_ms)

    def _on_failure(self, kind):
        return fail(self.state, kind)

    def _on_cancel(self):
        return cancel(self.state)

    async def _tick(self):
        if self.state.phase != LivenessPhase.CHALLENGE:
            return

        frame = await self._read_frame()
        detection = await self._detect(frame, False)
        if self._cancelled:
            return

        landmarks = detection.landmarks if detection is not None else None
        self._set_state(observe(self.state, landmarks, self.clock(), self.config))

        if self.state.phase == LivenessPhase.ERROR:
            logger.info("Liveness challenge timed out")
        elif self.state.phase == LivenessPhase.EXTRACTING:
            await self._extract()

    async def _extract(self):
        # one more frame, taken after the challenge completed
        frame = await self._read_frame()
        detection = await self._describe(frame)
        if self._cancelled:
            return

        if detection is None or detection.descriptor is None:
            self._set_state(extraction_failed(self.state))
            return

        proof = evidence(self.state)
        self._set_state(extraction_succeeded(self.state))
        await self._verify(detection.descriptor, proof)

    async def _verify(self, descriptor, proof):
        try:
            result = await call_maybe_async(self.submit, self.temp_token, descriptor, proof)
        except Exception:
            logger.exception("Verification submission failed")
            result = None
        if self._cancelled:
            return

        if result is not None and result.ok:
            self.result = result
            self._set_state(verification_succeeded(self.state))
            return

        if result is not None:
            logger.info("Verification rejected: %s", result.reason)
        self._set_state(verification_failed(self.state, self.clock()))
