"""
Enrollment
==========
Pose-guided capture of one face descriptor per step:

  CENTER -> LEFT -> RIGHT -> CENTER

Each step requires the expected pose to be held continuously for hold_ms
(a pose break resets the hold).  The frame that completes the hold is
mirrored, preprocessed and used for the descriptor.  After the last step the
ordered list is submitted to storage.

The state is an immutable EnrollmentState advanced by the pure functions
below; EnrollmentController performs the camera / model / storage I/O.
"""

import logging
from dataclasses import dataclass, replace
from enum import Enum
from typing import Optional, Tuple

from .config import EnrollmentConfig
from .errors import MESSAGES, ErrorKind
from .geometry import pose_from_landmarks
from .session import CaptureSession, call_maybe_async
from .types import DEFAULT_POSE_STEPS, Pose, PoseStep

logger = logging.getLogger(__name__)


class EnrollmentPhase(str, Enum):
    IDLE = "idle"
    LOADING_MODELS = "loading_models"
    AWAITING_CAMERA = "awaiting_camera"
    POSING = "posing"
    CAPTURING = "capturing"
    SUBMITTING = "submitting"
    SUCCESS = "success"
    ERROR = "error"
    CANCELLED = "cancelled"


TERMINAL_PHASES = frozenset({EnrollmentPhase.SUCCESS, EnrollmentPhase.ERROR, EnrollmentPhase.CANCELLED})


@dataclass(frozen=True)
class EnrollmentState:
    phase: EnrollmentPhase = EnrollmentPhase.IDLE
    steps: Tuple[PoseStep, ...] = DEFAULT_POSE_STEPS
    step_index: int = 0
    hold_started_at: Optional[float] = None
    descriptors: tuple = ()
    pose: Optional[Pose] = None
    message: str = ""
    error: Optional[ErrorKind] = None
    stored_count: int = 0

    @property
    def current_step(self):
        return self.steps[self.step_index]

    @property
    def is_last_step(self):
        return self.step_index == len(self.steps) - 1


# =============================================================================
# Transitions
# =============================================================================

def begin_loading(state):
    return replace(state, phase=EnrollmentPhase.LOADING_MODELS, message="Loading face models...", error=None)


def await_camera(state):
    return replace(state, phase=EnrollmentPhase.AWAITING_CAMERA, message="Allow camera access")


def begin_posing(state):
    if not state.steps:
        raise ValueError("enrollment needs at least one pose step")
    return replace(
        state,
        phase=EnrollmentPhase.POSING,
        step_index=0,
        hold_started_at=None,
        descriptors=(),
        pose=None,
        message=state.steps[0].label,
        error=None,
    )


def observe_pose(state, pose, now_ms):
    """Apply one landmark sample. pose is None when no face was found."""
    if state.phase != EnrollmentPhase.POSING:
        return state

    step = state.current_step
    if pose != step.pose:
        return replace(state, pose=pose, hold_started_at=None)

    started = state.hold_started_at if state.hold_started_at is not None else now_ms
    if now_ms - started >= step.hold_ms:
        return replace(state, pose=pose, hold_started_at=started,
                       phase=EnrollmentPhase.CAPTURING, message="Capturing...")
    return replace(state, pose=pose, hold_started_at=started)


def hold_progress(state, now_ms):
    """0..1 fraction of the current hold, for the overlay."""
    if state.phase != EnrollmentPhase.POSING or state.hold_started_at is None:
        return 0.0
    return min(1.0, max(0.0, (now_ms - state.hold_started_at) / state.current_step.hold_ms))


def capture_failed(state):
    """No face at capture time: retry the same step from scratch."""
    return replace(
        state,
        phase=EnrollmentPhase.POSING,
        hold_started_at=None,
        message=state.current_step.label,
        error=ErrorKind.NO_FACE,
    )


def capture_succeeded(state, descriptor):
    descriptors = state.descriptors + (descriptor,)
    if state.is_last_step:
        return replace(state, phase=EnrollmentPhase.SUBMITTING, descriptors=descriptors,
                       hold_started_at=None, message="Saving...", error=None)
    next_index = state.step_index + 1
    return replace(
        state,
        phase=EnrollmentPhase.POSING,
        step_index=next_index,
        descriptors=descriptors,
        hold_started_at=None,
        message=state.steps[next_index].label,
        error=None,
    )


def submit_succeeded(state, count):
    return replace(state, phase=EnrollmentPhase.SUCCESS, stored_count=count,
                   message=f"Face registered. Snapshots stored: {count}.", error=None)


def submit_failed(state):
    """Storage failed: retry the last step, keeping the earlier captures."""
    return replace(
        state,
        phase=EnrollmentPhase.POSING,
        descriptors=state.descriptors[:state.step_index],
        hold_started_at=None,
        message=state.current_step.label,
        error=ErrorKind.SUBMIT_FAILED,
    )


def fail(state, kind):
    return replace(state, phase=EnrollmentPhase.ERROR, hold_started_at=None,
                   descriptors=(), error=kind, message=MESSAGES[kind])


def cancel(state):
    return replace(state, phase=EnrollmentPhase.CANCELLED, hold_started_at=None,
                   descriptors=(), pose=None, message="", error=None)


# =============================================================================
# Controller
# =============================================================================

class EnrollmentController(CaptureSession):
    """Runs one enrollment against a camera, a model provider and storage.

    Args:
        models:  provider with load() / detect(frame, with_descriptor)
        camera:  frame source with open() / read() / release()
        submit:  callable(list_of_descriptors) -> EnrollmentReceipt,
                 sync or async
    """

    terminal_phases = TERMINAL_PHASES

    def __init__(self, models, camera, submit, steps=DEFAULT_POSE_STEPS,
                 config=None, clock=None, on_change=None):
        self.config = config or EnrollmentConfig()
        super().__init__(models, camera, self.config.sample_interval_s, clock, on_change)
        self.submit = submit
        self.state = EnrollmentState(steps=tuple(steps))

    def _on_loading(self):
        return begin_loading(self.state)

    def _on_awaiting_camera(self):
        return await_camera(self.state)

    def _on_started(self, now_ms):
        return begin_posing(self.state)

    def _on_failure(self, kind):
        return fail(self.state, kind)

    def _on_cancel(self):
        return cancel(self.state)

    async def _tick(self):
        if self.state.phase != EnrollmentPhase.POSING:
            return

        frame = await self._read_frame()
        detection = await self._detect(frame, False)
        if self._cancelled:
            return

        mirrored = self.config.mirror_capture
        pose = pose_from_landmarks(detection.landmarks, mirrored=mirrored) if detection is not None else None
        self._set_state(observe_pose(self.state, pose, self.clock()))

        if self.state.phase == EnrollmentPhase.CAPTURING:
            await self._capture(frame)

    async def _capture(self, frame):
        # the frame whose landmarks completed the hold
        detection = await self._describe(frame, self.config.mirror_capture)
        if self._cancelled:
            return

        if detection is None or detection.descriptor is None:
            logger.info("No face at capture time (step %d)", self.state.step_index)
            self._set_state(capture_failed(self.state))
            return

        self._set_state(capture_succeeded(self.state, detection.descriptor))
        if self.state.phase == EnrollmentPhase.SUBMITTING:
            await self._submit()

    async def _submit(self):
        try:
            receipt = await call_maybe_async(self.submit, list(self.state.descriptors))
        except Exception:
            logger.exception("Enrollment submission failed")
            receipt = None
        if self._cancelled:
            return

        if receipt is not None and receipt.ok:
            self._set_state(submit_succeeded(self.state, receipt.count))
        else:
            if receipt is not None:
                logger.warning("Enrollment rejected: %s", receipt.reason)
            self._set_state(submit_failed(self.state))
