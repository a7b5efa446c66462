"""
Smoke tests for the demo overlays (no window is opened)
"""
import numpy as np

from face_gate.app import draw_enrollment_overlay, draw_liveness_overlay
from face_gate.config import LivenessConfig
from face_gate.enrollment import EnrollmentState, begin_posing, observe_pose
from face_gate.liveness import start_challenge, timed_out
from face_gate.types import Pose


def blank():
    return np.zeros((480, 640, 3), dtype=np.uint8)


def test_enrollment_overlay_draws_hold_bar():
    state = observe_pose(begin_posing(EnrollmentState()), Pose.CENTER, 0)
    frame = blank()
    draw_enrollment_overlay(frame, state, 600)
    # half-full progress bar along the top
    assert frame[15, 300].tolist() == [0, 255, 0]
    assert frame[15, 400].tolist() == [0, 0, 0]


def test_liveness_overlay_draws_banner():
    frame = blank()
    draw_liveness_overlay(frame, start_challenge(0), 1000, LivenessConfig())
    assert frame[400:].any()
    assert not frame[:300].any()


def test_error_overlay():
    frame = blank()
    draw_liveness_overlay(frame, timed_out(start_challenge(0)), 0, LivenessConfig())
    assert frame[400:].any()
