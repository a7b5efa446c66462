"""
Shared fakes: landmark builder, model provider, camera and clock.

Nothing here needs a webcam or the dlib model files.
"""

import numpy as np
import pytest

from face_gate.errors import ModelLoadError
from face_gate.types import Detection, as_descriptor

EYE_WIDTH = 30.0
LEFT_EYE_X = 260.0
RIGHT_EYE_X = 350.0
EYE_Y = 220.0


def eye(x0, y, ear):
    """6 points p1..p6 whose aspect ratio is exactly `ear`."""
    half = EYE_WIDTH * ear / 2.0
    return [
        (x0, y),
        (x0 + 10, y - half),
        (x0 + 20, y - half),
        (x0 + EYE_WIDTH, y),
        (x0 + 20, y + half),
        (x0 + 10, y + half),
    ]


def make_landmarks(ear=0.5, nose=(320.0, 260.0)):
    """face_recognition style landmark dict.

    The outer eye corners sit at x=260 and x=380, so the eye center is x=320
    and the span is 120 px.
    """
    nx, ny = nose
    return {
        "left_eye": eye(LEFT_EYE_X, EYE_Y, ear),
        "right_eye": eye(RIGHT_EYE_X, EYE_Y, ear),
        "nose_tip": [(nx - 10, ny), (nx - 5, ny), (nx, ny), (nx + 5, ny), (nx + 10, ny)],
    }


def landmarks_for_offset(offset, ear=0.5):
    """Landmarks whose yaw offset (nose vs eye center, over eye span) is `offset`."""
    return make_landmarks(ear=ear, nose=(320.0 + offset * 120.0, 260.0))


def unit_descriptor(value, index=0, dim=128):
    vec = np.zeros(dim)
    vec[index] = value
    return vec


class FakeModels:
    """Scripted model provider.

    landmarks:   callable() -> landmark dict or None, used for sampling calls
    descriptors: callable() -> vector or None, used for extraction calls
    """

    def __init__(self, landmarks=None, descriptors=None, ready=True, fail_load=False):
        self.landmarks = landmarks or (lambda: None)
        self.descriptors = descriptors or (lambda: None)
        self.ready = ready
        self.fail_load = fail_load
        self.sample_calls = 0
        self.extract_calls = 0

    def load(self):
        if self.fail_load:
            raise ModelLoadError("weights unreachable")
        self.ready = True

    def detect(self, frame, with_descriptor=True):
        if with_descriptor:
            self.extract_calls += 1
            vec = self.descriptors()
            if vec is None:
                return None
            return Detection(make_landmarks(), as_descriptor(vec))
        self.sample_calls += 1
        lm = self.landmarks()
        return None if lm is None else Detection(lm)


class FakeCamera:
    def __init__(self, open_error=None, empty_after=None):
        self.open_error = open_error
        # reads past this count return a 0x0 frame, as a stalled device can
        self.empty_after = empty_after
        self.opened = False
        self.release_count = 0
        self.reads = 0

    @property
    def released(self):
        return self.release_count > 0

    def open(self):
        if self.open_error is not None:
            raise self.open_error
        self.opened = True

    def read(self):
        if not self.opened:
            return None
        self.reads += 1
        if self.empty_after is not None and self.reads > self.empty_after:
            return np.zeros((0, 0, 3), dtype=np.uint8)
        return np.full((480, 640, 3), 128, dtype=np.uint8)

    def release(self):
        self.release_count += 1
        self.opened = False


class StepClock:
    """Returns start, start+step, start+2*step ... on successive calls."""

    def __init__(self, step_ms, start_ms=0.0):
        self.step_ms = step_ms
        self.now = start_ms - step_ms

    def __call__(self):
        self.now += self.step_ms
        return self.now


@pytest.fixture
def camera():
    return FakeCamera()
