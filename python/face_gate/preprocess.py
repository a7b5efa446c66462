"""Frame normalisation applied before descriptor extraction."""

import cv2
import numpy as np

from .config import PREPROCESS_ALPHA, PREPROCESS_BETA


def preprocess(frame, alpha=PREPROCESS_ALPHA, beta=PREPROCESS_BETA):
    """Linear contrast / brightness lift: clip(alpha * px + beta, 0, 255).

    Returns a new uint8 frame; the input is left untouched.
    """
    if frame is None or frame.size == 0:
        raise ValueError("empty frame")
    return cv2.convertScaleAbs(frame, alpha=alpha, beta=beta)


def mirror(frame):
    """Flip horizontally so a capture matches the mirrored live preview."""
    return np.ascontiguousarray(cv2.flip(frame, 1))


def prepare_capture(frame, mirrored=False):
    if mirrored:
        frame = mirror(frame)
    return preprocess(frame)
