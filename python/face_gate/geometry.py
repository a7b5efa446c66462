"""
Landmark Geometry
=================
Pure functions over dlib 68-point landmarks, as returned by
face_recognition.face_landmarks() (a dict of named point lists):

  left_eye / right_eye : 6 points each, p1 = outer corner ... p6
  nose_tip             : 5 points, index 2 is the tip (dlib 33)
  chin, nose_bridge, ... (unused here)

Nothing in this module keeps state.
"""

import numpy as np

from .config import POSE_OFFSET_THRESHOLD
from .types import Displacement, Pose

NEUTRAL_EAR = 0.5


def eye_aspect_ratio(eye_points):
    """Eye Aspect Ratio from 6 eye landmark points.

    EAR = (|p2-p6| + |p3-p5|) / (2 * |p1-p4|)

    Returns NEUTRAL_EAR when fewer than 6 points are given or the eye width
    is degenerate, so a failed landmark fit never registers as a blink.
    """
    if eye_points is None or len(eye_points) < 6:
        return NEUTRAL_EAR
    pts = [np.array(p, dtype=float) for p in eye_points[:6]]
    A = np.linalg.norm(pts[1] - pts[5])
    B = np.linalg.norm(pts[2] - pts[4])
    C = np.linalg.norm(pts[0] - pts[3])
    if C < 1e-6:
        return NEUTRAL_EAR
    return float((A + B) / (2.0 * C))


def average_ear(landmarks):
    left = eye_aspect_ratio(landmarks.get('left_eye'))
    right = eye_aspect_ratio(landmarks.get('right_eye'))
    return (left + right) / 2.0


def nose_point(landmarks):
    """Nose tip (dlib 33) as a float (x, y) array, or None."""
    try:
        return np.array(landmarks['nose_tip'][2], dtype=float)
    except (KeyError, IndexError, TypeError):
        return None


def pose_from_landmarks(landmarks, threshold=POSE_OFFSET_THRESHOLD, mirrored=False):
    """Classify head yaw as center / left / right.

    offset = (nose_x - eye_center_x) / eye_span, where the eye center is the
    mean X of the two outer eye corners.  The threshold is exclusive:
    an offset of exactly +/-threshold is CENTER.

    Raw image orientation by default.  With mirrored=True the result is in
    the orientation of a mirrored preview, which is the user's own left and
    right: a nose left of the eye center in the raw frame is RIGHT.
    """
    try:
        left_corner = np.array(landmarks['left_eye'][0], dtype=float)
        right_corner = np.array(landmarks['right_eye'][3], dtype=float)
    except (KeyError, IndexError, TypeError):
        return Pose.CENTER
    nose = nose_point(landmarks)
    if nose is None:
        return Pose.CENTER

    eye_span = abs(right_corner[0] - left_corner[0])
    if eye_span < 1e-6:
        return Pose.CENTER

    eye_center_x = (left_corner[0] + right_corner[0]) / 2.0
    offset = (nose[0] - eye_center_x) / eye_span
    if mirrored:
        offset = -offset
    if offset < -threshold:
        return Pose.LEFT
    if offset > threshold:
        return Pose.RIGHT
    return Pose.CENTER


def displacement(prev_point, curr_point):
    """Distance moved between two points and its coarse direction.

    Image coordinates: +x is right, +y is down.  Ties go to the vertical
    axis.
    """
    prev = np.asarray(prev_point, dtype=float)
    curr = np.asarray(curr_point, dtype=float)
    dx, dy = curr - prev
    magnitude = float(np.hypot(dx, dy))
    if abs(dx) > abs(dy):
        return Displacement(magnitude, "horizontal", "right" if dx > 0 else "left")
    return Displacement(magnitude, "vertical", "down" if dy > 0 else "up")
