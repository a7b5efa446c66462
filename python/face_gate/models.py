"""
Face Models
===========
Detection + 68-point landmarks + 128-d descriptor, behind one small
interface used by the controllers:

    load()                                  -> None, raises ModelLoadError
    detect(frame_bgr, with_descriptor=True) -> Detection | None

Three artifacts are loaded independently and all must be ready before the
first detect() call:
  - detector:   MTCNN (facenet-pytorch) or dlib HOG via face_recognition
  - landmarks:  dlib 68-point shape predictor (face_recognition_models)
  - descriptor: dlib ResNet face recognition model (face_recognition_models)

The heavy imports happen inside load() so that importing this module stays
cheap; loading is a suspension point of the session and runs off the event
loop.
"""

import logging
import os

import cv2
import numpy as np

from .errors import ModelLoadError
from .types import Detection, as_descriptor

logger = logging.getLogger(__name__)

ARTIFACTS = ("detector", "landmarks", "descriptor")


class FaceModels:
    """face_recognition (dlib) backed model provider."""

    def __init__(self, detector="hog", mtcnn_min_prob=0.9, upsample=1):
        if detector not in ("hog", "mtcnn"):
            raise ValueError(f"unknown detector: {detector}")
        self.detector = detector
        self.mtcnn_min_prob = mtcnn_min_prob
        self.upsample = upsample

        self._fr = None
        self._mtcnn = None
        self.loaded = dict.fromkeys(ARTIFACTS, False)

    @property
    def ready(self):
        return all(self.loaded.values())

    # ----- loading -----

    def load(self):
        """Load all three artifacts. Raises ModelLoadError on any failure."""
        self._load_landmarks_and_descriptor()
        self._load_detector()
        logger.info("Face models loaded (detector=%s)", self.detector)

    def _load_landmarks_and_descriptor(self):
        try:
            import face_recognition_models
        except ImportError as e:
            raise ModelLoadError("face_recognition_models is not installed") from e

        for artifact, path in (
            ("landmarks", face_recognition_models.pose_predictor_model_location()),
            ("descriptor", face_recognition_models.face_recognition_model_location()),
        ):
            if not os.path.exists(path):
                raise ModelLoadError(f"{artifact} model missing: {path}")

        try:
            # loads the shape predictor and the recognition network
            import face_recognition
        except Exception as e:
            raise ModelLoadError("face_recognition failed to initialise") from e

        self._fr = face_recognition
        self.loaded["landmarks"] = True
        self.loaded["descriptor"] = True

    def _load_detector(self):
        if self.detector == "hog":
            self.loaded["detector"] = True
            return
        try:
            import torch
            from facenet_pytorch import MTCNN

            device = torch.device('cuda' if torch.cuda.is_available() else 'cpu')
            self._mtcnn = MTCNN(
                image_size=160,
                margin=0,
                min_face_size=20,
                thresholds=[0.6, 0.7, 0.7],
                factor=0.709,
                post_process=False,
                device=device,
                keep_all=True,
            )
        except Exception as e:
            raise ModelLoadError("MTCNN detector failed to load") from e
        self.loaded["detector"] = True

    # ----- detection -----

    def _locate(self, rgb):
        """Face boxes as (top, right, bottom, left)."""
        if self._mtcnn is None:
            return self._fr.face_locations(rgb, number_of_times_to_upsample=self.upsample)

        boxes, probs = self._mtcnn.detect(rgb)
        if boxes is None:
            return []
        h, w = rgb.shape[:2]
        locations = []
        for box, prob in zip(boxes, probs):
            if prob < self.mtcnn_min_prob:
                continue
            x1, y1, x2, y2 = [int(b) for b in box]
            locations.append((max(0, y1), min(w, x2), min(h, y2), max(0, x1)))
        return locations

    def detect(self, frame_bgr, with_descriptor=True):
        """Landmarks (and descriptor) of the largest face, or None."""
        if not self.ready:
            raise RuntimeError("models are not loaded")
        if frame_bgr is None or frame_bgr.size == 0:
            return None

        rgb = np.ascontiguousarray(cv2.cvtColor(frame_bgr, cv2.COLOR_BGR2RGB))
        locations = self._locate(rgb)
        if not locations:
            return None

        loc = max(locations, key=lambda l: (l[2] - l[0]) * (l[1] - l[3]))
        lm_list = self._fr.face_landmarks(rgb, face_locations=[loc])
        if not lm_list:
            return None

        descriptor = None
        if with_descriptor:
            encodings = self._fr.face_encodings(rgb, known_face_locations=[loc])
            if not encodings:
                return None
            descriptor = as_descriptor(encodings[0])

        return Detection(landmarks=lm_list[0], descriptor=descriptor)
