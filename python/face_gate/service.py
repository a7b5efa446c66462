"""
Face auth service
=================
Owner-side operations behind the HTTP routes and the demo app:

  register  store descriptors (several replace the set, one is appended)
  verify    temp token + descriptor + liveness evidence -> session token
  status    is a face registered, and how many descriptors
  delete    drop the face data, login falls back to password only
"""

import logging

from .config import MatcherConfig, ServerSettings
from .errors import StoreError, TokenError, TokenExpiredError
from .matcher import (FACE_MISMATCH, INSUFFICIENT_LIVENESS, INVALID_DESCRIPTOR,
                      NOT_ENROLLED, VerificationMatcher, liveness_satisfied, parse_descriptor)
from .store import OWNER_ROLE
from .tokens import create_face_verify_token, create_session_token, verify_face_verify_token
from .types import EnrollmentReceipt, VerificationResult

logger = logging.getLogger(__name__)

TOKEN_EXPIRED = "token_expired"
INVALID_TOKEN = "invalid_token"
FORBIDDEN = "forbidden"

REASON_MESSAGES = {
    INVALID_DESCRIPTOR: "A temp token and a face descriptor of 128 numbers are required.",
    INSUFFICIENT_LIVENESS: "Liveness check failed: at least 2 blinks, head turns and 3 seconds are required.",
    TOKEN_EXPIRED: "Verification time is up. Log in again with email and password.",
    INVALID_TOKEN: "Invalid verification token.",
    FORBIDDEN: "User not found or not an owner.",
    NOT_ENROLLED: "The owner's face is not registered.",
    FACE_MISMATCH: "Face does not match. Try again.",
}


def public_user(user):
    """User record without the stored biometrics."""
    return {k: v for k, v in user.items() if k != "face_descriptors"}


class FaceAuthService:
    def __init__(self, store, settings=None, matcher=None):
        self.store = store
        self.settings = settings or ServerSettings()
        self.matcher = matcher or VerificationMatcher(MatcherConfig(threshold=self.settings.match_threshold))

    # ----- registration -----

    def register(self, user_id, descriptors):
        valid = [d for d in descriptors if parse_descriptor(d, self.matcher.embed_dim) is not None]
        if not valid:
            return EnrollmentReceipt(False, reason=INVALID_DESCRIPTOR)
        user = self.store.get_user(user_id)
        if user is None or user.get("role") != OWNER_ROLE:
            return EnrollmentReceipt(False, reason=FORBIDDEN)
        try:
            count = self.store.save_descriptors(user_id, [[float(x) for x in d] for d in valid])
        except StoreError:
            logger.exception("Face registration failed for %s", user_id)
            return EnrollmentReceipt(False, reason="store_failed")
        return EnrollmentReceipt(True, count=count)

    def status(self, user_id):
        count = len(self.store.get_descriptors(user_id))
        return {"registered": count > 0, "count": count}

    def delete(self, user_id):
        self.store.clear_descriptors(user_id)

    # ----- verification -----

    def issue_face_verify_token(self, user_id):
        return create_face_verify_token(user_id, self.settings)

    def verify(self, temp_token, descriptor, evidence):
        """Second factor check; the returned reason selects the HTTP status."""
        if not temp_token or parse_descriptor(descriptor, self.matcher.embed_dim) is None:
            return self._reject(INVALID_DESCRIPTOR)
        if not liveness_satisfied(evidence, self.matcher.liveness):
            return self._reject(INSUFFICIENT_LIVENESS)

        try:
            payload = verify_face_verify_token(temp_token, self.settings)
        except TokenExpiredError:
            return self._reject(TOKEN_EXPIRED)
        except TokenError as e:
            logger.warning("Face verify token rejected: %s", e)
            return self._reject(INVALID_TOKEN)

        user = self.store.get_user(payload.get("userId"))
        if user is None or user.get("role") != OWNER_ROLE:
            return self._reject(FORBIDDEN)

        result = self.matcher.verify(descriptor, user.get("face_descriptors") or [], evidence)
        if not result.accepted:
            logger.info("Face verification for %s rejected: %s (distance %.3f)",
                        user["id"], result.reason, result.distance)
            return self._reject(result.reason, result.distance)

        logger.info("Face verified for %s (distance %.3f)", user["id"], result.distance)
        return VerificationResult(
            ok=True,
            token=create_session_token(user, self.settings),
            user=public_user(user),
            distance=result.distance,
        )

    def _reject(self, reason, distance=None):
        return VerificationResult(ok=False, reason=reason, detail=REASON_MESSAGES.get(reason),
                                  distance=distance)

    # ----- controller adapters -----

    def enrollment_submitter(self, user_id):
        """submit(descriptors) callable for EnrollmentController."""
        def submit(descriptors):
            return self.register(user_id, [list(d) for d in descriptors])
        return submit

    def verification_submitter(self):
        """submit(temp_token, descriptor, evidence) callable for LivenessController."""
        def submit(temp_token, descriptor, evidence):
            return self.verify(temp_token, [float(x) for x in descriptor], evidence)
        return submit
