"""Signed tokens: the session JWT and the short-lived face-verify JWT."""

from datetime import datetime, timedelta, timezone

from jose import ExpiredSignatureError, JWTError, jwt

from .errors import TokenError, TokenExpiredError

FACE_VERIFY_PURPOSE = "face_verify"


def _encode(claims, settings, minutes):
    to_encode = dict(claims)
    to_encode["exp"] = datetime.now(timezone.utc) + timedelta(minutes=minutes)
    return jwt.encode(to_encode, settings.secret_key, algorithm=settings.algorithm)


def _decode(token, settings):
    if not token:
        raise TokenError("token missing")
    try:
        return jwt.decode(token, settings.secret_key, algorithms=[settings.algorithm])
    except ExpiredSignatureError as e:
        raise TokenExpiredError("token expired") from e
    except JWTError as e:
        raise TokenError(f"invalid token: {e}") from e


def create_session_token(user, settings):
    claims = {"userId": user["id"], "role": user.get("role"), "email": user.get("email")}
    return _encode(claims, settings, settings.session_token_minutes)


def decode_session_token(token, settings):
    payload = _decode(token, settings)
    if payload.get("purpose") is not None or "userId" not in payload:
        raise TokenError("not a session token")
    return payload


def create_face_verify_token(user_id, settings, minutes=None):
    """Issued after the password step; only good for the face check."""
    if minutes is None:
        minutes = settings.face_verify_token_minutes
    return _encode({"userId": user_id, "purpose": FACE_VERIFY_PURPOSE}, settings, minutes)


def verify_face_verify_token(token, settings):
    payload = _decode(token, settings)
    if payload.get("purpose") != FACE_VERIFY_PURPOSE:
        raise TokenError("invalid token purpose")
    return payload
