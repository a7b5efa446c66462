"""
HTTP API
========
FastAPI routes for the face second factor:

  POST /api/auth/face-register   owner, store descriptors
  POST /api/auth/face-verify     temp token + descriptor + liveness -> session
  GET  /api/auth/face-status     owner, registered / count
  POST /api/auth/face-delete     owner, drop face data

Run with:  uvicorn --factory face_gate.server:create_app
"""

import logging
from typing import Any, List, Optional

from fastapi import Depends, FastAPI, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel

from .config import ServerSettings
from .errors import StoreError, TokenError
from .matcher import FACE_MISMATCH, INSUFFICIENT_LIVENESS, INVALID_DESCRIPTOR, NOT_ENROLLED
from .service import FORBIDDEN, INVALID_TOKEN, TOKEN_EXPIRED, FaceAuthService
from .store import OWNER_ROLE, ProfileStore
from .tokens import decode_session_token

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

REASON_STATUS = {
    INVALID_DESCRIPTOR: 400,
    INSUFFICIENT_LIVENESS: 403,
    TOKEN_EXPIRED: 401,
    INVALID_TOKEN: 401,
    FORBIDDEN: 403,
    NOT_ENROLLED: 400,
}


# ----- request bodies -----

class FaceRegisterIn(BaseModel):
    descriptor: Optional[Any] = None
    descriptors: Optional[List[Any]] = None


class FaceVerifyIn(BaseModel):
    # loosely typed so malformed input gets a 400 from the service, not a 422
    tempToken: Optional[str] = None
    descriptor: Optional[Any] = None
    livenessData: Optional[Any] = None


def create_app(settings=None, store=None):
    settings = settings or ServerSettings.from_env()
    store = store or ProfileStore(settings.store_path)
    service = FaceAuthService(store, settings)

    app = FastAPI(title="Face Gate")
    app.state.service = service
    bearer = HTTPBearer(auto_error=False)

    def current_owner(credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer)):
        if credentials is None:
            raise HTTPException(status_code=401, detail="Not authenticated")
        try:
            payload = decode_session_token(credentials.credentials, settings)
        except TokenError:
            raise HTTPException(status_code=401, detail="Invalid or expired token")
        if payload.get("role") != OWNER_ROLE:
            raise HTTPException(status_code=403, detail="Only the owner can manage face data")
        return payload["userId"]

    @app.post("/api/auth/face-register")
    def face_register(body: FaceRegisterIn, user_id: str = Depends(current_owner)):
        if body.descriptors is not None:
            candidates = [d for d in body.descriptors if isinstance(d, list)]
        elif isinstance(body.descriptor, list):
            candidates = [body.descriptor]
        else:
            candidates = []

        if store.get_user(user_id) is None:
            raise HTTPException(status_code=404, detail="User not found")

        receipt = service.register(user_id, candidates)
        if not receipt.ok:
            if receipt.reason == INVALID_DESCRIPTOR:
                raise HTTPException(
                    status_code=400,
                    detail="A descriptor (128 numbers) or a list of descriptors is required",
                )
            if receipt.reason == FORBIDDEN:
                raise HTTPException(status_code=403, detail="Only the owner can register a face")
            raise HTTPException(status_code=500, detail="Face registration failed")
        return {"success": True, "message": "Face registered", "count": receipt.count}

    @app.post("/api/auth/face-verify")
    def face_verify(body: FaceVerifyIn):
        result = service.verify(body.tempToken, body.descriptor, body.livenessData)
        if result.ok:
            return {"success": True, "authenticated": True,
                    "data": {"user": result.user, "token": result.token}}
        if result.reason == FACE_MISMATCH:
            return {"success": True, "authenticated": False, "error": result.detail}
        raise HTTPException(status_code=REASON_STATUS.get(result.reason, 500), detail=result.detail)

    @app.get("/api/auth/face-status")
    def face_status(user_id: str = Depends(current_owner)):
        return {"success": True, **service.status(user_id)}

    @app.post("/api/auth/face-delete")
    def face_delete(user_id: str = Depends(current_owner)):
        try:
            service.delete(user_id)
        except StoreError:
            logger.exception("Face data removal failed for %s", user_id)
            raise HTTPException(status_code=500, detail="Could not remove face data")
        return {"success": True, "message": "Face data removed. Login is password only now."}

    return app

