"""
JSON-file profile store.

Layout on disk:

    {"users": {"<user id>": {"id": ..., "email": ..., "role": ...,
                             "face_descriptors": [[128 floats], ...]}}}

An empty or corrupted file is reset to an empty store.
"""

import json
import logging
import os
import threading
from typing import Any, Dict, List, Optional

from .config import MAX_DESCRIPTORS
from .errors import StoreError

logger = logging.getLogger(__name__)

OWNER_ROLE = "owner"


def merge_descriptors(current, incoming, limit=MAX_DESCRIPTORS):
    """Several new descriptors replace the set, a single one is appended.

    Either way at most `limit` are kept: the first ones of a replacement,
    the most recent ones of an append.
    """
    incoming = [list(d) for d in incoming]
    if len(incoming) > 1:
        return incoming[:limit]
    return ([list(d) for d in current] + incoming)[-limit:]


class ProfileStore:
    def __init__(self, path):
        self.path = path
        self._lock = threading.Lock()
        folder = os.path.dirname(path)
        if folder:
            os.makedirs(folder, exist_ok=True)
        if not os.path.exists(path):
            self._write({"users": {}})

    def _read(self) -> Dict[str, Any]:
        try:
            with open(self.path, "r") as f:
                data = json.load(f)
            if not isinstance(data, dict) or not isinstance(data.get("users"), dict):
                raise ValueError("unexpected store layout")
            return data
        except (json.JSONDecodeError, ValueError, FileNotFoundError):
            logger.warning("Profile store %s unreadable, resetting", self.path)
            data = {"users": {}}
            self._write(data)
            return data

    def _write(self, data: Dict[str, Any]):
        tmp = self.path + ".tmp"
        try:
            with open(tmp, "w") as f:
                json.dump(data, f, indent=2)
            os.replace(tmp, self.path)
        except OSError as e:
            raise StoreError(f"cannot write {self.path}: {e}") from e

    # ----- users -----

    def add_user(self, user_id: str, email: str = "", role: str = OWNER_ROLE) -> Dict[str, Any]:
        with self._lock:
            db = self._read()
            record = db["users"].get(user_id)
            if record is None:
                record = {"id": user_id, "email": email, "role": role, "face_descriptors": []}
                db["users"][user_id] = record
                self._write(db)
            return dict(record)

    def get_user(self, user_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            record = self._read()["users"].get(user_id)
            return dict(record) if record is not None else None

    # ----- descriptors -----

    def get_descriptors(self, user_id: str) -> List[List[float]]:
        user = self.get_user(user_id)
        if user is None:
            return []
        return user.get("face_descriptors") or []

    def save_descriptors(self, user_id: str, descriptors) -> int:
        """Apply the replace / append policy and persist; returns the stored count."""
        with self._lock:
            db = self._read()
            record = db["users"].get(user_id)
            if record is None:
                raise StoreError(f"unknown user {user_id}")
            merged = merge_descriptors(record.get("face_descriptors") or [], descriptors)
            record["face_descriptors"] = merged
            self._write(db)
        logger.info("Stored %d descriptor(s) for %s", len(merged), user_id)
        return len(merged)

    def clear_descriptors(self, user_id: str) -> None:
        with self._lock:
            db = self._read()
            record = db["users"].get(user_id)
            if record is None:
                raise StoreError(f"unknown user {user_id}")
            record["face_descriptors"] = []
            self._write(db)
        logger.info("Cleared face data for %s", user_id)
