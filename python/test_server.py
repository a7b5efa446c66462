"""
API tests for the face routes (FastAPI TestClient)
"""
import numpy as np
import pytest
from fastapi.testclient import TestClient

from conftest import unit_descriptor
from face_gate.config import ServerSettings
from face_gate.server import create_app
from face_gate.service import FaceAuthService
from face_gate.store import ProfileStore
from face_gate.tokens import create_face_verify_token, create_session_token

SETTINGS = ServerSettings(secret_key="test-secret")

LIVE = {"blinkCount": 2, "headMovementCount": 3, "elapsedMs": 3500, "sampleCount": 18}


def vec(value, index=0):
    return unit_descriptor(value, index).tolist()


@pytest.fixture
def store(tmp_path):
    store = ProfileStore(str(tmp_path / "profiles.json"))
    store.add_user("owner-1", email="owner@example.com")
    store.add_user("manager-1", email="manager@example.com", role="manager")
    return store


@pytest.fixture
def client(store):
    return TestClient(create_app(SETTINGS, store))


def auth(user_id="owner-1", role="owner"):
    token = create_session_token({"id": user_id, "role": role}, SETTINGS)
    return {"Authorization": f"Bearer {token}"}


class TestFaceRegister:
    def test_requires_login(self, client):
        assert client.post("/api/auth/face-register", json={"descriptor": vec(0.1)}).status_code == 401

    def test_owner_only(self, client):
        resp = client.post("/api/auth/face-register", json={"descriptor": vec(0.1)},
                           headers=auth("manager-1", "manager"))
        assert resp.status_code == 403

    def test_several_descriptors_replace_first_five(self, client, store):
        store.save_descriptors("owner-1", [vec(9.0)])
        body = {"descriptors": [vec(float(i + 1)) for i in range(7)]}
        resp = client.post("/api/auth/face-register", json=body, headers=auth())
        assert resp.status_code == 200
        assert resp.json() == {"success": True, "message": "Face registered", "count": 5}
        stored = store.get_descriptors("owner-1")
        assert [d[0] for d in stored] == [1.0, 2.0, 3.0, 4.0, 5.0]

    def test_single_descriptor_appends_last_five(self, client, store):
        store.save_descriptors("owner-1", [vec(float(i + 1)) for i in range(5)])
        resp = client.post("/api/auth/face-register", json={"descriptor": vec(6.0)}, headers=auth())
        assert resp.json()["count"] == 5
        assert [d[0] for d in store.get_descriptors("owner-1")] == [2.0, 3.0, 4.0, 5.0, 6.0]

    def test_malformed_descriptors_filtered(self, client, store):
        body = {"descriptors": [vec(1.0), [0.1] * 10, "junk"]}
        resp = client.post("/api/auth/face-register", json=body, headers=auth())
        assert resp.json()["count"] == 1

    @pytest.mark.parametrize("body", [{}, {"descriptor": [0.1] * 127}, {"descriptors": [[0.1] * 3]}])
    def test_invalid_body(self, client, body):
        assert client.post("/api/auth/face-register", json=body, headers=auth()).status_code == 400


class TestFaceStatusAndDelete:
    def test_status(self, client, store):
        assert client.get("/api/auth/face-status", headers=auth()).json() == {
            "success": True, "registered": False, "count": 0}
        store.save_descriptors("owner-1", [vec(0.1), vec(0.2)])
        assert client.get("/api/auth/face-status", headers=auth()).json()["count"] == 2

    def test_delete(self, client, store):
        store.save_descriptors("owner-1", [vec(0.1)])
        assert client.post("/api/auth/face-delete", headers=auth()).status_code == 200
        assert store.get_descriptors("owner-1") == []

    def test_delete_owner_only(self, client):
        resp = client.post("/api/auth/face-delete", headers=auth("manager-1", "manager"))
        assert resp.status_code == 403


class TestFaceVerify:
    @pytest.fixture(autouse=True)
    def enrolled(self, store):
        store.save_descriptors("owner-1", [vec(0.3), vec(0.9)])

    def body(self, descriptor=None, liveness=LIVE, user_id="owner-1", token=None):
        return {
            "tempToken": token or create_face_verify_token(user_id, SETTINGS),
            "descriptor": descriptor if descriptor is not None else np.zeros(128).tolist(),
            "livenessData": liveness,
        }

    def test_match_issues_session(self, client):
        resp = client.post("/api/auth/face-verify", json=self.body())
        assert resp.status_code == 200
        data = resp.json()
        assert data["authenticated"] is True
        assert data["data"]["user"]["id"] == "owner-1"
        assert "face_descriptors" not in data["data"]["user"]
        assert data["data"]["token"]

    def test_mismatch_is_200_unauthenticated(self, client):
        resp = client.post("/api/auth/face-verify", json=self.body(descriptor=vec(1.0, index=5)))
        assert resp.status_code == 200
        assert resp.json()["authenticated"] is False

    def test_insufficient_liveness(self, client):
        weak = dict(LIVE, blinkCount=1)
        assert client.post("/api/auth/face-verify", json=self.body(liveness=weak)).status_code == 403

    def test_missing_liveness(self, client):
        assert client.post("/api/auth/face-verify", json=self.body(liveness=None)).status_code == 403

    def test_invalid_descriptor(self, client):
        resp = client.post("/api/auth/face-verify", json=self.body(descriptor=[0.1] * 12))
        assert resp.status_code == 400

    def test_missing_token(self, client):
        body = self.body()
        del body["tempToken"]
        assert client.post("/api/auth/face-verify", json=body).status_code == 400

    def test_expired_token(self, client):
        token = create_face_verify_token("owner-1", SETTINGS, minutes=-1)
        assert client.post("/api/auth/face-verify", json=self.body(token=token)).status_code == 401

    def test_non_owner(self, client):
        assert client.post("/api/auth/face-verify", json=self.body(user_id="manager-1")).status_code == 403

    def test_unknown_user(self, client):
        assert client.post("/api/auth/face-verify", json=self.body(user_id="ghost")).status_code == 403

    def test_not_enrolled(self, client, store):
        store.clear_descriptors("owner-1")
        assert client.post("/api/auth/face-verify", json=self.body()).status_code == 400


class TestServiceAdapters:
    def test_enrollment_submitter(self, store):
        service = FaceAuthService(store, SETTINGS)
        receipt = service.enrollment_submitter("owner-1")([np.full(128, 0.1)] * 4)
        assert receipt.ok
        assert receipt.count == 4

    def test_verification_submitter(self, store):
        service = FaceAuthService(store, SETTINGS)
        store.save_descriptors("owner-1", [vec(0.1)])
        token = service.issue_face_verify_token("owner-1")
        result = service.verification_submitter()(token, np.zeros(128), LIVE)
        assert result.ok
        assert result.user["email"] == "owner@example.com"

    def test_non_owner_cannot_register(self, store):
        receipt = FaceAuthService(store, SETTINGS).register("manager-1", [vec(0.1)])
        assert not receipt.ok
        assert receipt.reason == "forbidden"
