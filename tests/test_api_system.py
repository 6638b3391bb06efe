from __future__ import annotations

import jwt
import pytest
from fastapi.testclient import TestClient

from mediagate.core.config import get_settings
from mediagate.main import create_app
from tests.conftest import build_token


def test_v1_health_ok(client):
    resp = client.get("/v1/health")
    assert resp.status_code == 200
    payload = resp.json()
    assert payload["status"] == "ok"
    assert payload["max_conversions"] == 10
    assert payload["active_conversions"] == 0


def test_requirements_need_privilege(client, user_headers):
    resp = client.get("/v1/admin/requirements", headers=user_headers)
    assert resp.status_code == 403


def test_requirements_list_every_tool(client, root_headers, monkeypatch):
    monkeypatch.setattr("mediagate.media.adapters.shutil.which", lambda command: None)

    resp = client.get("/v1/admin/requirements", headers=root_headers)

    assert resp.status_code == 200
    payload = resp.json()
    assert payload["all_installed"] is False
    commands = {tool["command"] for tool in payload["tools"]}
    assert commands == {"ffmpeg", "ffprobe", "heif-convert", "magick", "convert", "gs", "assimp"}
    assert all(tool["install_command"] for tool in payload["tools"])


def test_admin_role_is_privileged(client):
    token = jwt.encode(
        {"sub": "9", "role": "admin", "iss": "mediagate-test", "aud": "mediagate"},
        "test-secret",
        algorithm="HS256",
    )
    resp = client.get("/v1/admin/requirements", headers={"Authorization": f"Bearer {token}"})
    assert resp.status_code == 200


def test_token_without_subject_is_rejected(client):
    headers = {"Authorization": f"Bearer {build_token(None)}"}
    resp = client.get("/v1/admin/requirements", headers=headers)
    assert resp.status_code == 403


def test_invalid_token_is_rejected(client):
    resp = client.get("/v1/admin/requirements", headers={"Authorization": "Bearer not-a-jwt"})
    assert resp.status_code == 401


def test_dev_token_disabled_outside_development(client):
    resp = client.post("/v1/admin/dev-token", json={"user_id": "42"})
    assert resp.status_code == 403


@pytest.fixture()
def dev_client(monkeypatch, configure_environment, fake_runner):
    monkeypatch.setenv("MEDIAGATE_ENV", "development")
    get_settings.cache_clear()
    with TestClient(create_app(runner=fake_runner)) as client:
        yield client


def test_dev_token_round_trips_through_auth(dev_client):
    resp = dev_client.post("/v1/admin/dev-token", json={"user_id": "42", "root_access": True})
    assert resp.status_code == 200
    token = resp.json()["token"]

    claims = jwt.decode(token, "test-secret", algorithms=["HS256"], audience="mediagate", issuer="mediagate-test")
    assert claims["sub"] == "42"
    assert claims["root_access"] is True

    check = dev_client.get("/v1/admin/requirements", headers={"Authorization": f"Bearer {token}"})
    assert check.status_code == 200
