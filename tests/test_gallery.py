import os, sys

import boto3
import pytest
from fastapi.testclient import TestClient
from moto import mock_aws

ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from genthumb.core.auth import AuthConfig, IdentityResolver
from genthumb.core.config import Settings, settings
from genthumb.main import create_app

REGION = "us-east-1"


def _header_user(request):
    return request.headers.get("x-test-user")


@pytest.fixture
def gallery(monkeypatch):
    with mock_aws():
        monkeypatch.setattr(settings, "aws_endpoint_url", None)
        monkeypatch.setattr(settings, "aws_region", REGION)
        monkeypatch.setattr(settings, "bucket_name", "gallery-bucket")
        monkeypatch.setattr(settings, "public_base_url", "https://cdn.example.com/thumbs")
        boto3.client("s3", region_name=REGION).create_bucket(Bucket="gallery-bucket")

        resolver = IdentityResolver(AuthConfig(demo_mode=False, demo_user_id="unused"), provider=_header_user)
        app = create_app(Settings(allowed_origins=["https://thumbs.example.com"]), identity=resolver)
        yield TestClient(app)


def test_gallery_two_users_success(gallery):
    client = gallery
    alice = {"x-test-user": "alice"}
    bob = {"x-test-user": "bob"}

    uploaded = []
    for i in range(3):
        r = client.post("/api/upload", files={"thumbnail": (f"a{i}.png", b"png", "image/png")}, headers=alice)
        assert r.status_code == 200, r.text
        uploaded.append(r.json())
    r = client.post("/api/upload", files={"thumbnail": ("b.webp", b"webp", "image/webp")}, headers=bob)
    assert r.status_code == 200
    bob_file = r.json()

    assert all(u["url"] == f"https://cdn.example.com/thumbs/{u['name']}" for u in uploaded)

    alice_files = client.get("/api/list", headers=alice).json()["files"]
    assert sorted(f["name"] for f in alice_files) == sorted(u["name"] for u in uploaded)
    bob_files = client.get("/api/list", headers=bob).json()["files"]
    assert [f["name"] for f in bob_files] == [bob_file["name"]]

    # bob cannot remove alice's thumbnail, alice can
    target = uploaded[0]["name"]
    assert client.delete("/api/delete", params={"name": target}, headers=bob).status_code == 403
    assert client.delete("/api/delete", params={"name": target}, headers=alice).status_code == 200
    remaining = client.get("/api/list", headers=alice).json()["files"]
    assert target not in [f["name"] for f in remaining]
    assert len(remaining) == 2


def test_gallery_no_identity_failure(gallery):
    r = gallery.get("/api/list")
    assert r.status_code == 401
    assert r.json() == {"error": "Unauthorized"}


def test_gallery_cors_origin_success(gallery):
    r = gallery.options(
        "/api/upload",
        headers={"Origin": "https://thumbs.example.com", "Access-Control-Request-Method": "POST"},
    )
    assert r.status_code == 200
    assert r.content == b""
    assert r.headers["access-control-allow-origin"] == "https://thumbs.example.com"
    assert "POST" in r.headers["access-control-allow-methods"]

    # Other origins still get an empty 200, just without CORS grants
    r = gallery.options(
        "/api/upload",
        headers={"Origin": "https://evil.example.com", "Access-Control-Request-Method": "POST"},
    )
    assert r.status_code == 200
    assert r.content == b""
    assert "access-control-allow-origin" not in r.headers
    assert "access-control-allow-methods" not in r.headers


def test_create_app_uses_given_settings_for_identity_failure(monkeypatch):
    # Process-wide settings say development (demo identity); the app's own say production
    monkeypatch.setattr(settings, "environment", "development")
    monkeypatch.setattr(settings, "demo_mode", False)
    calls = []
    monkeypatch.setattr("genthumb.routers.thumbnails.list_blobs", lambda *a, **kw: calls.append(a) or [])

    app = create_app(Settings(environment="production", demo_mode=False, auth_jwt_secret=None, auth_jwks_url=None))
    r = TestClient(app).get("/api/list")
    assert r.status_code == 401
    assert r.json() == {"error": "Unauthorized"}
    assert calls == []


def test_create_app_demo_settings_success(monkeypatch):
    monkeypatch.setattr(settings, "environment", "production")
    monkeypatch.setattr(settings, "demo_mode", False)
    monkeypatch.setattr("genthumb.routers.thumbnails.list_blobs", lambda *a, **kw: [])

    app = create_app(Settings(environment="production", demo_mode=True, demo_user_id="showcase"))
    r = TestClient(app).get("/api/list")
    assert r.status_code == 200
    assert r.json() == {"files": []}
