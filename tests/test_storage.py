import os, sys
import re
from io import BytesIO

import boto3
import pytest
from moto import mock_aws
from PIL import Image

# Ensure project root on path for `import genthumb...`
ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from genthumb.core.config import settings
from genthumb.core.errors import UpstreamFailure
from genthumb.aws import storage
from genthumb.aws.clients import s3 as s3_client_factory

KEY_ID = re.compile(r"^[A-Za-z0-9_-]{21}$")


@pytest.fixture
def aws_mock(monkeypatch):
    with mock_aws():
        # Ensure our clients do not try to hit a custom endpoint in tests
        monkeypatch.setattr(settings, "aws_endpoint_url", None)
        monkeypatch.setattr(settings, "public_base_url", None)
        monkeypatch.setattr(settings, "aws_region", "us-east-1")
        monkeypatch.setattr(settings, "bucket_name", "test-bucket")

        s3 = boto3.client("s3", region_name=settings.aws_region)
        s3.create_bucket(Bucket=settings.bucket_name)
        yield s3


def _png_bytes():
    img = Image.new("RGB", (2, 2), color=(255, 0, 0))
    buf = BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


def test_storage_keys_shape_success():
    assert KEY_ID.match(storage.unique_id())
    assert storage.unique_id() != storage.unique_id()

    key = storage.upload_key("u1", "holiday.photo.png")
    assert key.startswith("u1/") and key.endswith(".png")
    assert KEY_ID.match(key[len("u1/"):-len(".png")])

    assert storage.upload_key("u1", "noext").endswith(".jpg")
    assert storage.upload_key("u1", None).endswith(".jpg")
    assert storage.upload_key("u1", "trailingdot.").endswith(".jpg")

    gen = storage.generated_key("u1")
    assert re.match(r"^u1/[A-Za-z0-9_-]{21}-gemini\.jpg$", gen)


def test_storage_content_type_resolution_success():
    png = _png_bytes()
    assert storage.detect_content_type(png) == "image/png"
    assert storage.detect_content_type(b"not an image") is None
    # Declared type wins, even when it disagrees with the bytes
    assert storage.resolve_content_type("image/webp", png) == "image/webp"
    assert storage.resolve_content_type("application/octet-stream", png) == "image/png"
    assert storage.resolve_content_type(None, b"???") == "image/jpeg"


def test_storage_put_list_delete_flow_success(aws_mock):
    content = _png_bytes()
    key = storage.upload_key("u1", "a.png")
    storage.put_blob(key, content, content_type="image/png")

    obj = aws_mock.get_object(Bucket="test-bucket", Key=key)
    assert obj["Body"].read() == content
    assert obj["ContentType"] == "image/png"

    # Same key again replaces the object
    storage.put_blob(key, b"replaced", content_type="image/png")
    assert aws_mock.get_object(Bucket="test-bucket", Key=key)["Body"].read() == b"replaced"

    names = storage.list_blobs("u1")
    assert names == [key.split("/", 1)[1]]

    storage.remove_blob(key)
    assert storage.list_blobs("u1") == []


def test_storage_list_confined_to_user_folder_success(aws_mock):
    storage.put_blob("u1/a.jpg", b"1")
    storage.put_blob("u1/b.jpg", b"2")
    storage.put_blob("u10/c.jpg", b"3")
    storage.put_blob("u2/d.jpg", b"4")
    # Nested folders are not part of the flat gallery listing
    storage.put_blob("u1/nested/e.jpg", b"5")

    assert sorted(storage.list_blobs("u1")) == ["a.jpg", "b.jpg"]
    assert storage.list_blobs("u2") == ["d.jpg"]
    assert storage.list_blobs("nobody") == []


def test_storage_list_limit_success(aws_mock):
    for i in range(5):
        storage.put_blob(f"u1/{i}.jpg", b"x")
    assert len(storage.list_blobs("u1", limit=3)) == 3


def test_storage_public_url_success(monkeypatch):
    monkeypatch.setattr(settings, "bucket_name", "thumbs")
    monkeypatch.setattr(settings, "aws_region", "eu-west-1")
    monkeypatch.setattr(settings, "aws_endpoint_url", None)
    monkeypatch.setattr(settings, "public_base_url", None)
    assert storage.public_url("u1/a b.jpg") == "https://thumbs.s3.eu-west-1.amazonaws.com/u1/a%20b.jpg"

    monkeypatch.setattr(settings, "aws_endpoint_url", "http://localhost:4566/")
    assert storage.public_url("u1/a.jpg") == "http://localhost:4566/thumbs/u1/a.jpg"

    monkeypatch.setattr(settings, "public_base_url", "https://cdn.example.com/thumbs/")
    assert storage.public_url("u1/a.jpg") == "https://cdn.example.com/thumbs/u1/a.jpg"

    assert storage.public_url("") is None


def test_storage_missing_bucket_failure(aws_mock, monkeypatch):
    monkeypatch.setattr(settings, "bucket_name", "missing-bucket")
    with pytest.raises(UpstreamFailure) as exc:
        storage.put_blob("u1/a.jpg", b"x")
    assert "bucket" in exc.value.message.lower()

    with pytest.raises(UpstreamFailure):
        storage.list_blobs("u1")


def test_storage_clients_use_settings_success(aws_mock):
    client = s3_client_factory()
    assert client.meta.region_name == "us-east-1"
