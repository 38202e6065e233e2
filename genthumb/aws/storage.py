from typing import Optional, List
import secrets
from io import BytesIO
from urllib.parse import quote
from botocore.exceptions import BotoCoreError, ClientError
from PIL import Image, UnidentifiedImageError
from ..core.config import settings, logger
from ..core.errors import UpstreamFailure
from .clients import s3 as s3_client_factory

"""Blob store helpers: key construction, put, list, public URL and delete.

Keys always have the shape "{user_id}/{file}". Nothing here checks ownership;
callers pass keys built from (or authorized against) the resolved user id.
"""

_ID_ALPHABET = "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789_-"
DEFAULT_EXTENSION = "jpg"
DEFAULT_CONTENT_TYPE = "image/jpeg"


def unique_id(size: int = 21) -> str:
    """URL-safe random id, same alphabet and default length as nanoid."""
    return "".join(secrets.choice(_ID_ALPHABET) for _ in range(size))


def file_extension(filename: Optional[str]) -> str:
    # Trusts the client's filename; the content type is stored separately
    if filename and "." in filename:
        ext = filename.rsplit(".", 1)[1]
        if ext:
            return ext
    return DEFAULT_EXTENSION


def detect_content_type(data_bytes: bytes) -> Optional[str]:
    """MIME type Pillow recognises in `data_bytes`, or None."""
    try:
        with Image.open(BytesIO(data_bytes)) as img:
            return Image.MIME.get((img.format or "").upper())
    except (UnidentifiedImageError, OSError):
        return None


def resolve_content_type(declared: Optional[str], data_bytes: bytes) -> str:
    if declared and declared != "application/octet-stream":
        return declared
    return detect_content_type(data_bytes) or DEFAULT_CONTENT_TYPE


def upload_key(user_id: str, filename: Optional[str]) -> str:
    return f"{user_id}/{unique_id()}.{file_extension(filename)}"


def generated_key(user_id: str) -> str:
    return f"{user_id}/{unique_id()}-gemini.jpg"


def _upstream_message(ex: Exception) -> str:
    if isinstance(ex, ClientError):
        return ex.response.get("Error", {}).get("Message") or str(ex)
    return str(ex)


def put_blob(key: str, data_bytes: bytes, content_type: Optional[str] = None) -> str:
    """Write `data_bytes` under `key`, replacing any existing object."""
    s3 = s3_client_factory()
    try:
        # put_object always overwrites, which is the upsert we want
        s3.put_object(
            Bucket=settings.bucket_name,
            Key=key,
            Body=data_bytes,
            ContentType=content_type or DEFAULT_CONTENT_TYPE,
        )
    except (ClientError, BotoCoreError) as ex:
        logger.error(f"Storage upload failed for {key}: {ex}")
        raise UpstreamFailure(_upstream_message(ex)) from ex
    return key


def list_blobs(user_id: str, limit: Optional[int] = None) -> List[str]:
    """Return up to `limit` file names directly under "{user_id}/".

    Names are relative to the user's folder and come back in the store's
    native order.
    """
    s3 = s3_client_factory()
    prefix = f"{user_id}/"
    try:
        resp = s3.list_objects_v2(
            Bucket=settings.bucket_name,
            Prefix=prefix,
            Delimiter="/",
            MaxKeys=int(limit or settings.list_limit),
        )
    except (ClientError, BotoCoreError) as ex:
        logger.error(f"Storage list failed for {prefix}: {ex}")
        raise UpstreamFailure(_upstream_message(ex)) from ex

    names: List[str] = []
    for obj in resp.get("Contents", []):
        name = obj["Key"][len(prefix):]
        if name:
            names.append(name)
    return names


def public_url(key: str) -> Optional[str]:
    """URL anyone can use to fetch `key` from a public-read bucket."""
    if not key or not settings.bucket_name:
        return None
    path = quote(key, safe="/")
    if settings.public_base_url:
        return f"{settings.public_base_url.rstrip('/')}/{path}"
    if settings.aws_endpoint_url:
        return f"{settings.aws_endpoint_url.rstrip('/')}/{settings.bucket_name}/{path}"
    return f"https://{settings.bucket_name}.s3.{settings.aws_region}.amazonaws.com/{path}"


def remove_blob(key: str) -> None:
    s3 = s3_client_factory()
    try:
        s3.delete_object(Bucket=settings.bucket_name, Key=key)
    except (ClientError, BotoCoreError) as ex:
        logger.error(f"Storage delete failed for {key}: {ex}")
        raise UpstreamFailure(_upstream_message(ex)) from ex
