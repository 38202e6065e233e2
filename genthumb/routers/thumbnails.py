from fastapi import APIRouter, Depends, File, HTTPException, Query, Request, Response, UploadFile
from typing import Optional
from dataclasses import dataclass
import base64
import binascii
from ..core.auth import get_user_id, authorize_key
from ..core.config import settings, logger
from ..core.errors import ApiError, BadRequest, PayloadTooLarge, UpstreamFailure
from ..core.models import (
    UploadResponse,
    ListResponse,
    FileEntry,
    DeleteResponse,
    GenerateRequest,
    GenerateResponse,
    ErrorResponse,
)
from ..aws.storage import (
    resolve_content_type,
    upload_key,
    generated_key,
    put_blob,
    list_blobs,
    public_url,
    remove_blob,
)
from ..ai.gemini import GeminiClient, get_gemini

router = APIRouter(prefix="/api", tags=["thumbnails"])

ERROR_RESPONSES = {
    400: {"model": ErrorResponse},
    401: {"model": ErrorResponse},
    405: {"model": ErrorResponse},
    500: {"model": ErrorResponse},
}

_URLSAFE_TO_STANDARD = str.maketrans("-_", "+/")


@dataclass
class Thumbnail:
    filename: Optional[str]
    content_type: Optional[str]
    data: bytes


async def read_thumbnail(request: Request, thumbnail: Optional[UploadFile] = File(None)) -> Thumbnail:
    """Read the single `thumbnail` part, enforcing the upload size cap."""
    if thumbnail is None:
        logger.warning("No file received in upload request")
        raise BadRequest("No file uploaded")
    # The form is already parsed and cached on the request
    form = await request.form()
    if len(form.getlist("thumbnail")) > 1:
        logger.warning("Rejected upload with more than one thumbnail part")
        raise BadRequest("Only one file may be uploaded")
    limit = int(settings.max_upload_bytes)
    data = await thumbnail.read(limit + 1)
    if len(data) > limit:
        logger.warning(f"Rejected upload over {limit} bytes: {thumbnail.filename}")
        raise PayloadTooLarge("File too large")
    return Thumbnail(filename=thumbnail.filename, content_type=thumbnail.content_type, data=data)


async def read_generate_request(request: Request) -> GenerateRequest:
    try:
        body = await request.json()
    except ValueError:
        body = None
    if not isinstance(body, dict):
        raise BadRequest("Missing prompt or image buffer")
    prompt = body.get("prompt")
    image_b64 = body.get("imageBufferBase64")
    if not isinstance(prompt, str) or not prompt or not isinstance(image_b64, str) or not image_b64:
        raise BadRequest("Missing prompt or image buffer")
    return GenerateRequest(prompt=prompt, imageBufferBase64=image_b64)


def decode_image_buffer(data: str) -> bytes:
    # Browsers often hand over a data URL rather than bare base64
    if data.startswith("data:") and "," in data:
        data = data.split(",", 1)[1]
    # Standard or URL-safe alphabet, line breaks allowed, anything else rejected
    data = "".join(data.split()).translate(_URLSAFE_TO_STANDARD)
    try:
        decoded = base64.b64decode(data, validate=True)
    except (binascii.Error, ValueError):
        raise BadRequest("Invalid image buffer")
    if not decoded:
        raise BadRequest("Missing prompt or image buffer")
    return decoded


@router.options("/upload", include_in_schema=False)
def upload_preflight():
    return Response(status_code=200)


@router.post(
    "/upload",
    response_model=UploadResponse,
    responses={**ERROR_RESPONSES, 413: {"model": ErrorResponse}},
    summary="Upload a thumbnail",
    description=(
        "Multipart form-data with a single `thumbnail` file (max 5 MiB).\n\n"
        "The file is stored under the caller's folder with a fresh id and the original extension."
    ),
)
def upload_thumbnail(
    user_id: str = Depends(get_user_id),
    thumbnail: Thumbnail = Depends(read_thumbnail),
):
    try:
        key = upload_key(user_id, thumbnail.filename)
        content_type = resolve_content_type(thumbnail.content_type, thumbnail.data)
        try:
            put_blob(key, thumbnail.data, content_type=content_type)
        except UpstreamFailure as e:
            raise UpstreamFailure(f"Upload failed: {e.message}") from e

        url = public_url(key)
        if not url:
            logger.error(f"Failed to get public URL for {key}")
            raise UpstreamFailure("Failed to get public URL")

        logger.info(f"Uploaded: {key}")
        return UploadResponse(name=key, url=url, source="manual", userId=user_id)
    except ApiError:
        raise
    except Exception as e:
        logger.error(f"Unexpected upload error: {e}")
        raise HTTPException(status_code=500, detail=f"Unexpected error: {e}")


@router.get(
    "/list",
    response_model=ListResponse,
    responses={401: {"model": ErrorResponse}, 405: {"model": ErrorResponse}, 500: {"model": ErrorResponse}},
    summary="List the caller's thumbnails",
    description="Returns up to 100 files from the caller's folder, in storage order.",
)
def list_thumbnails(user_id: str = Depends(get_user_id)):
    try:
        files = []
        for entry in list_blobs(user_id, limit=settings.list_limit):
            name = f"{user_id}/{entry}"
            files.append(FileEntry(name=name, url=public_url(name) or ""))
        return ListResponse(files=files)
    except ApiError:
        raise
    except Exception as e:
        logger.error(f"Unexpected list error: {e}")
        raise HTTPException(status_code=500, detail=str(e))


@router.delete(
    "/delete",
    response_model=DeleteResponse,
    responses={**ERROR_RESPONSES, 403: {"model": ErrorResponse}},
    summary="Delete one of the caller's thumbnails",
    description="`name` is the full key returned by upload/list. Keys outside the caller's folder are refused with 403.",
)
def delete_thumbnail(
    user_id: str = Depends(get_user_id),
    name: Optional[str] = Query(None, description="Full key, e.g. user123/abc.jpg"),
):
    if not name:
        raise BadRequest("Missing or invalid 'name' parameter")
    authorize_key(user_id, name)
    try:
        remove_blob(name)
        logger.info(f"Deleted: {name}")
        return DeleteResponse(success=True)
    except ApiError:
        raise
    except Exception as e:
        logger.error(f"Unexpected delete error: {e}")
        raise HTTPException(status_code=500, detail=str(e) or "Delete failed")


@router.post(
    "/gen-ai-thumbnail",
    response_model=GenerateResponse,
    responses=ERROR_RESPONSES,
    summary="Caption an image with Gemini and store it",
    description=(
        "JSON body `{prompt, imageBufferBase64}`. The prompt is sent to Gemini, the image is stored "
        "under the caller's folder and the generated text is returned as `caption`.\n\n"
        "Upstream overload is reported as 500 with `status: \"UNAVAILABLE\"`; clients may retry."
    ),
)
def generate_thumbnail(
    user_id: str = Depends(get_user_id),
    body: GenerateRequest = Depends(read_generate_request),
    gemini: GeminiClient = Depends(get_gemini),
):
    image_bytes = decode_image_buffer(body.imageBufferBase64)
    try:
        caption = gemini.generate_text(body.prompt)

        key = generated_key(user_id)
        put_blob(key, image_bytes, content_type="image/jpeg")

        url = public_url(key)
        if not url:
            raise UpstreamFailure("Failed to get public URL from storage")

        logger.info(f"Uploaded Gemini thumbnail: {key}")
        return GenerateResponse(name=key, url=url, caption=caption, source="gemini", userId=user_id)
    except ApiError as e:
        logger.error(f"Gemini flow failed: {e}")
        raise
    except Exception as e:
        logger.error(f"Gemini flow failed: {e}")
        raise HTTPException(status_code=500, detail=str(e) or "Gemini flow failed")
