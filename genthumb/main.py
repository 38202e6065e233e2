from typing import Optional
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from starlette.datastructures import Headers
from starlette.responses import Response
from .core.auth import IdentityResolver, build_resolver
from .core.config import Settings, settings as global_settings
from .core.errors import install_error_handlers
from .routers.thumbnails import router as thumbnails_router

tags_metadata = [
    {
        "name": "thumbnails",
        "description": (
            "Upload, list, delete and AI-caption thumbnails.\n\n"
            "- Every file lives under the caller's own folder (`{userId}/...`).\n"
            "- Upload via multipart field `thumbnail`, 5 MiB max.\n"
            "- Delete only works on keys inside the caller's folder."
        ),
    }
]


class PreflightCORSMiddleware(CORSMiddleware):
    """Answers every preflight with an empty 200.

    Access-Control-Allow-* headers are only sent back for allowed origins;
    the browser enforces the rest.
    """

    def preflight_response(self, request_headers: Headers) -> Response:
        response = super().preflight_response(request_headers=request_headers)
        if self.is_allowed_origin(origin=request_headers["origin"]):
            headers = {
                k: v for k, v in response.headers.items() if k not in ("content-length", "content-type")
            }
        else:
            headers = {"Vary": "Origin"}
        return Response(status_code=200, headers=headers)


def create_app(s: Optional[Settings] = None, identity: Optional[IdentityResolver] = None) -> FastAPI:
    s = s or global_settings
    app = FastAPI(
        title="GenThumb",
        description=(
            "How to Use:\n\n"
            "1) Upload: POST /api/upload with a `thumbnail` file (multipart).\n"
            "2) List: GET /api/list returns `{files: [{name, url}]}` for the caller.\n"
            "3) Delete: DELETE /api/delete?name={userId}/{file}.\n"
            "4) AI: POST /api/gen-ai-thumbnail with `{prompt, imageBufferBase64}`.\n\n"
            "Send `Authorization: Bearer <session token>` unless the server runs in demo mode."
        ),
        openapi_tags=tags_metadata,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
    )

    app.add_middleware(
        PreflightCORSMiddleware,
        allow_origins=s.allowed_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
        allow_headers=["*"],
    )
    install_error_handlers(app)

    # The default app follows the process-wide settings, see auth.default_resolver
    if identity is None and s is not global_settings:
        identity = build_resolver(s)
    app.state.identity = identity

    @app.get("/healthz", include_in_schema=False)
    def healthz():
        return {"status": "ok"}

    app.include_router(thumbnails_router)
    return app


app = create_app()
