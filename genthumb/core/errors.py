from typing import Any, Dict, Optional

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

"""Error taxonomy for the API and the handlers that render it as `{"error": ...}`."""


class ApiError(Exception):
    status_code = 500
    default_message = "Internal server error"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_body(self) -> Dict[str, Any]:
        return {"error": self.message}


class BadRequest(ApiError):
    status_code = 400
    default_message = "Bad request"


class Unauthorized(ApiError):
    status_code = 401
    default_message = "Unauthorized"


class Forbidden(ApiError):
    status_code = 403
    default_message = "Forbidden"


class PayloadTooLarge(ApiError):
    status_code = 413
    default_message = "File too large"


class UpstreamFailure(ApiError):
    """A storage or generative-API call failed.

    `upstream_status` keeps the collaborator's own status label (Gemini reports
    e.g. "UNAVAILABLE" when overloaded) so clients can decide whether to retry.
    """

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        upstream_code: Optional[int] = None,
        upstream_status: Optional[str] = None,
    ):
        super().__init__(message)
        self.upstream_code = upstream_code
        self.upstream_status = upstream_status

    def to_body(self) -> Dict[str, Any]:
        body = super().to_body()
        if self.upstream_status:
            body["status"] = self.upstream_status
        return body


class EmptyUpstreamResponse(UpstreamFailure):
    default_message = "Empty response from upstream"


async def api_error_handler(request: Request, exc: ApiError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.to_body())


async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.detail},
        headers=getattr(exc, "headers", None),
    )


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    message = errors[0].get("msg", "Invalid request") if errors else "Invalid request"
    return JSONResponse(status_code=400, content={"error": message})


def install_error_handlers(app) -> None:
    app.add_exception_handler(ApiError, api_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
