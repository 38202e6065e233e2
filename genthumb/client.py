import base64
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

import httpx

from .core.config import logger

"""HTTP client for the thumbnail API.

The AI endpoint is retried when Gemini reports an overload; everything else
fails on the first error.
"""


class ApiError(Exception):
    def __init__(self, status_code: int, message: str, body: Any = None):
        super().__init__(message)
        self.status_code = status_code
        self.message = message
        self.body = body

    @property
    def is_overloaded(self) -> bool:
        if self.status_code == 503:
            return True
        if isinstance(self.body, dict):
            return "UNAVAILABLE" in str(self.body.get("status", "")) or "UNAVAILABLE" in str(self.body.get("error", ""))
        return "UNAVAILABLE" in str(self.body or "")


@dataclass
class RetryPolicy:
    attempts: int = 3
    base_delay: float = 1.0

    def delay(self, attempt: int) -> float:
        # attempt is 1-based: waits 1s after the first failure, 2s after the second
        return self.base_delay * attempt


class ThumbnailClient:
    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        transport: Optional[httpx.BaseTransport] = None,
        timeout: float = 60.0,
        retry: Optional[RetryPolicy] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.token = token
        self.retry = retry or RetryPolicy()
        self.sleep = sleep
        self._http = httpx.Client(base_url=base_url.rstrip("/"), transport=transport, timeout=timeout)

    def close(self) -> None:
        self._http.close()

    def __enter__(self) -> "ThumbnailClient":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def _headers(self) -> Dict[str, str]:
        if not self.token:
            return {}
        return {"Authorization": f"Bearer {self.token}"}

    def _request(self, method: str, path: str, **kwargs) -> Dict[str, Any]:
        r = self._http.request(method, path, headers=self._headers(), **kwargs)
        try:
            body = r.json()
        except ValueError:
            body = r.text
        if r.status_code >= 400:
            message = body.get("error") if isinstance(body, dict) else None
            raise ApiError(r.status_code, message or f"HTTP {r.status_code}", body)
        return body

    def upload(self, filename: str, data: bytes, content_type: str = "image/jpeg") -> Dict[str, Any]:
        files = {"thumbnail": (filename, data, content_type)}
        return self._request("POST", "/api/upload", files=files)

    def list_files(self) -> List[Dict[str, str]]:
        return self._request("GET", "/api/list").get("files", [])

    def delete(self, name: str) -> Dict[str, Any]:
        return self._request("DELETE", "/api/delete", params={"name": name})

    def generate(self, prompt: str, image: bytes) -> Dict[str, Any]:
        payload = {
            "prompt": prompt,
            "imageBufferBase64": base64.b64encode(image).decode("ascii"),
        }
        attempt = 1
        while True:
            try:
                return self._request("POST", "/api/gen-ai-thumbnail", json=payload)
            except ApiError as e:
                if not e.is_overloaded or attempt >= self.retry.attempts:
                    raise
                wait = self.retry.delay(attempt)
                logger.warning(f"Gemini overloaded (attempt {attempt}/{self.retry.attempts}), retrying in {wait:.0f}s")
                self.sleep(wait)
                attempt += 1
