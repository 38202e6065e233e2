from typing import Any, Dict, Optional

import httpx

from ..core.config import Settings, logger, settings as global_settings
from ..core.errors import EmptyUpstreamResponse, UpstreamFailure


class GeminiClient:
    """Single-turn text generation against the Gemini `generateContent` API."""

    def __init__(
        self,
        api_key: str,
        model: str = "gemini-2.5-flash",
        base_url: str = "https://generativelanguage.googleapis.com/v1beta",
        timeout: float = 30.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.api_key = api_key
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport

    @classmethod
    def from_settings(cls, s: Optional[Settings] = None) -> "GeminiClient":
        s = s or global_settings
        return cls(
            api_key=s.gemini_api_key,
            model=s.gemini_model,
            base_url=s.gemini_base_url,
            timeout=s.gemini_timeout,
        )

    @property
    def endpoint(self) -> str:
        return f"{self.base_url}/models/{self.model}:generateContent"

    def generate_text(self, prompt: str) -> str:
        payload = {"contents": [{"parts": [{"text": prompt}]}]}
        headers = {"Content-Type": "application/json", "x-goog-api-key": self.api_key}
        try:
            with httpx.Client(timeout=self.timeout, transport=self.transport) as client:
                r = client.post(self.endpoint, json=payload, headers=headers)
        except httpx.HTTPError as ex:
            logger.error(f"Gemini request failed: {ex}")
            raise UpstreamFailure(f"Gemini request failed: {ex}") from ex

        try:
            data = r.json()
        except ValueError:
            data = {}

        if r.status_code >= 400:
            err = data.get("error") if isinstance(data, dict) else None
            err = err if isinstance(err, dict) else {}
            message = err.get("message") or r.text or f"Gemini returned HTTP {r.status_code}"
            logger.error(f"Gemini returned {r.status_code}: {message}")
            raise UpstreamFailure(
                message,
                upstream_code=err.get("code") or r.status_code,
                upstream_status=err.get("status"),
            )

        text = extract_text(data)
        if not text:
            logger.error(f"Gemini returned empty response: {data}")
            raise EmptyUpstreamResponse("No response from Gemini")
        return text


def extract_text(data: Any) -> Optional[str]:
    """First candidate's first text part, or None."""
    try:
        candidate: Dict[str, Any] = data["candidates"][0]
        return candidate["content"]["parts"][0].get("text") or None
    except (KeyError, IndexError, TypeError, AttributeError):
        return None


def get_gemini() -> GeminiClient:
    return GeminiClient.from_settings()
