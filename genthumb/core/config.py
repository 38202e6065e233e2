import logging
import os
from pydantic import BaseModel
from typing import List, Optional


def _flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


def _origins(raw: str) -> List[str]:
    return [o.strip() for o in raw.split(",") if o.strip()]


class Settings(BaseModel):
    """Environment-driven configuration.

    Defaults target LocalStack for storage and demo identity, so the service
    runs locally without any credentials.
    """
    aws_access_key_id: str = os.getenv("AWS_ACCESS_KEY_ID", "test")
    aws_secret_access_key: str = os.getenv("AWS_SECRET_ACCESS_KEY", "test")
    aws_region: str = os.getenv("AWS_REGION", "us-east-1")
    aws_endpoint_url: Optional[str] = os.getenv("AWS_ENDPOINT_URL")
    bucket_name: str = os.getenv("BUCKET_NAME", "thumbnails")
    public_base_url: Optional[str] = os.getenv("PUBLIC_BASE_URL")

    allowed_origins: List[str] = _origins(os.getenv("ALLOWED_ORIGIN", "http://localhost:5173"))

    gemini_api_key: str = os.getenv("GEMINI_API_KEY", "")
    gemini_model: str = os.getenv("GEMINI_MODEL", "gemini-2.5-flash")
    gemini_base_url: str = os.getenv("GEMINI_BASE_URL", "https://generativelanguage.googleapis.com/v1beta")
    gemini_timeout: float = float(os.getenv("GEMINI_TIMEOUT", "30"))

    environment: str = os.getenv("APP_ENV", "development")
    demo_mode: bool = _flag("DEMO_MODE")
    demo_user_id: str = os.getenv("DEMO_USER_ID", "demo-user")
    auth_jwt_secret: Optional[str] = os.getenv("AUTH_JWT_SECRET")
    auth_jwks_url: Optional[str] = os.getenv("AUTH_JWKS_URL")

    max_upload_bytes: int = int(os.getenv("MAX_UPLOAD_BYTES", str(5 * 1024 * 1024)))
    list_limit: int = int(os.getenv("LIST_LIMIT", "100"))
    log_level: str = os.getenv("LOG_LEVEL", "INFO")

    @property
    def is_demo(self) -> bool:
        # Anything other than production runs with the demo identity
        return self.demo_mode or self.environment.lower() != "production"


settings = Settings()

logging.basicConfig(level=settings.log_level.upper(), format="%(asctime)s | %(levelname)s | %(message)s")
logger = logging.getLogger("genthumb")
