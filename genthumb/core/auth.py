from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

import jwt
from fastapi import Request

from .config import Settings, logger, settings as global_settings
from .errors import Forbidden, Unauthorized

"""Request identity and the per-user storage namespace rule.

Every stored key starts with the owner's id followed by "/". That prefix is
the only authorization boundary: callers build upload/list paths from the
resolved id, and deletes check the prefix explicitly with `authorize_key`.
"""


@lru_cache(maxsize=4)
def _jwks_client(url: str) -> jwt.PyJWKClient:
    # PyJWKClient caches fetched keys per instance
    return jwt.PyJWKClient(url)


@dataclass(frozen=True)
class AuthConfig:
    demo_mode: bool
    demo_user_id: str

    @classmethod
    def from_settings(cls, s: Settings) -> "AuthConfig":
        return cls(demo_mode=s.is_demo, demo_user_id=s.demo_user_id)


class BearerTokenProvider:
    """Verify `Authorization: Bearer <jwt>` session tokens and return `sub`.

    With `jwks_url` set, keys are fetched from the provider's JWKS endpoint
    (RS256). Otherwise tokens are checked against the shared HS256 secret.
    """

    def __init__(self, secret: Optional[str] = None, jwks_url: Optional[str] = None):
        self.secret = secret
        self.jwks_url = jwks_url
        self._jwks_client = _jwks_client(jwks_url) if jwks_url else None

    @classmethod
    def from_settings(cls, s: Settings) -> "BearerTokenProvider":
        return cls(secret=s.auth_jwt_secret, jwks_url=s.auth_jwks_url)

    def __call__(self, request: Request) -> Optional[str]:
        auth_header = request.headers.get("authorization")
        if not auth_header or not auth_header.lower().startswith("bearer "):
            return None
        token = auth_header.split(" ", 1)[1].strip()
        if not token:
            return None
        try:
            if self._jwks_client is not None:
                signing_key = self._jwks_client.get_signing_key_from_jwt(token)
                claims = jwt.decode(token, signing_key.key, algorithms=["RS256"])
            elif self.secret:
                claims = jwt.decode(token, self.secret, algorithms=["HS256"])
            else:
                logger.warning("No token verifier configured; rejecting bearer token")
                return None
        except jwt.PyJWTError as ex:
            logger.warning(f"Token verification failed: {ex}")
            return None
        sub = claims.get("sub")
        return str(sub) if sub else None


class IdentityResolver:
    def __init__(self, config: AuthConfig, provider=None):
        self.config = config
        self.provider = provider

    def resolve(self, request: Request) -> Optional[str]:
        if self.config.demo_mode:
            return self.config.demo_user_id
        if self.provider is None:
            return None
        return self.provider(request)

    def ensure_authenticated(self, request: Request) -> str:
        user_id = self.resolve(request)
        if not user_id:
            logger.warning(f"Unauthorized access attempt: {request.method} {request.url.path}")
            raise Unauthorized("Unauthorized")
        return user_id


def build_resolver(s: Optional[Settings] = None) -> IdentityResolver:
    s = s or global_settings
    return IdentityResolver(AuthConfig.from_settings(s), BearerTokenProvider.from_settings(s))


@lru_cache(maxsize=8)
def _cached_resolver(demo_mode: bool, demo_user_id: str, secret: Optional[str], jwks_url: Optional[str]) -> IdentityResolver:
    return IdentityResolver(AuthConfig(demo_mode, demo_user_id), BearerTokenProvider(secret=secret, jwks_url=jwks_url))


def default_resolver() -> IdentityResolver:
    """Resolver for the process-wide settings, rebuilt only when they change."""
    s = global_settings
    return _cached_resolver(s.is_demo, s.demo_user_id, s.auth_jwt_secret, s.auth_jwks_url)


def get_user_id(request: Request) -> str:
    """FastAPI dependency: the caller's id, or a 401."""
    resolver = getattr(request.app.state, "identity", None) or default_resolver()
    return resolver.ensure_authenticated(request)


def is_owned_key(user_id: str, key: str) -> bool:
    return bool(user_id) and key.startswith(f"{user_id}/")


def authorize_key(user_id: str, key: str) -> None:
    if not is_owned_key(user_id, key):
        logger.warning(f"Attempt to delete file not owned by user {user_id}: {key}")
        raise Forbidden("Forbidden: Cannot delete other users' files")
