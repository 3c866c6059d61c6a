"""Dependency helpers shared by API routers."""
from functools import lru_cache

from fastapi import Depends, Header, Request
from sqlalchemy.orm import Session

from app.config import Settings, get_settings
from app.database import get_db
from app.models.user import User
from app.services.auth import AuthService
from app.services.errors import InvalidToken
from app.services.rate_limiter import RateLimiter

__all__ = ["get_auth_service", "get_current_user", "get_db", "get_rate_limiter", "get_request_ip"]


@lru_cache
def get_rate_limiter() -> RateLimiter:
    """Process-wide limiter; counters live as long as the process."""
    return RateLimiter.from_settings(get_settings())


def get_request_ip(request: Request, settings: Settings = Depends(get_settings)) -> str | None:
    """Client address used for rate limiting.

    ``X-Forwarded-For`` is only read when the direct peer is a trusted proxy,
    and then the nearest hop that is not itself a trusted proxy wins.
    """
    peer = request.client.host if request.client else None
    xff = request.headers.get("x-forwarded-for")
    if peer is None or peer not in settings.trusted_proxies or not xff:
        return peer

    hops = [hop.strip() for hop in xff.split(",") if hop.strip()]
    for hop in reversed(hops):
        if hop not in settings.trusted_proxies:
            return hop
    return hops[0] if hops else peer


def get_auth_service(
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
    limiter: RateLimiter = Depends(get_rate_limiter),
) -> AuthService:
    return AuthService(db=db, settings=settings, limiter=limiter)


def get_bearer_token(authorization: str | None = Header(default=None)) -> str:
    """Read the Bearer token from the Authorization header."""
    if authorization is None:
        raise InvalidToken("Access token is required")

    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise InvalidToken("Access token is required")
    return token.strip()


def get_current_user(
    token: str = Depends(get_bearer_token),
    auth_service: AuthService = Depends(get_auth_service),
) -> User:
    return auth_service.authenticate(token)
