from __future__ import annotations

from typing import Optional

from fastapi import Response

from memberauth.config import Settings, get_settings
from memberauth.service.tokens import ACCESS_TOKEN_LIFETIME, REFRESH_TOKEN_LIFETIME
from memberauth.storage.models import SessionTokens

ACCESS_COOKIE = "X-ACCESS-TOKEN"
REFRESH_COOKIE = "X-REFRESH-TOKEN"


def apply_session_cookies(
    response: Response, tokens: SessionTokens, settings: Optional[Settings] = None
) -> None:
    """Set a cookie for each token present in ``tokens``.

    The refresh cookie is scoped to the auth path so it only travels to
    the endpoints that consume it.
    """
    settings = settings or get_settings()
    if tokens.access_token:
        response.set_cookie(
            ACCESS_COOKIE,
            tokens.access_token,
            max_age=int(ACCESS_TOKEN_LIFETIME.total_seconds()),
            path="/",
            domain=settings.cookie_domain,
            secure=settings.cookie_secure,
            httponly=True,
            samesite="strict",
        )
    if tokens.refresh_token:
        response.set_cookie(
            REFRESH_COOKIE,
            tokens.refresh_token,
            max_age=int(REFRESH_TOKEN_LIFETIME.total_seconds()),
            path=settings.auth_cookie_path,
            domain=settings.cookie_domain,
            secure=settings.cookie_secure,
            httponly=True,
            samesite="strict",
        )


def clear_session_cookies(response: Response, settings: Optional[Settings] = None) -> None:
    settings = settings or get_settings()
    for name, path in ((ACCESS_COOKIE, "/"), (REFRESH_COOKIE, settings.auth_cookie_path)):
        response.delete_cookie(
            name,
            path=path,
            domain=settings.cookie_domain,
            secure=settings.cookie_secure,
            httponly=True,
            samesite="strict",
        )


__all__ = [
    "ACCESS_COOKIE",
    "REFRESH_COOKIE",
    "apply_session_cookies",
    "clear_session_cookies",
]
