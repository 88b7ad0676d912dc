"""Signing and verification of access and refresh tokens.

Both token classes are HMAC-signed JWTs carrying the same claim shape
(``username``, ``type``, ``status`` and, for admins only, ``admin``) plus
``iat``/``exp``/``jti``. Access and refresh tokens are signed with independent keys so
one can never be replayed as the other even if the ``type`` check were
bypassed.

The codec is pure: it never touches the session registry. Registering a
freshly minted refresh token is the session manager's job.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

import jwt

from memberauth.clock import Clock, utc_now
from memberauth.config import SUPPORTED_JWT_ALGORITHMS, Settings
from memberauth.logging import get_logger
from memberauth.service.errors import AuthenticationError
from memberauth.storage.models import AuthToken, TokenType, UserStatus

logger = get_logger(__name__)

ACCESS_TOKEN_LIFETIME = timedelta(minutes=15)
REFRESH_TOKEN_LIFETIME = timedelta(minutes=120)


@dataclass(frozen=True)
class VerifiedToken:
    """Claims of a verified token with the transport metadata kept apart."""

    claims: AuthToken
    issued_at: datetime
    expires_at: datetime

    def remaining(self, now: datetime) -> timedelta:
        return self.expires_at - now


class TokenCodec:
    """Mint and verify signed session tokens."""

    def __init__(
        self,
        access_key: str,
        refresh_key: str,
        *,
        algorithm: str = "HS512",
        clock: Optional[Clock] = None,
    ) -> None:
        if not access_key or not refresh_key:
            raise ValueError("both access and refresh signing keys are required")
        if algorithm not in SUPPORTED_JWT_ALGORITHMS:
            raise ValueError(f"unsupported token algorithm: {algorithm}")
        self.access_key = access_key
        self.refresh_key = refresh_key
        self.algorithm = algorithm
        self._clock = clock or utc_now

    @classmethod
    def from_settings(
        cls, settings: Settings, *, clock: Optional[Clock] = None
    ) -> "TokenCodec":
        return cls(
            settings.jwt_access_key,
            settings.jwt_refresh_key,
            algorithm=settings.jwt_algorithm,
            clock=clock,
        )

    def _now(self) -> datetime:
        return self._clock()

    def _sign(self, token: AuthToken, key: str, lifetime: timedelta) -> str:
        now = self._now()
        payload: dict[str, Any] = token.to_claims()
        payload["iat"] = int(now.timestamp())
        payload["exp"] = int((now + lifetime).timestamp())
        # Two tokens minted for the same user within one second must still
        # differ, since refresh tokens double as registry keys.
        payload["jti"] = str(uuid.uuid4())
        return jwt.encode(payload, key, algorithm=self.algorithm)

    def mint_access(
        self, username: str, status: UserStatus, admin: Optional[bool] = None
    ) -> str:
        """Issue a 15-minute access token."""
        token = AuthToken(
            username=username,
            type=TokenType.ACCESS,
            status=UserStatus(status),
            admin=True if admin else None,
        )
        return self._sign(token, self.access_key, ACCESS_TOKEN_LIFETIME)

    def mint_refresh(
        self, username: str, status: UserStatus, admin: Optional[bool] = None
    ) -> str:
        """Issue a 120-minute refresh token.

        The caller must register the returned value in the session registry,
        otherwise it will never pass verification.
        """
        token = AuthToken(
            username=username,
            type=TokenType.REFRESH,
            status=UserStatus(status),
            admin=True if admin else None,
        )
        return self._sign(token, self.refresh_key, REFRESH_TOKEN_LIFETIME)

    def decode(
        self, raw_token: Optional[str], key: str, expected_type: TokenType
    ) -> VerifiedToken:
        """Verify ``raw_token`` and return its claims and timestamps.

        Raises:
            AuthenticationError: if the token is missing, malformed, signed
                with another key or algorithm, expired, or of the wrong type.
        """
        if not raw_token or not isinstance(raw_token, str):
            raise AuthenticationError()
        try:
            # Expiry is checked below against the codec clock rather than
            # the wall clock inside PyJWT.
            payload = jwt.decode(
                raw_token,
                key,
                algorithms=[self.algorithm],
                options={
                    "require": ["exp", "iat"],
                    "verify_exp": False,
                    "verify_iat": False,
                },
            )
        except jwt.InvalidTokenError as exc:
            logger.info("token_rejected", reason=type(exc).__name__)
            raise AuthenticationError() from exc

        exp = payload.get("exp")
        iat = payload.get("iat")
        if not isinstance(exp, (int, float)) or not isinstance(iat, (int, float)):
            logger.info("token_rejected", reason="bad_timestamps")
            raise AuthenticationError()
        expires_at = datetime.fromtimestamp(exp, tz=timezone.utc)
        if expires_at <= self._now():
            logger.info("token_rejected", reason="expired")
            raise AuthenticationError()

        try:
            claims = AuthToken.from_claims(payload)
        except (KeyError, ValueError, TypeError) as exc:
            logger.info("token_rejected", reason="bad_claims")
            raise AuthenticationError() from exc
        if claims.type != expected_type:
            logger.info(
                "token_rejected",
                reason="wrong_type",
                expected=expected_type.value,
                actual=claims.type.value,
            )
            raise AuthenticationError()

        return VerifiedToken(
            claims=claims,
            issued_at=datetime.fromtimestamp(iat, tz=timezone.utc),
            expires_at=expires_at,
        )

    def verify(
        self, raw_token: Optional[str], key: str, expected_type: TokenType
    ) -> AuthToken:
        return self.decode(raw_token, key, expected_type).claims

    def verify_access(self, raw_token: Optional[str]) -> AuthToken:
        return self.verify(raw_token, self.access_key, TokenType.ACCESS)

    def decode_refresh(self, raw_token: Optional[str]) -> VerifiedToken:
        return self.decode(raw_token, self.refresh_key, TokenType.REFRESH)

    def verify_refresh(self, raw_token: Optional[str]) -> AuthToken:
        return self.decode_refresh(raw_token).claims

    def expires_at(self, raw_token: Optional[str]) -> datetime:
        """Expiry of a valid refresh token."""
        return self.decode_refresh(raw_token).expires_at

    def remaining(self, raw_token: Optional[str]) -> timedelta:
        """Lifetime left on a valid refresh token, measured on the codec clock."""
        return self.decode_refresh(raw_token).remaining(self._now())
