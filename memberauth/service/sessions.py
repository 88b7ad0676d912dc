"""Session lifecycle on top of the token codec and the session registry.

A session is a registered refresh token. Access tokens are stateless and
live for 15 minutes; refresh tokens live for 120 minutes and are only
honoured while their registry entry exists. When a refresh token is
presented with less than 20 minutes left it is rotated: a replacement is
minted and registered and the old entry is removed.

Every operation takes raw cookie values and returns the cookie values the
HTTP layer should set, or raises a ``ServiceError``.
"""

from __future__ import annotations

import contextlib
from datetime import datetime, timedelta
from typing import Iterator, Optional

from redis.exceptions import RedisError

from memberauth.clock import Clock, utc_now
from memberauth.logging import get_logger, token_fingerprint
from memberauth.service.errors import (
    AuthenticationError,
    BadRequestError,
    ServerError,
)
from memberauth.service.rules import password_rule, username_rule
from memberauth.service.status_gate import UserStatusGate
from memberauth.service.tokens import REFRESH_TOKEN_LIFETIME, TokenCodec, VerifiedToken
from memberauth.storage.errors import StoreUnavailable
from memberauth.storage.models import (
    AuthToken,
    RefreshResult,
    SessionTokens,
    TokenType,
    UserStatus,
)
from memberauth.storage.session_registry import SessionRegistry

logger = get_logger(__name__)

ROTATION_THRESHOLD = timedelta(minutes=20)
REFRESH_TTL_SECONDS = int(REFRESH_TOKEN_LIFETIME.total_seconds())


@contextlib.contextmanager
def _infrastructure_errors(operation: str) -> Iterator[None]:
    """Translate backend failures into a 500; domain errors pass through."""
    try:
        yield
    except (RedisError, StoreUnavailable) as exc:
        logger.error(
            "session_backend_failed",
            operation=operation,
            error_type=type(exc).__name__,
            error=str(exc),
        )
        raise ServerError() from exc


class SessionManager:
    def __init__(
        self,
        codec: TokenCodec,
        registry: SessionRegistry,
        gate: UserStatusGate,
        *,
        clock: Optional[Clock] = None,
    ) -> None:
        self.codec = codec
        self.registry = registry
        self.gate = gate
        self._clock = clock or utc_now

    def _now(self) -> datetime:
        return self._clock()

    async def login(self, username: str, password: str) -> SessionTokens:
        """Authenticate credentials and open a new session.

        Other sessions of the same user are left alone.
        """
        if not username_rule(username) or not password_rule(username, password):
            logger.info("login_failed", reason="composition_rules")
            raise AuthenticationError()
        with _infrastructure_errors("login"):
            user = await self.gate.authenticate(username, password)
            access_token = self.codec.mint_access(user.username, user.status, user.admin)
            refresh_token = self.codec.mint_refresh(user.username, user.status, user.admin)
            await self.registry.put(user.username, refresh_token, REFRESH_TTL_SECONDS)
        logger.info(
            "login_succeeded",
            username=user.username,
            fingerprint=token_fingerprint(refresh_token),
        )
        return SessionTokens(access_token=access_token, refresh_token=refresh_token)

    async def verify_access(self, access_token: Optional[str]) -> AuthToken:
        return self.codec.verify_access(access_token)

    async def _registered(self, refresh_token: Optional[str]) -> VerifiedToken:
        """Verify signature, type and expiry, then require a registry entry."""
        verified = self.codec.decode_refresh(refresh_token)
        username = verified.claims.username
        with _infrastructure_errors("verify_refresh"):
            if not await self.registry.exists(username, refresh_token):
                logger.info(
                    "refresh_token_revoked",
                    username=username,
                    fingerprint=token_fingerprint(refresh_token),
                )
                raise AuthenticationError()
        return verified

    async def _rotate_if_due(
        self, verified: VerifiedToken, refresh_token: str
    ) -> RefreshResult:
        claims = verified.claims
        if verified.remaining(self._now()) >= ROTATION_THRESHOLD:
            return RefreshResult(claims=claims, token=refresh_token)

        with _infrastructure_errors("rotate"):
            # Rotation reflects live account state, not the old snapshot
            user = await self.gate.lookup(claims.username)
            if user is None or user.status == UserStatus.DELETED:
                logger.info("rotation_refused", username=claims.username)
                raise AuthenticationError()
            new_token = self.codec.mint_refresh(user.username, user.status, user.admin)
            await self.registry.put(user.username, new_token, REFRESH_TTL_SECONDS)
            await self.registry.delete(
                self.registry.entry_key(claims.username, refresh_token)
            )
        logger.info(
            "session_rotated",
            username=user.username,
            old_fingerprint=token_fingerprint(refresh_token),
            new_fingerprint=token_fingerprint(new_token),
        )
        rotated_claims = AuthToken(
            username=user.username,
            type=TokenType.REFRESH,
            status=user.status,
            admin=True if user.admin else None,
        )
        return RefreshResult(claims=rotated_claims, token=new_token, rotated_token=new_token)

    async def verify_refresh(self, refresh_token: Optional[str]) -> RefreshResult:
        """Verify a refresh token against the registry, rotating it when near expiry.

        Raises:
            AuthenticationError: invalid, expired or revoked token, or the
                account was deleted before rotation.
        """
        verified = await self._registered(refresh_token)
        return await self._rotate_if_due(verified, refresh_token)

    async def logout(self, refresh_token: Optional[str]) -> None:
        """End the session that owns ``refresh_token``."""
        result = await self.verify_refresh(refresh_token)
        with _infrastructure_errors("logout"):
            await self.registry.delete(
                self.registry.entry_key(result.claims.username, result.token)
            )
        logger.info(
            "session_closed",
            username=result.claims.username,
            fingerprint=token_fingerprint(result.token),
        )

    async def _revoke_other_sessions(self, username: str, current_token: str) -> int:
        # Not atomic: a session registered between the listing and the
        # delete may or may not survive.
        remaining = await self.registry.ttl(username, current_token)
        if remaining is None or remaining <= 0:
            raise AuthenticationError()
        keys = await self.registry.user_keys(username)
        deleted = await self.registry.delete_many(keys)
        await self.registry.put(username, current_token, remaining)
        current_key = self.registry.entry_key(username, current_token)
        revoked = deleted - (1 if current_key in keys else 0)
        logger.info(
            "bulk_revocation",
            username=username,
            revoked=max(revoked, 0),
            preserved_ttl=remaining,
        )
        return max(revoked, 0)

    async def logout_others(self, refresh_token: Optional[str]) -> SessionTokens:
        """Revoke every session of the user except the caller's.

        The caller's entry keeps its remaining lifetime rather than getting
        a fresh 120 minutes.
        """
        result = await self.verify_refresh(refresh_token)
        with _infrastructure_errors("logout_others"):
            await self._revoke_other_sessions(result.claims.username, result.token)
        return SessionTokens(refresh_token=result.rotated_token)

    async def renew(self, refresh_token: Optional[str]) -> SessionTokens:
        """Mint a fresh access token from a live refresh token.

        The account check runs before any rotation, so a refused renew
        leaves the presented token registered.
        """
        verified = await self._registered(refresh_token)
        with _infrastructure_errors("renew"):
            user = await self.gate.require_active(verified.claims.username)
        result = await self._rotate_if_due(verified, refresh_token)
        access_token = self.codec.mint_access(user.username, user.status, user.admin)
        logger.debug("access_token_renewed", username=user.username, rotated=result.rotated)
        return SessionTokens(access_token=access_token, refresh_token=result.rotated_token)

    async def change_password(
        self,
        refresh_token: Optional[str],
        current_password: str,
        new_password: str,
    ) -> SessionTokens:
        """Replace the user's password and revoke all other sessions.

        A wrong current password is a bad request rather than an
        authentication failure: the refresh token already proved identity.
        Every check happens before rotation; a rejected request leaves the
        caller's token untouched.
        """
        verified = await self._registered(refresh_token)
        username = verified.claims.username
        if (
            current_password == new_password
            or not password_rule(username, current_password)
            or not password_rule(username, new_password)
        ):
            logger.info("password_change_rejected", username=username, reason="rules")
            raise BadRequestError()
        with _infrastructure_errors("change_password"):
            user = await self.gate.require_active(username)
            if not self.gate.password_matches(user, current_password):
                logger.info(
                    "password_change_rejected", username=username, reason="mismatch"
                )
                raise BadRequestError()
        result = await self._rotate_if_due(verified, refresh_token)
        with _infrastructure_errors("change_password"):
            await self.gate.update_password(user, new_password)
            await self._revoke_other_sessions(username, result.token)
        return SessionTokens(refresh_token=result.rotated_token)



__all__ = [
    "REFRESH_TTL_SECONDS",
    "ROTATION_THRESHOLD",
    "SessionManager",
]
