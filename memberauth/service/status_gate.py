from __future__ import annotations

from typing import Optional, Protocol

from memberauth.logging import get_logger
from memberauth.service.errors import AuthenticationError, SuspendedUserError
from memberauth.service.hashing import PasswordHashFn, member_since_salt
from memberauth.storage.models import UserRecord, UserStatus


class UserStore(Protocol):
    async def read_user(self, username: str) -> Optional[UserRecord]: ...

    async def update_password(self, username: str, password_hash: str) -> None: ...


class UserStatusGate:
    """Reads live user state and applies the account-status policy.

    Suspension is reported as its own error; unknown and deleted accounts
    collapse into ``AuthenticationError`` so callers cannot tell which
    usernames exist.
    """

    def __init__(self, store: UserStore, hasher: PasswordHashFn) -> None:
        self.store = store
        self.hasher = hasher
        self.logger = get_logger(__name__)

    def hash_for(self, user: UserRecord, password: str) -> str:
        return self.hasher(user.username, member_since_salt(user.member_since), password)

    def password_matches(self, user: UserRecord, password: str) -> bool:
        # TODO: compare with hmac.compare_digest
        return self.hash_for(user, password) == user.password_hash

    async def lookup(self, username: str) -> Optional[UserRecord]:
        return await self.store.read_user(username)

    def _check_status(self, user: Optional[UserRecord], username: str) -> UserRecord:
        if user is None:
            self.logger.info("user_gate_rejected", username=username, reason="not_found")
            raise AuthenticationError()
        if user.status == UserStatus.DELETED:
            self.logger.info("user_gate_rejected", username=username, reason="deleted")
            raise AuthenticationError()
        if user.status == UserStatus.SUSPENDED:
            self.logger.info("user_gate_rejected", username=username, reason="suspended")
            raise SuspendedUserError()
        return user

    async def require_active(self, username: str) -> UserRecord:
        """Return the live record unless the account is gone or suspended."""
        return self._check_status(await self.lookup(username), username)

    async def authenticate(self, username: str, password: str) -> UserRecord:
        """Check credentials for a login attempt.

        Order matters: the status check runs before the hash comparison, so a
        suspended account is reported as suspended even with a wrong password.
        """
        user = self._check_status(await self.lookup(username), username)
        if not self.password_matches(user, password):
            self.logger.info("user_gate_rejected", username=username, reason="bad_password")
            raise AuthenticationError()
        return user

    async def update_password(self, user: UserRecord, new_password: str) -> None:
        await self.store.update_password(user.username, self.hash_for(user, new_password))
        self.logger.info("password_updated", username=user.username)
