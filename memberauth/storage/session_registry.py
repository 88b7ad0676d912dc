from __future__ import annotations

import re
from typing import Iterable, List, Optional, Protocol

import redis.asyncio as aioredis
from redis import Redis

from memberauth.logging import get_logger

logger = get_logger(__name__)

# Upper bound on any entry's lifetime; the per-user index is kept alive at
# least this long after every write so it always outlives its members.
MAX_ENTRY_TTL_SECONDS = 120 * 60

_GLOB_SPECIAL = re.compile(r"([*?\[\]\\])")


def escape_glob(value: str) -> str:
    """Escape Redis MATCH metacharacters so ``value`` matches literally."""
    return _GLOB_SPECIAL.sub(r"\\\1", value)


class SessionRegistry(Protocol):
    """Expiring set of live refresh tokens keyed by ``{prefix}{username}_{token}``.

    Existence of an entry is the only thing that keeps a refresh token usable;
    revocation is deletion.
    """

    key_prefix: str

    def entry_key(self, username: str, token: str) -> str: ...

    def user_pattern(self, username: str) -> str: ...

    async def put(self, username: str, token: str, ttl_seconds: int) -> None: ...

    async def exists(self, username: str, token: str) -> bool: ...

    async def ttl(self, username: str, token: str) -> Optional[int]: ...

    async def scan(self, pattern: str) -> List[str]: ...

    async def user_keys(self, username: str) -> List[str]: ...

    async def delete(self, key: str) -> None: ...

    async def delete_many(self, keys: Iterable[str]) -> int: ...

    async def close(self) -> None: ...


class _KeyLayout:
    """Key naming shared by every registry backend."""

    key_prefix: str = ""

    def entry_key(self, username: str, token: str) -> str:
        return f"{self.key_prefix}{username}_{token}"

    def user_pattern(self, username: str) -> str:
        return f"{escape_glob(self.key_prefix + username)}_*"

    def _index_key(self, username: str) -> str:
        return f"{self.key_prefix}auth:user_sessions:{username}"

    def _username_of(self, key: str) -> Optional[str]:
        """Recover the username from an entry key.

        Usernames never contain ``_`` while tokens may, so the first
        separator after the prefix is the boundary.
        """
        if not key.startswith(self.key_prefix):
            return None
        username, sep, _ = key[len(self.key_prefix):].partition("_")
        return username if sep and username else None

    @staticmethod
    def _validate_ttl(ttl_seconds: int) -> int:
        ttl = int(ttl_seconds)
        if ttl <= 0:
            raise ValueError("registry entries need a positive TTL")
        return ttl


class RedisSessionRegistry(_KeyLayout):
    """Redis-backed session registry.

    Besides the entry keys themselves, every username has an index set listing
    its entry keys so bulk revocation does not need to walk the keyspace.
    Backend errors propagate unchanged to the caller.
    """

    SCAN_PAGE_SIZE = 500

    def __init__(
        self,
        redis_url: Optional[str] = None,
        *,
        key_prefix: str = "",
        socket_timeout: float = 5.0,
        client: Optional[aioredis.Redis] = None,
    ):
        if client is None and not redis_url:
            raise ValueError("redis_url or client is required")
        self.redis_url = redis_url
        self.key_prefix = key_prefix
        self.client = client or aioredis.from_url(
            redis_url,
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )

    def verify_connection(self) -> None:
        """Assert Redis connectivity before enabling dependent features."""

        # Use a short-lived synchronous client to avoid binding the async client to a
        # temporary event loop during startup checks.
        sync_client = Redis.from_url(self.redis_url, decode_responses=True)
        try:
            sync_client.ping()
        finally:
            sync_client.close()

    async def put(self, username: str, token: str, ttl_seconds: int) -> None:
        ttl = self._validate_ttl(ttl_seconds)
        key = self.entry_key(username, token)
        index_key = self._index_key(username)
        pipe = self.client.pipeline(transaction=True)
        pipe.set(key, "", ex=ttl)
        pipe.sadd(index_key, key)
        pipe.expire(index_key, max(ttl, MAX_ENTRY_TTL_SECONDS))
        await pipe.execute()

    async def exists(self, username: str, token: str) -> bool:
        return bool(await self.client.exists(self.entry_key(username, token)))

    async def ttl(self, username: str, token: str) -> Optional[int]:
        """Seconds left on the entry, or None when it does not exist."""
        remaining = await self.client.ttl(self.entry_key(username, token))
        # -2: no such key, -1: key without expiry (never written by put)
        if remaining is None or remaining < 0:
            return None
        return int(remaining)

    async def scan(self, pattern: str) -> List[str]:
        """Return every key matching ``pattern``.

        SCAN pages are followed until the cursor wraps to 0; a single call
        may legitimately return an empty page with a non-zero cursor.
        """
        cursor = 0
        found: list[str] = []
        while True:
            cursor, batch = await self.client.scan(
                cursor=cursor, match=pattern, count=self.SCAN_PAGE_SIZE
            )
            found.extend(batch)
            if int(cursor) == 0:
                break
        # SCAN may report a key more than once across pages
        return list(dict.fromkeys(found))

    async def user_keys(self, username: str) -> List[str]:
        index_key = self._index_key(username)
        members = sorted(await self.client.smembers(index_key))
        if not members:
            return []
        pipe = self.client.pipeline(transaction=False)
        for key in members:
            pipe.exists(key)
        flags = await pipe.execute()
        live = [key for key, flag in zip(members, flags) if flag]
        stale = [key for key, flag in zip(members, flags) if not flag]
        if stale:
            # Members whose entry expired naturally
            await self.client.srem(index_key, *stale)
            logger.debug("session_index_pruned", username=username, pruned=len(stale))
        return live

    async def delete(self, key: str) -> None:
        await self.delete_many([key])

    async def delete_many(self, keys: Iterable[str]) -> int:
        keys = list(keys)
        if not keys:
            return 0
        pipe = self.client.pipeline(transaction=True)
        for key in keys:
            pipe.delete(key)
            username = self._username_of(key)
            if username:
                pipe.srem(self._index_key(username), key)
        results = await pipe.execute()
        # Results alternate DEL/SREM when the username is recoverable
        deleted = 0
        idx = 0
        for key in keys:
            deleted += int(results[idx] or 0)
            idx += 2 if self._username_of(key) else 1
        return deleted

    async def close(self) -> None:
        """Close Redis connection pool."""
        await self.client.aclose()


__all__ = [
    "MAX_ENTRY_TTL_SECONDS",
    "RedisSessionRegistry",
    "SessionRegistry",
    "escape_glob",
]
