from __future__ import annotations

import dataclasses
import math
import re
import threading
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional

from memberauth.clock import Clock, utc_now
from memberauth.logging import get_logger
from memberauth.storage.models import UserRecord, UserStatus
from memberauth.storage.session_registry import _KeyLayout


def _glob_to_regex(pattern: str) -> "re.Pattern[str]":
    """Translate a Redis MATCH glob (``*``, ``?``, ``[..]``, ``\\`` escapes)."""
    out: list[str] = []
    i = 0
    while i < len(pattern):
        ch = pattern[i]
        if ch == "\\" and i + 1 < len(pattern):
            out.append(re.escape(pattern[i + 1]))
            i += 2
            continue
        if ch == "*":
            out.append(".*")
        elif ch == "?":
            out.append(".")
        elif ch == "[":
            end = pattern.find("]", i + 1)
            if end == -1:
                out.append(re.escape(ch))
            else:
                body = pattern[i + 1 : end].replace("\\", "\\\\")
                out.append(f"[{body}]")
                i = end
        else:
            out.append(re.escape(ch))
        i += 1
    return re.compile("".join(out), re.DOTALL)


class MemoryUserStore:
    """In-memory user table for tests and local development."""

    def __init__(self) -> None:
        self.logger = get_logger(__name__)
        self.users: Dict[str, UserRecord] = {}
        self._data_lock = threading.RLock()

    def add_user(self, record: UserRecord) -> UserRecord:
        with self._data_lock:
            self.users[record.username] = dataclasses.replace(record)
            return record

    def set_status(self, username: str, status: UserStatus) -> None:
        with self._data_lock:
            self.users[username].status = UserStatus(status)

    def set_admin(self, username: str, admin: bool) -> None:
        with self._data_lock:
            self.users[username].admin = admin

    def remove_user(self, username: str) -> None:
        with self._data_lock:
            self.users.pop(username, None)

    async def read_user(self, username: str) -> Optional[UserRecord]:
        with self._data_lock:
            record = self.users.get(username)
            # Hand out copies so callers cannot mutate the table
            return dataclasses.replace(record) if record else None

    async def update_password(self, username: str, password_hash: str) -> None:
        with self._data_lock:
            record = self.users.get(username)
            if record is None:
                self.logger.warning("update_password_missing_user", username=username)
                return
            record.password_hash = password_hash


class MemorySessionRegistry(_KeyLayout):
    """Process-local session registry with clock-driven expiry.

    Mirrors the Redis key layout and TTL semantics so the session manager
    behaves identically against either backend.
    """

    def __init__(self, *, key_prefix: str = "", clock: Optional[Clock] = None) -> None:
        self.key_prefix = key_prefix
        self._clock = clock or utc_now
        self._entries: Dict[str, datetime] = {}
        self._data_lock = threading.RLock()

    def _purge_expired(self) -> None:
        now = self._clock()
        for key in [k for k, exp in self._entries.items() if exp <= now]:
            self._entries.pop(key, None)

    async def put(self, username: str, token: str, ttl_seconds: int) -> None:
        ttl = self._validate_ttl(ttl_seconds)
        with self._data_lock:
            self._entries[self.entry_key(username, token)] = self._clock() + timedelta(
                seconds=ttl
            )

    async def exists(self, username: str, token: str) -> bool:
        with self._data_lock:
            self._purge_expired()
            return self.entry_key(username, token) in self._entries

    async def ttl(self, username: str, token: str) -> Optional[int]:
        with self._data_lock:
            self._purge_expired()
            expires_at = self._entries.get(self.entry_key(username, token))
            if expires_at is None:
                return None
            return math.ceil((expires_at - self._clock()).total_seconds())

    async def scan(self, pattern: str) -> List[str]:
        regex = _glob_to_regex(pattern)
        with self._data_lock:
            self._purge_expired()
            return [key for key in self._entries if regex.fullmatch(key)]

    async def user_keys(self, username: str) -> List[str]:
        with self._data_lock:
            self._purge_expired()
            return sorted(
                key for key in self._entries if self._username_of(key) == username
            )

    async def delete(self, key: str) -> None:
        with self._data_lock:
            self._entries.pop(key, None)

    async def delete_many(self, keys: Iterable[str]) -> int:
        deleted = 0
        with self._data_lock:
            for key in keys:
                if self._entries.pop(key, None) is not None:
                    deleted += 1
        return deleted

    async def close(self) -> None:
        with self._data_lock:
            self._entries.clear()


__all__ = ["MemorySessionRegistry", "MemoryUserStore"]
