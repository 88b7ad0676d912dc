from __future__ import annotations

import base64
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Protocol

from argon2.low_level import Type, hash_secret_raw

from memberauth.config import Settings


class PasswordHashFn(Protocol):
    def __call__(self, user_id: str, salt: str, secret: str) -> str: ...


def member_since_salt(member_since: datetime) -> str:
    """Per-user salt component: the membership timestamp, millisecond ISO-8601 in UTC."""
    if member_since.tzinfo is None:
        member_since = member_since.replace(tzinfo=timezone.utc)
    moment = member_since.astimezone(timezone.utc)
    return moment.strftime("%Y-%m-%dT%H:%M:%S.") + f"{moment.microsecond // 1000:03d}Z"


@dataclass(frozen=True)
class Argon2Hasher:
    """Deterministic argon2id hash of ``secret`` salted with ``user_id + salt``.

    The salt is derived from stable user attributes, so the same inputs
    always produce the same digest and stored hashes can be compared with
    plain equality.
    """

    time_cost: int = 2
    memory_cost: int = 19 * 1024
    parallelism: int = 1
    hash_len: int = 64

    @classmethod
    def from_settings(cls, settings: Settings) -> "Argon2Hasher":
        return cls(
            time_cost=settings.hash_time_cost,
            memory_cost=settings.hash_memory_cost,
            parallelism=settings.hash_parallelism,
        )

    def __call__(self, user_id: str, salt: str, secret: str) -> str:
        digest = hash_secret_raw(
            secret.encode("utf-8"),
            f"{user_id}{salt}".encode("utf-8"),
            time_cost=self.time_cost,
            memory_cost=self.memory_cost,
            parallelism=self.parallelism,
            hash_len=self.hash_len,
            type=Type.ID,
        )
        return base64.b64encode(digest).decode("ascii")
