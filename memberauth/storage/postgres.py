from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Optional

import psycopg
from psycopg import sql
from psycopg.rows import dict_row
from psycopg_pool import AsyncConnectionPool

from memberauth.logging import get_logger
from memberauth.storage.errors import StoreUnavailable
from memberauth.storage.models import UserRecord, UserStatus


def _row_to_user(row: Dict[str, Any]) -> UserRecord:
    member_since = row["membersince"]
    if isinstance(member_since, datetime) and member_since.tzinfo is None:
        member_since = member_since.replace(tzinfo=timezone.utc)
    return UserRecord(
        username=row["username"],
        password_hash=row["password"],
        member_since=member_since,
        status=UserStatus(row["status"]),
        admin=bool(row.get("admin", False)),
    )


class PostgresUserStore:
    """Read-mostly access to the membership table.

    Only the columns authentication needs are touched; the table itself is
    owned and migrated elsewhere.
    """

    def __init__(self, dsn: str, *, table: str = "user", max_size: int = 10) -> None:
        self.dsn = dsn
        self.table = sql.Identifier(table)
        self.logger = get_logger(__name__)
        self.pool = AsyncConnectionPool(
            self.dsn,
            min_size=1,
            max_size=max_size,
            kwargs={"row_factory": dict_row, "autocommit": True},
            open=False,
        )
        self._opened = False

    async def _ensure_open(self) -> None:
        if not self._opened:
            await self.pool.open()
            self._opened = True

    async def read_user(self, username: str) -> Optional[UserRecord]:
        query = sql.SQL(
            "SELECT username, password, membersince, status, admin FROM {} WHERE username = %s"
        ).format(self.table)
        try:
            await self._ensure_open()
            async with self.pool.connection() as conn:
                cur = await conn.execute(query, (username,))
                row = await cur.fetchone()
        except psycopg.Error as exc:
            self.logger.error("user_store_read_failed", error=str(exc))
            raise StoreUnavailable("user store unavailable") from exc
        if not row:
            return None
        return _row_to_user(row)

    async def update_password(self, username: str, password_hash: str) -> None:
        query = sql.SQL("UPDATE {} SET password = %s WHERE username = %s").format(
            self.table
        )
        try:
            await self._ensure_open()
            async with self.pool.connection() as conn:
                await conn.execute(query, (password_hash, username))
        except psycopg.Error as exc:
            self.logger.error("user_store_update_failed", error=str(exc))
            raise StoreUnavailable("user store unavailable") from exc

    async def close(self) -> None:
        if self._opened:
            await self.pool.close()
            self._opened = False


__all__ = ["PostgresUserStore"]
