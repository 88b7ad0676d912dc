from __future__ import annotations

import asyncio
import threading
from typing import Optional
from urllib.parse import urlparse, urlunparse

from memberauth.clock import Clock, utc_now
from memberauth.config import Settings, get_settings, reset_settings_cache
from memberauth.logging import get_logger
from memberauth.service.hashing import Argon2Hasher
from memberauth.service.sessions import SessionManager
from memberauth.service.status_gate import UserStatusGate, UserStore
from memberauth.service.tokens import TokenCodec
from memberauth.storage.memory import MemorySessionRegistry, MemoryUserStore
from memberauth.storage.postgres import PostgresUserStore
from memberauth.storage.session_registry import RedisSessionRegistry, SessionRegistry

logger = get_logger(__name__)


def _mask_url_password(url: Optional[str]) -> Optional[str]:
    """Replace the password component of ``url`` with ``***`` for logging."""
    if not url:
        return url
    try:
        parsed = urlparse(url)
    except ValueError:
        return "***url_parse_error***"
    if not parsed.password:
        return url
    netloc = parsed.hostname or ""
    if parsed.port:
        netloc = f"{netloc}:{parsed.port}"
    netloc = f"{parsed.username or ''}:***@{netloc}"
    return urlunparse(
        (parsed.scheme, netloc, parsed.path, parsed.params, parsed.query, parsed.fragment)
    )


class Runtime:
    """Wires the session manager and its collaborators from settings.

    Everything the manager needs is passed to its constructor; nothing below
    reaches back into this object.
    """

    def __init__(self, settings: Optional[Settings] = None, *, clock: Optional[Clock] = None):
        self.settings = settings or get_settings()
        self.clock = clock or utc_now
        logger.info(
            "runtime_init_started",
            use_memory_store=self.settings.use_memory_store,
            test_mode=self.settings.test_mode,
        )

        self.user_store: UserStore
        if self.settings.use_memory_store:
            self.user_store = MemoryUserStore()
        else:
            self.user_store = PostgresUserStore(self.settings.database_url)
        logger.info(
            "runtime_store_initialized",
            store_type="memory" if self.settings.use_memory_store else "postgres",
        )

        self.registry: SessionRegistry = self._build_registry()
        self.hasher = Argon2Hasher.from_settings(self.settings)
        self.codec = TokenCodec.from_settings(self.settings, clock=self.clock)
        self.gate = UserStatusGate(self.user_store, self.hasher)
        self.sessions = SessionManager(
            self.codec, self.registry, self.gate, clock=self.clock
        )

    def _build_registry(self) -> SessionRegistry:
        redis_error: Exception | None = None
        if self.settings.redis_url:
            try:
                registry = RedisSessionRegistry(
                    self.settings.redis_url, key_prefix=self.settings.redis_key_prefix
                )
                registry.verify_connection()
                return registry
            except Exception as exc:
                redis_error = exc

        if not self.settings.test_mode and not self.settings.allow_redis_fallback_dev:
            raise RuntimeError(
                "Redis is required for the session registry; start Redis or set "
                "TEST_MODE=true/ALLOW_REDIS_FALLBACK_DEV=true for local fallback."
            ) from redis_error

        fallback_mode = "TEST_MODE" if self.settings.test_mode else "ALLOW_REDIS_FALLBACK_DEV"
        logger.warning(
            "redis_disabled_fallback",
            redis_url=_mask_url_password(self.settings.redis_url),
            error=str(redis_error) if redis_error else "redis_url_missing",
            message=(
                f"Running without Redis under {fallback_mode}; sessions are "
                "process-local and lost on restart."
            ),
            mode=fallback_mode,
        )
        return MemorySessionRegistry(
            key_prefix=self.settings.redis_key_prefix, clock=self.clock
        )

    async def close(self) -> None:
        await self.registry.close()
        if isinstance(self.user_store, PostgresUserStore):
            await self.user_store.close()


runtime: Runtime | None = None
_runtime_lock = threading.Lock()


def get_runtime() -> Runtime:
    """Get or create the Runtime singleton (double-checked locking)."""
    global runtime
    if runtime is not None:
        return runtime
    with _runtime_lock:
        if runtime is None:
            runtime = Runtime()
        return runtime


def reset_runtime_for_tests() -> Runtime:
    """Reinitialize the runtime singleton for isolated test runs."""
    global runtime

    with _runtime_lock:
        if runtime is not None and isinstance(runtime.registry, RedisSessionRegistry):
            try:
                loop = asyncio.get_running_loop()
                loop.create_task(runtime.close())
            except RuntimeError:
                asyncio.run(runtime.close())

        reset_settings_cache()
        settings = get_settings()
        if not settings.test_mode:
            raise RuntimeError("runtime reset is only allowed in TEST_MODE")
        runtime = Runtime(settings)
        return runtime


__all__ = ["Runtime", "get_runtime", "reset_runtime_for_tests"]
