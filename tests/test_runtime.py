import pytest

from memberauth.config import Settings
from memberauth.service.hashing import member_since_salt
from memberauth.service.runtime import Runtime, _mask_url_password, get_runtime
from memberauth.service.sessions import SessionManager
from memberauth.storage.memory import MemorySessionRegistry, MemoryUserStore
from memberauth.storage.models import UserRecord, UserStatus


def test_runtime_singleton():
    runtime = get_runtime()
    assert get_runtime() is runtime
    assert isinstance(runtime.sessions, SessionManager)


def test_test_mode_falls_back_to_memory():
    runtime = get_runtime()
    assert isinstance(runtime.user_store, MemoryUserStore)
    assert isinstance(runtime.registry, MemorySessionRegistry)
    assert runtime.sessions.registry is runtime.registry
    assert runtime.sessions.gate.store is runtime.user_store


def test_redis_required_outside_test_mode():
    settings = Settings(
        jwt_access_key="a" * 64,
        jwt_refresh_key="b" * 64,
        redis_url="",
        use_memory_store=True,
        test_mode=False,
        allow_redis_fallback_dev=False,
    )
    with pytest.raises(RuntimeError):
        Runtime(settings)


def test_mask_url_password():
    assert _mask_url_password("redis://:hunter2@cache:6379/0") == "redis://:***@cache:6379/0"
    assert _mask_url_password("redis://cache:6379/0") == "redis://cache:6379/0"
    assert _mask_url_password(None) is None


async def test_wired_login_round_trip(member_since):
    runtime = get_runtime()
    runtime.user_store.add_user(
        UserRecord(
            username="testuser1",
            password_hash=runtime.hasher("testuser1", member_since_salt(member_since), "Password13!"),
            member_since=member_since,
            status=UserStatus.VERIFIED,
        )
    )

    tokens = await runtime.sessions.login("testuser1", "Password13!")
    claims = await runtime.sessions.verify_access(tokens.access_token)

    assert claims.username == "testuser1"
    assert claims.status == UserStatus.VERIFIED
    await runtime.sessions.logout(tokens.refresh_token)
