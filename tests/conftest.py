import asyncio
import inspect
import os
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

# Environment must be in place before any import that builds settings
os.environ.setdefault("TEST_MODE", "true")
os.environ.setdefault("USE_MEMORY_STORE", "true")
os.environ.setdefault("ALLOW_REDIS_FALLBACK_DEV", "true")
os.environ.setdefault(
    "JWT_ACCESS_KEY",
    "test-access-key-for-testing-only-do-not-use-in-production-0123456789abcdef",
)
os.environ.setdefault(
    "JWT_REFRESH_KEY",
    "test-refresh-key-for-testing-only-do-not-use-in-production-0123456789abcdef",
)
# Empty URL sends the runtime straight to the in-memory registry
os.environ.setdefault("REDIS_URL", "")
os.environ.setdefault("HASH_TIME_COST", "1")
os.environ.setdefault("HASH_MEMORY_COST", "8")

import pytest  # noqa: E402

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


from memberauth.service.hashing import Argon2Hasher, member_since_salt  # noqa: E402
from memberauth.service.runtime import reset_runtime_for_tests  # noqa: E402
from memberauth.service.sessions import SessionManager  # noqa: E402
from memberauth.service.status_gate import UserStatusGate  # noqa: E402
from memberauth.service.tokens import TokenCodec  # noqa: E402
from memberauth.storage.memory import MemorySessionRegistry, MemoryUserStore, _glob_to_regex  # noqa: E402
from memberauth.storage.models import UserRecord, UserStatus  # noqa: E402
from memberauth.storage.session_registry import RedisSessionRegistry  # noqa: E402

ACCESS_KEY = os.environ["JWT_ACCESS_KEY"]
REFRESH_KEY = os.environ["JWT_REFRESH_KEY"]
MEMBER_SINCE = datetime(2021, 3, 10, 2, 0, 0, tzinfo=timezone.utc)

# username -> (password, status, admin)
TEST_USERS = {
    "testuser1": ("Password13!", UserStatus.UNVERIFIED, False),
    "testuser2": ("Password12!", UserStatus.VERIFIED, False),
    "admin1": ("rootPW12!@", UserStatus.VERIFIED, True),
    "suspended1": ("snuesDp12@@", UserStatus.SUSPENDED, False),
    "deleted1": ("Dle12!4@!!", UserStatus.DELETED, False),
}


class FakeClock:
    """Manually advanced UTC clock shared by codec, registry and manager."""

    def __init__(self, start: datetime = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class FakePipeline:
    def __init__(self, client):
        self.client = client
        self.ops = []

    def __getattr__(self, name):
        def queue(*args, **kwargs):
            self.ops.append((name, args, kwargs))
            return self

        return queue

    async def execute(self):
        results = []
        for name, args, kwargs in self.ops:
            results.append(await getattr(self.client, name)(*args, **kwargs))
        self.ops = []
        return results


class FakeRedis:
    """Minimal async Redis with strings, sets, TTLs and paged SCAN."""

    def __init__(self, page_size=1):
        self.values = {}
        self.sets = {}
        self.ttls = {}
        self.page_size = page_size
        self.scan_calls = 0
        self.closed = False

    def pipeline(self, transaction=True):
        return FakePipeline(self)

    async def set(self, key, value, ex=None):
        self.values[key] = value
        if ex is not None:
            self.ttls[key] = ex
        return True

    async def exists(self, key):
        return int(key in self.values or key in self.sets)

    async def ttl(self, key):
        if key not in self.values and key not in self.sets:
            return -2
        return self.ttls.get(key, -1)

    async def expire(self, key, seconds):
        self.ttls[key] = seconds
        return True

    async def delete(self, key):
        existed = key in self.values or key in self.sets
        self.values.pop(key, None)
        self.sets.pop(key, None)
        self.ttls.pop(key, None)
        return int(existed)

    async def sadd(self, key, *members):
        bucket = self.sets.setdefault(key, set())
        before = len(bucket)
        bucket.update(members)
        return len(bucket) - before

    async def srem(self, key, *members):
        bucket = self.sets.get(key, set())
        removed = len(bucket & set(members))
        bucket.difference_update(members)
        return removed

    async def smembers(self, key):
        return set(self.sets.get(key, set()))

    async def scan(self, cursor=0, match=None, count=None):
        self.scan_calls += 1
        regex = _glob_to_regex(match or "*")
        keys = sorted(k for k in self.values if regex.fullmatch(k))
        # Interleave an empty page and a repeated key, both legal for SCAN
        pages = [[]] + [keys[i : i + self.page_size] for i in range(0, len(keys), self.page_size)]
        if keys:
            pages.append(keys[:1])
        cursor = int(cursor)
        next_cursor = cursor + 1 if cursor + 1 < len(pages) else 0
        return next_cursor, pages[cursor]

    async def aclose(self):
        self.closed = True

    def expire_now(self, key):
        self.values.pop(key, None)
        self.ttls.pop(key, None)


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def redis_registry(fake_redis):
    return RedisSessionRegistry(client=fake_redis, key_prefix="test:")


@pytest.fixture(autouse=True)
def reset_runtime_state():
    reset_runtime_for_tests()
    yield
    reset_runtime_for_tests()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def test_users():
    return dict(TEST_USERS)


@pytest.fixture
def member_since():
    return MEMBER_SINCE


@pytest.fixture
def hasher():
    return Argon2Hasher(time_cost=1, memory_cost=8, parallelism=1)


@pytest.fixture
def user_store(hasher):
    store = MemoryUserStore()
    for username, (password, status, admin) in TEST_USERS.items():
        store.add_user(
            UserRecord(
                username=username,
                password_hash=hasher(username, member_since_salt(MEMBER_SINCE), password),
                member_since=MEMBER_SINCE,
                status=status,
                admin=admin,
            )
        )
    return store


@pytest.fixture
def codec(clock):
    return TokenCodec(ACCESS_KEY, REFRESH_KEY, clock=clock)


@pytest.fixture
def registry(clock):
    return MemorySessionRegistry(clock=clock)


@pytest.fixture
def gate(user_store, hasher):
    return UserStatusGate(user_store, hasher)


@pytest.fixture
def manager(codec, registry, gate, clock):
    return SessionManager(codec, registry, gate, clock=clock)


def pytest_pyfunc_call(pyfuncitem):
    if inspect.iscoroutinefunction(pyfuncitem.obj):
        call_kwargs = {
            name: pyfuncitem.funcargs[name]
            for name in pyfuncitem._fixtureinfo.argnames
            if name in pyfuncitem.funcargs
        }
        asyncio.run(pyfuncitem.obj(**call_kwargs))
        return True
    return None


def pytest_configure(config):
    config.addinivalue_line("markers", "asyncio: mark test as async")
