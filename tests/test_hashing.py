from datetime import datetime, timedelta, timezone

from memberauth.config import Settings
from memberauth.service.hashing import Argon2Hasher, member_since_salt


def test_salt_is_millisecond_utc_iso():
    moment = datetime(2021, 3, 10, 2, 0, 0, 123456, tzinfo=timezone.utc)
    assert member_since_salt(moment) == "2021-03-10T02:00:00.123Z"


def test_salt_normalises_offsets_and_naive_values():
    kst = timezone(timedelta(hours=9))
    aware = datetime(2021, 3, 10, 11, 0, 0, tzinfo=kst)
    naive = datetime(2021, 3, 10, 2, 0, 0)
    assert member_since_salt(aware) == "2021-03-10T02:00:00.000Z"
    assert member_since_salt(naive) == "2021-03-10T02:00:00.000Z"


def test_hash_is_deterministic(hasher):
    first = hasher("testuser1", "2021-03-10T02:00:00.000Z", "Password13!")
    second = hasher("testuser1", "2021-03-10T02:00:00.000Z", "Password13!")
    assert first == second
    assert first != "Password13!"


def test_hash_depends_on_every_input(hasher):
    base = hasher("testuser1", "2021-03-10T02:00:00.000Z", "Password13!")
    assert hasher("testuser2", "2021-03-10T02:00:00.000Z", "Password13!") != base
    assert hasher("testuser1", "2021-03-10T02:00:00.001Z", "Password13!") != base
    assert hasher("testuser1", "2021-03-10T02:00:00.000Z", "Password14!") != base


def test_from_settings_uses_cost_parameters():
    settings = Settings(
        jwt_access_key="a" * 64,
        jwt_refresh_key="b" * 64,
        hash_time_cost=3,
        hash_memory_cost=64,
        hash_parallelism=2,
    )
    hasher = Argon2Hasher.from_settings(settings)
    assert (hasher.time_cost, hasher.memory_cost, hasher.parallelism) == (3, 64, 2)
