import pytest

from memberauth.service.errors import AuthenticationError, SuspendedUserError
from memberauth.storage.models import UserStatus


class TestRequireActive:
    async def test_active_accounts_pass(self, gate):
        for username in ("testuser1", "testuser2", "admin1"):
            record = await gate.require_active(username)
            assert record.username == username

    async def test_suspended_is_distinguishable(self, gate):
        with pytest.raises(SuspendedUserError):
            await gate.require_active("suspended1")

    @pytest.mark.parametrize("username", ["deleted1", "nosuchuser"])
    async def test_deleted_and_unknown_fold_into_auth_error(self, gate, username):
        with pytest.raises(AuthenticationError):
            await gate.require_active(username)


class TestAuthenticate:
    async def test_correct_password(self, gate):
        record = await gate.authenticate("testuser2", "Password12!")
        assert record.status == UserStatus.VERIFIED

    async def test_wrong_password(self, gate):
        with pytest.raises(AuthenticationError):
            await gate.authenticate("testuser2", "Password13!")

    async def test_suspension_reported_before_password_check(self, gate):
        with pytest.raises(SuspendedUserError):
            await gate.authenticate("suspended1", "Wrongpass77!")


class TestPasswordUpdate:
    async def test_update_rehashes_with_user_salt(self, gate, user_store):
        record = await gate.lookup("testuser1")
        old_hash = record.password_hash

        await gate.update_password(record, "Newpass99!")

        updated = await gate.lookup("testuser1")
        assert updated.password_hash != old_hash
        assert gate.password_matches(updated, "Newpass99!")
        assert not gate.password_matches(updated, "Password13!")

    async def test_lookup_returns_copies(self, gate):
        record = await gate.lookup("testuser1")
        record.status = UserStatus.SUSPENDED
        assert (await gate.lookup("testuser1")).status == UserStatus.UNVERIFIED

    async def test_lookup_missing_user(self, gate):
        assert await gate.lookup("nosuchuser") is None
