"""
Unit tests for the per-user live limit.
"""

import pytest

from liverelay.database.models import DEFAULT_LIVE_LIMIT_KEY, User
from liverelay.errors import ResourceLimitError
from liverelay.streaming.live_limit import LiveLimitGuard, can_start


def counter(counts):
    return lambda user_id: counts.get(user_id, 0)


@pytest.mark.unit
class TestCanStart:
    @pytest.mark.parametrize(
        "active,limit,expected",
        [
            (0, None, True),
            (50, None, True),
            (0, 1, True),
            (1, 1, False),
            (2, 3, True),
            (3, 3, False),
        ],
    )
    def test_can_start(self, active, limit, expected):
        assert can_start(active, limit) is expected


@pytest.mark.unit
class TestLiveLimitGuard:
    @pytest.mark.asyncio
    async def test_admin_is_unlimited(self, store, admin):
        await store.set_setting(DEFAULT_LIVE_LIMIT_KEY, "1")
        guard = LiveLimitGuard(store, counter({admin.id: 7}))

        info = await guard.validate_and_get_info(admin.id)

        assert info.can_start is True
        assert info.is_admin is True
        assert info.effective_limit is None
        assert info.display_limit == "Unlimited"

    @pytest.mark.asyncio
    async def test_custom_limit_beats_default(self, store):
        async with store.session() as session:
            session.add(User(id="user-2", username="bob", live_limit=3))
        await store.set_setting(DEFAULT_LIVE_LIMIT_KEY, "1")
        guard = LiveLimitGuard(store, counter({"user-2": 2}))

        info = await guard.validate_and_get_info("user-2")

        assert info.can_start is True
        assert info.is_custom_limit is True
        assert info.effective_limit == 3
        assert info.default_limit == 1

    @pytest.mark.asyncio
    async def test_zero_custom_limit_uses_default(self, store):
        async with store.session() as session:
            session.add(User(id="user-3", username="carol", live_limit=0))
        await store.set_setting(DEFAULT_LIVE_LIMIT_KEY, "2")
        guard = LiveLimitGuard(store, counter({"user-3": 2}))

        info = await guard.validate_and_get_info("user-3")

        assert info.can_start is False
        assert info.is_custom_limit is False
        assert info.effective_limit == 2
        assert "2 of 2" in info.message

    @pytest.mark.asyncio
    async def test_stored_setting_beats_fallback(self, store, user):
        await store.set_setting(DEFAULT_LIVE_LIMIT_KEY, "4")
        guard = LiveLimitGuard(store, counter({}), fallback_default=1)

        assert await guard.get_default_limit() == 4

    @pytest.mark.asyncio
    async def test_fallback_when_no_setting(self, store, user):
        guard = LiveLimitGuard(store, counter({user.id: 1}), fallback_default=1)

        info = await guard.validate_and_get_info(user.id)

        assert info.effective_limit == 1
        assert info.can_start is False

    @pytest.mark.asyncio
    async def test_no_limit_anywhere_is_unlimited(self, store, user):
        guard = LiveLimitGuard(store, counter({user.id: 25}))

        info = await guard.validate_and_get_info(user.id)

        assert info.can_start is True
        assert info.effective_limit is None

    @pytest.mark.asyncio
    async def test_count_read_fresh_each_time(self, store, user):
        counts = {user.id: 0}
        guard = LiveLimitGuard(store, counter(counts), fallback_default=1)

        assert (await guard.validate_and_get_info(user.id)).can_start is True
        counts[user.id] = 1
        assert (await guard.validate_and_get_info(user.id)).can_start is False

    @pytest.mark.asyncio
    async def test_ensure_can_start_raises(self, store, user):
        guard = LiveLimitGuard(store, counter({user.id: 1}), fallback_default=1)

        with pytest.raises(ResourceLimitError) as exc:
            await guard.ensure_can_start(user.id)

        assert exc.value.active_streams == 1
        assert exc.value.effective_limit == 1
