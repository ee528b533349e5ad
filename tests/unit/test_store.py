"""
Unit tests for StreamRecordStore.
"""

from datetime import datetime, timedelta, timezone

import pytest

from liverelay.database.models import (
    DEFAULT_LIVE_LIMIT_KEY,
    Playlist,
    PlaylistItem,
    StreamStatus,
    Video,
    YouTubeCredential,
)


@pytest.mark.unit
class TestUpdateStatus:
    @pytest.mark.asyncio
    async def test_live_sets_start_time(self, store, user, make_stream, utc_now):
        stream = await make_stream(video_id=None)

        updated = await store.update_status(stream.id, StreamStatus.LIVE, now=utc_now)

        assert updated.status == "live"
        assert updated.start_time == utc_now
        assert updated.end_time is None
        assert updated.status_updated_at == utc_now

    @pytest.mark.asyncio
    async def test_leaving_live_sets_end_time(self, store, user, make_stream, utc_now):
        stream = await make_stream(video_id=None)
        await store.update_status(stream.id, StreamStatus.LIVE, now=utc_now)

        later = utc_now + timedelta(minutes=30)
        updated = await store.update_status(stream.id, StreamStatus.OFFLINE, now=later)

        assert updated.end_time == later
        assert updated.start_time == utc_now

    @pytest.mark.asyncio
    async def test_scheduled_clears_start_time(self, store, user, make_stream, utc_now):
        stream = await make_stream(video_id=None, schedule_type="daily", recurring_time="09:00")
        await store.update_status(stream.id, StreamStatus.LIVE, now=utc_now)

        updated = await store.update_status(stream.id, StreamStatus.SCHEDULED, now=utc_now + timedelta(hours=1))

        assert updated.start_time is None

    @pytest.mark.asyncio
    async def test_clear_schedule_time(self, store, user, make_stream, utc_now):
        stream = await make_stream(video_id=None, schedule_time=utc_now, status="scheduled")

        updated = await store.update_status(stream.id, StreamStatus.OFFLINE, clear_schedule_time=True)

        assert updated.schedule_time is None

    @pytest.mark.asyncio
    async def test_unknown_stream(self, store):
        assert await store.update_status("missing", StreamStatus.LIVE) is None


@pytest.mark.unit
class TestMarkTriggered:
    @pytest.mark.asyncio
    async def test_claims_once(self, store, user, make_stream, utc_now):
        stream = await make_stream(video_id=None, status="scheduled")

        assert await store.mark_triggered(stream.id, utc_now) is True
        assert await store.mark_triggered(stream.id, utc_now) is False

    @pytest.mark.asyncio
    async def test_later_instant_can_be_claimed(self, store, user, make_stream, utc_now):
        stream = await make_stream(video_id=None, status="scheduled")
        await store.mark_triggered(stream.id, utc_now)

        assert await store.mark_triggered(stream.id, utc_now + timedelta(days=1)) is True

    @pytest.mark.asyncio
    async def test_release_restores_previous_claim(self, store, user, make_stream, utc_now):
        earlier = utc_now - timedelta(days=1)
        stream = await make_stream(video_id=None, status="scheduled", last_triggered_at=earlier)
        await store.mark_triggered(stream.id, utc_now)

        assert await store.release_trigger(stream.id, utc_now, earlier) is True
        assert (await store.get(stream.id)).last_triggered_at == earlier
        assert await store.mark_triggered(stream.id, utc_now) is True

    @pytest.mark.asyncio
    async def test_release_ignores_newer_claim(self, store, user, make_stream, utc_now):
        stream = await make_stream(video_id=None, status="scheduled")
        later = utc_now + timedelta(days=1)
        await store.mark_triggered(stream.id, later)

        assert await store.release_trigger(stream.id, utc_now, None) is False
        assert (await store.get(stream.id)).last_triggered_at == later

    @pytest.mark.asyncio
    async def test_only_scheduled_streams(self, store, user, make_stream, utc_now):
        stream = await make_stream(video_id=None, status="offline")

        assert await store.mark_triggered(stream.id, utc_now) is False


@pytest.mark.unit
class TestConfigureSchedule:
    @pytest.mark.asyncio
    async def test_recurring_becomes_scheduled(self, store, user, make_stream, utc_now):
        stream = await make_stream(video_id=None)

        updated = await store.configure_schedule(
            stream.id, now=utc_now, schedule_type="daily", recurring_time="09:00", recurring_enabled=True
        )

        assert updated.status == "scheduled"
        assert updated.schedule_set_at == utc_now

    @pytest.mark.asyncio
    async def test_disabled_recurrence_goes_offline(self, store, user, make_stream, utc_now):
        stream = await make_stream(video_id=None, status="scheduled", schedule_type="daily", recurring_time="09:00")

        updated = await store.configure_schedule(stream.id, now=utc_now, recurring_enabled=False)

        assert updated.status == "offline"

    @pytest.mark.asyncio
    async def test_live_stream_keeps_status(self, store, user, make_stream, utc_now):
        stream = await make_stream(video_id=None)
        await store.update_status(stream.id, StreamStatus.LIVE, now=utc_now)

        updated = await store.configure_schedule(stream.id, schedule_type="once", schedule_time=None)

        assert updated.status == "live"

    @pytest.mark.asyncio
    async def test_rejects_unknown_fields(self, store, user, make_stream):
        stream = await make_stream(video_id=None)

        with pytest.raises(TypeError):
            await store.configure_schedule(stream.id, status="live")


@pytest.mark.unit
class TestHistory:
    @pytest.mark.asyncio
    async def test_records_session(self, store, user, make_stream, utc_now):
        stream = await make_stream(video_id=None)

        await store.record_history(stream, utc_now, utc_now + timedelta(minutes=5), "manual")

        history = await store.list_history(stream.id)
        assert len(history) == 1
        assert history[0].duration_seconds == 300
        assert history[0].end_reason == "manual"

    @pytest.mark.asyncio
    async def test_skips_sub_second_sessions(self, store, user, make_stream, utc_now):
        stream = await make_stream(video_id=None)

        assert await store.record_history(stream, utc_now, utc_now) is None
        assert await store.list_history(stream.id) == []


@pytest.mark.unit
class TestRelatedRecords:
    @pytest.mark.asyncio
    async def test_default_live_limit(self, store):
        assert await store.get_default_live_limit() is None

        await store.set_setting(DEFAULT_LIVE_LIMIT_KEY, "3")
        assert await store.get_default_live_limit() == 3

        await store.set_setting(DEFAULT_LIVE_LIMIT_KEY, "lots")
        assert await store.get_default_live_limit() is None

    @pytest.mark.asyncio
    async def test_playlist_videos_in_position_order(self, store, user):
        async with store.session() as session:
            session.add_all(
                [
                    Video(id="v1", user_id=user.id, title="One", filepath="one.mp4"),
                    Video(id="v2", user_id=user.id, title="Two", filepath="two.mp4"),
                    Playlist(id="p1", user_id=user.id, name="Mix"),
                ]
            )
        async with store.session() as session:
            session.add_all(
                [
                    PlaylistItem(playlist_id="p1", video_id="v2", position=0),
                    PlaylistItem(playlist_id="p1", video_id="v1", position=1),
                ]
            )

        playlist, videos = await store.get_playlist_videos("p1")

        assert playlist.name == "Mix"
        assert [video.id for video in videos] == ["v2", "v1"]
        assert await store.get_playlist_videos("missing") is None

    @pytest.mark.asyncio
    async def test_primary_credential_preferred(self, store, user):
        async with store.session() as session:
            session.add_all(
                [
                    YouTubeCredential(
                        id="c1", user_id=user.id, client_id="a", client_secret="b", refresh_token="r1",
                        created_at=datetime(2026, 1, 1, tzinfo=timezone.utc),
                    ),
                    YouTubeCredential(
                        id="c2", user_id=user.id, client_id="a", client_secret="b", refresh_token="r2",
                        is_primary=True,
                    ),
                ]
            )

        credential = await store.get_primary_credential(user.id)

        assert credential.id == "c2"

    @pytest.mark.asyncio
    async def test_list_and_count(self, store, user, make_stream):
        await make_stream(video_id=None, status="scheduled", schedule_type="daily", recurring_time="09:00")
        await make_stream(video_id=None, title="Evening")

        assert len(await store.list_scheduled()) == 1
        assert len(await store.list_streams(user_id=user.id)) == 2
        assert await store.count_streams(user.id, StreamStatus.OFFLINE) == 1

    @pytest.mark.asyncio
    async def test_delete(self, store, user, make_stream):
        stream = await make_stream(video_id=None)

        assert await store.delete(stream.id) is True
        assert await store.get(stream.id) is None
        assert await store.delete(stream.id) is False
