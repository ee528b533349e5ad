"""
Unit tests for FFmpeg command building.
"""

from pathlib import Path

import pytest

from liverelay.database.models import Audio, Playlist, PlaylistItem, User, Video
from liverelay.errors import ValidationError
from liverelay.streaming.command_builder import encode_args, write_concat_file


@pytest.mark.unit
class TestEncodeArgs:
    def test_passthrough_without_advanced_settings(self):
        class Plain:
            use_advanced_settings = False

        assert encode_args(Plain()) == ["-c", "copy"]

    def test_reencode_with_advanced_settings(self):
        class Advanced:
            use_advanced_settings = True
            bitrate = 4000
            fps = 25
            resolution = "1280x720"

        args = encode_args(Advanced(), preset="fast", audio_bitrate="160k")

        assert args[args.index("-c:v") + 1] == "libx264"
        assert args[args.index("-preset") + 1] == "fast"
        assert args[args.index("-b:v") + 1] == "4000k"
        assert args[args.index("-maxrate") + 1] == "6000k"
        assert args[args.index("-g") + 1] == "50"
        assert args[args.index("-s") + 1] == "1280x720"
        assert args[args.index("-b:a") + 1] == "160k"


@pytest.mark.unit
class TestBuild:
    @pytest.mark.asyncio
    async def test_single_video(self, command_builder, video, make_stream, media_root):
        stream = await make_stream()

        command = await command_builder.build(stream)

        assert command[0] == "ffmpeg"
        assert command[command.index("-i") + 1] == str((media_root / "videos" / "intro.mp4").resolve())
        assert ["-stream_loop", "-1"] == command[command.index("-stream_loop"):command.index("-stream_loop") + 2]
        assert command[-3:] == ["-f", "flv", "rtmp://a.rtmp.youtube.com/live2/abcd-efgh"]
        assert "-c" in command and "copy" in command
        assert "-t" not in command

    @pytest.mark.asyncio
    async def test_duration_limits_output(self, command_builder, video, make_stream):
        stream = await make_stream(duration_minutes=90, loop_video=False)

        command = await command_builder.build(stream)

        assert command[command.index("-t") + 1] == "5400"
        assert "-stream_loop" not in command

    @pytest.mark.asyncio
    async def test_separate_audio_track(self, store, command_builder, video, make_stream, media_root):
        (media_root / "music.mp3").write_bytes(b"\x00")
        async with store.session() as session:
            session.add(Audio(id="audio-1", user_id="user-1", title="Music", filepath="music.mp3"))
        stream = await make_stream(audio_id="audio-1")

        command = await command_builder.build(stream)

        assert command.count("-i") == 2
        assert "-shortest" in command
        assert command[command.index("-map") + 1] == "0:v:0"

    @pytest.mark.asyncio
    async def test_playlist_writes_concat_file(self, store, command_builder, video, make_stream, media_root):
        (media_root / "videos" / "outro.mp4").write_bytes(b"\x00")
        async with store.session() as session:
            session.add(Video(id="video-2", user_id="user-1", title="Outro", filepath="videos/outro.mp4"))
            session.add(Playlist(id="pl-1", user_id="user-1", name="Show"))
        async with store.session() as session:
            session.add(PlaylistItem(playlist_id="pl-1", video_id="video-2", position=0))
            session.add(PlaylistItem(playlist_id="pl-1", video_id="video-1", position=1))
        stream = await make_stream(media_type="playlist", playlist_id="pl-1", video_id=None)

        command = await command_builder.build(stream)

        concat_file = Path(command[command.index("-i") + 1])
        lines = concat_file.read_text().splitlines()
        assert lines[0] == "ffconcat version 1.0"
        assert lines[1].endswith("outro.mp4'")
        assert lines[2].endswith("intro.mp4'")
        assert command[command.index("-f") + 1] == "concat"

        command_builder.cleanup(stream.id)
        assert not concat_file.exists()

    @pytest.mark.asyncio
    async def test_empty_playlist_rejected(self, store, command_builder, user, make_stream):
        async with store.session() as session:
            session.add(Playlist(id="pl-2", user_id="user-1", name="Empty"))
        stream = await make_stream(media_type="playlist", playlist_id="pl-2", video_id=None)

        with pytest.raises(ValidationError) as exc:
            await command_builder.build(stream)
        assert exc.value.field == "playlist_id"


@pytest.mark.unit
class TestValidation:
    @pytest.mark.asyncio
    async def test_invalid_target(self, command_builder, video, make_stream):
        stream = await make_stream(rtmp_url="http://example.com/live")

        with pytest.raises(ValidationError) as exc:
            await command_builder.build(stream)
        assert exc.value.field == "rtmp_url"

    @pytest.mark.asyncio
    async def test_blank_stream_key(self, command_builder, video, make_stream):
        stream = await make_stream(stream_key="   ")

        with pytest.raises(ValidationError) as exc:
            await command_builder.build(stream)
        assert exc.value.field == "stream_key"

    @pytest.mark.asyncio
    async def test_missing_file_on_disk(self, command_builder, video, make_stream, media_root):
        (media_root / "videos" / "intro.mp4").unlink()
        stream = await make_stream()

        with pytest.raises(ValidationError) as exc:
            await command_builder.build(stream)
        assert exc.value.field == "video_id"

    @pytest.mark.asyncio
    async def test_foreign_video_rejected(self, store, command_builder, video, make_stream):
        async with store.session() as session:
            session.add(User(id="user-9", username="mallory"))
        stream = await make_stream(user_id="user-9")

        with pytest.raises(ValidationError):
            await command_builder.build(stream)

    def test_path_escape_rejected(self, command_builder):
        with pytest.raises(ValidationError):
            command_builder.resolve_media_path("../../etc/passwd")


@pytest.mark.unit
class TestConcatFile:
    def test_quotes_escaped(self, temp_dir):
        path = write_concat_file(temp_dir / "list.txt", [Path("/media/it's.mp4")])

        assert "file '/media/it'\\''s.mp4'" in path.read_text()
