"""
FFmpeg invocation for a stream.

Resolves the stream's media (single video, video + separate audio track,
or playlist) under the media root and builds the argument list that
relays it to `rtmp_url/stream_key` as FLV. Without advanced settings the
media is passed through with `-c copy`; with them it is re-encoded with
libx264 at the stream's bitrate, resolution and fps.
"""

import logging
import random
from pathlib import Path
from typing import Optional

from liverelay.config import FFmpegConfig
from liverelay.database.models import MediaType, Stream
from liverelay.database.store import StreamRecordStore
from liverelay.errors import ValidationError

logger = logging.getLogger(__name__)

VALID_TARGET_SCHEMES = ("rtmp://", "rtmps://")


def duration_seconds(stream: Stream) -> Optional[int]:
    """Configured run time in seconds, None when unlimited."""
    if stream.duration_minutes and stream.duration_minutes > 0:
        return stream.duration_minutes * 60
    return None


def encode_args(stream: Stream, preset: str = "veryfast", audio_bitrate: str = "128k") -> list[str]:
    """Codec arguments: passthrough, or libx264/AAC for advanced settings."""
    if not stream.use_advanced_settings:
        return ["-c", "copy"]

    bitrate = stream.bitrate or 2500
    fps = stream.fps or 30
    args = [
        "-c:v", "libx264",
        "-preset", preset,
        "-tune", "zerolatency",
        "-b:v", f"{bitrate}k",
        "-maxrate", f"{int(bitrate * 1.5)}k",
        "-bufsize", f"{bitrate * 2}k",
        "-pix_fmt", "yuv420p",
        "-g", str(fps * 2),
        "-r", str(fps),
    ]
    if stream.resolution:
        args += ["-s", stream.resolution]
    args += ["-c:a", "aac", "-b:a", audio_bitrate, "-ar", "44100"]
    return args


def _output_args(stream: Stream, seconds: Optional[int]) -> list[str]:
    args = []
    if seconds:
        args += ["-t", str(seconds)]
    args += ["-f", "flv", stream.target_url]
    return args


def video_only_args(
    stream: Stream,
    video_path: Path,
    codec_args: list[str],
    seconds: Optional[int] = None,
) -> list[str]:
    """Single video file, its own audio track kept."""
    args = ["-re"]
    if stream.loop_video:
        args += ["-stream_loop", "-1"]
    args += ["-i", str(video_path)]
    args += codec_args
    return args + _output_args(stream, seconds)


def video_with_audio_args(
    stream: Stream,
    video_path: Path,
    audio_path: Path,
    codec_args: list[str],
    seconds: Optional[int] = None,
) -> list[str]:
    """Video with a separate looping audio track replacing its own."""
    args = ["-re"]
    if stream.loop_video:
        args += ["-stream_loop", "-1"]
    args += ["-i", str(video_path)]
    args += ["-stream_loop", "-1", "-i", str(audio_path)]
    args += ["-map", "0:v:0", "-map", "1:a:0"]
    args += codec_args
    args += ["-shortest"]
    return args + _output_args(stream, seconds)


def playlist_args(
    stream: Stream,
    concat_file: Path,
    codec_args: list[str],
    seconds: Optional[int] = None,
) -> list[str]:
    """Videos played back to back through the concat demuxer."""
    args = ["-re"]
    if stream.loop_video:
        args += ["-stream_loop", "-1"]
    args += ["-f", "concat", "-safe", "0", "-i", str(concat_file)]
    args += codec_args
    return args + _output_args(stream, seconds)


def write_concat_file(path: Path, video_paths: list[Path]) -> Path:
    """Write an ffconcat list; single quotes in names are escaped."""
    path.parent.mkdir(parents=True, exist_ok=True)
    lines = ["ffconcat version 1.0"]
    for video_path in video_paths:
        escaped = str(video_path).replace("\\", "/").replace("'", "'\\''")
        lines.append(f"file '{escaped}'")
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return path


class FFmpegCommandBuilder:
    """
    Builds the full ffmpeg command line for a stream.

    Raises ValidationError for anything that makes the stream unstartable:
    missing or foreign media, files absent on disk, empty playlists or a
    malformed target.
    """

    def __init__(self, store: StreamRecordStore, ffmpeg_config: FFmpegConfig):
        self._store = store
        self._config = ffmpeg_config
        self._media_root = Path(ffmpeg_config.media_root).resolve()
        self._work_dir = Path(ffmpeg_config.work_dir)

    def resolve_media_path(self, filepath: str) -> Path:
        """Media path relative to the media root (leading slashes ignored)."""
        relative = filepath.lstrip("/\\")
        path = (self._media_root / relative).resolve()
        if self._media_root not in path.parents and path != self._media_root:
            raise ValidationError(f"Media path escapes media root: {filepath}", field="filepath")
        return path

    def _existing(self, filepath: str, kind: str) -> Path:
        path = self.resolve_media_path(filepath)
        if not path.is_file():
            raise ValidationError(f"{kind} file not found on disk: {filepath}", field=f"{kind.lower()}_id")
        return path

    def validate_target(self, stream: Stream) -> None:
        if not stream.rtmp_url or not stream.rtmp_url.lower().startswith(VALID_TARGET_SCHEMES):
            raise ValidationError(f"Invalid RTMP URL: {stream.rtmp_url!r}", field="rtmp_url")
        if not stream.stream_key or not stream.stream_key.strip():
            raise ValidationError("Stream key is empty", field="stream_key")

    def concat_path(self, stream_id: str) -> Path:
        return self._work_dir / f"playlist_{stream_id}.txt"

    async def build_args(self, stream: Stream) -> list[str]:
        """ffmpeg arguments (without the binary) for a stream."""
        self.validate_target(stream)
        seconds = duration_seconds(stream)
        codec = encode_args(stream, self._config.preset, self._config.audio_bitrate)

        if stream.media_type == MediaType.PLAYLIST.value:
            return await self._playlist_args(stream, codec, seconds)

        if not stream.video_id:
            raise ValidationError("No video attached to this stream", field="video_id")
        video = await self._store.get_video(stream.video_id)
        if video is None or video.user_id != stream.user_id:
            raise ValidationError(f"Video not found: {stream.video_id}", field="video_id")
        video_path = self._existing(video.filepath, "Video")

        if stream.audio_id:
            audio = await self._store.get_audio(stream.audio_id)
            if audio is None or audio.user_id != stream.user_id:
                raise ValidationError(f"Audio not found: {stream.audio_id}", field="audio_id")
            audio_path = self._existing(audio.filepath, "Audio")
            return video_with_audio_args(stream, video_path, audio_path, codec, seconds)

        return video_only_args(stream, video_path, codec, seconds)

    async def _playlist_args(self, stream: Stream, codec: list[str], seconds: Optional[int]) -> list[str]:
        if not stream.playlist_id:
            raise ValidationError("No playlist attached to this stream", field="playlist_id")
        found = await self._store.get_playlist_videos(stream.playlist_id)
        if found is None or found[0].user_id != stream.user_id:
            raise ValidationError(f"Playlist not found: {stream.playlist_id}", field="playlist_id")
        playlist, videos = found
        if not videos:
            raise ValidationError(f"Playlist '{playlist.name}' is empty", field="playlist_id")

        paths = [self._existing(video.filepath, "Video") for video in videos]
        if playlist.shuffle:
            random.shuffle(paths)

        concat_file = write_concat_file(self.concat_path(stream.id), paths)
        return playlist_args(stream, concat_file, codec, seconds)

    async def build(self, stream: Stream) -> list[str]:
        """Complete command: binary, global flags, then the stream arguments."""
        args = await self.build_args(stream)
        command = [self._config.path, "-hide_banner", "-nostdin", "-loglevel", self._config.log_level]
        return command + args

    def cleanup(self, stream_id: str) -> None:
        """Remove the playlist concat file of a stream, if any."""
        try:
            self.concat_path(stream_id).unlink(missing_ok=True)
        except OSError as e:
            logger.warning(f"Could not remove concat file for {stream_id}: {e}")
