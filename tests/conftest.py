"""
LiveRelay Test Configuration

Shared fixtures and configuration for all tests.
"""

import asyncio
import os
import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import AsyncGenerator, Generator, Optional

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from liverelay.config import FFmpegConfig
from liverelay.database.connection import create_engine_for_url, create_session_factory
from liverelay.database.models import Base, Stream, User, UserRole, Video
from liverelay.database.store import StreamRecordStore
from liverelay.streaming.command_builder import FFmpegCommandBuilder
from liverelay.streaming.supervisor import ProcessSupervisor


# ============ Fake Encoder Processes ============


class FakeStderr:
    """Line source standing in for a subprocess stderr pipe."""

    def __init__(self):
        self._lines: asyncio.Queue = asyncio.Queue()

    def feed(self, line: str) -> None:
        self._lines.put_nowait(line.encode() + b"\n")

    def close(self) -> None:
        self._lines.put_nowait(b"")

    async def readline(self) -> bytes:
        return await self._lines.get()


class FakeProcess:
    """
    Minimal asyncio.subprocess.Process double.

    Args:
        exit_code: When set, the process exits right after spawning
        ignore_terminate: SIGTERM is ignored, only kill() ends it
        output: stderr lines written at spawn
    """

    _next_pid = 1000

    def __init__(self, exit_code: Optional[int] = None, ignore_terminate: bool = False, output: tuple = ()):
        FakeProcess._next_pid += 1
        self.pid = FakeProcess._next_pid
        self.returncode: Optional[int] = None
        self.stderr = FakeStderr()
        self.ignore_terminate = ignore_terminate
        self.terminated = False
        self.killed = False
        self._exited = asyncio.Event()
        for line in output:
            self.stderr.feed(line)
        if exit_code is not None:
            self.exit(exit_code)

    def exit(self, code: int) -> None:
        if self.returncode is not None:
            return
        self.returncode = code
        self.stderr.close()
        self._exited.set()

    def terminate(self) -> None:
        self.terminated = True
        if not self.ignore_terminate:
            self.exit(-15)

    def kill(self) -> None:
        self.killed = True
        self.exit(-9)

    async def wait(self) -> int:
        await self._exited.wait()
        return self.returncode


class FakeSpawner:
    """Records spawn calls and hands out FakeProcess instances."""

    def __init__(self):
        self.calls: list[tuple] = []
        self.processes: list[FakeProcess] = []
        self.exit_code: Optional[int] = None
        self.output: tuple = ()
        self.ignore_terminate = False
        self.error: Optional[Exception] = None

    async def __call__(self, *command, **kwargs) -> FakeProcess:
        self.calls.append(command)
        if self.error is not None:
            raise self.error
        process = FakeProcess(
            exit_code=self.exit_code,
            ignore_terminate=self.ignore_terminate,
            output=self.output,
        )
        self.processes.append(process)
        return process

    @property
    def last(self) -> FakeProcess:
        return self.processes[-1]


class FakeClock:
    """Settable clock; call it for the current instant."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


# ============ Database Fixtures ============


@pytest_asyncio.fixture
async def session_factory() -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """In-memory SQLite database with all tables."""
    engine = create_engine_for_url("sqlite:///:memory:")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield create_session_factory(engine)
    await engine.dispose()


@pytest_asyncio.fixture
async def store(session_factory) -> StreamRecordStore:
    return StreamRecordStore(session_factory)


@pytest_asyncio.fixture
async def user(store: StreamRecordStore) -> User:
    member = User(id="user-1", username="alice", role=UserRole.MEMBER.value)
    async with store.session() as session:
        session.add(member)
    return member


@pytest_asyncio.fixture
async def admin(store: StreamRecordStore) -> User:
    account = User(id="admin-1", username="root", role=UserRole.ADMIN.value)
    async with store.session() as session:
        session.add(account)
    return account


# ============ Media Fixtures ============


@pytest.fixture(scope="function")
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def ffmpeg_config(temp_dir: Path) -> FFmpegConfig:
    media_root = temp_dir / "media"
    media_root.mkdir()
    return FFmpegConfig(
        media_root=str(media_root),
        work_dir=str(temp_dir / "work"),
        stop_timeout=0.05,
        startup_confirm_seconds=0.01,
    )


@pytest.fixture
def media_root(ffmpeg_config: FFmpegConfig) -> Path:
    return Path(ffmpeg_config.media_root)


@pytest_asyncio.fixture
async def video(store: StreamRecordStore, user: User, media_root: Path) -> Video:
    """A small file registered as the user's video."""
    (media_root / "videos").mkdir(exist_ok=True)
    (media_root / "videos" / "intro.mp4").write_bytes(b"\x00" * 1024)
    item = Video(id="video-1", user_id=user.id, title="Intro", filepath="/videos/intro.mp4")
    async with store.session() as session:
        session.add(item)
    return item


@pytest.fixture
def make_stream(store: StreamRecordStore):
    """Coroutine function inserting a stream with sensible defaults."""

    async def add_stream(user_id: str = "user-1", video_id: Optional[str] = "video-1", **fields) -> Stream:
        values = {
            "title": "Morning Show",
            "platform": "YouTube",
            "rtmp_url": "rtmp://a.rtmp.youtube.com/live2",
            "stream_key": "abcd-efgh",
            "video_id": video_id,
        }
        values.update(fields)
        return await store.add(Stream(user_id=user_id, **values))

    return add_stream


# ============ Component Fixtures ============


@pytest.fixture
def spawner() -> FakeSpawner:
    return FakeSpawner()


@pytest.fixture
def command_builder(store: StreamRecordStore, ffmpeg_config: FFmpegConfig) -> FFmpegCommandBuilder:
    return FFmpegCommandBuilder(store, ffmpeg_config)


@pytest_asyncio.fixture
async def supervisor(store, command_builder, ffmpeg_config, spawner) -> AsyncGenerator[ProcessSupervisor, None]:
    sup = ProcessSupervisor(store, command_builder, ffmpeg_config, spawn=spawner)
    yield sup
    await sup.shutdown()


@pytest.fixture
def utc_now() -> datetime:
    return datetime(2026, 3, 2, 2, 0, tzinfo=timezone.utc)  # Monday 09:00 in Asia/Jakarta


@pytest.fixture
def clock(utc_now: datetime) -> FakeClock:
    return FakeClock(utc_now)


# ============ Environment Fixtures ============


@pytest.fixture(autouse=True)
def clean_environment():
    """Clean environment variables for each test."""
    original_env = os.environ.copy()

    for key in list(os.environ.keys()):
        if key.startswith("LIVERELAY_"):
            del os.environ[key]

    yield

    os.environ.clear()
    os.environ.update(original_env)


# ============ Markers ============


def pytest_configure(config):
    """Configure custom markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests")
    config.addinivalue_line("markers", "slow: Slow tests")
