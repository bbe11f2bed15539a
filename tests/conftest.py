# Copyright (C) 2024 Sonance Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""Pytest fixtures: a temporary sqlite catalog, a media folder, and the app wired to both.

Real audio files are impractical in tests, so songs are empty files whose
tags come from ``FakeTags`` instead of Mutagen.
"""

import base64
from pathlib import Path

import pytest
from httpx import ASGITransport, AsyncClient

from sonance_server import rate_limit
from sonance_server.config import Settings
from sonance_server.database import create_engine, create_session_maker, init_db
from sonance_server.errors import DecodeError, TagsMissing
from sonance_server.main import create_app, shutdown, startup
from sonance_server.models import Role
from sonance_server.services.catalog import Catalog
from sonance_server.services.scanner import LibraryScanner
from sonance_server.services.tags import AudioTags
from sonance_server.services.users import create_user

ADMIN_PASSWORD = "correct"
USER_PASSWORD = "hunter22"


class FakeTags:
    """Stands in for read_tags: returns tags registered per absolute path."""

    def __init__(self):
        self.tags: dict[str, AudioTags] = {}

    def add(self, path: Path, **fields) -> Path:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(b"\0" * 1024)
        values = {
            "album": "",
            "bitrate": 320,
            "channels": 2,
            "length": 180,
            "sample_rate": 44100,
        }
        values.update(fields)
        self.tags[str(path)] = AudioTags(**values)
        return path

    def __call__(self, path: str) -> AudioTags:
        tags = self.tags.get(path)
        if tags is None:
            raise DecodeError(path)
        if not tags.title or not tags.artist:
            raise TagsMissing(path)
        return tags


@pytest.fixture(autouse=True)
def reset_rate_limit():
    rate_limit.reset()
    yield
    rate_limit.reset()


@pytest.fixture
def media(tmp_path: Path) -> Path:
    root = tmp_path / "music"
    root.mkdir()
    return root


@pytest.fixture
def fake_tags() -> FakeTags:
    return FakeTags()


@pytest.fixture
def library(media: Path, fake_tags: FakeTags) -> Path:
    """Two songs: ArtistA/AlbumA/01.mp3 and ArtistB/AlbumB/02.flac."""
    fake_tags.add(
        media / "ArtistA" / "AlbumA" / "01.mp3", title="S1", artist="ArtistA", album="AlbumA", year=2020, track=1
    )
    fake_tags.add(
        media / "ArtistB" / "AlbumB" / "02.flac", title="S2", artist="ArtistB", album="AlbumB", year=2019, track=2
    )
    return media


@pytest.fixture
def db_url(tmp_path: Path) -> str:
    return f"sqlite+aiosqlite:///{tmp_path / 'sonance.db'}"


@pytest.fixture
async def catalog(db_url: str):
    engine = create_engine(db_url)
    await init_db(engine)
    yield Catalog(create_session_maker(engine))
    await engine.dispose()


@pytest.fixture
def scanner(catalog: Catalog, fake_tags: FakeTags) -> LibraryScanner:
    return LibraryScanner(catalog, read_tags=fake_tags)


@pytest.fixture
def settings(media: Path, db_url: str) -> Settings:
    return Settings(
        _env_file=None,
        media=media,
        db=db_url,
        no_root=True,
        scan_on_startup=False,
        orphan_scan_interval_minutes=0,
        status_interval_minutes=0,
        ffmpeg_path="sonance-test-no-ffmpeg",
        timeout=1.0,
    )


@pytest.fixture
async def app(settings: Settings):
    app = create_app(settings)
    await startup(app, settings, start_tasks=False)
    yield app
    await shutdown(app)


@pytest.fixture
async def client(app):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture
def app_catalog(app) -> Catalog:
    return app.state.catalog


@pytest.fixture
async def scanned(app, library: Path, fake_tags: FakeTags):
    """The two-song library scanned into the app's catalog."""
    return await LibraryScanner(app.state.catalog, read_tags=fake_tags).scan(str(library))


@pytest.fixture
async def admin(app_catalog: Catalog):
    return await create_user(app_catalog, "root", ADMIN_PASSWORD, Role.ADMIN)


@pytest.fixture
async def user(app_catalog: Catalog):
    return await create_user(app_catalog, "listener", USER_PASSWORD, Role.USER)


def basic_auth(username: str, password: str) -> dict[str, str]:
    token = base64.b64encode(f"{username}:{password}".encode()).decode()
    return {"Authorization": f"Basic {token}"}


async def login(client: AsyncClient, username: str, password: str) -> str:
    r = await client.get("/api/v0/login", headers=basic_auth(username, password))
    assert r.status_code == 200, r.text
    return r.json()["session"]["key"]


@pytest.fixture
async def admin_key(client: AsyncClient, admin) -> str:
    return await login(client, "root", ADMIN_PASSWORD)


@pytest.fixture
async def user_key(client: AsyncClient, user) -> str:
    return await login(client, "listener", USER_PASSWORD)


FAKE_FFMPEG = """#!/bin/sh
case "$*" in
  *-codecs*)
    echo " DEA.L. mp3   MP3 (encoders: libmp3lame )"
    echo " DEA.L. vorbis Vorbis (encoders: libvorbis )"
    echo " DEA.L. opus  Opus (encoders: libopus )"
    exit 0
    ;;
esac
head -c 20000 /dev/zero
"""


def write_script(path: Path, body: str) -> Path:
    path.write_text(body)
    path.chmod(0o755)
    return path


@pytest.fixture
def fake_ffmpeg(tmp_path: Path) -> Path:
    """Executable standing in for ffmpeg: lists all three encoders and emits 20000 bytes."""
    return write_script(tmp_path / "ffmpeg", FAKE_FFMPEG)


@pytest.fixture
async def encoders(app, fake_ffmpeg: Path):
    """The app's encoder registry, pointed at the stand-in ffmpeg."""
    registry = app.state.encoders
    registry.ffmpeg_path = str(fake_ffmpeg)
    await registry.detect()
    return registry
