# Copyright (C) 2024 Sonance Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""Original-file streaming tests, including HTTP range requests."""

from pathlib import Path

import pytest
from httpx import AsyncClient

from sonance_server.errors import CannotSeek, InvalidInput
from sonance_server.metrics import counters
from sonance_server.routers.streaming import parse_range

CONTENT = bytes(range(256)) * 4


@pytest.fixture
def song_file(scanned, library: Path) -> Path:
    path = library / "ArtistA" / "AlbumA" / "01.mp3"
    path.write_bytes(CONTENT)
    return path


def test_parse_range():
    assert parse_range("bytes=0-99", 1024) == (0, 99)
    assert parse_range("bytes=1000-", 1024) == (1000, 1023)
    assert parse_range("bytes=-24", 1024) == (1000, 1023)
    assert parse_range("bytes=1000-5000", 1024) == (1000, 1023)
    with pytest.raises(CannotSeek):
        parse_range("bytes=1024-", 1024)
    with pytest.raises(InvalidInput):
        parse_range("bytes=abc", 1024)


async def test_stream_whole_file(client: AsyncClient, song_file: Path, admin_key: str):
    _, tx_before = counters.load()
    r = await client.get(f"/api/v0/stream/1?s={admin_key}")

    assert r.status_code == 200
    assert r.content == CONTENT
    assert r.headers["content-type"] == "audio/mpeg"
    assert r.headers["content-length"] == "1024"
    assert r.headers["accept-ranges"] == "bytes"
    assert "last-modified" in r.headers
    _, tx_after = counters.load()
    assert tx_after - tx_before == len(CONTENT)


async def test_stream_range(client: AsyncClient, song_file: Path, admin_key: str):
    r = await client.get(f"/api/v0/stream/1?s={admin_key}", headers={"Range": "bytes=100-199"})

    assert r.status_code == 206
    assert r.content == CONTENT[100:200]
    assert r.headers["content-range"] == "bytes 100-199/1024"
    assert r.headers["content-length"] == "100"


async def test_stream_unsatisfiable_range(client: AsyncClient, song_file: Path, admin_key: str):
    r = await client.get(f"/api/v0/stream/1?s={admin_key}", headers={"Range": "bytes=4096-"})
    assert r.status_code == 416


async def test_stream_unknown_song(client: AsyncClient, admin_key: str):
    r = await client.get(f"/api/v0/stream/42?s={admin_key}")
    assert r.status_code == 404


async def test_stream_missing_file(client: AsyncClient, song_file: Path, admin_key: str):
    song_file.unlink()
    r = await client.get(f"/api/v0/stream/1?s={admin_key}")
    assert r.status_code == 404
    assert r.json()["error"]["message"] == "song file not found"


async def test_stream_requires_token(client: AsyncClient, song_file: Path):
    r = await client.get("/api/v0/stream/1")
    assert r.status_code == 401
