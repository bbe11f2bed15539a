# Copyright (C) 2024 Sonance Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""Subsonic emulation tests: XML envelopes and protocol error codes."""

import xml.etree.ElementTree as ET

import pytest
from httpx import AsyncClient

from conftest import ADMIN_PASSWORD

NS = {"s": "http://subsonic.org/restapi"}


def parse(response) -> ET.Element:
    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/xml")
    return ET.fromstring(response.content)


def auth(password: str = ADMIN_PASSWORD, **params) -> dict:
    return {"u": "root", "p": password, "v": "1.8.0", "c": "tests", **params}


async def test_ping(client: AsyncClient, admin):
    root = parse(await client.get("/api/v0/subsonic/ping.view", params=auth()))
    assert root.tag == "{http://subsonic.org/restapi}subsonic-response"
    assert root.get("status") == "ok"
    assert root.get("version") == "1.8.0"


async def test_hex_encoded_password(client: AsyncClient, admin):
    password = "enc:" + ADMIN_PASSWORD.encode().hex()
    root = parse(await client.get("/api/v0/subsonic/ping", params=auth(password)))
    assert root.get("status") == "ok"


async def test_session_key_as_password(client: AsyncClient, admin_key: str):
    root = parse(await client.get("/api/v0/subsonic/ping", params=auth(admin_key)))
    assert root.get("status") == "ok"


@pytest.mark.parametrize(
    "params, code",
    [
        ({"p": ADMIN_PASSWORD, "v": "1.8.0"}, "40"),
        ({"u": "root", "v": "1.8.0"}, "40"),
        ({"u": "root", "p": "wrong", "v": "1.8.0"}, "40"),
        ({"u": "nobody", "p": "x", "v": "1.8.0"}, "40"),
        ({"u": "root", "p": ADMIN_PASSWORD}, "10"),
    ],
)
async def test_failures_are_xml_with_http_200(client: AsyncClient, admin, params: dict, code: str):
    root = parse(await client.get("/api/v0/subsonic/ping.view", params=params))
    assert root.get("status") == "failed"
    error = root.find("s:error", NS)
    assert error.get("code") == code


async def test_unknown_method(client: AsyncClient, admin):
    root = parse(await client.get("/api/v0/subsonic/getVideos.view", params=auth()))
    assert root.get("status") == "failed"
    assert root.find("s:error", NS).get("code") == "0"


async def test_get_license_and_music_folders(client: AsyncClient, admin, media):
    root = parse(await client.get("/api/v0/subsonic/getLicense.view", params=auth()))
    assert root.find("s:license", NS).get("valid") == "true"

    root = parse(await client.get("/api/v0/subsonic/getMusicFolders.view", params=auth()))
    folder = root.find("s:musicFolders/s:musicFolder", NS)
    assert folder.get("id") == "0"
    assert folder.get("name") == media.name


async def test_get_indexes(client: AsyncClient, admin, scanned):
    root = parse(await client.get("/api/v0/subsonic/getIndexes.view", params=auth()))
    indexes = root.findall("s:indexes/s:index", NS)
    assert [i.get("name") for i in indexes] == ["A"]
    names = [a.get("name") for a in indexes[0].findall("s:artist", NS)]
    assert names == ["ArtistA", "ArtistB"]
    assert indexes[0].find("s:artist", NS).get("id").startswith("artist_")


async def test_music_directory_walks_artist_to_songs(client: AsyncClient, admin, scanned):
    root = parse(await client.get("/api/v0/subsonic/getIndexes.view", params=auth()))
    artist_id = root.find("s:indexes/s:index/s:artist", NS).get("id")

    root = parse(await client.get("/api/v0/subsonic/getMusicDirectory.view", params=auth(id=artist_id)))
    album = root.find("s:directory/s:child", NS)
    assert album.get("isDir") == "true"
    assert album.get("title") == "AlbumA"

    root = parse(await client.get("/api/v0/subsonic/getMusicDirectory.view", params=auth(id=album.get("id"))))
    song = root.find("s:directory/s:child", NS)
    assert song.get("title") == "S1"
    assert song.get("isDir") == "false"
    assert song.get("suffix") == "mp3"
    assert song.get("path") == "ArtistA/AlbumA/01.mp3"


async def test_music_directory_requires_id(client: AsyncClient, admin, scanned):
    root = parse(await client.get("/api/v0/subsonic/getMusicDirectory.view", params=auth()))
    assert root.find("s:error", NS).get("code") == "10"


async def test_get_album_and_lists(client: AsyncClient, admin, scanned):
    root = parse(await client.get("/api/v0/subsonic/getAlbumList2.view", params=auth(size="1")))
    albums = root.findall("s:albumList2/s:album", NS)
    assert len(albums) == 1

    root = parse(await client.get("/api/v0/subsonic/getAlbum.view", params=auth(id=albums[0].get("id"))))
    album = root.find("s:album", NS)
    assert album.get("songCount") == "1"
    assert len(album.findall("s:song", NS)) == 1

    root = parse(await client.get("/api/v0/subsonic/getRandomSongs.view", params=auth()))
    assert len(root.findall("s:randomSongs/s:song", NS)) == 2


async def test_empty_playlists_and_starred(client: AsyncClient, admin):
    root = parse(await client.get("/api/v0/subsonic/getPlaylists.view", params=auth()))
    assert root.find("s:playlists", NS) is not None
    root = parse(await client.get("/api/v0/subsonic/getStarred.view", params=auth()))
    assert root.find("s:starred", NS) is not None


async def test_stream_returns_file_bytes(client: AsyncClient, admin, scanned, library):
    r = await client.get("/api/v0/subsonic/stream.view", params=auth(id="1"))
    assert r.status_code == 200
    assert r.content == (library / "ArtistA" / "AlbumA" / "01.mp3").read_bytes()
