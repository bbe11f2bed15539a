# Copyright (C) 2024 Sonance Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""Library scanner tests: the walk order and the catalog it produces."""

import asyncio
import os
from pathlib import Path

import pytest

from sonance_server.errors import Cancelled
from sonance_server.models import Album, Art, Artist, Folder, Song
from sonance_server.services.catalog import Catalog
from sonance_server.services.scanner import LibraryScanner, WalkEvent, WalkEventKind, walk_library


def test_walk_is_lexicographic_dirs_then_art_then_files(tmp_path: Path):
    (tmp_path / "b").mkdir()
    (tmp_path / "b" / "x.mp3").write_bytes(b"")
    (tmp_path / "a").mkdir()
    (tmp_path / "a" / "2.flac").write_bytes(b"")
    (tmp_path / "a" / "1.mp3").write_bytes(b"")
    (tmp_path / "a" / "cover.jpg").write_bytes(b"")
    (tmp_path / "a" / "notes.txt").write_bytes(b"")
    (tmp_path / "empty").mkdir()
    (tmp_path / "top.ogg").write_bytes(b"")

    events = list(walk_library(str(tmp_path)))

    root = str(tmp_path)
    assert events == [
        WalkEvent(WalkEventKind.ENTER_DIR, root),
        WalkEvent(WalkEventKind.FILE, os.path.join(root, "top.ogg")),
        WalkEvent(WalkEventKind.ENTER_DIR, os.path.join(root, "a")),
        WalkEvent(WalkEventKind.ART, os.path.join(root, "a", "cover.jpg")),
        WalkEvent(WalkEventKind.FILE, os.path.join(root, "a", "1.mp3")),
        WalkEvent(WalkEventKind.FILE, os.path.join(root, "a", "2.flac")),
        WalkEvent(WalkEventKind.ENTER_DIR, os.path.join(root, "b")),
        WalkEvent(WalkEventKind.FILE, os.path.join(root, "b", "x.mp3")),
    ]


def test_walk_missing_root_yields_nothing(tmp_path: Path):
    assert list(walk_library(str(tmp_path / "missing"))) == []


async def test_scan_two_song_library(catalog: Catalog, scanner: LibraryScanner, library: Path):
    report = await scanner.scan(str(library))

    assert report.artists_added == 2
    assert report.albums_added == 2
    assert report.songs_added == 2
    assert report.files_seen == 2
    assert report.skipped == []

    folders = {f.path: f for f in await catalog.all(Folder)}
    root = str(library)
    assert set(folders) == {
        root,
        os.path.join(root, "ArtistA"),
        os.path.join(root, "ArtistA", "AlbumA"),
        os.path.join(root, "ArtistB"),
        os.path.join(root, "ArtistB", "AlbumB"),
    }
    assert report.folders_added == 5
    assert folders[root].parent_id is None
    assert folders[os.path.join(root, "ArtistA", "AlbumA")].parent_id == folders[os.path.join(root, "ArtistA")].id

    s1 = await catalog.load(Song(file_name=os.path.join(root, "ArtistA", "AlbumA", "01.mp3")))
    assert s1.title == "S1"
    assert s1.artist_title == "ArtistA"
    assert s1.album_title == "AlbumA"
    assert s1.folder_id == folders[os.path.join(root, "ArtistA", "AlbumA")].id
    assert s1.file_size == 1024
    assert s1.extension == ".mp3"

    album = await catalog.get(Album, s1.album_id)
    assert album.year == 2020


async def test_rescan_adds_nothing(catalog: Catalog, scanner: LibraryScanner, library: Path):
    await scanner.scan(str(library))
    counts = {m: await catalog.count(m) for m in (Folder, Artist, Album, Song)}

    report = await scanner.scan(str(library))

    assert report.songs_added == 0
    assert report.folders_added == 0
    assert report.artists_added == 0
    assert report.albums_added == 0
    assert {m: await catalog.count(m) for m in counts} == counts


async def test_rescan_from_parent_reparents_old_root(catalog: Catalog, scanner: LibraryScanner, library: Path):
    old_root = library / "ArtistA"
    await scanner.scan(str(old_root))
    assert (await catalog.load(Folder(path=str(old_root)))).parent_id is None

    report = await scanner.scan(str(library))

    root = await catalog.load(Folder(path=str(library)))
    moved = await catalog.load(Folder(path=str(old_root)))
    assert moved.parent_id == root.id
    assert report.folders_added == 3
    assert [f.path for f in await catalog.subfolders(root)] == [str(old_root), str(library / "ArtistB")]


async def test_unreadable_files_are_skipped(catalog: Catalog, scanner: LibraryScanner, library: Path, fake_tags):
    fake_tags.add(library / "ArtistA" / "AlbumA" / "02.mp3", title="", artist="ArtistA")
    (library / "ArtistA" / "AlbumA" / "03.mp3").write_bytes(b"garbage")

    report = await scanner.scan(str(library))

    assert report.songs_added == 2
    assert sorted(os.path.basename(p) for p, _ in report.skipped) == ["02.mp3", "03.mp3"]
    assert await catalog.count(Song) == 2


async def test_same_artist_shared_across_albums(catalog: Catalog, scanner: LibraryScanner, media: Path, fake_tags):
    fake_tags.add(media / "x" / "1.mp3", title="One", artist="Same", album="First", year=2001)
    fake_tags.add(media / "y" / "2.mp3", title="Two", artist="Same", album="Second", year=2002)

    report = await scanner.scan(str(media))

    assert report.artists_added == 1
    assert report.albums_added == 2
    artist = await catalog.load(Artist(title="Same"))
    assert [a.title for a in await catalog.albums_for_artist(artist.id)] == ["First", "Second"]


async def test_folder_art_is_attached_to_songs(catalog: Catalog, scanner: LibraryScanner, library: Path):
    album_dir = library / "ArtistA" / "AlbumA"
    (album_dir / "back.png").write_bytes(b"png")
    (album_dir / "cover.jpg").write_bytes(b"jpg")

    report = await scanner.scan(str(library))

    assert report.art_added == 2
    song = await catalog.load(Song(file_name=str(album_dir / "01.mp3")))
    art = await catalog.get(Art, song.art_id)
    assert art.file_name == str(album_dir / "cover.jpg")

    other = await catalog.load(Song(file_name=str(library / "ArtistB" / "AlbumB" / "02.flac")))
    assert other.art_id is None


async def test_scan_reports_progress(scanner: LibraryScanner, library: Path):
    seen = []
    await scanner.scan(str(library), on_progress=lambda report, path: seen.append(report.files_seen))
    assert seen[-1] == 2


async def test_cancelled_scan_leaves_consistent_catalog(catalog: Catalog, scanner: LibraryScanner, library: Path):
    cancel = asyncio.Event()

    def stop_after_first_song(report, path):
        if report.songs_added:
            cancel.set()

    with pytest.raises(Cancelled):
        await scanner.scan(str(library), cancel=cancel, on_progress=stop_after_first_song)

    assert await catalog.count(Song) == 1
    for song in await catalog.all(Song):
        await catalog.get(Artist, song.artist_id)
        await catalog.get(Album, song.album_id)
        await catalog.get(Folder, song.folder_id)

    report = await scanner.scan(str(library))
    assert report.songs_added == 1
