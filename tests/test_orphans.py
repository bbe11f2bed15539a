# Copyright (C) 2024 Sonance Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""Orphan collector tests."""

import asyncio
import os
from pathlib import Path

import pytest

from sonance_server.errors import Cancelled
from sonance_server.models import Album, Art, Artist, Folder, Song
from sonance_server.services.catalog import Catalog
from sonance_server.services.orphans import OrphanCollector
from sonance_server.services.scanner import LibraryScanner


async def test_deleted_file_purges_song_album_artist_and_folders(
    catalog: Catalog, scanner: LibraryScanner, library: Path
):
    await scanner.scan(str(library))
    (library / "ArtistA" / "AlbumA" / "01.mp3").unlink()

    report = await OrphanCollector(catalog).collect(str(library))

    assert report.songs == 1
    assert report.albums == 1
    assert report.artists == 1
    assert report.folders == 2
    assert await catalog.count(Song) == 1
    assert [a.title for a in await catalog.all(Artist)] == ["ArtistB"]
    assert [a.title for a in await catalog.all(Album)] == ["AlbumB"]
    paths = {f.path for f in await catalog.all(Folder)}
    assert os.path.join(str(library), "ArtistA") not in paths
    assert os.path.join(str(library), "ArtistB", "AlbumB") in paths


async def test_unchanged_library_has_no_orphans(catalog: Catalog, scanner: LibraryScanner, library: Path):
    await scanner.scan(str(library))
    report = await OrphanCollector(catalog).collect(str(library))
    assert report.total == 0


async def test_songs_outside_base_folder_are_removed(catalog: Catalog, scanner: LibraryScanner, library: Path, tmp_path):
    await scanner.scan(str(library))

    # A sibling whose name shares the prefix is still outside the root
    sibling = tmp_path / "music2"
    report = await OrphanCollector(catalog).collect(str(sibling))

    assert report.songs == 2
    assert await catalog.count(Song) == 0
    assert await catalog.count(Artist) == 0
    assert await catalog.count(Folder) == 0


async def test_sub_folder_limits_missing_file_check(catalog: Catalog, scanner: LibraryScanner, library: Path):
    await scanner.scan(str(library))
    (library / "ArtistA" / "AlbumA" / "01.mp3").unlink()

    report = await OrphanCollector(catalog).collect(str(library), sub_folder=str(library / "ArtistB"))
    assert report.songs == 0

    report = await OrphanCollector(catalog).collect(str(library), sub_folder=str(library / "ArtistA"))
    assert report.songs == 1


async def test_missing_art_is_collected(catalog: Catalog, scanner: LibraryScanner, library: Path):
    cover = library / "ArtistA" / "AlbumA" / "cover.jpg"
    cover.write_bytes(b"jpg")
    await scanner.scan(str(library))
    cover.unlink()

    report = await OrphanCollector(catalog).collect(str(library))

    assert report.art == 1
    assert report.songs == 0
    assert await catalog.count(Art) == 0
    song = await catalog.load(Song(file_name=str(library / "ArtistA" / "AlbumA" / "01.mp3")))
    assert song.art_id is None


async def test_cancel_stops_collection(catalog: Catalog, scanner: LibraryScanner, library: Path):
    await scanner.scan(str(library))
    cancel = asyncio.Event()
    cancel.set()

    with pytest.raises(Cancelled):
        await OrphanCollector(catalog).collect(str(library), cancel=cancel)
