# Copyright (C) 2024 Sonance Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""Music library scanner.

``walk_library`` turns a directory tree into a stream of ``WalkEvent``s with
no side effects; ``LibraryScanner`` consumes that stream and upserts folders,
art, artists, albums and songs into the catalog.
"""

import asyncio
import enum
import logging
import os
import time
from collections.abc import Callable, Iterator
from dataclasses import dataclass, field

from sonance_server.errors import Cancelled, MediaError, NotFound
from sonance_server.models import FILE_TYPES, Album, Art, Artist, Folder, Song, file_type_id
from sonance_server.services.catalog import Catalog
from sonance_server.services.tags import AudioTags, read_tags

logger = logging.getLogger(__name__)

ART_EXTENSIONS = (".jpg", ".jpeg", ".png", ".gif")

# Preferred over other images in the same directory
ART_STEMS = ("cover", "folder", "front")


class WalkEventKind(enum.Enum):
    ENTER_DIR = "enter_dir"
    ART = "art"
    FILE = "file"


@dataclass(frozen=True)
class WalkEvent:
    kind: WalkEventKind
    path: str


def walk_library(root: str) -> Iterator[WalkEvent]:
    """Yield events for root and everything below it.

    Per directory, in lexicographic order: ENTER_DIR, then ART for each image,
    then FILE for each recognized audio file, then each subdirectory
    recursively. Empty directories produce no events.
    """
    root = os.path.abspath(root)
    try:
        entries = sorted(os.scandir(root), key=lambda e: e.name)
    except OSError as e:
        logger.warning("scan: cannot read %s: %s", root, e)
        return
    if not entries:
        return

    yield WalkEvent(WalkEventKind.ENTER_DIR, root)

    subdirs = []
    audio = []
    for entry in entries:
        if entry.is_dir(follow_symlinks=False):
            subdirs.append(entry.path)
            continue
        ext = os.path.splitext(entry.name)[1].lower()
        if ext in ART_EXTENSIONS:
            yield WalkEvent(WalkEventKind.ART, entry.path)
        elif ext in FILE_TYPES:
            audio.append(entry.path)

    for path in audio:
        yield WalkEvent(WalkEventKind.FILE, path)
    for path in subdirs:
        yield from walk_library(path)


@dataclass
class ScanReport:
    folders_added: int = 0
    artists_added: int = 0
    albums_added: int = 0
    songs_added: int = 0
    art_added: int = 0
    files_seen: int = 0
    skipped: list[tuple[str, str]] = field(default_factory=list)
    duration: float = 0.0

    def as_dict(self) -> dict:
        return {
            "folders_added": self.folders_added,
            "artists_added": self.artists_added,
            "albums_added": self.albums_added,
            "songs_added": self.songs_added,
            "art_added": self.art_added,
            "files_seen": self.files_seen,
            "skipped": len(self.skipped),
            "duration": round(self.duration, 3),
        }


class LibraryScanner:
    """Converges the catalog toward the files under a media root."""

    def __init__(self, catalog: Catalog, read_tags: Callable[[str], AudioTags] = read_tags):
        self.catalog = catalog
        self._read_tags = read_tags

    async def scan(
        self,
        root: str,
        cancel: asyncio.Event | None = None,
        on_progress: Callable[[ScanReport, str], None] | None = None,
    ) -> ScanReport:
        """Walk root and add anything new to the catalog.

        Existing songs are left untouched. Files whose tags or properties
        cannot be read are recorded in ``report.skipped``. Raises Cancelled
        when cancel is set; rows written before that remain consistent.
        """
        root = os.path.abspath(root)
        report = ScanReport()
        started = time.monotonic()

        # Per-scan lookups of rows already resolved
        self._folders: dict[str, int] = {}
        self._artists: dict[str, int] = {}
        self._albums: dict[tuple[int, str], int] = {}
        self._folder_art: dict[str, int] = {}

        logger.info("scan: scanning %s", root)
        events = walk_library(root)
        while True:
            if cancel is not None and cancel.is_set():
                report.duration = time.monotonic() - started
                logger.info("scan: cancelled after %d files", report.files_seen)
                raise Cancelled("media scan cancelled")

            event = await asyncio.to_thread(next, events, None)
            if event is None:
                break

            if event.kind is WalkEventKind.ENTER_DIR:
                await self._enter_dir(event.path, root, report)
            elif event.kind is WalkEventKind.ART:
                await self._add_art(event.path, report)
            else:
                report.files_seen += 1
                await self._add_file(event.path, report)

            if on_progress:
                on_progress(report, event.path)

        report.duration = time.monotonic() - started
        logger.info(
            "scan: complete [folders: %d] [artists: %d] [albums: %d] [songs: %d] [art: %d] "
            "[skipped: %d] [time: %.3fs]",
            report.folders_added,
            report.artists_added,
            report.albums_added,
            report.songs_added,
            report.art_added,
            len(report.skipped),
            report.duration,
        )
        return report

    async def _folder_id(self, path: str) -> int | None:
        if path in self._folders:
            return self._folders[path]
        try:
            folder = await self.catalog.load(Folder(path=path))
        except NotFound:
            return None
        self._folders[path] = folder.id
        return folder.id

    async def _enter_dir(self, path: str, root: str, report: ScanReport) -> None:
        if path in self._folders:
            return
        parent_id = None
        if path != root:
            parent_id = await self._folder_id(os.path.dirname(path))
        try:
            folder = await self.catalog.load(Folder(path=path))
        except NotFound:
            folder = await self.catalog.save(Folder.for_path(path, parent_id=parent_id))
            report.folders_added += 1
            logger.debug("scan: folder: [#%05d] %s", folder.id, path)
        else:
            # the media root may have moved above an existing folder
            if folder.parent_id != parent_id:
                folder.parent_id = parent_id
                await self.catalog.update(folder)
                logger.debug("scan: folder: [#%05d] %s reparented", folder.id, path)
        self._folders[path] = folder.id

    async def _add_art(self, path: str, report: ScanReport) -> None:
        directory = os.path.dirname(path)
        stem = os.path.splitext(os.path.basename(path))[0].lower()
        if directory in self._folder_art and stem not in ART_STEMS:
            return

        try:
            art = await self.catalog.load(Art(file_name=path))
        except NotFound:
            try:
                stat = await asyncio.to_thread(os.stat, path)
            except OSError as e:
                report.skipped.append((path, str(e)))
                return
            art = await self.catalog.save(
                Art(file_name=path, file_size=stat.st_size, last_modified=int(stat.st_mtime))
            )
            report.art_added += 1
            logger.debug("scan: art: [#%05d] %s", art.id, path)
        self._folder_art[directory] = art.id

    async def _add_file(self, path: str, report: ScanReport) -> None:
        try:
            await self.catalog.load(Song(file_name=path))
            return
        except NotFound:
            pass

        try:
            tags = await asyncio.to_thread(self._read_tags, path)
            stat = await asyncio.to_thread(os.stat, path)
        except MediaError as e:
            logger.debug("scan: skipping %s: %s", path, e.message)
            report.skipped.append((path, e.message))
            return
        except OSError as e:
            report.skipped.append((path, str(e)))
            return

        directory = os.path.dirname(path)
        folder_id = await self._folder_id(directory)
        if folder_id is None:
            # Walk order guarantees the directory was entered first
            raise NotFound(f"folder not found for {path}")

        artist_id = self._artists.get(tags.artist)
        if artist_id is None:
            try:
                artist = await self.catalog.load(Artist(title=tags.artist))
            except NotFound:
                artist = await self.catalog.save(Artist(title=tags.artist))
                report.artists_added += 1
                logger.info("scan: artist: [#%05d] %s", artist.id, artist.title)
            artist_id = self._artists[tags.artist] = artist.id

        album_key = (artist_id, tags.album)
        album_id = self._albums.get(album_key)
        if album_id is None:
            try:
                album = await self.catalog.load(Album(artist_id=artist_id, title=tags.album))
            except NotFound:
                album = await self.catalog.save(
                    Album(artist_id=artist_id, title=tags.album, year=tags.year)
                )
                report.albums_added += 1
                logger.info("scan: album: [#%05d] %s - %s", album.id, tags.artist, album.title)
            album_id = self._albums[album_key] = album.id

        song = await self.catalog.save(
            Song(
                album_id=album_id,
                artist_id=artist_id,
                folder_id=folder_id,
                art_id=self._folder_art.get(directory),
                file_name=path,
                file_size=stat.st_size,
                file_type_id=file_type_id(path),
                bitrate=tags.bitrate,
                channels=tags.channels,
                sample_rate=tags.sample_rate,
                length=tags.length,
                title=tags.title,
                track=tags.track,
                year=tags.year,
                genre=tags.genre,
                comment=tags.comment,
                last_modified=int(stat.st_mtime),
            )
        )
        report.songs_added += 1
        logger.debug("scan: song: [#%05d] %s", song.id, path)
