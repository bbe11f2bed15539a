# Copyright (C) 2024 Sonance Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""Orphan collection: remove catalog rows no longer backed by files."""

import asyncio
import logging
import os
import time
from dataclasses import dataclass

from sonance_server.errors import Cancelled
from sonance_server.services.catalog import Catalog

logger = logging.getLogger(__name__)


@dataclass
class OrphanReport:
    songs: int = 0
    albums: int = 0
    artists: int = 0
    folders: int = 0
    art: int = 0
    duration: float = 0.0

    @property
    def total(self) -> int:
        return self.songs + self.albums + self.artists + self.folders + self.art

    def as_dict(self) -> dict:
        return {
            "songs": self.songs,
            "albums": self.albums,
            "artists": self.artists,
            "folders": self.folders,
            "art": self.art,
            "duration": round(self.duration, 3),
        }


def _prefix(folder: str) -> str:
    """Path prefix matching files below folder but not its siblings (/music vs /music2)."""
    return folder.rstrip(os.sep) + os.sep


class OrphanCollector:
    """Deletes songs outside the media root or missing on disk, then everything they orphaned.

    Order is songs, albums, artists, folders, art.
    """

    def __init__(self, catalog: Catalog):
        self.catalog = catalog

    async def collect(
        self,
        base_folder: str,
        sub_folder: str | None = None,
        cancel: asyncio.Event | None = None,
    ) -> OrphanReport:
        base_folder = os.path.abspath(base_folder)
        sub_folder = os.path.abspath(sub_folder) if sub_folder else base_folder
        report = OrphanReport()
        started = time.monotonic()

        def check_cancel() -> None:
            if cancel is not None and cancel.is_set():
                logger.info("orphan: cancelled")
                raise Cancelled("orphan scan cancelled")

        logger.info("orphan: scanning for orphaned items under %s", sub_folder)

        # Songs moved out of the media root (e.g. the root setting changed)
        outside = [s.id for s in await self.catalog.songs_not_in_path(_prefix(base_folder))]
        report.songs += await self.catalog.delete_songs(outside)

        # Songs whose file is gone
        missing = []
        for song in await self.catalog.songs_in_path(_prefix(sub_folder)):
            check_cancel()
            if not await asyncio.to_thread(os.path.isfile, song.file_name):
                logger.debug("orphan: song gone: [#%05d] %s", song.id, song.file_name)
                missing.append(song.id)
        report.songs += await self.catalog.delete_songs(missing)

        check_cancel()
        report.albums = await self.catalog.purge_orphan_albums()
        report.artists = await self.catalog.purge_orphan_artists()

        # Folders left outside the root are emptied of songs above; the purge removes them
        report.folders = await self.catalog.purge_orphan_folders()

        stale_art = [a.id for a in await self.catalog.art_not_in_path(_prefix(base_folder))]
        for art in await self.catalog.art_in_path(_prefix(sub_folder)):
            check_cancel()
            if not await asyncio.to_thread(os.path.isfile, art.file_name):
                stale_art.append(art.id)
        report.art = await self.catalog.purge_orphan_art(stale_art)

        report.duration = time.monotonic() - started
        if report.total:
            logger.info(
                "orphan: removed [songs: %d] [albums: %d] [artists: %d] [folders: %d] [art: %d] "
                "[time: %.3fs]",
                report.songs,
                report.albums,
                report.artists,
                report.folders,
                report.art,
                report.duration,
            )
        else:
            logger.info("orphan: no orphaned items found [time: %.3fs]", report.duration)
        return report
