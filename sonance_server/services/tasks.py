# Copyright (C) 2024 Sonance Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""Background library work: media scans, orphan scans and their schedule.

Scans and orphan scans both write the catalog, so they share one lock and
never overlap.
"""

import asyncio
import logging
import time

from sonance_server.errors import Cancelled
from sonance_server.metrics import counters
from sonance_server.services.catalog import Catalog
from sonance_server.services.orphans import OrphanCollector
from sonance_server.services.scanner import LibraryScanner, ScanReport

logger = logging.getLogger(__name__)


class LibraryTasks:
    def __init__(
        self,
        catalog: Catalog,
        media: str,
        scanner: LibraryScanner | None = None,
        orphan_interval: float = 30 * 60,
        status_interval: float = 5 * 60,
    ):
        self.catalog = catalog
        self.media = media
        self.scanner = scanner or LibraryScanner(catalog)
        self.collector = OrphanCollector(catalog)
        self.orphan_interval = orphan_interval
        self.status_interval = status_interval

        self.lock = asyncio.Lock()
        self.cancel = asyncio.Event()
        self._tasks: set[asyncio.Task] = set()
        self._scan_task: asyncio.Task | None = None
        self._orphan_task: asyncio.Task | None = None
        self.progress: dict = {
            "scanning": False,
            "orphanScanning": False,
            "filesSeen": 0,
            "currentFile": None,
            "lastScan": None,
            "lastOrphanScan": None,
            "error": None,
        }

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    @property
    def busy(self) -> bool:
        return self.lock.locked()

    # Single runs

    async def run_scan(self) -> ScanReport:
        """Media scan under the writer lock."""

        def on_progress(report: ScanReport, path: str) -> None:
            self.progress.update(filesSeen=report.files_seen, currentFile=path)

        async with self.lock:
            self.progress.update(scanning=True, filesSeen=0, currentFile=None, error=None)
            try:
                report = await self.scanner.scan(self.media, cancel=self.cancel, on_progress=on_progress)
            except Cancelled:
                raise
            except Exception as e:
                self.progress["error"] = str(e)
                raise
            finally:
                self.progress.update(scanning=False, currentFile=None)
            self.progress["lastScan"] = {"finished": int(time.time()), **report.as_dict()}
            return report

    async def run_orphan_scan(self):
        async with self.lock:
            self.progress.update(orphanScanning=True, error=None)
            try:
                report = await self.collector.collect(self.media, cancel=self.cancel)
            except Cancelled:
                raise
            except Exception as e:
                self.progress["error"] = str(e)
                raise
            finally:
                self.progress["orphanScanning"] = False
            self.progress["lastOrphanScan"] = {"finished": int(time.time()), **report.as_dict()}
            return report

    # Background starts: False when the same kind of run is already going

    def start_scan(self) -> bool:
        if self._scan_task is not None and not self._scan_task.done():
            return False
        self._scan_task = self._spawn(self._logged(self.run_scan(), "scan"))
        return True

    def start_orphan_scan(self) -> bool:
        if self._orphan_task is not None and not self._orphan_task.done():
            return False
        self._orphan_task = self._spawn(self._logged(self.run_orphan_scan(), "orphan"))
        return True

    async def _logged(self, coro, prefix: str):
        try:
            return await coro
        except Cancelled:
            logger.info("%s: stopped", prefix)
        except Exception:
            logger.exception("%s: failed", prefix)

    # Startup and schedule

    def start(self, scan_on_startup: bool = True) -> None:
        """Queue a session purge, an orphan scan then a media scan, and the periodic jobs."""
        if scan_on_startup:
            self._spawn(self._startup_scans())
        if self.orphan_interval > 0:
            self._spawn(self._every(self.orphan_interval, self._scheduled_orphan_scan))
        if self.status_interval > 0:
            self._spawn(self._every(self.status_interval, self.log_status))

    async def _startup_scans(self) -> None:
        await self._logged(self.purge_sessions(), "sessions")
        await self._logged(self.run_orphan_scan(), "orphan")
        if not self.cancel.is_set():
            await self._logged(self.run_scan(), "scan")

    async def _scheduled_orphan_scan(self) -> None:
        await self._logged(self.purge_sessions(), "sessions")
        if self.busy:
            logger.info("orphan: skipping scheduled run, library is busy")
            return
        await self._logged(self.run_orphan_scan(), "orphan")

    async def purge_sessions(self) -> int:
        """Delete sessions whose expiry has passed."""
        purged = await self.catalog.purge_expired_sessions(int(time.time()))
        if purged:
            logger.info("sessions: purged %d expired session(s)", purged)
        return purged

    async def _every(self, interval: float, job) -> None:
        while not self.cancel.is_set():
            try:
                await asyncio.wait_for(self.cancel.wait(), timeout=interval)
                return
            except asyncio.TimeoutError:
                pass
            await job()

    async def log_status(self) -> None:
        rx, tx = counters.load()
        metrics = await self.catalog.database_metrics()
        logger.info(
            "status: [artists: %d] [albums: %d] [songs: %d] [rx: %.2f MB] [tx: %.2f MB]",
            metrics["artists"],
            metrics["albums"],
            metrics["songs"],
            rx / 1024 / 1024,
            tx / 1024 / 1024,
        )

    async def shutdown(self, grace: float) -> None:
        """Ask running work to stop, wait up to grace seconds, then cancel what is left."""
        self.cancel.set()
        pending = [t for t in self._tasks if not t.done()]
        if not pending:
            return
        _, still_running = await asyncio.wait(pending, timeout=grace)
        for task in still_running:
            task.cancel()
        if still_running:
            logger.warning("tasks: cancelled %d task(s) after %.1fs grace period", len(still_running), grace)
            await asyncio.gather(*still_running, return_exceptions=True)
